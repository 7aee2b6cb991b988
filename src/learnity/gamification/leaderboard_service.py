"""XP leaderboards: global ranking, per-course ranking and a user's rank.

Rankings are read-time aggregates over ``user_progress``. Equal scores share
a rank and the next rank skips (1, 2, 2, 4).
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.db.models import Course, Enrollment, User, UserBadge, UserProgress
from learnity.gamification.errors import CourseNotFound, UserNotFound
from learnity.gamification.level_thresholds import compute_level
from learnity.gamification.schemas import LeaderboardEntry, LeaderboardResponse, UserRank

_total_xp = func.coalesce(UserProgress.total_xp, 0)


def competition_ranks(scores: list) -> list[int]:
    """Ranks for scores already sorted best first; ties share a rank."""
    ranks: list[int] = []
    for index, score in enumerate(scores):
        if index and score == scores[index - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(index + 1)
    return ranks


async def get_badge_counts(db: AsyncSession, user_ids: list[int]) -> dict[int, int]:
    """Batch-load unlocked badge counts for leaderboard enrichment."""
    if not user_ids:
        return {}
    result = await db.execute(
        select(UserBadge.user_id, func.count(UserBadge.id).label("cnt"))
        .where(UserBadge.user_id.in_(user_ids))
        .group_by(UserBadge.user_id)
    )
    return {row.user_id: row.cnt for row in result}


def _display_name(user_id: int, display_name: str | None) -> str:
    return display_name or f"Learner-{user_id}"


async def get_user_rank(db: AsyncSession, user_id: int) -> UserRank:
    """Global XP rank: 1 + number of users with strictly more XP."""
    if await db.get(User, user_id) is None:
        raise UserNotFound(f"User {user_id} not found")

    mine = await db.execute(
        select(UserProgress.total_xp).where(UserProgress.user_id == user_id)
    )
    my_xp = mine.scalar_one_or_none() or 0

    higher = await db.execute(
        select(func.count(User.id))
        .outerjoin(UserProgress, UserProgress.user_id == User.id)
        .where(_total_xp > my_xp)
    )
    total = await db.execute(select(func.count(User.id)))
    return UserRank(user_id=user_id, rank=higher.scalar_one() + 1, total=total.scalar_one())


async def get_global_leaderboard(
    db: AsyncSession,
    limit: int = 10,
    current_user_id: int | None = None,
) -> LeaderboardResponse:
    """Top users by total XP. Users without a progress row count as 0 XP."""
    result = await db.execute(
        select(User.id, User.display_name, _total_xp.label("total_xp"))
        .outerjoin(UserProgress, UserProgress.user_id == User.id)
        .order_by(_total_xp.desc(), User.id)
        .limit(limit)
    )
    rows = result.all()
    badge_counts = await get_badge_counts(db, [row.id for row in rows])
    ranks = competition_ranks([row.total_xp for row in rows])

    entries = [
        LeaderboardEntry(
            rank=rank,
            user_id=row.id,
            display_name=_display_name(row.id, row.display_name),
            total_xp=row.total_xp,
            level=compute_level(row.total_xp),
            badge_count=badge_counts.get(row.id, 0),
            is_current_user=row.id == current_user_id,
        )
        for rank, row in zip(ranks, rows)
    ]

    total = await db.execute(select(func.count(User.id)))
    current_rank = None
    if current_user_id is not None and await db.get(User, current_user_id) is not None:
        current_rank = (await get_user_rank(db, current_user_id)).rank

    return LeaderboardResponse(
        entries=entries,
        current_user_rank=current_rank,
        total_users=total.scalar_one(),
    )


async def get_course_leaderboard(
    db: AsyncSession,
    course_id: str,
    limit: int = 10,
    current_user_id: int | None = None,
) -> LeaderboardResponse:
    """Students enrolled in a course, ranked by course progress, then total XP."""
    if await db.get(Course, course_id) is None:
        raise CourseNotFound(f"Course {course_id} not found")

    result = await db.execute(
        select(
            User.id,
            User.display_name,
            _total_xp.label("total_xp"),
            Enrollment.progress,
        )
        .join(Enrollment, Enrollment.student_id == User.id)
        .outerjoin(UserProgress, UserProgress.user_id == User.id)
        .where(Enrollment.course_id == course_id)
        .order_by(Enrollment.progress.desc(), _total_xp.desc(), User.id)
    )
    rows = result.all()
    ranks = competition_ranks([(row.progress, row.total_xp) for row in rows])

    current_rank = None
    for rank, row in zip(ranks, rows):
        if row.id == current_user_id:
            current_rank = rank
            break

    top = rows[:limit]
    badge_counts = await get_badge_counts(db, [row.id for row in top])
    entries = [
        LeaderboardEntry(
            rank=rank,
            user_id=row.id,
            display_name=_display_name(row.id, row.display_name),
            total_xp=row.total_xp,
            level=compute_level(row.total_xp),
            badge_count=badge_counts.get(row.id, 0),
            course_progress=row.progress,
            is_current_user=row.id == current_user_id,
        )
        for rank, row in zip(ranks, top)
    ]
    return LeaderboardResponse(
        entries=entries,
        course_id=course_id,
        current_user_rank=current_rank,
        total_users=len(rows),
    )
