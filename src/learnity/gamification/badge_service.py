"""Badge evaluation and unlock with duplicate prevention."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.db.models import (
    BadgeDefinition,
    Enrollment,
    EnrollmentStatus,
    QuizAttempt,
    Review,
    UserBadge,
    UserProgress,
)
from learnity.gamification.schemas import (
    Achievement,
    AchievementProgress,
    AchievementsResponse,
    AchievementStats,
    BadgeUnlockResult,
    UserBadgesResponse,
)
from learnity.gamification.seed import (
    BADGE_DEFINITIONS,
    BADGE_SEED_DATA,
    COURSES_COMPLETED,
    CURRENT_STREAK,
    QUIZZES_PASSED,
    REVIEWS_WRITTEN,
    BadgeKey,
)

logger = logging.getLogger(__name__)

COURSE_COMPLETION_BADGES = (
    BadgeKey.FIRST_COURSE_COMPLETE,
    BadgeKey.FIVE_COURSES_COMPLETE,
    BadgeKey.TEN_COURSES_COMPLETE,
)


async def get_badge_by_key(db: AsyncSession, key: BadgeKey | str) -> BadgeDefinition | None:
    """Fetch a badge definition by key."""
    result = await db.execute(
        select(BadgeDefinition).where(BadgeDefinition.key == BadgeKey(key).value)
    )
    return result.scalar_one_or_none()


async def get_or_create_badge(db: AsyncSession, key: BadgeKey | str) -> BadgeDefinition:
    """Catalog entry for ``key``, inserted from the static table if missing.

    Concurrent first inserts of the same key are tolerated: the loser of the
    race re-reads the winner's row.
    """
    key = BadgeKey(key)
    badge = await get_badge_by_key(db, key)
    if badge is not None:
        return badge

    badge = BadgeDefinition(**BADGE_DEFINITIONS[key])
    try:
        async with db.begin_nested():
            db.add(badge)
    except IntegrityError:
        badge = await get_badge_by_key(db, key)
        if badge is None:
            raise
    return badge


async def get_user_badge(db: AsyncSession, user_id: int, badge_id: int) -> UserBadge | None:
    result = await db.execute(
        select(UserBadge).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none()


async def has_badge(db: AsyncSession, user_id: int, key: BadgeKey | str) -> bool:
    """Check if user already unlocked a specific badge."""
    badge = await get_badge_by_key(db, key)
    if badge is None:
        return False
    return await get_user_badge(db, user_id, badge.id) is not None


async def get_badge_counters(db: AsyncSession, user_id: int) -> dict[str, int]:
    """Aggregate counters referenced by badge criteria."""
    courses = await db.execute(
        select(func.count(Enrollment.id)).where(
            Enrollment.student_id == user_id,
            Enrollment.status == EnrollmentStatus.COMPLETED.value,
        )
    )
    quizzes = await db.execute(
        select(func.count(distinct(QuizAttempt.quiz_id))).where(
            QuizAttempt.student_id == user_id,
            QuizAttempt.passed.is_(True),
        )
    )
    reviews = await db.execute(
        select(func.count(Review.id)).where(Review.student_id == user_id)
    )
    streak = await db.execute(
        select(UserProgress.current_streak).where(UserProgress.user_id == user_id)
    )
    return {
        COURSES_COMPLETED: courses.scalar_one(),
        QUIZZES_PASSED: quizzes.scalar_one(),
        REVIEWS_WRITTEN: reviews.scalar_one(),
        CURRENT_STREAK: streak.scalar_one_or_none() or 0,
    }


def criteria_met(criteria: dict, counters: dict[str, int]) -> bool:
    return counters.get(criteria["counter"], 0) >= criteria["threshold"]


def _to_result(badge: BadgeDefinition, user_badge: UserBadge, newly_unlocked: bool) -> BadgeUnlockResult:
    return BadgeUnlockResult(
        key=badge.key,
        name=badge.name,
        description=badge.description,
        icon=badge.icon,
        xp_reward=badge.xp_reward,
        unlocked_at=user_badge.unlocked_at,
        newly_unlocked=newly_unlocked,
    )


async def check_and_award(
    db: AsyncSession,
    user_id: int,
    key: BadgeKey | str,
    counters: dict[str, int] | None = None,
) -> BadgeUnlockResult | None:
    """Unlock ``key`` for the user if its criteria are met.

    Returns None when the criteria are not met, the existing unlock when the
    badge was already earned, and the new unlock (``newly_unlocked=True``)
    otherwise. Never raises on duplicates.
    """
    badge = await get_or_create_badge(db, key)

    existing = await get_user_badge(db, user_id, badge.id)
    if existing is not None:
        return _to_result(badge, existing, newly_unlocked=False)

    if counters is None:
        counters = await get_badge_counters(db, user_id)
    if not criteria_met(badge.criteria, counters):
        return None

    user_badge = UserBadge(
        user_id=user_id,
        badge_id=badge.id,
        unlocked_at=datetime.now(timezone.utc),
    )
    try:
        async with db.begin_nested():
            db.add(user_badge)
    except IntegrityError:
        # Race condition: badge already unlocked by a concurrent request
        existing = await get_user_badge(db, user_id, badge.id)
        if existing is None:
            raise
        return _to_result(badge, existing, newly_unlocked=False)

    logger.info("User %s unlocked badge %s", user_id, badge.key)
    return _to_result(badge, user_badge, newly_unlocked=True)


async def award_new_badges(
    db: AsyncSession,
    user_id: int,
    keys: tuple[BadgeKey, ...] | list[BadgeKey],
) -> list[BadgeUnlockResult]:
    """Evaluate several badges against one counter snapshot; return only new unlocks."""
    counters = await get_badge_counters(db, user_id)
    unlocked = []
    for key in keys:
        result = await check_and_award(db, user_id, key, counters)
        if result is not None and result.newly_unlocked:
            unlocked.append(result)
    return unlocked


async def check_all_badges(db: AsyncSession, user_id: int) -> list[BadgeUnlockResult]:
    """Evaluate the whole catalog; return badges unlocked by this call."""
    return await award_new_badges(db, user_id, list(BadgeKey))


async def list_user_badges(db: AsyncSession, user_id: int) -> UserBadgesResponse:
    """Badges the user has unlocked, newest first."""
    result = await db.execute(
        select(UserBadge, BadgeDefinition)
        .join(BadgeDefinition, UserBadge.badge_id == BadgeDefinition.id)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.unlocked_at.desc())
    )
    unlocked = [
        _to_result(row.BadgeDefinition, row.UserBadge, newly_unlocked=False)
        for row in result
    ]
    return UserBadgesResponse(
        unlocked=unlocked,
        total_available=len(BADGE_DEFINITIONS),
        total_unlocked=len(unlocked),
    )


def _achievement_progress(current: int, target: int) -> AchievementProgress:
    return AchievementProgress(
        current=min(current, target),
        target=target,
        percentage=min(100, (200 * current + target) // (2 * target)),
    )


async def list_achievements(db: AsyncSession, user_id: int) -> AchievementsResponse:
    """Every catalog badge with unlock state and progress towards its threshold.

    Streak badges measure progress against the longest streak so a broken
    streak does not erase progress already shown.
    """
    unlocked_rows = await db.execute(
        select(BadgeDefinition.key, UserBadge.unlocked_at)
        .join(UserBadge, UserBadge.badge_id == BadgeDefinition.id)
        .where(UserBadge.user_id == user_id)
    )
    unlocked_at = {row.key: row.unlocked_at for row in unlocked_rows}

    counters = await get_badge_counters(db, user_id)
    longest = await db.execute(
        select(UserProgress.longest_streak).where(UserProgress.user_id == user_id)
    )
    counters[CURRENT_STREAK] = max(counters[CURRENT_STREAK], longest.scalar_one_or_none() or 0)

    achievements = []
    for data in sorted(BADGE_SEED_DATA, key=lambda d: d["sort_order"]):
        criteria = data["criteria"]
        achievements.append(
            Achievement(
                key=data["key"],
                name=data["name"],
                description=data["description"],
                category=data["category"],
                icon=data["icon"],
                xp_reward=data["xp_reward"],
                unlocked=data["key"] in unlocked_at,
                unlocked_at=unlocked_at.get(data["key"]),
                progress=_achievement_progress(
                    counters.get(criteria["counter"], 0), criteria["threshold"],
                ),
            )
        )

    by_category: dict[str, list[Achievement]] = {}
    for achievement in achievements:
        by_category.setdefault(achievement.category, []).append(achievement)

    unlocked = [a for a in achievements if a.unlocked]
    return AchievementsResponse(
        achievements=achievements,
        by_category=by_category,
        stats=AchievementStats(
            total=len(achievements),
            unlocked=len(unlocked),
            locked=len(achievements) - len(unlocked),
            completion_percentage=(200 * len(unlocked) + len(achievements)) // (2 * len(achievements)),
            total_badge_xp=sum(a.xp_reward for a in unlocked),
        ),
    )
