"""Leaderboard tests: competition ranking, course boards and user rank."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import make_course, make_user
from learnity.db.models import Enrollment, UserBadge
from learnity.gamification.badge_service import get_or_create_badge
from learnity.gamification.errors import CourseNotFound, UserNotFound
from learnity.gamification.leaderboard_service import (
    competition_ranks,
    get_course_leaderboard,
    get_global_leaderboard,
    get_user_rank,
)
from learnity.gamification.seed import BadgeKey
from learnity.gamification.xp_rewards import XPReason
from learnity.gamification.xp_service import award_xp


async def _users_with_xp(db, *amounts: int) -> list[int]:
    """One user per amount; 0 leaves the user without a progress row."""
    ids = []
    for index, amount in enumerate(amounts):
        user = await make_user(db, f"learner{index}")
        if amount:
            await award_xp(db, user.id, amount, XPReason.HELP_PEER)
        ids.append(user.id)
    await db.commit()
    return ids


class TestCompetitionRanks:
    def test_ties_share_rank_and_skip(self):
        assert competition_ranks([100, 50, 50, 0]) == [1, 2, 2, 4]

    def test_tuple_scores(self):
        assert competition_ranks([(75, 0), (50, 100), (50, 100), (25, 0)]) == [1, 2, 2, 4]

    def test_empty(self):
        assert competition_ranks([]) == []


class TestGlobalLeaderboard:
    @pytest.mark.asyncio
    async def test_ranking_with_ties(self, db_session):
        a, b, c, d = await _users_with_xp(db_session, 100, 50, 50, 0)

        board = await get_global_leaderboard(db_session, limit=10)

        assert [e.user_id for e in board.entries] == [a, b, c, d]
        assert [e.rank for e in board.entries] == [1, 2, 2, 4]
        assert board.entries[3].total_xp == 0
        assert board.entries[3].level == 1
        assert board.entries[0].level == 2
        assert board.total_users == 4
        assert board.current_user_rank is None

    @pytest.mark.asyncio
    async def test_limit_and_current_user_outside_page(self, db_session):
        a, b, c, _ = await _users_with_xp(db_session, 100, 50, 50, 0)

        board = await get_global_leaderboard(db_session, limit=2, current_user_id=c)

        assert [e.user_id for e in board.entries] == [a, b]
        assert not any(e.is_current_user for e in board.entries)
        assert board.current_user_rank == 2
        assert board.total_users == 4

    @pytest.mark.asyncio
    async def test_current_user_marked_and_badges_counted(self, db_session):
        a, _ = await _users_with_xp(db_session, 40, 10)
        badge = await get_or_create_badge(db_session, BadgeKey.FIRST_COURSE_COMPLETE)
        db_session.add(UserBadge(user_id=a, badge_id=badge.id, unlocked_at=datetime.now(timezone.utc)))
        await db_session.commit()

        board = await get_global_leaderboard(db_session, current_user_id=a)

        assert board.entries[0].is_current_user is True
        assert board.entries[0].badge_count == 1
        assert board.entries[1].badge_count == 0
        assert board.current_user_rank == 1

    @pytest.mark.asyncio
    async def test_display_name_fallback(self, db_session):
        user = await make_user(db_session, "")
        board = await get_global_leaderboard(db_session)
        assert board.entries[0].display_name == f"Learner-{user.id}"

    @pytest.mark.asyncio
    async def test_unknown_current_user_has_no_rank(self, db_session):
        await _users_with_xp(db_session, 10)
        board = await get_global_leaderboard(db_session, current_user_id=999_999)
        assert board.current_user_rank is None


class TestUserRank:
    @pytest.mark.asyncio
    async def test_rank_counts_strictly_higher(self, db_session):
        _, _, c, d = await _users_with_xp(db_session, 100, 50, 50, 0)

        tied = await get_user_rank(db_session, c)
        assert tied.rank == 2
        assert tied.total == 4

        last = await get_user_rank(db_session, d)
        assert last.rank == 4

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(UserNotFound):
            await get_user_rank(db_session, 999_999)


class TestCourseLeaderboard:
    @staticmethod
    async def _enroll(db, course_id: str, progress_by_user: dict[int, int]) -> None:
        for user_id, progress in progress_by_user.items():
            db.add(Enrollment(student_id=user_id, course_id=course_id, progress=progress))
        await db.commit()

    @pytest.mark.asyncio
    async def test_ranked_by_progress_then_xp(self, db_session):
        """Progress orders the board; total XP breaks progress ties."""
        a, b, c, e, outsider = await _users_with_xp(db_session, 100, 0, 100, 300, 500)
        course, _, _ = await make_course(db_session, 4)
        course_id = course.id
        await self._enroll(db_session, course_id, {a: 50, b: 75, c: 50, e: 25})

        board = await get_course_leaderboard(db_session, course_id)

        assert board.course_id == course_id
        assert [entry.user_id for entry in board.entries] == [b, a, c, e]
        assert [entry.rank for entry in board.entries] == [1, 2, 2, 4]
        assert [entry.course_progress for entry in board.entries] == [75, 50, 50, 25]
        assert outsider not in [entry.user_id for entry in board.entries]
        assert board.total_users == 4

    @pytest.mark.asyncio
    async def test_limit_keeps_rank_of_current_user(self, db_session):
        a, b = await _users_with_xp(db_session, 10, 20)
        course, _, _ = await make_course(db_session, 2)
        course_id = course.id
        await self._enroll(db_session, course_id, {a: 100, b: 50})

        board = await get_course_leaderboard(db_session, course_id, limit=1, current_user_id=b)

        assert [entry.user_id for entry in board.entries] == [a]
        assert board.current_user_rank == 2
        assert board.total_users == 2

    @pytest.mark.asyncio
    async def test_course_without_students(self, db_session):
        course, _, _ = await make_course(db_session, 1)
        board = await get_course_leaderboard(db_session, course.id)
        assert board.entries == []
        assert board.total_users == 0

    @pytest.mark.asyncio
    async def test_unknown_course(self, db_session):
        with pytest.raises(CourseNotFound):
            await get_course_leaderboard(db_session, "missing")
