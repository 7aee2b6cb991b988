"""Badge evaluator tests: criteria, exactly-once unlocks and catalog seeding."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from conftest import make_course, make_user
from learnity.db.models import BadgeDefinition, Enrollment, EnrollmentStatus, Review, UserBadge, XPActivity
from learnity.gamification.badge_service import (
    check_all_badges,
    check_and_award,
    get_badge_counters,
    get_or_create_badge,
    has_badge,
    list_achievements,
    list_user_badges,
)
from learnity.gamification.seed import BADGE_DEFINITIONS, BADGE_SEED_DATA, BadgeKey, seed_badges
from learnity.gamification.xp_service import get_or_create_progress


async def _complete_courses(db, user, n: int) -> None:
    for i in range(n):
        course, _, _ = await make_course(db, 1, title=f"Course {i}")
        db.add(
            Enrollment(
                student_id=user.id,
                course_id=course.id,
                progress=100,
                status=EnrollmentStatus.COMPLETED.value,
            )
        )
    await db.commit()


class TestSeed:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, db_session):
        await seed_badges(db_session)
        await seed_badges(db_session)
        count = await db_session.execute(select(func.count(BadgeDefinition.id)))
        assert count.scalar_one() == len(BADGE_SEED_DATA) == len(BadgeKey)

    @pytest.mark.asyncio
    async def test_get_or_create_existing(self, db_session):
        badge = await get_or_create_badge(db_session, BadgeKey.QUIZ_MASTER)
        assert badge.key == "QUIZ_MASTER"
        assert badge.criteria == {"counter": "quizzes_passed", "threshold": 50}

    @pytest.mark.asyncio
    async def test_get_or_create_restores_missing_definition(self, db_session):
        badge = await get_or_create_badge(db_session, BadgeKey.TOP_REVIEWER)
        await db_session.delete(badge)
        await db_session.commit()

        restored = await get_or_create_badge(db_session, BadgeKey.TOP_REVIEWER)
        await db_session.commit()
        assert restored.name == "Top Reviewer"


class TestCheckAndAward:
    @pytest.mark.asyncio
    async def test_criteria_not_met_returns_none(self, db_session):
        user = await make_user(db_session)
        assert await check_and_award(db_session, user.id, BadgeKey.FIRST_COURSE_COMPLETE) is None

    @pytest.mark.asyncio
    async def test_unlocks_once(self, db_session):
        """Second evaluation returns the existing unlock, never a duplicate."""
        user = await make_user(db_session)
        await _complete_courses(db_session, user, 1)

        first = await check_and_award(db_session, user.id, BadgeKey.FIRST_COURSE_COMPLETE)
        second = await check_and_award(db_session, user.id, BadgeKey.FIRST_COURSE_COMPLETE)
        await db_session.commit()

        assert first.newly_unlocked is True
        assert second.newly_unlocked is False
        assert second.key == first.key
        count = await db_session.execute(select(func.count(UserBadge.id)).where(UserBadge.user_id == user.id))
        assert count.scalar_one() == 1
        assert await has_badge(db_session, user.id, BadgeKey.FIRST_COURSE_COMPLETE)

    @pytest.mark.asyncio
    async def test_badges_do_not_touch_ledger(self, db_session):
        user = await make_user(db_session)
        progress = await get_or_create_progress(db_session, user.id)
        progress.current_streak = 7
        progress.longest_streak = 7
        await db_session.commit()

        result = await check_and_award(db_session, user.id, BadgeKey.STREAK_7_DAYS)
        await db_session.commit()

        assert result.newly_unlocked is True
        assert result.xp_reward == 25
        ledger = await db_session.execute(select(func.count(XPActivity.id)))
        assert ledger.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_top_reviewer_threshold(self, db_session):
        user = await make_user(db_session)
        for i in range(10):
            course, _, _ = await make_course(db_session, 1, title=f"Reviewed {i}")
            db_session.add(Review(student_id=user.id, course_id=course.id, rating=5))
            await db_session.commit()
            result = await check_and_award(db_session, user.id, BadgeKey.TOP_REVIEWER)
            if i < 9:
                assert result is None
        assert result is not None and result.newly_unlocked


class TestCounters:
    @pytest.mark.asyncio
    async def test_counters_for_new_user(self, db_session):
        user = await make_user(db_session)
        counters = await get_badge_counters(db_session, user.id)
        assert counters == {
            "courses_completed": 0,
            "quizzes_passed": 0,
            "reviews_written": 0,
            "current_streak": 0,
        }

    @pytest.mark.asyncio
    async def test_active_enrollments_not_counted(self, db_session):
        user = await make_user(db_session)
        course, _, _ = await make_course(db_session, 1)
        db_session.add(Enrollment(student_id=user.id, course_id=course.id, progress=50))
        await db_session.commit()
        counters = await get_badge_counters(db_session, user.id)
        assert counters["courses_completed"] == 0


class TestCheckAll:
    @pytest.mark.asyncio
    async def test_five_courses_unlocks_two_badges(self, db_session):
        user = await make_user(db_session)
        await _complete_courses(db_session, user, 5)

        unlocked = await check_all_badges(db_session, user.id)
        await db_session.commit()
        assert {b.key for b in unlocked} == {"FIRST_COURSE_COMPLETE", "FIVE_COURSES_COMPLETE"}

        again = await check_all_badges(db_session, user.id)
        assert again == []

        listing = await list_user_badges(db_session, user.id)
        assert listing.total_unlocked == 2
        assert listing.total_available == len(BadgeKey)


class TestListUserBadges:
    @pytest.mark.asyncio
    async def test_total_available_is_the_catalog_size(self, db_session):
        """A missing definition row must not inflate or shrink the catalog count."""
        user = await make_user(db_session)
        row = await db_session.execute(
            select(BadgeDefinition).where(BadgeDefinition.key == BadgeKey.TOP_REVIEWER.value)
        )
        await db_session.delete(row.scalar_one())
        await db_session.commit()

        listing = await list_user_badges(db_session, user.id)
        assert listing.total_available == len(BADGE_DEFINITIONS) == 10
        assert listing.total_unlocked == 0


class TestAchievements:
    @pytest.mark.asyncio
    async def test_new_user_sees_whole_catalog_locked(self, db_session):
        user = await make_user(db_session)
        result = await list_achievements(db_session, user.id)

        assert [a.key for a in result.achievements] == [d["key"] for d in BADGE_SEED_DATA]
        assert not any(a.unlocked for a in result.achievements)
        assert all(a.progress.current == 0 and a.progress.percentage == 0 for a in result.achievements)
        assert result.stats.total == 10
        assert result.stats.locked == 10
        assert result.stats.completion_percentage == 0
        assert set(result.by_category) == {"courses", "streaks", "quizzes", "community"}
        assert len(result.by_category["streaks"]) == 5

    @pytest.mark.asyncio
    async def test_progress_and_stats(self, db_session):
        user = await make_user(db_session)
        await _complete_courses(db_session, user, 5)
        await check_all_badges(db_session, user.id)
        progress = await get_or_create_progress(db_session, user.id)
        progress.current_streak = 3
        progress.longest_streak = 9
        await db_session.commit()

        result = await list_achievements(db_session, user.id)
        by_key = {a.key: a for a in result.achievements}

        assert by_key["FIVE_COURSES_COMPLETE"].unlocked is True
        assert by_key["FIVE_COURSES_COMPLETE"].unlocked_at is not None
        assert by_key["FIVE_COURSES_COMPLETE"].progress.percentage == 100
        assert by_key["TEN_COURSES_COMPLETE"].unlocked is False
        assert by_key["TEN_COURSES_COMPLETE"].progress.current == 5
        assert by_key["TEN_COURSES_COMPLETE"].progress.percentage == 50

        # Streak progress follows the longest streak and caps at the target
        assert by_key["STREAK_7_DAYS"].progress.current == 7
        assert by_key["STREAK_7_DAYS"].progress.percentage == 100
        assert by_key["STREAK_7_DAYS"].unlocked is False
        assert by_key["STREAK_14_DAYS"].progress.current == 9
        assert by_key["STREAK_14_DAYS"].progress.percentage == 64

        assert result.stats.unlocked == 2
        assert result.stats.locked == 8
        assert result.stats.completion_percentage == 20
        assert result.stats.total_badge_xp == 0
