"""Facade tests: activity rewards, transaction boundaries and summaries."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from conftest import answers_with, enroll_user, make_course, make_quiz, make_user
from learnity.db.models import UserProgress, XPActivity
from learnity.gamification.errors import InvalidSource, LessonNotFound, UserNotFound
from learnity.gamification.facade import GamificationFacade
from learnity.gamification.xp_rewards import XPReason
from learnity.gamification.xp_service import get_ledger_total

TODAY = date(2026, 3, 10)


class TestRecordActivity:
    @pytest.mark.asyncio
    async def test_login_rewarded_once_per_day(self, db_session):
        user = await make_user(db_session)
        facade = GamificationFacade(db_session, today=TODAY)

        first = await facade.record_activity(user.id, XPReason.LOGIN)
        second = await facade.record_activity(user.id, XPReason.LOGIN)

        assert first.xp.xp_awarded == 5
        assert first.streak.current_streak == 1
        assert second.xp.xp_awarded == 0
        assert (await db_session.get(UserProgress, user.id)).total_xp == 5

    @pytest.mark.asyncio
    async def test_login_next_day_continues_streak(self, db_session):
        user = await make_user(db_session)
        await GamificationFacade(db_session, today=TODAY).record_activity(user.id, "LOGIN")
        result = await GamificationFacade(db_session, today=TODAY + timedelta(days=1)).record_activity(
            user.id, "LOGIN"
        )
        assert result.xp.xp_awarded == 5
        assert result.streak.current_streak == 2

    @pytest.mark.asyncio
    async def test_non_qualifying_activity_leaves_streak(self, db_session):
        user = await make_user(db_session)
        result = await GamificationFacade(db_session, today=TODAY).record_activity(user.id, XPReason.HELP_PEER)
        assert result.xp.xp_awarded == 20
        assert result.streak is None
        assert (await db_session.get(UserProgress, user.id)).current_streak == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reason,xp",
        [(XPReason.HELP_PEER, 20), (XPReason.SESSION_ATTEND, 30), (XPReason.GROUP_JOIN, 10)],
    )
    async def test_fixed_amounts(self, db_session, reason, xp):
        user = await make_user(db_session)
        result = await GamificationFacade(db_session, today=TODAY).record_activity(user.id, reason)
        assert result.xp.xp_awarded == xp

    @pytest.mark.asyncio
    async def test_course_reasons_rejected(self, db_session):
        user = await make_user(db_session)
        with pytest.raises(InvalidSource):
            await GamificationFacade(db_session).record_activity(user.id, XPReason.LESSON_COMPLETE, "l1")

    @pytest.mark.asyncio
    async def test_level_up_reported(self, db_session):
        user = await make_user(db_session)
        facade = GamificationFacade(db_session, today=TODAY)
        for i in range(3):
            await facade.record_activity(user.id, XPReason.SESSION_ATTEND, source_id=f"session-{i}")
        result = await facade.record_activity(user.id, XPReason.SESSION_ATTEND, source_id="session-3")
        assert result.leveled_up is True
        assert result.xp.new_level == 2


class TestTransactions:
    @pytest.mark.asyncio
    async def test_commits_on_success(self, db_session):
        user_id = (await make_user(db_session)).id
        await GamificationFacade(db_session).award(user_id, 15, XPReason.HELP_PEER)
        await db_session.rollback()
        assert await get_ledger_total(db_session, user_id) == 15

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, db_session):
        user_id = (await make_user(db_session)).id
        facade = GamificationFacade(db_session)
        with pytest.raises(UserNotFound):
            await facade.award(999_999, 15, XPReason.HELP_PEER)
        with pytest.raises(LessonNotFound):
            await facade.mark_lesson_complete(user_id, "missing")
        count = await db_session.execute(select(func.count(XPActivity.id)))
        assert count.scalar_one() == 0


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_course_with_quiz_flow(self, db_session):
        user = await make_user(db_session)
        course, _, lessons = await make_course(db_session, 3)
        quiz, questions = await make_quiz(db_session, lessons[2], 10)
        facade = GamificationFacade(db_session, today=TODAY)

        enrolled = await facade.enroll(user.id, course.id)
        assert enrolled.already_enrolled is False

        for lesson in lessons:
            await facade.mark_lesson_complete(user.id, lesson.id)
        failed = await facade.submit_quiz_attempt(user.id, quiz.id, answers_with(questions, 5))
        assert failed.passed is False
        passed = await facade.submit_quiz_attempt(user.id, quiz.id, answers_with(questions, 8))

        assert passed.score == 80
        assert passed.course_completed is True

        summary = await facade.get_summary(user.id)
        assert summary.total_xp == 3 * 10 + 20 + 50
        assert summary.level.level == 2
        assert summary.current_streak == 1
        assert [b.key for b in summary.badges] == ["FIRST_COURSE_COMPLETE"]
        assert summary.recent_activity[0].reason == "COURSE_COMPLETE"
        assert await get_ledger_total(db_session, user.id) == summary.total_xp

        best = await facade.get_best_attempt(user.id, quiz.id)
        assert best.score == 80
        progress = await facade.get_course_progress(user.id, course.id)
        assert progress.progress == 100
        assert progress.status == "COMPLETED"
        assert await facade.get_next_lesson(user.id, course.id) is None

    @pytest.mark.asyncio
    async def test_summary_for_new_user(self, db_session):
        user = await make_user(db_session)
        summary = await GamificationFacade(db_session).get_summary(user.id)
        assert summary.total_xp == 0
        assert summary.level.level == 1
        assert summary.badges == []
        assert summary.recent_activity == []

    @pytest.mark.asyncio
    async def test_summary_unknown_user(self, db_session):
        with pytest.raises(UserNotFound):
            await GamificationFacade(db_session).get_summary(31337)

    @pytest.mark.asyncio
    async def test_review_flow(self, db_session):
        user = await make_user(db_session)
        course, _, _ = await make_course(db_session, 1)
        await enroll_user(db_session, user, course)
        result = await GamificationFacade(db_session).record_review(user.id, course.id, 4, "Clear")
        assert result.already_reviewed is False
        assert result.badges_unlocked == []
