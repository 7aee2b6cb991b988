"""Quiz scorer tests: attempts, first-pass XP, best attempt and stats."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select

from conftest import answers_with, enroll_user, make_course, make_quiz, make_user
from learnity.db.models import QuizAttempt, XPActivity
from learnity.gamification.errors import InvalidSubmission, NotEnrolled, QuizNotFound
from learnity.progress.progress_service import ProgressService
from learnity.progress.quiz_service import QuizService
from learnity.progress.schemas import SubmittedAnswer

TODAY = date(2026, 3, 10)


def _submitted(raw: list[dict]) -> list[SubmittedAnswer]:
    return [SubmittedAnswer(**a) for a in raw]


async def _quiz_setup(db, questions: int = 10, lessons: int = 2):
    user = await make_user(db)
    course, _, lesson_rows = await make_course(db, lessons)
    quiz, question_rows = await make_quiz(db, lesson_rows[-1], questions)
    enrollment = await enroll_user(db, user, course)
    return user, course, lesson_rows, quiz, question_rows, enrollment


class TestSubmitAttempt:
    @pytest.mark.asyncio
    async def test_eight_of_ten_passes_with_xp(self, db_session):
        user, _, _, quiz, questions, _ = await _quiz_setup(db_session)
        result = await QuizService(db_session, TODAY).submit_attempt(
            user.id, quiz.id, _submitted(answers_with(questions, 8)), 95,
        )
        await db_session.commit()

        assert result.score == 80
        assert result.passed is True
        assert result.correct_answers == 8
        assert result.xp_awarded == 20
        assert len(result.answer_results) == 10
        assert result.attempt.time_taken_seconds == 95

    @pytest.mark.asyncio
    async def test_failing_attempt_awards_nothing(self, db_session):
        user, _, _, quiz, questions, _ = await _quiz_setup(db_session)
        result = await QuizService(db_session, TODAY).submit_attempt(
            user.id, quiz.id, _submitted(answers_with(questions, 5)),
        )
        assert result.passed is False
        assert result.xp_awarded == 0

    @pytest.mark.asyncio
    async def test_best_of_three_and_single_pass_reward(self, db_session):
        """Scores 40, 90, 60: best is 90 and QUIZ_PASS is granted once."""
        user, _, _, quiz, questions, _ = await _quiz_setup(db_session)
        service = QuizService(db_session, TODAY)
        for correct in (4, 9, 6):
            await service.submit_attempt(user.id, quiz.id, _submitted(answers_with(questions, correct)))
        await db_session.commit()

        best = await service.get_best_attempt(user.id, quiz.id)
        assert best.score == 90

        attempts = await service.get_attempts(user.id, quiz.id)
        assert len(attempts) == 3
        assert [a.score for a in attempts] == [60, 90, 40]

        passes = await db_session.execute(
            select(func.count(XPActivity.id)).where(XPActivity.reason == "QUIZ_PASS")
        )
        assert passes.scalar_one() == 1

    @pytest.mark.asyncio
    async def test_repeat_pass_awards_nothing(self, db_session):
        user, _, _, quiz, questions, _ = await _quiz_setup(db_session)
        service = QuizService(db_session, TODAY)
        first = await service.submit_attempt(user.id, quiz.id, _submitted(answers_with(questions, 10)))
        second = await service.submit_attempt(user.id, quiz.id, _submitted(answers_with(questions, 10)))
        assert first.xp_awarded == 20
        assert second.xp_awarded == 0
        count = await db_session.execute(select(func.count(QuizAttempt.id)))
        assert count.scalar_one() == 2

    @pytest.mark.asyncio
    async def test_best_attempt_tie_keeps_earliest(self, db_session):
        user, _, _, quiz, questions, _ = await _quiz_setup(db_session)
        service = QuizService(db_session, TODAY)
        first = await service.submit_attempt(user.id, quiz.id, _submitted(answers_with(questions, 7)))
        await service.submit_attempt(user.id, quiz.id, _submitted(answers_with(questions, 7)))
        best = await service.get_best_attempt(user.id, quiz.id)
        assert best.id == first.attempt.id

    @pytest.mark.asyncio
    async def test_passing_required_quiz_completes_course(self, db_session):
        user, _, lessons, quiz, questions, enrollment = await _quiz_setup(db_session)
        progress = ProgressService(db_session, TODAY)
        for lesson in lessons:
            await progress.mark_lesson_complete(user.id, lesson.id)
        assert enrollment.progress == 67

        result = await QuizService(db_session, TODAY).submit_attempt(
            user.id, quiz.id, _submitted(answers_with(questions, 10)),
        )
        await db_session.commit()

        assert result.course_completed is True
        assert result.enrollment_progress == 100
        assert enrollment.status == "COMPLETED"
        assert "FIRST_COURSE_COMPLETE" in [b.key for b in result.badges_unlocked]

    @pytest.mark.asyncio
    async def test_invalid_submission_stores_nothing(self, db_session):
        user, _, _, quiz, questions, _ = await _quiz_setup(db_session)
        with pytest.raises(InvalidSubmission):
            await QuizService(db_session).submit_attempt(
                user.id, quiz.id, _submitted(answers_with(questions, 10)[:9]),
            )
        await db_session.rollback()
        count = await db_session.execute(select(func.count(QuizAttempt.id)))
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_negative_time_rejected(self, db_session):
        user, _, _, quiz, questions, _ = await _quiz_setup(db_session)
        with pytest.raises(InvalidSubmission):
            await QuizService(db_session).submit_attempt(
                user.id, quiz.id, _submitted(answers_with(questions, 10)), -1,
            )

    @pytest.mark.asyncio
    async def test_unknown_quiz(self, db_session):
        user = await make_user(db_session)
        with pytest.raises(QuizNotFound):
            await QuizService(db_session).submit_attempt(user.id, "missing", [])

    @pytest.mark.asyncio
    async def test_not_enrolled(self, db_session):
        user = await make_user(db_session)
        _, _, lessons = await make_course(db_session, 1)
        quiz, questions = await make_quiz(db_session, lessons[0], 2)
        with pytest.raises(NotEnrolled):
            await QuizService(db_session).submit_attempt(
                user.id, quiz.id, _submitted(answers_with(questions, 2)),
            )


class TestQuizReads:
    @pytest.mark.asyncio
    async def test_student_view_hides_answers(self, db_session):
        _, _, _, quiz, _, _ = await _quiz_setup(db_session, questions=3)
        view = await QuizService(db_session).get_quiz_for_student(quiz.id)
        assert len(view.questions) == 3
        dumped = view.model_dump()
        for question in dumped["questions"]:
            assert "correct_option_index" not in question
            assert "explanation" not in question

    @pytest.mark.asyncio
    async def test_stats(self, db_session):
        user, _, _, quiz, questions, _ = await _quiz_setup(db_session)
        service = QuizService(db_session, TODAY)
        for correct in (4, 9, 6):
            await service.submit_attempt(user.id, quiz.id, _submitted(answers_with(questions, correct)))

        stats = await service.get_quiz_stats(user.id, quiz.id)
        assert stats.total_attempts == 3
        assert stats.best_score == 90
        assert stats.average_score == pytest.approx(63.33, abs=0.01)
        assert stats.passed is True
        assert stats.first_passed_at is not None

    @pytest.mark.asyncio
    async def test_stats_without_attempts(self, db_session):
        user, _, _, quiz, _, _ = await _quiz_setup(db_session)
        stats = await QuizService(db_session).get_quiz_stats(user.id, quiz.id)
        assert stats.total_attempts == 0
        assert stats.best_score is None
        assert stats.passed is False
        assert await QuizService(db_session).get_best_attempt(user.id, quiz.id) is None
