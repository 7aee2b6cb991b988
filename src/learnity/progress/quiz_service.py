"""Quiz scoring, attempt history and pass rewards."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.db.models import Lesson, Question, Quiz, QuizAttempt
from learnity.gamification.badge_service import award_new_badges
from learnity.gamification.errors import InvalidSubmission, QuizNotFound
from learnity.gamification.schemas import BadgeUnlockResult
from learnity.gamification.seed import BadgeKey
from learnity.gamification.xp_rewards import QUIZ_PASS_XP, XPReason
from learnity.gamification.xp_service import award_xp
from learnity.progress.progress_service import ProgressService, percent
from learnity.progress.schemas import (
    AnswerResult,
    QuestionView,
    QuizAttemptOut,
    QuizStats,
    QuizSubmissionResult,
    QuizView,
    ScoreResult,
    SubmittedAnswer,
)

logger = logging.getLogger(__name__)


def score_answers(
    questions: Sequence[Question],
    answers: Sequence[SubmittedAnswer],
    passing_score: int,
) -> ScoreResult:
    """Grade a full answer set.

    Every question must be answered exactly once. Score is the half-up
    rounded percentage of correct answers; an empty quiz scores 0.
    """
    by_id = {question.id: question for question in questions}
    selected: dict[str, int] = {}
    for answer in answers:
        if answer.question_id not in by_id:
            raise InvalidSubmission(f"Unknown question {answer.question_id}")
        if answer.question_id in selected:
            raise InvalidSubmission(f"Question {answer.question_id} answered more than once")
        options = by_id[answer.question_id].options
        if not 0 <= answer.selected_option_index < len(options):
            raise InvalidSubmission(f"Invalid option for question {answer.question_id}")
        selected[answer.question_id] = answer.selected_option_index

    missing = [question.id for question in questions if question.id not in selected]
    if missing:
        raise InvalidSubmission(f"Missing answers for {len(missing)} question(s)")

    results = []
    for question in questions:
        choice = selected[question.id]
        results.append(
            AnswerResult(
                question_id=question.id,
                selected_option_index=choice,
                correct_option_index=question.correct_option_index,
                is_correct=choice == question.correct_option_index,
                explanation=question.explanation,
            )
        )

    correct = sum(1 for result in results if result.is_correct)
    score = percent(correct, len(questions))
    return ScoreResult(
        score=score,
        passed=score >= passing_score,
        correct_answers=correct,
        total_questions=len(questions),
        answer_results=results,
    )


class QuizService:
    """Quiz delivery and grading for students."""

    def __init__(self, db: AsyncSession, today: date | None = None) -> None:
        self.db = db
        self.progress = ProgressService(db, today)

    async def _require_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self.db.get(Quiz, quiz_id)
        if quiz is None:
            raise QuizNotFound(f"Quiz {quiz_id} not found")
        return quiz

    async def _questions(self, quiz_id: str) -> list[Question]:
        result = await self.db.execute(
            select(Question).where(Question.quiz_id == quiz_id).order_by(Question.order, Question.id)
        )
        return list(result.scalars().all())

    async def _course_id(self, quiz: Quiz) -> str:
        lesson = await self.db.get(Lesson, quiz.lesson_id)
        return await self.progress.course_id_for_lesson(lesson)

    async def get_quiz_for_student(self, quiz_id: str) -> QuizView:
        """Quiz with its questions, without correct answers or explanations."""
        quiz = await self._require_quiz(quiz_id)
        questions = await self._questions(quiz_id)
        return QuizView(
            id=quiz.id,
            lesson_id=quiz.lesson_id,
            title=quiz.title,
            passing_score=quiz.passing_score,
            is_required=quiz.is_required,
            questions=[
                QuestionView(id=q.id, prompt=q.prompt, options=list(q.options), order=q.order)
                for q in questions
            ],
        )

    async def submit_attempt(
        self,
        student_id: int,
        quiz_id: str,
        answers: Sequence[SubmittedAnswer],
        time_taken_seconds: int = 0,
    ) -> QuizSubmissionResult:
        """Grade and store an attempt.

        Every submission is kept. QUIZ_PASS XP is granted on the first passing
        attempt only; a pass re-evaluates course completion and QUIZ_MASTER.
        """
        if time_taken_seconds < 0:
            raise InvalidSubmission("time_taken_seconds must be non-negative")

        quiz = await self._require_quiz(quiz_id)
        await self.progress.require_user(student_id)
        course_id = await self._course_id(quiz)
        enrollment = await self.progress.require_enrollment(student_id, course_id)

        questions = await self._questions(quiz_id)
        graded = score_answers(questions, answers, quiz.passing_score)

        now = datetime.now(timezone.utc)
        attempt = QuizAttempt(
            student_id=student_id,
            quiz_id=quiz_id,
            score=graded.score,
            passed=graded.passed,
            time_taken_seconds=time_taken_seconds,
            answers=[a.model_dump() for a in answers],
            created_at=now,
        )
        self.db.add(attempt)
        enrollment.last_accessed_at = now
        await self.db.flush()

        xp_awarded = 0
        course_completed = False
        badges: list[BadgeUnlockResult] = []
        if graded.passed:
            award = await award_xp(
                self.db,
                student_id,
                QUIZ_PASS_XP,
                XPReason.QUIZ_PASS,
                source_id=quiz_id,
                description=f"Passed quiz: {quiz.title}",
            )
            xp_awarded = award.xp_awarded
            completion = await self.progress.check_course_completion(enrollment)
            course_completed = completion.completed
            badges.extend(completion.badges_unlocked)
            badges.extend(await award_new_badges(self.db, student_id, [BadgeKey.QUIZ_MASTER]))
            logger.info("User %s passed quiz %s with %d%%", student_id, quiz_id, graded.score)

        return QuizSubmissionResult(
            attempt=QuizAttemptOut.model_validate(attempt),
            score=graded.score,
            passed=graded.passed,
            correct_answers=graded.correct_answers,
            total_questions=graded.total_questions,
            answer_results=graded.answer_results,
            xp_awarded=xp_awarded,
            enrollment_progress=enrollment.progress,
            course_completed=course_completed,
            badges_unlocked=badges,
        )

    async def get_attempts(self, student_id: int, quiz_id: str) -> list[QuizAttemptOut]:
        """All attempts by a student, newest first."""
        await self._require_quiz(quiz_id)
        result = await self.db.execute(
            select(QuizAttempt)
            .where(QuizAttempt.student_id == student_id, QuizAttempt.quiz_id == quiz_id)
            .order_by(QuizAttempt.created_at.desc())
        )
        return [QuizAttemptOut.model_validate(a) for a in result.scalars()]

    async def get_best_attempt(self, student_id: int, quiz_id: str) -> QuizAttemptOut | None:
        """Highest score; the earliest attempt wins ties."""
        await self._require_quiz(quiz_id)
        result = await self.db.execute(
            select(QuizAttempt)
            .where(QuizAttempt.student_id == student_id, QuizAttempt.quiz_id == quiz_id)
            .order_by(QuizAttempt.score.desc(), QuizAttempt.created_at.asc())
            .limit(1)
        )
        attempt = result.scalar_one_or_none()
        return QuizAttemptOut.model_validate(attempt) if attempt else None

    async def get_quiz_stats(self, student_id: int, quiz_id: str) -> QuizStats:
        await self._require_quiz(quiz_id)
        result = await self.db.execute(
            select(
                func.count(QuizAttempt.id),
                func.max(QuizAttempt.score),
                func.avg(QuizAttempt.score),
            ).where(QuizAttempt.student_id == student_id, QuizAttempt.quiz_id == quiz_id)
        )
        total, best, average = result.one()
        first_pass = await self.db.execute(
            select(func.min(QuizAttempt.created_at)).where(
                QuizAttempt.student_id == student_id,
                QuizAttempt.quiz_id == quiz_id,
                QuizAttempt.passed.is_(True),
            )
        )
        first_passed_at = first_pass.scalar_one()
        return QuizStats(
            quiz_id=quiz_id,
            total_attempts=total,
            best_score=best,
            average_score=round(float(average), 2) if average is not None else None,
            passed=first_passed_at is not None,
            first_passed_at=first_passed_at,
        )
