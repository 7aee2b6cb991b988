"""Single entry point into the progress and gamification engine.

Every mutating operation runs in one transaction: it commits once on success
and rolls back on any exception before re-raising.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.db.models import User, UserProgress
from learnity.gamification import badge_service, leaderboard_service, xp_service
from learnity.gamification.errors import InvalidSource, UserNotFound
from learnity.gamification.level_thresholds import compute_level_info
from learnity.gamification.schemas import (
    AchievementsResponse,
    ActivityResult,
    GamificationSummary,
    LeaderboardResponse,
    LevelInfo,
    UserBadgesResponse,
    UserRank,
    XPAwardResult,
    XPHistoryResponse,
)
from learnity.gamification.streak_service import current_day, update_streak
from learnity.gamification.xp_rewards import (
    ACTIVITY_XP,
    SOURCE_SCOPED_REASONS,
    STREAK_QUALIFYING_REASONS,
    XPReason,
)
from learnity.progress.progress_service import ProgressService
from learnity.progress.quiz_service import QuizService
from learnity.progress.schemas import (
    CourseProgress,
    EnrollmentResult,
    LessonCompletionResult,
    NextLesson,
    QuizAttemptOut,
    QuizStats,
    QuizSubmissionResult,
    QuizView,
    ReviewResult,
    SubmittedAnswer,
    VideoProgressResult,
)


T = TypeVar("T")


class GamificationFacade:
    """Coordinates the XP ledger, streaks, badges, progress and quizzes."""

    def __init__(self, db: AsyncSession, today: date | None = None) -> None:
        self.db = db
        self.today = today
        self.progress = ProgressService(db, today)
        self.quizzes = QuizService(db, today)

    def _today(self) -> date:
        return self.today if self.today is not None else current_day()

    async def _transaction(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await operation()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return result

    # --- Activities & XP ---

    async def record_activity(
        self,
        user_id: int,
        reason: XPReason | str,
        source_id: str | None = None,
    ) -> ActivityResult:
        """Award the fixed XP for a non-course activity and update the streak.

        LOGIN is rewarded at most once per calendar day.
        """
        reason = XPReason(reason)
        if reason in SOURCE_SCOPED_REASONS or reason not in ACTIVITY_XP:
            raise InvalidSource(f"{reason.value} is awarded through its lesson, quiz or course flow")

        async def operation() -> ActivityResult:
            today = self._today()
            scoped_source = today.isoformat() if reason == XPReason.LOGIN else source_id
            award = await xp_service.award_xp(
                self.db, user_id, ACTIVITY_XP[reason], reason, source_id=scoped_source,
            )

            streak = None
            badges = []
            if reason in STREAK_QUALIFYING_REASONS:
                streak = await update_streak(self.db, user_id, today)
                if streak.badge_unlocked is not None and streak.badge_unlocked.newly_unlocked:
                    badges.append(streak.badge_unlocked)

            progress = await xp_service.get_or_create_progress(self.db, user_id)
            return ActivityResult(
                reason=reason,
                xp=award,
                streak=streak,
                badges_unlocked=badges,
                leveled_up=progress.current_level > award.previous_level,
            )

        return await self._transaction(operation)

    async def award(
        self,
        user_id: int,
        amount: int,
        reason: XPReason | str,
        source_id: str | None = None,
        description: str | None = None,
    ) -> XPAwardResult:
        """Grant XP from trusted in-process code; never exposed over HTTP."""
        async def operation() -> XPAwardResult:
            return await xp_service.award_xp(
                self.db, user_id, amount, reason, source_id=source_id, description=description,
            )

        return await self._transaction(operation)

    # --- Progress ---

    async def mark_lesson_complete(self, user_id: int, lesson_id: str) -> LessonCompletionResult:
        return await self._transaction(
            lambda: self.progress.mark_lesson_complete(user_id, lesson_id)
        )

    async def update_video_progress(
        self,
        user_id: int,
        lesson_id: str,
        watched_seconds: int,
        last_position: int | None = None,
    ) -> VideoProgressResult:
        return await self._transaction(
            lambda: self.progress.update_video_progress(
                user_id, lesson_id, watched_seconds, last_position,
            )
        )

    async def enroll(self, user_id: int, course_id: str) -> EnrollmentResult:
        return await self._transaction(lambda: self.progress.enroll(user_id, course_id))

    async def record_review(
        self,
        user_id: int,
        course_id: str,
        rating: int,
        comment: str | None = None,
    ) -> ReviewResult:
        return await self._transaction(
            lambda: self.progress.record_review(user_id, course_id, rating, comment)
        )

    # --- Quizzes ---

    async def submit_quiz_attempt(
        self,
        user_id: int,
        quiz_id: str,
        answers: Sequence[SubmittedAnswer | dict[str, Any]],
        time_taken_seconds: int = 0,
    ) -> QuizSubmissionResult:
        submitted = [SubmittedAnswer.model_validate(a) for a in answers]
        return await self._transaction(
            lambda: self.quizzes.submit_attempt(user_id, quiz_id, submitted, time_taken_seconds)
        )

    # --- Reads ---

    async def get_summary(self, user_id: int) -> GamificationSummary:
        """XP, level, streaks, badges and the 10 most recent XP activities."""
        if await self.db.get(User, user_id) is None:
            raise UserNotFound(f"User {user_id} not found")

        result = await self.db.execute(select(UserProgress).where(UserProgress.user_id == user_id))
        progress = result.scalar_one_or_none()
        total_xp = progress.total_xp if progress else 0

        badges = await badge_service.list_user_badges(self.db, user_id)
        recent = await xp_service.get_recent_activity(self.db, user_id, limit=10)
        return GamificationSummary(
            user_id=user_id,
            total_xp=total_xp,
            level=LevelInfo(**compute_level_info(total_xp)),
            current_streak=progress.current_streak if progress else 0,
            longest_streak=progress.longest_streak if progress else 0,
            last_activity_date=progress.last_activity_date if progress else None,
            badges=badges.unlocked,
            recent_activity=recent,
        )

    async def get_user_badges(self, user_id: int) -> UserBadgesResponse:
        return await badge_service.list_user_badges(self.db, user_id)

    async def get_xp_history(self, user_id: int, limit: int = 20, offset: int = 0) -> XPHistoryResponse:
        return await xp_service.get_xp_history(self.db, user_id, limit=limit, offset=offset)

    async def get_course_progress(self, user_id: int, course_id: str) -> CourseProgress:
        return await self.progress.get_course_progress(user_id, course_id)

    async def get_next_lesson(self, user_id: int, course_id: str) -> NextLesson | None:
        return await self.progress.get_next_lesson(user_id, course_id)

    async def get_quiz(self, quiz_id: str) -> QuizView:
        return await self.quizzes.get_quiz_for_student(quiz_id)

    async def get_attempts(self, user_id: int, quiz_id: str) -> list[QuizAttemptOut]:
        return await self.quizzes.get_attempts(user_id, quiz_id)

    async def get_best_attempt(self, user_id: int, quiz_id: str) -> QuizAttemptOut | None:
        return await self.quizzes.get_best_attempt(user_id, quiz_id)

    async def get_quiz_stats(self, user_id: int, quiz_id: str) -> QuizStats:
        return await self.quizzes.get_quiz_stats(user_id, quiz_id)

    async def get_achievements(self, user_id: int) -> AchievementsResponse:
        """Every badge with locked/unlocked state and counter progress."""
        await self.progress.require_user(user_id)
        return await badge_service.list_achievements(self.db, user_id)

    # --- Leaderboards ---

    async def get_global_leaderboard(
        self, limit: int = 10, current_user_id: int | None = None,
    ) -> LeaderboardResponse:
        return await leaderboard_service.get_global_leaderboard(self.db, limit, current_user_id)

    async def get_course_leaderboard(
        self, course_id: str, limit: int = 10, current_user_id: int | None = None,
    ) -> LeaderboardResponse:
        return await leaderboard_service.get_course_leaderboard(
            self.db, course_id, limit, current_user_id,
        )

    async def get_user_rank(self, user_id: int) -> UserRank:
        return await leaderboard_service.get_user_rank(self.db, user_id)
