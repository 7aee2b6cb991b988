"""Progress and gamification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from learnity.dependencies import get_current_user_id, get_facade, get_optional_user_id
from learnity.gamification.facade import GamificationFacade
from learnity.gamification.level_thresholds import compute_level_info
from learnity.gamification.schemas import (
    AchievementsResponse,
    ActivityRequest,
    ActivityResult,
    GamificationSummary,
    LeaderboardResponse,
    LevelInfo,
    UserBadgesResponse,
    UserRank,
    XPHistoryResponse,
)
from learnity.progress.schemas import (
    CourseProgress,
    EnrollmentResult,
    LessonCompletionResult,
    NextLesson,
    QuizAttemptOut,
    QuizStats,
    QuizSubmission,
    QuizSubmissionResult,
    QuizView,
    ReviewRequest,
    ReviewResult,
    VideoProgressRequest,
    VideoProgressResult,
)

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


# ── Activities ──


@router.post("/activities", response_model=ActivityResult)
async def record_activity(
    body: ActivityRequest,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    """Record LOGIN, HELP_PEER, SESSION_ATTEND or GROUP_JOIN."""
    return await facade.record_activity(user_id, body.reason, body.source_id)


# ── Gamification reads ──


@router.get("/gamification/summary", response_model=GamificationSummary)
async def get_summary(
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.get_summary(user_id)


@router.get("/gamification/badges", response_model=UserBadgesResponse)
async def get_badges(
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.get_user_badges(user_id)


@router.get("/gamification/xp-history", response_model=XPHistoryResponse)
async def get_xp_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    """Paginated XP ledger, newest first."""
    return await facade.get_xp_history(user_id, limit=limit, offset=offset)


@router.get("/gamification/levels/{total_xp}", response_model=LevelInfo)
async def get_level(total_xp: int):
    """Level and progress for an arbitrary XP total. Public."""
    if total_xp < 0:
        raise HTTPException(400, "total_xp must be non-negative")
    return LevelInfo(**compute_level_info(total_xp))


@router.get("/gamification/achievements", response_model=AchievementsResponse)
async def get_achievements(
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    """Every catalog badge with unlock state and progress toward it."""
    return await facade.get_achievements(user_id)


# ── Leaderboards ──


@router.get("/gamification/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    limit: int = Query(10, ge=1, le=50),
    user_id: int | None = Depends(get_optional_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    """Global XP ranking. Public; marks the caller when identified."""
    return await facade.get_global_leaderboard(limit=limit, current_user_id=user_id)


@router.get("/gamification/rank", response_model=UserRank)
async def get_rank(
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.get_user_rank(user_id)


@router.get("/courses/{course_id}/leaderboard", response_model=LeaderboardResponse)
async def get_course_leaderboard(
    course_id: str,
    limit: int = Query(10, ge=1, le=50),
    user_id: int | None = Depends(get_optional_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.get_course_leaderboard(
        course_id, limit=limit, current_user_id=user_id,
    )


# ── Courses ──


@router.post("/courses/{course_id}/enroll", response_model=EnrollmentResult)
async def enroll(
    course_id: str,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.enroll(user_id, course_id)


@router.get("/courses/{course_id}/progress", response_model=CourseProgress)
async def get_course_progress(
    course_id: str,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    """Per-section breakdown with unlock state."""
    return await facade.get_course_progress(user_id, course_id)


@router.get("/courses/{course_id}/next-lesson", response_model=NextLesson | None)
async def get_next_lesson(
    course_id: str,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.get_next_lesson(user_id, course_id)


@router.post("/courses/{course_id}/reviews", response_model=ReviewResult)
async def create_review(
    course_id: str,
    body: ReviewRequest,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.record_review(user_id, course_id, body.rating, body.comment)


# ── Lessons ──


@router.post("/lessons/{lesson_id}/complete", response_model=LessonCompletionResult)
async def complete_lesson(
    lesson_id: str,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    """Mark a lesson as complete. Awards 10 XP on first completion."""
    return await facade.mark_lesson_complete(user_id, lesson_id)


@router.post("/lessons/{lesson_id}/progress", response_model=VideoProgressResult)
async def update_lesson_progress(
    lesson_id: str,
    body: VideoProgressRequest,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    """Record video watch progress; completes the lesson at the watch threshold."""
    return await facade.update_video_progress(
        user_id, lesson_id, body.watched_seconds, body.last_position,
    )


# ── Quizzes ──


@router.get("/quizzes/{quiz_id}", response_model=QuizView)
async def get_quiz(
    quiz_id: str,
    _user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    """Quiz questions without correct answers."""
    return await facade.get_quiz(quiz_id)


@router.post("/quizzes/{quiz_id}/submit", response_model=QuizSubmissionResult)
async def submit_quiz(
    quiz_id: str,
    body: QuizSubmission,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.submit_quiz_attempt(
        user_id, quiz_id, body.answers, body.time_taken_seconds,
    )


@router.get("/quizzes/{quiz_id}/attempts", response_model=list[QuizAttemptOut])
async def get_attempts(
    quiz_id: str,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.get_attempts(user_id, quiz_id)


@router.get("/quizzes/{quiz_id}/best-attempt", response_model=QuizAttemptOut)
async def get_best_attempt(
    quiz_id: str,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    best = await facade.get_best_attempt(user_id, quiz_id)
    if best is None:
        raise HTTPException(404, "No attempts for this quiz")
    return best


@router.get("/quizzes/{quiz_id}/stats", response_model=QuizStats)
async def get_quiz_stats(
    quiz_id: str,
    user_id: int = Depends(get_current_user_id),
    facade: GamificationFacade = Depends(get_facade),
):
    return await facade.get_quiz_stats(user_id, quiz_id)
