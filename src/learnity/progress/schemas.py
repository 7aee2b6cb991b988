"""Pydantic models for course progress, lesson completion and quiz attempts."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from learnity.gamification.schemas import (
    BadgeUnlockResult,
    StreakUpdateResult,
)


# --- Enrollment ---


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: int
    course_id: str
    progress: int
    status: str
    enrolled_at: datetime | None = None
    completed_at: datetime | None = None
    last_accessed_at: datetime | None = None


class EnrollmentResult(BaseModel):
    enrollment: EnrollmentOut
    already_enrolled: bool


# --- Lessons ---


class LessonProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lesson_id: str
    completed: bool
    completed_at: datetime | None = None
    watched_seconds: int = 0
    last_position: int = 0


class LessonCompletionResult(BaseModel):
    lesson_progress: LessonProgressOut
    already_completed: bool
    xp_awarded: int = 0
    new_streak: int | None = None
    enrollment_progress: int = 0
    course_completed: bool = False
    course_xp_awarded: int = 0
    streak: StreakUpdateResult | None = None
    badges_unlocked: list[BadgeUnlockResult] = []
    total_xp: int = 0
    level: int = 1
    leveled_up: bool = False


class VideoProgressRequest(BaseModel):
    watched_seconds: int = Field(ge=0)
    last_position: int | None = Field(default=None, ge=0)


class VideoProgressResult(BaseModel):
    lesson_progress: LessonProgressOut
    auto_completed: bool = False
    completion: LessonCompletionResult | None = None


# --- Course / section progress ---


class LessonStatus(BaseModel):
    lesson_id: str
    title: str
    order: int
    completed: bool
    is_unlocked: bool


class SectionProgress(BaseModel):
    section_id: str
    title: str
    order: int
    total_lessons: int
    completed_lessons: int
    percentage: int
    is_unlocked: bool
    lessons: list[LessonStatus] = []


class CourseProgress(BaseModel):
    course_id: str
    progress: int
    status: str
    total_lessons: int
    completed_lessons: int
    required_quizzes: int
    passed_quizzes: int
    is_complete: bool
    sections: list[SectionProgress]


class NextLesson(BaseModel):
    lesson_id: str
    title: str
    section_id: str
    section_title: str


# --- Reviews ---


class ReviewRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    course_id: str
    rating: int
    comment: str | None = None
    created_at: datetime | None = None


class ReviewResult(BaseModel):
    review: ReviewOut
    already_reviewed: bool
    badges_unlocked: list[BadgeUnlockResult] = []


# --- Quizzes ---


class QuestionView(BaseModel):
    """Question as shown to a student; never carries the answer."""

    id: str
    prompt: str
    options: list[str]
    order: int


class QuizView(BaseModel):
    id: str
    lesson_id: str
    title: str
    passing_score: int
    is_required: bool
    questions: list[QuestionView]


class SubmittedAnswer(BaseModel):
    question_id: str
    selected_option_index: int


class QuizSubmission(BaseModel):
    answers: list[SubmittedAnswer]
    time_taken_seconds: int = 0


class AnswerResult(BaseModel):
    question_id: str
    selected_option_index: int
    correct_option_index: int
    is_correct: bool
    explanation: str | None = None


class ScoreResult(BaseModel):
    score: int
    passed: bool
    correct_answers: int
    total_questions: int
    answer_results: list[AnswerResult]


class QuizAttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    quiz_id: str
    score: int
    passed: bool
    time_taken_seconds: int
    created_at: datetime | None = None


class QuizSubmissionResult(BaseModel):
    attempt: QuizAttemptOut
    score: int
    passed: bool
    correct_answers: int
    total_questions: int
    answer_results: list[AnswerResult]
    xp_awarded: int = 0
    enrollment_progress: int | None = None
    course_completed: bool = False
    badges_unlocked: list[BadgeUnlockResult] = []


class QuizStats(BaseModel):
    quiz_id: str
    total_attempts: int
    best_score: int | None = None
    average_score: float | None = None
    passed: bool
    first_passed_at: datetime | None = None
