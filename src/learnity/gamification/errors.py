"""Validation errors raised by the progress and gamification engine.

Idempotency collisions are never errors; they resolve to a no-op result
inside the services. Everything here is raised to the caller, and the API
layer maps ``status_code`` / ``code`` onto the HTTP response.
"""

from __future__ import annotations


class GamificationError(ValueError):
    status_code = 400
    code = "gamification_error"
    default_message = "Invalid request"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def detail(self) -> str:
        return str(self)


class InvalidAmount(GamificationError):
    code = "invalid_xp_amount"
    default_message = "XP amount must be a positive integer"


class InvalidSource(GamificationError):
    code = "invalid_source"
    default_message = "A source id is required for this XP reason"


class InvalidSubmission(GamificationError):
    code = "invalid_submission"
    default_message = "Invalid quiz submission"


class UserNotFound(GamificationError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


class CourseNotFound(GamificationError):
    status_code = 404
    code = "course_not_found"
    default_message = "Course not found"


class SectionNotFound(GamificationError):
    status_code = 404
    code = "section_not_found"
    default_message = "Section not found"


class LessonNotFound(GamificationError):
    status_code = 404
    code = "lesson_not_found"
    default_message = "Lesson not found"


class QuizNotFound(GamificationError):
    status_code = 404
    code = "quiz_not_found"
    default_message = "Quiz not found"


class NotEnrolled(GamificationError):
    status_code = 403
    code = "not_enrolled"
    default_message = "You must be enrolled in this course"
