"""Progress tracker: lesson completion, course completion and section gating."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.config import get_settings
from learnity.db.models import (
    Course,
    Enrollment,
    EnrollmentStatus,
    Lesson,
    LessonProgress,
    Quiz,
    QuizAttempt,
    Review,
    Section,
    User,
)
from learnity.gamification.badge_service import COURSE_COMPLETION_BADGES, award_new_badges
from learnity.gamification.errors import (
    CourseNotFound,
    InvalidSubmission,
    LessonNotFound,
    NotEnrolled,
    SectionNotFound,
    UserNotFound,
)
from learnity.gamification.schemas import BadgeUnlockResult
from learnity.gamification.seed import BadgeKey
from learnity.gamification.streak_service import update_streak
from learnity.gamification.xp_rewards import COURSE_COMPLETE_XP, LESSON_COMPLETE_XP, XPReason
from learnity.gamification.xp_service import award_xp, get_or_create_progress
from learnity.progress.schemas import (
    CourseProgress,
    EnrollmentOut,
    EnrollmentResult,
    LessonCompletionResult,
    LessonProgressOut,
    LessonStatus,
    NextLesson,
    ReviewOut,
    ReviewResult,
    SectionProgress,
    VideoProgressResult,
)

logger = logging.getLogger(__name__)


def percent(done: int, total: int) -> int:
    """Integer percentage of ``done`` over ``total``, rounded half up. 0 when total is 0."""
    if total <= 0:
        return 0
    return (200 * done + total) // (2 * total)


@dataclass
class CompletionState:
    """Inputs of the course completion predicate for one student."""

    total_lessons: int
    completed_lessons: int
    required_quizzes: int
    passed_quizzes: int

    @property
    def is_complete(self) -> bool:
        return (
            self.total_lessons > 0
            and self.completed_lessons >= self.total_lessons
            and self.passed_quizzes >= self.required_quizzes
        )

    @property
    def progress(self) -> int:
        if self.is_complete:
            return 100
        done = self.completed_lessons + self.passed_quizzes
        total = self.total_lessons + self.required_quizzes
        return min(percent(done, total), 99)


@dataclass
class CourseCompletion:
    completed: bool = False
    xp_awarded: int = 0
    badges_unlocked: list[BadgeUnlockResult] = field(default_factory=list)


class ProgressService:
    """Per-student lesson, section and course progress."""

    def __init__(self, db: AsyncSession, today: date | None = None) -> None:
        self.db = db
        self.today = today

    # --- Lookups ---

    async def require_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        return user

    async def _require_course(self, course_id: str) -> Course:
        course = await self.db.get(Course, course_id)
        if course is None:
            raise CourseNotFound(f"Course {course_id} not found")
        return course

    async def _require_lesson(self, lesson_id: str) -> Lesson:
        lesson = await self.db.get(Lesson, lesson_id)
        if lesson is None:
            raise LessonNotFound(f"Lesson {lesson_id} not found")
        return lesson

    async def course_id_for_lesson(self, lesson: Lesson) -> str:
        result = await self.db.execute(
            select(Section.course_id).where(Section.id == lesson.section_id)
        )
        return result.scalar_one()

    async def get_enrollment(self, student_id: int, course_id: str) -> Enrollment | None:
        result = await self.db.execute(
            select(Enrollment).where(
                Enrollment.student_id == student_id,
                Enrollment.course_id == course_id,
            )
        )
        return result.scalar_one_or_none()

    async def require_enrollment(self, student_id: int, course_id: str) -> Enrollment:
        enrollment = await self.get_enrollment(student_id, course_id)
        if enrollment is None:
            raise NotEnrolled(f"User {student_id} is not enrolled in course {course_id}")
        return enrollment

    async def _get_lesson_progress(
        self,
        student_id: int,
        lesson_id: str,
        *,
        for_update: bool = False,
    ) -> LessonProgress | None:
        stmt = select(LessonProgress).where(
            LessonProgress.student_id == student_id,
            LessonProgress.lesson_id == lesson_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _get_or_create_lesson_progress(self, student_id: int, lesson_id: str) -> LessonProgress:
        lesson_progress = await self._get_lesson_progress(student_id, lesson_id, for_update=True)
        if lesson_progress is not None:
            return lesson_progress

        lesson_progress = LessonProgress(
            student_id=student_id,
            lesson_id=lesson_id,
            completed=False,
            watched_seconds=0,
            last_position=0,
            updated_at=datetime.now(timezone.utc),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(lesson_progress)
        except IntegrityError:
            logger.info("Lesson progress %s/%s created concurrently", student_id, lesson_id)
            lesson_progress = await self._get_lesson_progress(student_id, lesson_id, for_update=True)
            if lesson_progress is None:
                raise
        return lesson_progress

    async def _course_lessons(self, course_id: str) -> list[tuple[Lesson, Section]]:
        """Every lesson of a course in course order (section order, then lesson order)."""
        result = await self.db.execute(
            select(Lesson, Section)
            .join(Section, Lesson.section_id == Section.id)
            .where(Section.course_id == course_id)
            .order_by(Section.order, Lesson.order)
        )
        return [(row.Lesson, row.Section) for row in result]

    async def _course_sections(self, course_id: str) -> list[Section]:
        result = await self.db.execute(
            select(Section).where(Section.course_id == course_id).order_by(Section.order)
        )
        return list(result.scalars().all())

    async def _completed_lesson_ids(self, student_id: int, course_id: str) -> set[str]:
        result = await self.db.execute(
            select(LessonProgress.lesson_id)
            .join(Lesson, LessonProgress.lesson_id == Lesson.id)
            .join(Section, Lesson.section_id == Section.id)
            .where(
                Section.course_id == course_id,
                LessonProgress.student_id == student_id,
                LessonProgress.completed.is_(True),
            )
        )
        return set(result.scalars().all())

    async def _required_quiz_ids(self, course_id: str) -> set[str]:
        result = await self.db.execute(
            select(Quiz.id)
            .join(Lesson, Quiz.lesson_id == Lesson.id)
            .join(Section, Lesson.section_id == Section.id)
            .where(Section.course_id == course_id, Quiz.is_required.is_(True))
        )
        return set(result.scalars().all())

    async def _passed_quiz_ids(self, student_id: int, quiz_ids: set[str]) -> set[str]:
        if not quiz_ids:
            return set()
        result = await self.db.execute(
            select(QuizAttempt.quiz_id)
            .where(
                QuizAttempt.student_id == student_id,
                QuizAttempt.quiz_id.in_(sorted(quiz_ids)),
                QuizAttempt.passed.is_(True),
            )
            .distinct()
        )
        return set(result.scalars().all())

    # --- Course completion ---

    async def completion_state(self, student_id: int, course_id: str) -> CompletionState:
        """Evaluate the completion predicate inputs against live progress rows."""
        total_lessons = await self.db.execute(
            select(func.count(Lesson.id))
            .join(Section, Lesson.section_id == Section.id)
            .where(Section.course_id == course_id)
        )
        completed = await self._completed_lesson_ids(student_id, course_id)
        required = await self._required_quiz_ids(course_id)
        passed = await self._passed_quiz_ids(student_id, required)
        return CompletionState(
            total_lessons=total_lessons.scalar_one(),
            completed_lessons=len(completed),
            required_quizzes=len(required),
            passed_quizzes=len(passed),
        )

    async def recompute_enrollment_progress(self, enrollment: Enrollment) -> CompletionState:
        """Refresh the stored progress percentage. Stored progress never decreases."""
        state = await self.completion_state(enrollment.student_id, enrollment.course_id)
        enrollment.progress = max(enrollment.progress, state.progress)
        await self.db.flush()
        return state

    async def check_course_completion(self, enrollment: Enrollment) -> CourseCompletion:
        """Recompute progress and complete the course when the predicate holds.

        Completion happens once: a course already marked COMPLETED only gets its
        progress refreshed.
        """
        state = await self.recompute_enrollment_progress(enrollment)
        if not state.is_complete or enrollment.status == EnrollmentStatus.COMPLETED.value:
            return CourseCompletion()

        enrollment.status = EnrollmentStatus.COMPLETED.value
        enrollment.completed_at = datetime.now(timezone.utc)
        enrollment.progress = 100
        await self.db.flush()

        course = await self.db.get(Course, enrollment.course_id)
        award = await award_xp(
            self.db,
            enrollment.student_id,
            COURSE_COMPLETE_XP,
            XPReason.COURSE_COMPLETE,
            source_id=enrollment.course_id,
            description=f"Completed course: {course.title}" if course else None,
        )
        badges = await award_new_badges(self.db, enrollment.student_id, COURSE_COMPLETION_BADGES)
        logger.info("User %s completed course %s", enrollment.student_id, enrollment.course_id)
        return CourseCompletion(completed=True, xp_awarded=award.xp_awarded, badges_unlocked=badges)

    # --- Lesson completion ---

    async def mark_lesson_complete(self, student_id: int, lesson_id: str) -> LessonCompletionResult:
        """Complete a lesson, award XP, update the streak and cascade to the course.

        Completing an already completed lesson is a no-op: no XP, no streak
        evaluation.
        """
        lesson = await self._require_lesson(lesson_id)
        await self.require_user(student_id)
        course_id = await self.course_id_for_lesson(lesson)
        enrollment = await self.require_enrollment(student_id, course_id)

        now = datetime.now(timezone.utc)
        enrollment.last_accessed_at = now
        lesson_progress = await self._get_or_create_lesson_progress(student_id, lesson_id)

        if lesson_progress.completed:
            progress = await get_or_create_progress(self.db, student_id)
            await self.db.flush()
            return LessonCompletionResult(
                lesson_progress=LessonProgressOut.model_validate(lesson_progress),
                already_completed=True,
                enrollment_progress=enrollment.progress,
                total_xp=progress.total_xp,
                level=progress.current_level,
            )

        lesson_progress.completed = True
        lesson_progress.completed_at = now
        lesson_progress.updated_at = now
        await self.db.flush()

        award = await award_xp(
            self.db,
            student_id,
            LESSON_COMPLETE_XP,
            XPReason.LESSON_COMPLETE,
            source_id=lesson_id,
            description=f"Completed lesson: {lesson.title}",
        )

        # Every first completion counts towards the streak.
        badges: list[BadgeUnlockResult] = []
        streak = await update_streak(self.db, student_id, self.today)
        if streak.badge_unlocked is not None and streak.badge_unlocked.newly_unlocked:
            badges.append(streak.badge_unlocked)

        completion = await self.check_course_completion(enrollment)
        badges.extend(completion.badges_unlocked)

        progress = await get_or_create_progress(self.db, student_id)
        return LessonCompletionResult(
            lesson_progress=LessonProgressOut.model_validate(lesson_progress),
            already_completed=False,
            xp_awarded=award.xp_awarded,
            new_streak=streak.current_streak,
            enrollment_progress=enrollment.progress,
            course_completed=completion.completed,
            course_xp_awarded=completion.xp_awarded,
            streak=streak,
            badges_unlocked=badges,
            total_xp=progress.total_xp,
            level=progress.current_level,
            leveled_up=progress.current_level > award.previous_level,
        )

    async def update_video_progress(
        self,
        student_id: int,
        lesson_id: str,
        watched_seconds: int,
        last_position: int | None = None,
    ) -> VideoProgressResult:
        """Record how much of a lesson video was watched.

        Watched time only grows. Crossing the completion threshold completes the
        lesson through the regular completion path.
        """
        if watched_seconds < 0 or (last_position is not None and last_position < 0):
            raise InvalidSubmission("Watch progress must be non-negative")

        lesson = await self._require_lesson(lesson_id)
        await self.require_user(student_id)
        course_id = await self.course_id_for_lesson(lesson)
        enrollment = await self.require_enrollment(student_id, course_id)

        now = datetime.now(timezone.utc)
        lesson_progress = await self._get_or_create_lesson_progress(student_id, lesson_id)
        lesson_progress.watched_seconds = max(lesson_progress.watched_seconds, watched_seconds)
        lesson_progress.last_position = last_position if last_position is not None else watched_seconds
        lesson_progress.updated_at = now
        enrollment.last_accessed_at = now
        await self.db.flush()

        threshold = get_settings().video_completion_threshold
        if (
            not lesson_progress.completed
            and lesson.duration_seconds > 0
            and lesson_progress.watched_seconds >= threshold * lesson.duration_seconds
        ):
            completion = await self.mark_lesson_complete(student_id, lesson_id)
            return VideoProgressResult(
                lesson_progress=completion.lesson_progress,
                auto_completed=True,
                completion=completion,
            )

        return VideoProgressResult(lesson_progress=LessonProgressOut.model_validate(lesson_progress))

    # --- Enrollment & reviews ---

    async def enroll(self, student_id: int, course_id: str) -> EnrollmentResult:
        await self.require_user(student_id)
        await self._require_course(course_id)

        enrollment = await self.get_enrollment(student_id, course_id)
        if enrollment is not None:
            return EnrollmentResult(
                enrollment=EnrollmentOut.model_validate(enrollment),
                already_enrolled=True,
            )

        now = datetime.now(timezone.utc)
        enrollment = Enrollment(
            student_id=student_id,
            course_id=course_id,
            progress=0,
            status=EnrollmentStatus.ACTIVE.value,
            enrolled_at=now,
            last_accessed_at=now,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(enrollment)
        except IntegrityError:
            enrollment = await self.get_enrollment(student_id, course_id)
            if enrollment is None:
                raise
            return EnrollmentResult(
                enrollment=EnrollmentOut.model_validate(enrollment),
                already_enrolled=True,
            )

        logger.info("User %s enrolled in course %s", student_id, course_id)
        return EnrollmentResult(enrollment=EnrollmentOut.model_validate(enrollment), already_enrolled=False)

    async def _get_review(self, student_id: int, course_id: str) -> Review | None:
        result = await self.db.execute(
            select(Review).where(Review.student_id == student_id, Review.course_id == course_id)
        )
        return result.scalar_one_or_none()

    async def record_review(
        self,
        student_id: int,
        course_id: str,
        rating: int,
        comment: str | None = None,
    ) -> ReviewResult:
        """Store a student's review; one per course. Evaluates TOP_REVIEWER."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise InvalidSubmission("Rating must be an integer between 1 and 5")
        await self.require_user(student_id)
        await self._require_course(course_id)
        await self.require_enrollment(student_id, course_id)

        review = await self._get_review(student_id, course_id)
        if review is not None:
            return ReviewResult(review=ReviewOut.model_validate(review), already_reviewed=True)

        review = Review(
            student_id=student_id,
            course_id=course_id,
            rating=rating,
            comment=comment,
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(review)
        except IntegrityError:
            review = await self._get_review(student_id, course_id)
            if review is None:
                raise
            return ReviewResult(review=ReviewOut.model_validate(review), already_reviewed=True)

        badges = await award_new_badges(self.db, student_id, [BadgeKey.TOP_REVIEWER])
        return ReviewResult(
            review=ReviewOut.model_validate(review),
            already_reviewed=False,
            badges_unlocked=badges,
        )

    # --- Reads ---

    async def get_course_progress(self, student_id: int, course_id: str) -> CourseProgress:
        """Per-section breakdown with gating, evaluated against live progress."""
        course = await self._require_course(course_id)
        enrollment = await self.require_enrollment(student_id, course_id)

        sections = await self._course_sections(course_id)
        lessons = await self._course_lessons(course_id)
        completed = await self._completed_lesson_ids(student_id, course_id)
        required = await self._required_quiz_ids(course_id)
        passed = await self._passed_quiz_ids(student_id, required)
        threshold = get_settings().section_unlock_threshold
        gated = course.require_sequential_progress

        lessons_by_section: dict[str, list[Lesson]] = {s.id: [] for s in sections}
        for lesson, section in lessons:
            lessons_by_section[section.id].append(lesson)

        section_views: list[SectionProgress] = []
        previous_percentage: int | None = None
        previous_lesson_done = True
        for section in sections:
            section_lessons = lessons_by_section[section.id]
            done = sum(1 for lesson in section_lessons if lesson.id in completed)
            percentage = percent(done, len(section_lessons)) if section_lessons else 100
            unlocked = not gated or previous_percentage is None or previous_percentage >= threshold

            lesson_views = []
            for lesson in section_lessons:
                is_done = lesson.id in completed
                lesson_views.append(
                    LessonStatus(
                        lesson_id=lesson.id,
                        title=lesson.title,
                        order=lesson.order,
                        completed=is_done,
                        is_unlocked=not gated or previous_lesson_done,
                    )
                )
                previous_lesson_done = is_done

            section_views.append(
                SectionProgress(
                    section_id=section.id,
                    title=section.title,
                    order=section.order,
                    total_lessons=len(section_lessons),
                    completed_lessons=done,
                    percentage=percentage,
                    is_unlocked=unlocked,
                    lessons=lesson_views,
                )
            )
            previous_percentage = percentage

        state = CompletionState(
            total_lessons=len(lessons),
            completed_lessons=len(completed),
            required_quizzes=len(required),
            passed_quizzes=len(passed),
        )
        return CourseProgress(
            course_id=course_id,
            progress=enrollment.progress,
            status=enrollment.status,
            total_lessons=state.total_lessons,
            completed_lessons=state.completed_lessons,
            required_quizzes=state.required_quizzes,
            passed_quizzes=state.passed_quizzes,
            is_complete=state.is_complete,
            sections=section_views,
        )

    async def get_section_progress(self, student_id: int, section_id: str) -> SectionProgress:
        section = await self.db.get(Section, section_id)
        if section is None:
            raise SectionNotFound(f"Section {section_id} not found")
        course_progress = await self.get_course_progress(student_id, section.course_id)
        return next(s for s in course_progress.sections if s.section_id == section_id)

    async def is_section_unlocked(self, student_id: int, section_id: str) -> bool:
        """First section is always open; later ones need the previous section at the threshold."""
        section = await self.db.get(Section, section_id)
        if section is None:
            raise SectionNotFound(f"Section {section_id} not found")
        course = await self._require_course(section.course_id)
        if not course.require_sequential_progress:
            return True

        result = await self.db.execute(
            select(Section)
            .where(Section.course_id == section.course_id, Section.order < section.order)
            .order_by(Section.order.desc())
            .limit(1)
        )
        previous = result.scalar_one_or_none()
        if previous is None:
            return True

        lesson_ids = (
            await self.db.execute(select(Lesson.id).where(Lesson.section_id == previous.id))
        ).scalars().all()
        if not lesson_ids:
            return True
        done = await self.db.execute(
            select(func.count(LessonProgress.id)).where(
                LessonProgress.student_id == student_id,
                LessonProgress.lesson_id.in_(lesson_ids),
                LessonProgress.completed.is_(True),
            )
        )
        return percent(done.scalar_one(), len(lesson_ids)) >= get_settings().section_unlock_threshold

    async def is_lesson_unlocked(self, student_id: int, lesson_id: str) -> bool:
        """A lesson opens once the previous lesson in course order is completed."""
        lesson = await self._require_lesson(lesson_id)
        course_id = await self.course_id_for_lesson(lesson)
        course = await self._require_course(course_id)
        if not course.require_sequential_progress:
            return True

        ordered = [lsn.id for lsn, _ in await self._course_lessons(course_id)]
        index = ordered.index(lesson_id)
        if index == 0:
            return True
        previous = await self._get_lesson_progress(student_id, ordered[index - 1])
        return previous is not None and previous.completed

    async def get_next_lesson(self, student_id: int, course_id: str) -> NextLesson | None:
        """First incomplete lesson in an unlocked section, or None when nothing is left."""
        progress = await self.get_course_progress(student_id, course_id)
        for section in progress.sections:
            if not section.is_unlocked:
                continue
            for lesson in section.lessons:
                if not lesson.completed:
                    return NextLesson(
                        lesson_id=lesson.lesson_id,
                        title=lesson.title,
                        section_id=section.section_id,
                        section_title=section.title,
                    )
        return None
