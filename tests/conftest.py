"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from itertools import count

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.config import get_settings
from learnity.database import close_db, create_schema, get_session, init_db
from learnity.db.models import Course, Enrollment, Lesson, Question, Quiz, Section, User
from learnity.gamification.seed import seed_badges

_emails = count(1)


@pytest.fixture
def database_url(monkeypatch, tmp_path) -> str:
    """Fresh SQLite file per test, exposed through LEARNITY_DATABASE_URL."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'learnity_test.db'}"
    monkeypatch.setenv("LEARNITY_DATABASE_URL", url)
    monkeypatch.setenv("LEARNITY_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_session(database_url: str) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session with schema created and badges seeded."""
    await init_db(database_url)
    await create_schema()
    async for session in get_session():
        await seed_badges(session)
        yield session
        break
    await close_db()


@pytest_asyncio.fixture
async def client(database_url: str) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the app, sharing the test database with ``db_session``.

    ASGITransport does not run the lifespan, so the database is initialized here.
    """
    from learnity.main import create_app

    app = create_app()
    await init_db(database_url)
    await create_schema()
    async for session in get_session():
        await seed_badges(session)
        break

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await close_db()


@pytest_asyncio.fixture
async def api_session(client: AsyncClient) -> AsyncGenerator[AsyncSession, None]:
    """Session on the same engine the API client uses, for seeding catalog rows."""
    async for session in get_session():
        yield session
        break


# ---- Factories ----


async def make_user(db: AsyncSession, name: str = "student") -> User:
    user = User(email=f"{name}{next(_emails)}@learnity.test", display_name=name)
    db.add(user)
    await db.commit()
    return user


async def make_course(
    db: AsyncSession,
    sections: list[int] | int = 1,
    *,
    title: str = "Algebra I",
    sequential: bool = True,
    duration_seconds: int = 600,
) -> tuple[Course, list[Section], list[Lesson]]:
    """Course with one section per entry in ``sections`` holding that many lessons."""
    if isinstance(sections, int):
        sections = [sections]
    course = Course(title=title, require_sequential_progress=sequential)
    db.add(course)
    await db.flush()

    section_rows: list[Section] = []
    lesson_rows: list[Lesson] = []
    for s_index, lesson_count in enumerate(sections, start=1):
        section = Section(course_id=course.id, title=f"Section {s_index}", order=s_index)
        db.add(section)
        await db.flush()
        section_rows.append(section)
        for l_index in range(1, lesson_count + 1):
            lesson = Lesson(
                section_id=section.id,
                title=f"Lesson {s_index}.{l_index}",
                order=l_index,
                duration_seconds=duration_seconds,
            )
            db.add(lesson)
            lesson_rows.append(lesson)
    await db.commit()
    return course, section_rows, lesson_rows


async def make_quiz(
    db: AsyncSession,
    lesson: Lesson,
    questions: int = 10,
    *,
    passing_score: int = 70,
    is_required: bool = True,
) -> tuple[Quiz, list[Question]]:
    """Quiz whose correct answer is always option 0."""
    quiz = Quiz(
        lesson_id=lesson.id,
        title=f"Quiz for {lesson.title}",
        passing_score=passing_score,
        is_required=is_required,
    )
    db.add(quiz)
    await db.flush()
    rows = []
    for index in range(questions):
        question = Question(
            quiz_id=quiz.id,
            prompt=f"Question {index + 1}",
            options=["right", "wrong", "also wrong"],
            correct_option_index=0,
            explanation="The first option is right.",
            order=index,
        )
        db.add(question)
        rows.append(question)
    await db.commit()
    return quiz, rows


async def enroll_user(db: AsyncSession, user: User, course: Course) -> Enrollment:
    enrollment = Enrollment(student_id=user.id, course_id=course.id)
    db.add(enrollment)
    await db.commit()
    return enrollment


def answers_with(questions: list[Question], correct: int) -> list[dict]:
    """Answer set with exactly ``correct`` right answers, the rest wrong."""
    return [
        {"question_id": q.id, "selected_option_index": 0 if i < correct else 1}
        for i, q in enumerate(questions)
    ]
