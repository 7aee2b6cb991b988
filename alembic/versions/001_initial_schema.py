"""Initial schema: course catalog, learner progress and gamification.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users & catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(320) UNIQUE NOT NULL,
            display_name VARCHAR(64),
            role VARCHAR(16) NOT NULL DEFAULT 'STUDENT',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS courses (
            id VARCHAR(36) PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            teacher_id BIGINT REFERENCES users(id) ON DELETE SET NULL,
            require_sequential_progress BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS sections (
            id VARCHAR(36) PRIMARY KEY,
            course_id VARCHAR(36) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            "order" INTEGER NOT NULL,
            CONSTRAINT uq_section_course_order UNIQUE (course_id, "order")
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS lessons (
            id VARCHAR(36) PRIMARY KEY,
            section_id VARCHAR(36) NOT NULL REFERENCES sections(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            "order" INTEGER NOT NULL,
            duration_seconds INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT uq_lesson_section_order UNIQUE (section_id, "order")
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS quizzes (
            id VARCHAR(36) PRIMARY KEY,
            lesson_id VARCHAR(36) UNIQUE NOT NULL REFERENCES lessons(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            passing_score INTEGER NOT NULL DEFAULT 70,
            is_required BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS questions (
            id VARCHAR(36) PRIMARY KEY,
            quiz_id VARCHAR(36) NOT NULL REFERENCES quizzes(id) ON DELETE CASCADE,
            prompt TEXT NOT NULL,
            options JSON NOT NULL,
            correct_option_index INTEGER NOT NULL,
            explanation TEXT,
            "order" INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_questions_quiz
        ON questions(quiz_id, "order")
    """)

    # --- Learner progress ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS enrollments (
            id VARCHAR(36) PRIMARY KEY,
            student_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            course_id VARCHAR(36) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            progress INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'ACTIVE',
            enrolled_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            last_accessed_at TIMESTAMPTZ,
            CONSTRAINT uq_enrollment_student_course UNIQUE (student_id, course_id),
            CONSTRAINT ck_enrollment_progress_range CHECK (progress BETWEEN 0 AND 100)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS lesson_progress (
            id VARCHAR(36) PRIMARY KEY,
            student_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            lesson_id VARCHAR(36) NOT NULL REFERENCES lessons(id) ON DELETE CASCADE,
            completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            watched_seconds INTEGER NOT NULL DEFAULT 0,
            last_position INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_lesson_progress_student_lesson UNIQUE (student_id, lesson_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS quiz_attempts (
            id VARCHAR(36) PRIMARY KEY,
            student_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quiz_id VARCHAR(36) NOT NULL REFERENCES quizzes(id) ON DELETE CASCADE,
            score INTEGER NOT NULL,
            passed BOOLEAN NOT NULL,
            time_taken_seconds INTEGER NOT NULL DEFAULT 0,
            answers JSON NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_quiz_attempt_score_range CHECK (score BETWEEN 0 AND 100)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quiz_attempts_student_quiz
        ON quiz_attempts(student_id, quiz_id, score DESC)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS reviews (
            id VARCHAR(36) PRIMARY KEY,
            student_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            course_id VARCHAR(36) NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            rating INTEGER NOT NULL,
            comment TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_review_student_course UNIQUE (student_id, course_id),
            CONSTRAINT ck_review_rating_range CHECK (rating BETWEEN 1 AND 5)
        )
    """)

    # --- Gamification ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_progress (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_xp BIGINT NOT NULL DEFAULT 0,
            current_level INTEGER NOT NULL DEFAULT 1,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_user_progress_xp_non_negative CHECK (total_xp >= 0),
            CONSTRAINT ck_user_progress_longest_streak CHECK (longest_streak >= current_streak)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_activities (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            reason VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            idempotency_key VARCHAR(256) UNIQUE,
            CONSTRAINT ck_xp_activity_amount_positive CHECK (amount > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_activities_user_created
        ON xp_activities(user_id, created_at DESC)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            key VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            category VARCHAR(32) NOT NULL,
            icon VARCHAR(16),
            xp_reward INTEGER NOT NULL DEFAULT 0,
            criteria JSON NOT NULL DEFAULT '{}',
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id SERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id),
            unlocked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_badges_user_badge UNIQUE (user_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_badges_user
        ON user_badges(user_id)
    """)


def downgrade() -> None:
    for table in [
        "user_badges",
        "badge_definitions",
        "xp_activities",
        "user_progress",
        "reviews",
        "quiz_attempts",
        "lesson_progress",
        "enrollments",
        "questions",
        "quizzes",
        "lessons",
        "sections",
        "courses",
        "users",
    ]:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
