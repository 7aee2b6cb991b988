"""Badge catalog: static definitions keyed by a closed set of badge keys."""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.db.models import BadgeDefinition

logger = logging.getLogger(__name__)


class BadgeKey(str, Enum):
    FIRST_COURSE_COMPLETE = "FIRST_COURSE_COMPLETE"
    FIVE_COURSES_COMPLETE = "FIVE_COURSES_COMPLETE"
    TEN_COURSES_COMPLETE = "TEN_COURSES_COMPLETE"
    STREAK_7_DAYS = "STREAK_7_DAYS"
    STREAK_14_DAYS = "STREAK_14_DAYS"
    STREAK_30_DAYS = "STREAK_30_DAYS"
    STREAK_100_DAYS = "STREAK_100_DAYS"
    STREAK_365_DAYS = "STREAK_365_DAYS"
    QUIZ_MASTER = "QUIZ_MASTER"
    TOP_REVIEWER = "TOP_REVIEWER"


# Aggregate counters a badge criterion can reference
COURSES_COMPLETED = "courses_completed"
CURRENT_STREAK = "current_streak"
QUIZZES_PASSED = "quizzes_passed"
REVIEWS_WRITTEN = "reviews_written"

BADGE_SEED_DATA: list[dict] = [
    # Course completion
    {
        "key": BadgeKey.FIRST_COURSE_COMPLETE.value,
        "name": "First Steps",
        "description": "Completed your first course",
        "category": "courses",
        "icon": "\U0001f393",
        "xp_reward": 0,
        "criteria": {"counter": COURSES_COMPLETED, "threshold": 1},
        "sort_order": 1,
    },
    {
        "key": BadgeKey.FIVE_COURSES_COMPLETE.value,
        "name": "Dedicated Learner",
        "description": "Completed 5 courses",
        "category": "courses",
        "icon": "\U0001f4da",
        "xp_reward": 0,
        "criteria": {"counter": COURSES_COMPLETED, "threshold": 5},
        "sort_order": 2,
    },
    {
        "key": BadgeKey.TEN_COURSES_COMPLETE.value,
        "name": "Knowledge Seeker",
        "description": "Completed 10 courses",
        "category": "courses",
        "icon": "\U0001f3c6",
        "xp_reward": 0,
        "criteria": {"counter": COURSES_COMPLETED, "threshold": 10},
        "sort_order": 3,
    },
    # Streaks: xp_reward mirrors the streak bonus granted at the milestone
    {
        "key": BadgeKey.STREAK_7_DAYS.value,
        "name": "Week Warrior",
        "description": "Maintained a 7-day learning streak",
        "category": "streaks",
        "icon": "\U0001f525",
        "xp_reward": 25,
        "criteria": {"counter": CURRENT_STREAK, "threshold": 7},
        "sort_order": 4,
    },
    {
        "key": BadgeKey.STREAK_14_DAYS.value,
        "name": "Fortnight Focus",
        "description": "Maintained a 14-day learning streak",
        "category": "streaks",
        "icon": "✨",
        "xp_reward": 50,
        "criteria": {"counter": CURRENT_STREAK, "threshold": 14},
        "sort_order": 5,
    },
    {
        "key": BadgeKey.STREAK_30_DAYS.value,
        "name": "Monthly Master",
        "description": "Maintained a 30-day learning streak",
        "category": "streaks",
        "icon": "⚡",
        "xp_reward": 100,
        "criteria": {"counter": CURRENT_STREAK, "threshold": 30},
        "sort_order": 6,
    },
    {
        "key": BadgeKey.STREAK_100_DAYS.value,
        "name": "Century Champion",
        "description": "Maintained a 100-day learning streak",
        "category": "streaks",
        "icon": "\U0001f48e",
        "xp_reward": 500,
        "criteria": {"counter": CURRENT_STREAK, "threshold": 100},
        "sort_order": 7,
    },
    {
        "key": BadgeKey.STREAK_365_DAYS.value,
        "name": "Year of Learning",
        "description": "Maintained a 365-day learning streak",
        "category": "streaks",
        "icon": "\U0001f451",
        "xp_reward": 1000,
        "criteria": {"counter": CURRENT_STREAK, "threshold": 365},
        "sort_order": 8,
    },
    # Quizzes & community
    {
        "key": BadgeKey.QUIZ_MASTER.value,
        "name": "Quiz Master",
        "description": "Passed 50 different quizzes",
        "category": "quizzes",
        "icon": "\U0001f9e0",
        "xp_reward": 0,
        "criteria": {"counter": QUIZZES_PASSED, "threshold": 50},
        "sort_order": 9,
    },
    {
        "key": BadgeKey.TOP_REVIEWER.value,
        "name": "Top Reviewer",
        "description": "Wrote 10 course reviews",
        "category": "community",
        "icon": "⭐",
        "xp_reward": 0,
        "criteria": {"counter": REVIEWS_WRITTEN, "threshold": 10},
        "sort_order": 10,
    },
]

BADGE_DEFINITIONS: dict[BadgeKey, dict] = {
    BadgeKey(data["key"]): data for data in BADGE_SEED_DATA
}


def _insert_for(db: AsyncSession):  # type: ignore[no-untyped-def]
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def seed_badges(db: AsyncSession) -> int:
    """Upsert every badge definition. Returns number of badges seeded."""
    insert = _insert_for(db)
    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        stmt = insert(BadgeDefinition).values(**badge_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "category": stmt.excluded.category,
                "icon": stmt.excluded.icon,
                "xp_reward": stmt.excluded.xp_reward,
                "criteria": stmt.excluded.criteria,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
