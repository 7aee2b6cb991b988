"""Daily streak tracking: continue / reset / no-op and milestone bonuses."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from learnity.config import get_settings
from learnity.gamification.badge_service import check_and_award
from learnity.gamification.schemas import StreakTransition, StreakUpdateResult
from learnity.gamification.seed import BadgeKey
from learnity.gamification.xp_rewards import STREAK_MILESTONE_XP, XPReason
from learnity.gamification.xp_service import award_xp, get_or_create_progress

logger = logging.getLogger(__name__)

STREAK_BADGE_MAP: dict[int, BadgeKey] = {
    7: BadgeKey.STREAK_7_DAYS,
    14: BadgeKey.STREAK_14_DAYS,
    30: BadgeKey.STREAK_30_DAYS,
    100: BadgeKey.STREAK_100_DAYS,
    365: BadgeKey.STREAK_365_DAYS,
}


def current_day(now: datetime | None = None) -> date:
    """Calendar date in the configured gamification timezone."""
    if now is None:
        now = datetime.now(timezone.utc)
    tz_name = get_settings().gamification_timezone
    if tz_name.upper() == "UTC":
        return now.astimezone(timezone.utc).date()
    return now.astimezone(ZoneInfo(tz_name)).date()


def evaluate_streak(last_activity_date: date | None, today: date) -> StreakTransition:
    """Decide how today's qualifying activity affects the streak.

    Same day is a no-op, the next day continues, any gap resets. A last
    activity dated after today (clock skew) is treated as a no-op.
    """
    if last_activity_date is None:
        return StreakTransition.RESET
    delta = (today - last_activity_date).days
    if delta == 1:
        return StreakTransition.CONTINUE
    if delta > 1:
        return StreakTransition.RESET
    return StreakTransition.NOOP


async def update_streak(
    db: AsyncSession,
    user_id: int,
    today: date | None = None,
) -> StreakUpdateResult:
    """Apply a qualifying activity for ``today`` to the user's streak.

    Milestone bonuses are only paid when a streak continues into the
    milestone; they are source-scoped on the milestone length so they are
    granted at most once per user per milestone.
    """
    if today is None:
        today = current_day()

    progress = await get_or_create_progress(db, user_id, for_update=True)
    previous = progress.current_streak
    transition = evaluate_streak(progress.last_activity_date, today)

    if transition == StreakTransition.NOOP:
        return StreakUpdateResult(
            previous_streak=previous,
            current_streak=progress.current_streak,
            longest_streak=progress.longest_streak,
            transition=transition,
        )

    if transition == StreakTransition.CONTINUE:
        progress.current_streak = previous + 1
    else:
        progress.current_streak = 1
    progress.longest_streak = max(progress.longest_streak, progress.current_streak)
    progress.last_activity_date = today
    progress.updated_at = datetime.now(timezone.utc)
    await db.flush()

    streak = progress.current_streak
    bonus_xp = 0
    badge = None
    if transition == StreakTransition.CONTINUE and streak in STREAK_MILESTONE_XP:
        award = await award_xp(
            db,
            user_id,
            STREAK_MILESTONE_XP[streak],
            XPReason.STREAK_BONUS,
            source_id=str(streak),
            description=f"{streak}-day learning streak",
        )
        bonus_xp = award.xp_awarded
        badge = await check_and_award(db, user_id, STREAK_BADGE_MAP[streak])
        logger.info("User %s reached a %d-day streak", user_id, streak)

    return StreakUpdateResult(
        previous_streak=previous,
        current_streak=progress.current_streak,
        longest_streak=progress.longest_streak,
        transition=transition,
        bonus_xp_awarded=bonus_xp,
        badge_unlocked=badge,
    )
