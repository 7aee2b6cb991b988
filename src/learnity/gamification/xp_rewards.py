"""XP reasons and the fixed amounts granted for each learning event."""

from __future__ import annotations

from enum import Enum


class XPReason(str, Enum):
    LOGIN = "LOGIN"
    LESSON_COMPLETE = "LESSON_COMPLETE"
    QUIZ_PASS = "QUIZ_PASS"
    COURSE_COMPLETE = "COURSE_COMPLETE"
    STREAK_BONUS = "STREAK_BONUS"
    HELP_PEER = "HELP_PEER"
    SESSION_ATTEND = "SESSION_ATTEND"
    GROUP_JOIN = "GROUP_JOIN"


# Reasons tied to one lesson / quiz / course / streak milestone.
# At most one ledger entry per (user, reason, source_id).
SOURCE_SCOPED_REASONS: frozenset[XPReason] = frozenset({
    XPReason.LESSON_COMPLETE,
    XPReason.QUIZ_PASS,
    XPReason.COURSE_COMPLETE,
    XPReason.STREAK_BONUS,
})

# Activities that count towards the daily streak.
STREAK_QUALIFYING_REASONS: frozenset[XPReason] = frozenset({
    XPReason.LOGIN,
    XPReason.LESSON_COMPLETE,
})

LESSON_COMPLETE_XP = 10
QUIZ_PASS_XP = 20
COURSE_COMPLETE_XP = 50

ACTIVITY_XP: dict[XPReason, int] = {
    XPReason.LOGIN: 5,
    XPReason.HELP_PEER: 20,
    XPReason.SESSION_ATTEND: 30,
    XPReason.GROUP_JOIN: 10,
}

# streak length (days) -> bonus XP, awarded once per milestone
STREAK_MILESTONE_XP: dict[int, int] = {
    7: 25,
    14: 50,
    30: 100,
    100: 500,
    365: 1000,
}


def idempotency_key(reason: XPReason, user_id: int, source_id: str) -> str:
    """Ledger dedup key, e.g. 'QUIZ_PASS:42:<quiz id>'."""
    return f"{reason.value}:{user_id}:{source_id}"
