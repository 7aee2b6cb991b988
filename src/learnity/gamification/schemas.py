"""Pydantic result and response models for the progress and gamification engine."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from learnity.gamification.xp_rewards import XPReason


class StreakTransition(str, Enum):
    NOOP = "noop"
    CONTINUE = "continue"
    RESET = "reset"


# --- XP ---


class XPAwardResult(BaseModel):
    previous_xp: int
    new_xp: int
    xp_awarded: int
    previous_level: int
    new_level: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.previous_level


class XPActivityEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: int
    reason: str
    source_id: str | None = None
    description: str | None = None
    created_at: datetime | None = None


class XPHistoryResponse(BaseModel):
    entries: list[XPActivityEntry]
    total: int
    limit: int
    offset: int


class LevelInfo(BaseModel):
    level: int
    xp_into_level: int
    xp_for_level: int
    next_level: int
    next_level_xp: int
    progress_percent: int


# --- Badges ---


class BadgeUnlockResult(BaseModel):
    key: str
    name: str
    description: str
    icon: str | None = None
    xp_reward: int = 0
    unlocked_at: datetime
    newly_unlocked: bool = False


class UserBadgesResponse(BaseModel):
    unlocked: list[BadgeUnlockResult]
    total_available: int
    total_unlocked: int


class AchievementProgress(BaseModel):
    current: int
    target: int
    percentage: int


class Achievement(BaseModel):
    """Catalog badge with the user's unlock state and counter progress."""

    key: str
    name: str
    description: str
    category: str
    icon: str | None = None
    xp_reward: int = 0
    unlocked: bool
    unlocked_at: datetime | None = None
    progress: AchievementProgress


class AchievementStats(BaseModel):
    total: int
    unlocked: int
    locked: int
    completion_percentage: int
    total_badge_xp: int


class AchievementsResponse(BaseModel):
    achievements: list[Achievement]
    by_category: dict[str, list[Achievement]]
    stats: AchievementStats


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    display_name: str
    total_xp: int
    level: int
    badge_count: int
    course_progress: int | None = None
    is_current_user: bool = False


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
    course_id: str | None = None
    current_user_rank: int | None = None
    total_users: int


class UserRank(BaseModel):
    user_id: int
    rank: int
    total: int


# --- Streak ---


class StreakUpdateResult(BaseModel):
    previous_streak: int
    current_streak: int
    longest_streak: int
    transition: StreakTransition
    bonus_xp_awarded: int = 0
    badge_unlocked: BadgeUnlockResult | None = None


# --- Activity ---


class ActivityRequest(BaseModel):
    reason: XPReason
    source_id: str | None = Field(default=None, max_length=128)


class ActivityResult(BaseModel):
    reason: XPReason
    xp: XPAwardResult
    streak: StreakUpdateResult | None = None
    badges_unlocked: list[BadgeUnlockResult] = []
    leveled_up: bool = False


# --- Summary ---


class GamificationSummary(BaseModel):
    user_id: int
    total_xp: int
    level: LevelInfo
    current_streak: int
    longest_streak: int
    last_activity_date: date | None = None
    badges: list[BadgeUnlockResult]
    recent_activity: list[XPActivityEntry]
