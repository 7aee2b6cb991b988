"""Level thresholds and computation.

Levels grow quadratically: level L is first reached at (L - 1)^2 * 100 XP,
so level = floor(sqrt(total_xp / 100)) + 1.

    level 1 ->    0 XP
    level 2 ->  100 XP
    level 3 ->  400 XP
    level 4 ->  900 XP
    level 5 -> 1600 XP
"""

from __future__ import annotations

import math

XP_PER_LEVEL_UNIT = 100


def compute_level(total_xp: int) -> int:
    """Level for a total XP amount. Integer sqrt keeps boundaries exact."""
    if total_xp < 0:
        raise ValueError("total_xp must be non-negative")
    return math.isqrt(total_xp // XP_PER_LEVEL_UNIT) + 1


def xp_for_level(level: int) -> int:
    """XP threshold at which ``level`` is first reached (level 1 = 0 XP)."""
    if level < 1:
        raise ValueError("level must be >= 1")
    return (level - 1) ** 2 * XP_PER_LEVEL_UNIT


def progress_to_next_level(total_xp: int) -> int:
    """Percentage of the way from the current level to the next, clamped to [0, 100]."""
    level = compute_level(total_xp)
    floor_xp = xp_for_level(level)
    span = xp_for_level(level + 1) - floor_xp
    percent = (total_xp - floor_xp) * 100 // span
    return max(0, min(100, percent))


def compute_level_info(total_xp: int) -> dict:
    """Compute level info from total XP."""
    level = compute_level(total_xp)
    current_floor = xp_for_level(level)
    next_floor = xp_for_level(level + 1)

    return {
        "level": level,
        "xp_into_level": total_xp - current_floor,
        "xp_for_level": next_floor - current_floor,
        "next_level": level + 1,
        "next_level_xp": next_floor,
        "progress_percent": progress_to_next_level(total_xp),
    }
