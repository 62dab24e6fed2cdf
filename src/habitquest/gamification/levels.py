"""Level curve and computation.

Level ``n`` is reached at ``floor(50 * n ** 1.5)`` total XP; level 1 is the
floor for everyone, including users with zero or negative XP.
"""

from __future__ import annotations

import math

BASE_XP = 50
CURVE_EXPONENT = 1.5


def xp_for_level(level: int) -> int:
    """Total XP at which ``level`` is reached."""
    if level < 1:
        msg = f"level must be >= 1, got {level}"
        raise ValueError(msg)
    return math.floor(BASE_XP * level**CURVE_EXPONENT)


def level_from_xp(total_xp: int) -> int:
    """Highest level whose threshold is <= ``total_xp`` (minimum 1)."""
    level = 1
    while xp_for_level(level + 1) <= total_xp:
        level += 1
    return level


def level_progress(total_xp: int) -> dict:
    """Level info for display: current level, its floor, and the distance to the next one."""
    level = level_from_xp(total_xp)
    floor = 0 if level == 1 else xp_for_level(level)
    next_level_xp = xp_for_level(level + 1)
    span = next_level_xp - floor
    xp_into_level = max(total_xp - floor, 0)

    return {
        "level": level,
        "level_floor_xp": floor,
        "next_level_xp": next_level_xp,
        "xp_into_level": xp_into_level,
        "xp_for_level": span,
        "xp_to_next_level": next_level_xp - max(total_xp, floor),
        "progress_percent": min(100, round(xp_into_level / span * 100)),
    }
