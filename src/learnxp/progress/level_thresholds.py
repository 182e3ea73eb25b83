"""Level thresholds and computation.

Level L is reached at ``xp_threshold(L) = 100 * L * (L + 1) / 2`` total XP
(triangular growth: each level costs 100 XP more than the previous one).
Level 1 is the floor, so every XP total below ``xp_threshold(2)`` is level 1.
"""

from __future__ import annotations

import math

XP_PER_LEVEL_STEP = 100

LEVEL_TITLES: list[dict] = [
    {"min_level": 1, "title": "Beginner"},
    {"min_level": 5, "title": "Learner"},
    {"min_level": 10, "title": "Explorer"},
    {"min_level": 20, "title": "Scholar"},
    {"min_level": 35, "title": "Expert"},
    {"min_level": 50, "title": "Master"},
    {"min_level": 75, "title": "Legend"},
]


def xp_threshold(level: int) -> int:
    """Total XP at which ``level`` is reached."""
    return XP_PER_LEVEL_STEP * level * (level + 1) // 2


def level_for_xp(total_xp: int) -> int:
    """Largest level whose threshold is <= total_xp, never below 1.

    Integer-exact: ``L(L+1)/2 <= xp/100`` holds iff it holds for
    ``xp // 100`` because the left side is an integer.
    """
    if total_xp <= 0:
        return 1
    steps = total_xp // XP_PER_LEVEL_STEP
    level = (math.isqrt(8 * steps + 1) - 1) // 2
    return max(1, level)


def level_progress(total_xp: int) -> float:
    """Fraction of the way from the current level to the next, clamped to [0, 1]."""
    level = level_for_xp(total_xp)
    floor = xp_threshold(level)
    span = xp_threshold(level + 1) - floor
    return min(1.0, max(0.0, (total_xp - floor) / span))


def level_title(level: int) -> str:
    title = LEVEL_TITLES[0]["title"]
    for entry in LEVEL_TITLES:
        if level >= entry["min_level"]:
            title = entry["title"]
    return title


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP."""
    level = level_for_xp(total_xp)
    floor = xp_threshold(level)
    ceiling = xp_threshold(level + 1)

    return {
        "level": level,
        "title": level_title(level),
        "xp_into_level": max(0, total_xp - floor),
        "xp_for_level": ceiling - floor,
        "next_level": level + 1,
        "next_title": level_title(level + 1),
        "progress": level_progress(total_xp),
    }
