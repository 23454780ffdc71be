"""
XP and Leveling System

Manages XP awards and level calculations for trackers.

Leveling Curve:
- Each level L needs L * 100 XP to clear
- Cumulative thresholds: level 1 at 0, level 2 at 100, level 3 at 300,
  level 4 at 600, level 5 at 1000, ...

XP Award Rules (per completed occurrence):
- Base XP by frequency: hourly 5, daily 10, weekly 50, monthly 200
- Streak multiplier: 1 + 10% per streak step, capped at 2x
- Awarded XP is rounded half up
"""

import math
from typing import Any, Dict

from alpine.models.tracker import Frequency, normalize_frequency

BASE_XP = {
    Frequency.HOURLY: 5,
    Frequency.DAILY: 10,
    Frequency.WEEKLY: 50,
    Frequency.MONTHLY: 200,
}

STREAK_BONUS = 0.1
MAX_STREAK_MULTIPLIER = 2.0
XP_PER_LEVEL = 100


def xp_threshold_for_level(level: int) -> int:
    """Cumulative XP at which `level` begins"""
    return sum(i * XP_PER_LEVEL for i in range(1, max(level, 1)))


def calculate_level(total_xp: int) -> int:
    """Smallest level whose range contains total_xp"""
    level = 1
    xp_needed = XP_PER_LEVEL
    total_needed = 0

    while total_xp >= total_needed + xp_needed:
        total_needed += xp_needed
        level += 1
        xp_needed = level * XP_PER_LEVEL

    return level


def calculate_level_from_xp(total_xp: int) -> Dict[str, Any]:
    """
    Calculate level from total XP

    Returns:
        {
            'current_level': int,
            'xp_in_current_level': int,
            'xp_to_next_level': int,
            'total_xp_for_next_level': int
        }
    """
    total_xp = max(total_xp, 0)
    level = calculate_level(total_xp)
    level_start = xp_threshold_for_level(level)
    next_level_start = level_start + level * XP_PER_LEVEL

    return {
        "current_level": level,
        "xp_in_current_level": total_xp - level_start,
        "xp_to_next_level": next_level_start - total_xp,
        "total_xp_for_next_level": next_level_start,
    }


def get_xp_progress(total_xp: int, level: int) -> Dict[str, int]:
    """
    XP progress within a level, for display

    Returns:
        {'current': int, 'needed': int, 'percentage': int (0-100)}
    """
    current = total_xp - xp_threshold_for_level(level)
    needed = level * XP_PER_LEVEL
    return {
        "current": current,
        "needed": needed,
        "percentage": min(100, round_half_up(current / needed * 100)),
    }


def get_streak_multiplier(streak: int) -> float:
    """+10% per streak step, max 2x"""
    return min(1 + streak * STREAK_BONUS, MAX_STREAK_MULTIPLIER)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def get_xp_for_completion(frequency: Any, streak: int) -> int:
    """
    XP earned for completing one occurrence

    Args:
        frequency: Tracker frequency
        streak: Streak length including this completion

    Returns:
        XP amount to award
    """
    base_xp = BASE_XP[normalize_frequency(frequency)]
    return round_half_up(base_xp * get_streak_multiplier(streak))
