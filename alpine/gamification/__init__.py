"""
Gamification system for recurring trackers

- XP and leveling
- Occurrence streak tracking
- Completion / reversal state transitions
"""

from alpine.gamification.xp_system import (
    calculate_level,
    calculate_level_from_xp,
    get_streak_multiplier,
    get_xp_for_completion,
    get_xp_progress,
)
from alpine.gamification.streak_system import check_missed_occurrence
from alpine.gamification.engine import (
    CompletionOutcome,
    StreakGamificationEngine,
    apply_completion,
    apply_reversal,
    check_completion_allowed,
)

__all__ = [
    "calculate_level",
    "calculate_level_from_xp",
    "get_streak_multiplier",
    "get_xp_for_completion",
    "get_xp_progress",
    "check_missed_occurrence",
    "CompletionOutcome",
    "StreakGamificationEngine",
    "apply_completion",
    "apply_reversal",
    "check_completion_allowed",
]
