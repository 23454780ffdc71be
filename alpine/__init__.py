"""Recurring-goal tracker engine: occurrence tasks, streaks, XP and levels"""

__version__ = "0.1.0"
