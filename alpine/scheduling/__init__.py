"""Period and occurrence calculation for recurring trackers"""

from alpine.scheduling.periods import Period, period_bounds
from alpine.scheduling.schedule import (
    Schedule,
    HourlySchedule,
    DailySchedule,
    WeeklySchedule,
    MonthlySchedule,
    schedule_for,
    current_period,
    current_occurrence,
    occurrences_in_current_period,
    previous_scheduled_occurrence,
    next_scheduled_occurrences,
    is_scheduled_day,
    describe_schedule,
)

__all__ = [
    "Period",
    "period_bounds",
    "Schedule",
    "HourlySchedule",
    "DailySchedule",
    "WeeklySchedule",
    "MonthlySchedule",
    "schedule_for",
    "current_period",
    "current_occurrence",
    "occurrences_in_current_period",
    "previous_scheduled_occurrence",
    "next_scheduled_occurrences",
    "is_scheduled_day",
    "describe_schedule",
]
