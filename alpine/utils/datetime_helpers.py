"""
Date/Time Handling Utilities

Centralized date/time operations for the scheduling engine:
1. A single injectable clock (`Clock`) - core logic never reads the wall clock
2. Calendar arithmetic shared by period and occurrence computations
3. Tolerance comparisons for due dates

All arithmetic happens in whatever timezone the reference datetime carries.
No timezone conversion is performed.
"""

import calendar
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from alpine.config import DEFAULT_SCHEDULED_TIME, DUE_DATE_TOLERANCE_SECONDS

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class Clock:
    """Source of the current instant"""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock in UTC"""

    def now(self) -> datetime:
        return now_utc()


class FixedClock(Clock):
    """Clock pinned to a given instant (tests, replays)"""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by a timedelta built from kwargs"""
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(timezone.utc)


def parse_scheduled_time(time_str: Optional[str]) -> Tuple[int, int]:
    """
    Parse an "HH:MM" schedule time leniently.

    Missing or malformed parts fall back to the default scheduled time
    (09:00 unless configured otherwise) instead of raising.

    Returns:
        (hours, minutes)
    """
    default_hours, default_minutes = try_parse_time(DEFAULT_SCHEDULED_TIME) or (9, 0)
    if not time_str:
        return default_hours, default_minutes

    parts = try_parse_time(time_str)
    if parts is None:
        logger.warning(f"Malformed scheduled time '{time_str}', using {DEFAULT_SCHEDULED_TIME}")
        return default_hours, default_minutes
    return parts


def try_parse_time(time_str: str) -> Optional[Tuple[int, int]]:
    pieces = str(time_str).strip().split(":")
    try:
        hours = int(pieces[0])
        minutes = int(pieces[1]) if len(pieces) > 1 else 0
    except ValueError:
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours, minutes


def format_scheduled_time(hours: int, minutes: int) -> str:
    return f"{hours:02d}:{minutes:02d}"


def weekday_sunday_first(dt: datetime) -> int:
    """Day of week with 0=Sunday .. 6=Saturday"""
    return (dt.weekday() + 1) % 7


def day_name(day: int) -> str:
    """Name of a Sunday-first weekday number"""
    if 0 <= day < len(DAY_NAMES):
        return DAY_NAMES[day]
    return "Unknown"


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def start_of_hour(dt: datetime) -> datetime:
    return dt.replace(minute=0, second=0, microsecond=0)


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(dt: datetime) -> datetime:
    """Midnight of the most recent Sunday on or before dt"""
    return start_of_day(dt) - timedelta(days=weekday_sunday_first(dt))


def start_of_month(dt: datetime) -> datetime:
    return start_of_day(dt).replace(day=1)


def add_months(dt: datetime, months: int) -> datetime:
    """
    Shift dt by whole months, keeping the day when it exists.

    Days past the end of the target month are clamped to its last day.
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, days_in_month(year, month))
    return dt.replace(year=year, month=month, day=day)


def at_time(dt: datetime, hours: int, minutes: int) -> datetime:
    """dt's calendar day at hours:minutes"""
    return dt.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def within_tolerance(
    first: Optional[datetime],
    second: Optional[datetime],
    seconds: int = DUE_DATE_TOLERANCE_SECONDS
) -> bool:
    """True when both instants exist and differ by no more than `seconds`"""
    if first is None or second is None:
        return False
    return abs((first - second).total_seconds()) <= seconds


def tolerance_window(
    instant: datetime,
    seconds: int = DUE_DATE_TOLERANCE_SECONDS
) -> Tuple[datetime, datetime]:
    """Inclusive [instant - seconds, instant + seconds]"""
    delta = timedelta(seconds=seconds)
    return instant - delta, instant + delta


def occurrence_key(due_date: datetime) -> datetime:
    """
    Uniqueness bucket for a task's due date.

    Occurrences always fall on whole minutes, so truncating to the minute
    maps every materialization of the same occurrence onto one key.
    """
    return due_date.replace(second=0, microsecond=0)


def is_same_day(first: datetime, second: datetime) -> bool:
    return first.date() == second.date()


def is_same_hour(first: datetime, second: datetime) -> bool:
    return is_same_day(first, second) and first.hour == second.hour
