"""
Occurrence scheduling

One `Schedule` variant per frequency. Each variant knows how to:
- bound its current period
- enumerate the occurrences inside the current period
- find the nearest occurrence strictly before an instant
- list the next N occurrences strictly after an instant
- tell whether a calendar day is a scheduled day (completion guard)

Weekdays use 0=Sunday..6=Saturday. Monthly dates that do not exist in a
month are skipped; when none of the configured dates exist, the month's
last day stands in so every period has at least one occurrence.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from alpine.models.tracker import Frequency, Tracker, normalize_frequency
from alpine.scheduling.periods import Period, period_bounds
from alpine.utils.datetime_helpers import (
    add_months,
    at_time,
    day_name,
    days_in_month,
    format_scheduled_time,
    is_same_day,
    parse_scheduled_time,
    start_of_day,
    start_of_hour,
    start_of_month,
    start_of_week,
    weekday_sunday_first,
)

logger = logging.getLogger(__name__)

# How far back the weekly variant looks for a previous occurrence
WEEKLY_LOOKBACK_DAYS = 14


class Schedule:
    """Base schedule: a time of day plus frequency-specific rules"""

    frequency: Frequency = Frequency.DAILY

    def __init__(self, hours: int = 9, minutes: int = 0):
        self.hours = hours
        self.minutes = minutes

    def period(self, reference: datetime) -> Period:
        return period_bounds(self.frequency, reference)

    def occurrences_in_period(self, now: datetime) -> List[datetime]:
        raise NotImplementedError

    def previous_occurrence(self, before: datetime) -> Optional[datetime]:
        raise NotImplementedError

    def next_occurrences(self, start: datetime, count: int) -> List[datetime]:
        raise NotImplementedError

    def is_scheduled_on(self, day: datetime) -> bool:
        return True

    def describe(self) -> str:
        return f"{self.frequency.value} at {format_scheduled_time(self.hours, self.minutes)}"

    def _at(self, day: datetime) -> datetime:
        return at_time(day, self.hours, self.minutes)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.describe()}>"


class HourlySchedule(Schedule):
    """Once per hour at the scheduled minute"""

    frequency = Frequency.HOURLY

    def _in_hour(self, reference: datetime) -> datetime:
        return start_of_hour(reference).replace(minute=self.minutes)

    def occurrences_in_period(self, now: datetime) -> List[datetime]:
        return [self._in_hour(now)]

    def previous_occurrence(self, before: datetime) -> Optional[datetime]:
        candidate = self._in_hour(before)
        if candidate >= before:
            candidate -= timedelta(hours=1)
        return candidate

    def next_occurrences(self, start: datetime, count: int) -> List[datetime]:
        first = self._in_hour(start)
        if first <= start:
            first += timedelta(hours=1)
        return [first + timedelta(hours=i) for i in range(count)]

    def describe(self) -> str:
        return f"hourly at :{self.minutes:02d}"


class DailySchedule(Schedule):
    """Once per day at the scheduled time"""

    frequency = Frequency.DAILY

    def occurrences_in_period(self, now: datetime) -> List[datetime]:
        return [self._at(now)]

    def previous_occurrence(self, before: datetime) -> Optional[datetime]:
        candidate = self._at(before)
        if candidate >= before:
            candidate -= timedelta(days=1)
        return candidate

    def next_occurrences(self, start: datetime, count: int) -> List[datetime]:
        first = self._at(start)
        if first <= start:
            first += timedelta(days=1)
        return [first + timedelta(days=i) for i in range(count)]


class WeeklySchedule(Schedule):
    """On selected weekdays (default Sunday) at the scheduled time"""

    frequency = Frequency.WEEKLY

    def __init__(self, hours: int = 9, minutes: int = 0, days: Optional[Iterable[int]] = None):
        super().__init__(hours, minutes)
        self.explicit = bool(days)
        self.days = sorted(set(days)) if days else [0]

    def occurrences_in_period(self, now: datetime) -> List[datetime]:
        period = self.period(now)
        week_start = start_of_week(now)
        occurrences = [self._at(week_start + timedelta(days=day)) for day in self.days]
        return [o for o in occurrences if period.contains(o)]

    def previous_occurrence(self, before: datetime) -> Optional[datetime]:
        day = start_of_day(before)
        for offset in range(WEEKLY_LOOKBACK_DAYS + 1):
            check = day - timedelta(days=offset)
            if weekday_sunday_first(check) in self.days:
                candidate = self._at(check)
                if candidate < before:
                    return candidate
        return None

    def next_occurrences(self, start: datetime, count: int) -> List[datetime]:
        occurrences: List[datetime] = []
        day = start_of_day(start)
        # Safety limit
        for _ in range(count * 7 + 14):
            if len(occurrences) >= count:
                break
            if weekday_sunday_first(day) in self.days:
                candidate = self._at(day)
                if candidate > start:
                    occurrences.append(candidate)
            day += timedelta(days=1)
        return occurrences

    def is_scheduled_on(self, day: datetime) -> bool:
        if not self.explicit:
            return True
        return weekday_sunday_first(day) in self.days

    def describe(self) -> str:
        names = ", ".join(day_name(d) for d in self.days)
        return f"weekly on {names} at {format_scheduled_time(self.hours, self.minutes)}"


class MonthlySchedule(Schedule):
    """On selected dates of the month (default the 1st) at the scheduled time"""

    frequency = Frequency.MONTHLY

    def __init__(self, hours: int = 9, minutes: int = 0, dates: Optional[Iterable[int]] = None):
        super().__init__(hours, minutes)
        self.explicit = bool(dates)
        self.dates = sorted(set(dates)) if dates else [1]

    def dates_in_month(self, year: int, month: int) -> List[int]:
        last_day = days_in_month(year, month)
        dates = [d for d in self.dates if d <= last_day]
        return dates or [last_day]

    def _month_occurrences(self, month_start: datetime) -> List[datetime]:
        return [
            self._at(month_start.replace(day=d))
            for d in self.dates_in_month(month_start.year, month_start.month)
        ]

    def occurrences_in_period(self, now: datetime) -> List[datetime]:
        return self._month_occurrences(start_of_month(now))

    def previous_occurrence(self, before: datetime) -> Optional[datetime]:
        month_start = start_of_month(before)
        # Current month first, then the previous calendar month
        for candidate_month in (month_start, add_months(month_start, -1)):
            earlier = [o for o in self._month_occurrences(candidate_month) if o < before]
            if earlier:
                return earlier[-1]
        return None

    def next_occurrences(self, start: datetime, count: int) -> List[datetime]:
        occurrences: List[datetime] = []
        month_start = start_of_month(start)
        max_months = math.ceil(count / len(self.dates)) + 2
        for offset in range(max_months):
            for candidate in self._month_occurrences(add_months(month_start, offset)):
                if candidate > start:
                    occurrences.append(candidate)
                if len(occurrences) >= count:
                    return occurrences
        return occurrences

    def is_scheduled_on(self, day: datetime) -> bool:
        if not self.explicit:
            return True
        return day.day in self.dates_in_month(day.year, day.month)

    def describe(self) -> str:
        dates = ", ".join(str(d) for d in self.dates)
        return f"monthly on {dates} at {format_scheduled_time(self.hours, self.minutes)}"


def schedule_for(tracker: Tracker) -> Schedule:
    """Build the schedule variant for a tracker, defaulting absent fields"""
    hours, minutes = parse_scheduled_time(tracker.scheduled_time)
    frequency = normalize_frequency(tracker.frequency)

    if frequency == Frequency.HOURLY:
        return HourlySchedule(hours, minutes)
    if frequency == Frequency.WEEKLY:
        return WeeklySchedule(hours, minutes, tracker.scheduled_days)
    if frequency == Frequency.MONTHLY:
        return MonthlySchedule(hours, minutes, tracker.scheduled_dates_of_month)
    return DailySchedule(hours, minutes)


# ============================================================================
# Tracker-level helpers
# ============================================================================

def current_period(tracker: Tracker, now: datetime) -> Period:
    return schedule_for(tracker).period(now)


def occurrences_in_current_period(tracker: Tracker, now: datetime) -> List[datetime]:
    """
    Occurrence instants inside the period containing `now`

    Returns:
        Non-empty, ascending, duplicate-free list. Past occurrences of the
        period are included.
    """
    return schedule_for(tracker).occurrences_in_period(now)


def current_occurrence(tracker: Tracker, now: datetime) -> datetime:
    """
    Occurrence a completion without a task counts against

    Today's occurrence when there is one, else the latest occurrence of the
    period not after `now`, else the period's first occurrence.
    """
    occurrences = occurrences_in_current_period(tracker, now)
    today = [o for o in occurrences if is_same_day(o, now)]
    if today:
        return today[0]
    started = [o for o in occurrences if o <= now]
    return started[-1] if started else occurrences[0]


def previous_scheduled_occurrence(tracker: Tracker, before: datetime) -> Optional[datetime]:
    """
    Nearest occurrence strictly before `before`

    Returns:
        The occurrence, or None when nothing is found within the lookback
        bound. None means "first ever occurrence": no streak penalty.
    """
    return schedule_for(tracker).previous_occurrence(before)


def next_scheduled_occurrences(tracker: Tracker, start: datetime, count: int = 7) -> List[datetime]:
    """The next `count` occurrences strictly after `start`, across periods"""
    if count <= 0:
        return []
    return schedule_for(tracker).next_occurrences(start, count)


def is_scheduled_day(tracker: Tracker, day: datetime) -> bool:
    return schedule_for(tracker).is_scheduled_on(day)


def describe_schedule(tracker: Tracker) -> str:
    return schedule_for(tracker).describe()
