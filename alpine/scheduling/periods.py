"""
Period bounds

Maps (frequency, reference instant) to the half-open interval [start, end)
of the period containing the reference:

- hourly:  top of the hour .. +1 hour
- daily:   midnight .. next midnight
- weekly:  midnight of the most recent Sunday .. +7 days
- monthly: midnight on the 1st .. the 1st of next month

Unknown frequencies are treated as daily.
"""

from datetime import datetime, timedelta
from typing import Any, NamedTuple

from alpine.models.tracker import Frequency, normalize_frequency
from alpine.utils.datetime_helpers import (
    add_months,
    start_of_day,
    start_of_hour,
    start_of_month,
    start_of_week,
)


class Period(NamedTuple):
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


def _hour(reference: datetime) -> Period:
    start = start_of_hour(reference)
    return Period(start, start + timedelta(hours=1))


def _day(reference: datetime) -> Period:
    start = start_of_day(reference)
    return Period(start, start + timedelta(days=1))


def _week(reference: datetime) -> Period:
    start = start_of_week(reference)
    return Period(start, start + timedelta(days=7))


def _month(reference: datetime) -> Period:
    start = start_of_month(reference)
    return Period(start, add_months(start, 1))


_PERIODS = {
    Frequency.HOURLY: _hour,
    Frequency.DAILY: _day,
    Frequency.WEEKLY: _week,
    Frequency.MONTHLY: _month,
}


def period_bounds(frequency: Any, reference: datetime) -> Period:
    """Current period [start, end) for frequency around reference"""
    return _PERIODS[normalize_frequency(frequency)](reference)
