"""Tracker (recurring goal) models"""
import logging
from enum import Enum
from typing import Optional, Any
from datetime import datetime
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, field_validator

from alpine.config import DEFAULT_SCHEDULED_TIME
from alpine.exceptions import ScheduleConfigInvalid
from alpine.utils.datetime_helpers import (
    now_utc,
    parse_scheduled_time,
    format_scheduled_time,
    try_parse_time,
)

logger = logging.getLogger(__name__)


class Frequency(str, Enum):
    """How often a tracker's goal recurs"""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Urgency(str, Enum):
    """Ordinal urgency carried by generated tasks"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Fields whose change invalidates already materialized tasks
SCHEDULE_FIELDS = ("frequency", "scheduled_time", "scheduled_days", "scheduled_dates_of_month")


def normalize_frequency(value: Any) -> Frequency:
    """Unknown frequencies fall back to daily"""
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(str(value).lower())
    except ValueError:
        logger.warning(f"Unknown frequency '{value}', falling back to daily")
        return Frequency.DAILY


def _clean_numbers(values: Any, low: int, high: int) -> tuple[list[int], list[Any]]:
    """Split values into sorted unique in-range ints and rejected entries"""
    if values is None:
        return [], []
    if not isinstance(values, (list, tuple, set)):
        values = [values]

    kept: set[int] = set()
    rejected: list[Any] = []
    for value in values:
        try:
            number = int(value)
        except (TypeError, ValueError):
            rejected.append(value)
            continue
        if low <= number <= high:
            kept.add(number)
        else:
            rejected.append(value)
    return sorted(kept), rejected


class ScheduleFields(BaseModel):
    """Schedule configuration shared by tracker records and creation requests"""
    frequency: Frequency = Frequency.DAILY
    scheduled_time: Optional[str] = DEFAULT_SCHEDULED_TIME  # "HH:MM"
    scheduled_days: Optional[list[int]] = None  # weekly only, 0=Sunday..6=Saturday
    scheduled_dates_of_month: Optional[list[int]] = None  # monthly only, 1-31

    @field_validator("frequency", mode="before")
    @classmethod
    def validate_frequency(cls, v: Any) -> Frequency:
        return normalize_frequency(v)

    @field_validator("scheduled_time", mode="before")
    @classmethod
    def validate_scheduled_time(cls, v: Any) -> Optional[str]:
        """Malformed times are replaced by the default scheduled time"""
        if v is None or v == "":
            return None
        hours, minutes = parse_scheduled_time(str(v))
        return format_scheduled_time(hours, minutes)

    @field_validator("scheduled_days", mode="before")
    @classmethod
    def validate_scheduled_days(cls, v: Any) -> Optional[list[int]]:
        if v is None:
            return None
        kept, rejected = _clean_numbers(v, 0, 6)
        if rejected:
            logger.warning(f"Ignoring invalid scheduled days: {rejected}")
        return kept

    @field_validator("scheduled_dates_of_month", mode="before")
    @classmethod
    def validate_scheduled_dates(cls, v: Any) -> Optional[list[int]]:
        if v is None:
            return None
        kept, rejected = _clean_numbers(v, 1, 31)
        if rejected:
            logger.warning(f"Ignoring invalid scheduled dates of month: {rejected}")
        return kept


class Tracker(ScheduleFields):
    """A recurring goal definition and its running reward state"""
    id: UUID = Field(default_factory=uuid4)
    name: str
    description: Optional[str] = None
    icon: str = "🎯"
    color: str = "#805AD5"

    # Goal
    target_value: int = Field(default=1, ge=1)
    target_unit: str = "times"

    # Current period progress
    current_value: int = Field(default=0, ge=0)
    period_start_date: datetime = Field(default_factory=now_utc)

    # Rewards
    total_xp: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    current_streak: int = Field(default=0, ge=0)
    best_streak: int = Field(default=0, ge=0)
    last_completed_at: Optional[datetime] = None
    last_occurrence_date: Optional[datetime] = None

    # Lifetime counters
    total_completions: int = Field(default=0, ge=0)
    total_periods: int = Field(default=0, ge=0)
    successful_periods: int = Field(default=0, ge=0)

    # Status
    is_active: bool = True
    is_paused: bool = False
    generate_tasks: bool = False

    # Generated task hints
    task_category_id: Optional[int] = None
    task_urgency: Urgency = Urgency.MEDIUM

    # Optimistic concurrency token, bumped by the store on every write
    version: int = 0

    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @field_validator("task_urgency", mode="before")
    @classmethod
    def validate_task_urgency(cls, v: Any) -> Urgency:
        if v is None:
            return Urgency.MEDIUM
        try:
            return Urgency(str(v.value if isinstance(v, Urgency) else v).lower())
        except ValueError:
            logger.warning(f"Unknown task urgency '{v}', using medium")
            return Urgency.MEDIUM

    @property
    def generates_now(self) -> bool:
        """Whether lazy materialization should run for this tracker"""
        return self.is_active and not self.is_paused and self.generate_tasks

    @property
    def has_explicit_days(self) -> bool:
        return self.frequency == Frequency.WEEKLY and bool(self.scheduled_days)

    @property
    def has_explicit_dates(self) -> bool:
        return self.frequency == Frequency.MONTHLY and bool(self.scheduled_dates_of_month)


class TrackerConfig(ScheduleFields):
    """Input used to create a tracker"""
    name: str
    description: Optional[str] = None
    icon: str = "🎯"
    color: str = "#805AD5"
    target_value: int = Field(default=1, ge=1)
    target_unit: str = "times"
    generate_tasks: bool = True
    task_category_id: Optional[int] = None
    task_urgency: Urgency = Urgency.MEDIUM

    @classmethod
    def strict(cls, **data: Any) -> "TrackerConfig":
        """
        Build a config, rejecting malformed schedule fields instead of defaulting.

        Raises:
            ScheduleConfigInvalid: for unknown frequencies, bad times or
                out-of-range days/dates
        """
        frequency = data.get("frequency", Frequency.DAILY)
        if not isinstance(frequency, Frequency) and str(frequency).lower() not in {f.value for f in Frequency}:
            raise ScheduleConfigInvalid(
                f"Unknown frequency '{frequency}'",
                field="frequency",
                value=frequency,
                operation="create_tracker"
            )

        scheduled_time = data.get("scheduled_time")
        if scheduled_time and try_parse_time(str(scheduled_time)) is None:
            raise ScheduleConfigInvalid(
                f"Invalid time format '{scheduled_time}'. Must be HH:MM (e.g., '09:00')",
                field="scheduled_time",
                value=scheduled_time,
                operation="create_tracker"
            )

        for field, low, high in (("scheduled_days", 0, 6), ("scheduled_dates_of_month", 1, 31)):
            _, rejected = _clean_numbers(data.get(field), low, high)
            if rejected:
                raise ScheduleConfigInvalid(
                    f"Values out of range {low}-{high}: {rejected}",
                    field=field,
                    value=data.get(field),
                    operation="create_tracker"
                )

        return cls(**data)

    def to_tracker(self, now: datetime) -> Tracker:
        """Fresh tracker record for this config, with zeroed reward state"""
        return Tracker(
            **self.model_dump(),
            period_start_date=now,
            created_at=now,
            updated_at=now,
        )
