"""
Streak Gamification Engine

State transitions over a tracker's reward state, triggered by two events:

- occurrence completed: award XP (with streak multiplier), update level,
  streak, best streak and counters
- occurrence uncompleted: undo the completion record only. XP, level and
  streaks are kept; reversal never takes rewards back.

Transitions are computed as a single dict of field updates so callers can
persist them in one write.
"""

from typing import Any, Dict, Optional
from datetime import datetime
import logging

from pydantic import BaseModel

from alpine.exceptions import AlreadyCompletedThisPeriod, OccurrenceNotScheduledToday
from alpine.gamification.streak_system import check_missed_occurrence, next_streak
from alpine.gamification.xp_system import (
    calculate_level,
    get_streak_multiplier,
    get_xp_for_completion,
)
from alpine.models.tracker import Frequency, Tracker
from alpine.scheduling.schedule import schedule_for
from alpine.utils.datetime_helpers import is_same_day, is_same_hour

logger = logging.getLogger(__name__)


class CompletionOutcome(BaseModel):
    """Result of applying one completion to a tracker"""
    xp_earned: int
    multiplier: float
    old_level: int
    new_level: int
    leveled_up: bool
    new_streak: int
    streak_broken: bool
    previous_occurrence: Optional[datetime] = None
    updates: Dict[str, Any]


def is_already_completed_today(tracker: Tracker, now: datetime) -> bool:
    """Completed earlier today (this hour for hourly trackers)"""
    if tracker.last_completed_at is None:
        return False
    if tracker.frequency == Frequency.HOURLY:
        return is_same_hour(tracker.last_completed_at, now)
    return is_same_day(tracker.last_completed_at, now)


def check_completion_allowed(tracker: Tracker, occurrence: Optional[datetime], now: datetime) -> None:
    """
    Guard a completion before it registers as a gamification event

    Raises:
        OccurrenceNotScheduledToday: occurrence belongs to a future period,
            or a weekly/monthly tracker with explicit days/dates is
            completed on an unscheduled day or for an occurrence that is
            not today's
        AlreadyCompletedThisPeriod: single-target tracker already completed
            today
    """
    schedule = schedule_for(tracker)
    if occurrence is not None and schedule.period(occurrence).start > schedule.period(now).start:
        raise OccurrenceNotScheduledToday(
            message=(
                f"Occurrence due {occurrence.isoformat()} of tracker '{tracker.name}' "
                f"is in a future period"
            ),
            scheduled=schedule.describe(),
            tracker_id=str(tracker.id),
            operation="complete_occurrence"
        )

    if tracker.has_explicit_days or tracker.has_explicit_dates:
        off_schedule = not schedule.is_scheduled_on(now)
        other_day = occurrence is not None and not is_same_day(occurrence, now)
        if off_schedule or other_day:
            raise OccurrenceNotScheduledToday(
                message=(
                    f"Tracker '{tracker.name}' is not scheduled for {now.date().isoformat()}"
                    + (f" (occurrence due {occurrence.date().isoformat()})" if other_day else "")
                ),
                scheduled=schedule.describe(),
                tracker_id=str(tracker.id),
                operation="complete_occurrence"
            )

    if tracker.target_value == 1 and is_already_completed_today(tracker, now):
        raise AlreadyCompletedThisPeriod(
            message=f"Tracker '{tracker.name}' already completed at {tracker.last_completed_at.isoformat()}",
            tracker_id=str(tracker.id),
            operation="complete_occurrence"
        )


def apply_completion(
    tracker: Tracker,
    occurrence: datetime,
    now: datetime,
    streak_broken: bool,
    value: int = 1
) -> CompletionOutcome:
    """
    Compute the tracker state after completing `occurrence`

    Pure: reads the tracker, returns the full set of field updates.
    """
    new_streak = next_streak(tracker.current_streak, streak_broken)
    multiplier = get_streak_multiplier(new_streak)
    xp_earned = get_xp_for_completion(tracker.frequency, new_streak)

    new_total_xp = tracker.total_xp + xp_earned
    new_level = calculate_level(new_total_xp)

    updates = {
        "current_value": tracker.current_value + value,
        "total_xp": new_total_xp,
        "level": new_level,
        "total_completions": tracker.total_completions + 1,
        "current_streak": new_streak,
        "best_streak": max(tracker.best_streak, new_streak),
        "last_completed_at": now,
        "last_occurrence_date": occurrence,
        "successful_periods": tracker.successful_periods + 1,
        "total_periods": tracker.total_periods + 1,
    }

    return CompletionOutcome(
        xp_earned=xp_earned,
        multiplier=multiplier,
        old_level=tracker.level,
        new_level=new_level,
        leveled_up=new_level > tracker.level,
        new_streak=new_streak,
        streak_broken=streak_broken,
        updates=updates,
    )


def apply_reversal(tracker: Tracker, value: int = 1) -> Dict[str, Any]:
    """
    Compute the tracker state after uncompleting an occurrence

    Only the completion record is undone. XP, level, current and best
    streak stay as they are. When the goal drops back below its target,
    `last_completed_at` is cleared so the occurrence can be completed again.
    """
    new_value = max(0, tracker.current_value - value)
    updates: Dict[str, Any] = {
        "current_value": new_value,
        "total_completions": max(0, tracker.total_completions - 1),
        "successful_periods": max(0, tracker.successful_periods - 1),
    }
    if tracker.current_value >= tracker.target_value > new_value:
        updates["last_completed_at"] = None
    return updates


class StreakGamificationEngine:
    """
    Gamification for tracker occurrences.

    Reads task history through the store for streak continuity; never
    writes. Persisting the returned updates is the caller's job.
    """

    def __init__(self, store):
        self.store = store

    async def on_occurrence_completed(
        self,
        tracker: Tracker,
        occurrence: datetime,
        now: datetime,
        value: int = 1
    ) -> CompletionOutcome:
        """
        Guard and evaluate a completion

        Raises:
            CompletionRejectedError: when the completion may not register
        """
        check_completion_allowed(tracker, occurrence, now)

        missed = await check_missed_occurrence(self.store, tracker, occurrence)
        outcome = apply_completion(tracker, occurrence, now, missed["streak_broken"], value)
        outcome.previous_occurrence = missed["previous_occurrence"]

        logger.info(
            f"Tracker {tracker.id} completion: +{outcome.xp_earned} XP "
            f"(x{outcome.multiplier:.1f}), streak {tracker.current_streak} → {outcome.new_streak}"
        )
        if outcome.leveled_up:
            logger.info(f"Tracker {tracker.id} leveled up from {outcome.old_level} to {outcome.new_level}!")

        return outcome

    def on_occurrence_uncompleted(self, tracker: Tracker, value: int = 1) -> Dict[str, Any]:
        updates = apply_reversal(tracker, value)
        logger.info(
            f"Tracker {tracker.id} completion reverted: "
            f"completions {tracker.total_completions} → {updates['total_completions']}"
        )
        return updates
