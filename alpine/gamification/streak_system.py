"""
Occurrence Streak Tracking

A streak counts consecutive kept occurrences. Completing occurrence `o`
continues the streak when the occurrence scheduled right before `o` was kept:

- there is no previous occurrence (first ever completion), or
- a completed task of the tracker is due within the tolerance of it, or
- the tracker's last completed occurrence matches it within the tolerance

Otherwise the previous occurrence was missed and the streak restarts at 1.
"""

from typing import Any, Dict
from datetime import datetime
import logging

from alpine.models.task import TaskQuery, TaskStatus
from alpine.models.tracker import Tracker
from alpine.scheduling.schedule import previous_scheduled_occurrence
from alpine.utils.datetime_helpers import tolerance_window, within_tolerance

logger = logging.getLogger(__name__)


async def check_missed_occurrence(store, tracker: Tracker, occurrence: datetime) -> Dict[str, Any]:
    """
    Check whether the occurrence before `occurrence` was missed

    Args:
        store: TrackerStateStore used to look up completed tasks
        tracker: Tracker being completed
        occurrence: Occurrence instant being completed

    Returns:
        {
            'streak_broken': bool,
            'missed_count': int,
            'previous_occurrence': datetime or None
        }
    """
    previous = previous_scheduled_occurrence(tracker, occurrence)

    if previous is None:
        return {"streak_broken": False, "missed_count": 0, "previous_occurrence": None}

    if within_tolerance(tracker.last_occurrence_date, previous):
        return {"streak_broken": False, "missed_count": 0, "previous_occurrence": previous}

    window_start, window_end = tolerance_window(previous)
    completed = await store.find_tasks(TaskQuery(
        tracker_id=tracker.id,
        statuses=[TaskStatus.COMPLETED],
        due_from=window_start,
        due_to=window_end,
    ))

    if completed:
        return {"streak_broken": False, "missed_count": 0, "previous_occurrence": previous}

    logger.info(
        f"Tracker {tracker.id} missed occurrence {previous.isoformat()} "
        f"before {occurrence.isoformat()}"
    )
    return {"streak_broken": True, "missed_count": 1, "previous_occurrence": previous}


def next_streak(current_streak: int, streak_broken: bool) -> int:
    """Streak length after a completion"""
    return 1 if streak_broken else current_streak + 1
