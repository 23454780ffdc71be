"""
TaskMaterializer - Occurrence-based task generation

Each scheduled occurrence of a tracker becomes one actionable task:
- a daily tracker gets one task per day
- a weekly Mon/Wed/Fri tracker gets three tasks per week
- a monthly 1st/15th tracker gets two tasks per month

Materialization is lazy and idempotent. It runs whenever tasks are listed,
so it may run concurrently; the store's uniqueness constraint on
(tracker_id, occurrence_key) guarantees at most one non-archived task per
occurrence, and a lost race is counted as skipped.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from alpine.config import (
    DUE_DATE_TOLERANCE_SECONDS,
    NEXT_OCCURRENCE_LOOKAHEAD,
    TRACKED_TAG_NAME,
)
from alpine.exceptions import ConcurrentUpdateError, DuplicateOccurrenceError
from alpine.models.task import NON_ARCHIVED_STATUSES, OPEN_STATUSES, Task, TaskQuery, TaskStatus
from alpine.models.tracker import Tracker
from alpine.scheduling.schedule import (
    current_period,
    next_scheduled_occurrences,
    occurrences_in_current_period,
)
from alpine.storage.base import TrackerStateStore
from alpine.utils.datetime_helpers import tolerance_window, within_tolerance

logger = logging.getLogger(__name__)


class MaterializationResult(BaseModel):
    """Counts from one materialization sweep"""
    created: int = 0
    skipped: int = 0
    archived: int = 0
    created_task_ids: List[UUID] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)


def build_occurrence_task(tracker: Tracker, due_date: datetime) -> Task:
    """Task for one occurrence, carrying the tracker's hints and the tracked tag"""
    return Task(
        title=tracker.name,
        description=tracker.description or f"Auto-generated task for tracker: {tracker.name}",
        tracker_id=tracker.id,
        due_date=due_date,
        urgency=tracker.task_urgency,
        category_id=tracker.task_category_id,
        tags=[TRACKED_TAG_NAME],
    )


class TaskMaterializer:
    """
    Turns scheduled occurrences into tasks.

    Responsibilities:
    - Archive stale open tasks from earlier periods
    - Create missing tasks for the current period's occurrences
    - Create the follow-up task after a completion
    """

    def __init__(self, store: TrackerStateStore, tolerance_seconds: int = DUE_DATE_TOLERANCE_SECONDS):
        self.store = store
        self.tolerance_seconds = tolerance_seconds
        logger.debug("TaskMaterializer initialized")

    # ========================================================================
    # Archival
    # ========================================================================

    async def archive_stale_tasks(self, tracker: Tracker, now: datetime) -> int:
        """
        Archive open tasks due before the current period and roll the period over.

        Args:
            tracker: Tracker to clean up
            now: Reference instant

        Returns:
            Number of tasks archived
        """
        period = current_period(tracker, now)

        archived = await self.store.update_tasks(
            TaskQuery(
                tracker_id=tracker.id,
                statuses=list(OPEN_STATUSES),
                due_before=period.start,
            ),
            {"status": TaskStatus.ARCHIVED},
        )
        if archived:
            logger.info(f"Archived {archived} stale task(s) for tracker {tracker.id}")

        rolled_over = (
            tracker.last_completed_at is not None
            and tracker.last_completed_at < period.start
            and tracker.current_value > 0
        )
        if rolled_over:
            try:
                await self.store.update_tracker(
                    tracker.id,
                    {"current_value": 0, "period_start_date": period.start},
                    expected_version=tracker.version,
                )
                logger.info(f"Tracker {tracker.id} rolled over to period starting {period.start.isoformat()}")
            except ConcurrentUpdateError:
                # A concurrent write owns this tracker; the next sweep retries
                logger.debug(f"Skipped period rollover for tracker {tracker.id}")

        return archived

    # ========================================================================
    # Task creation
    # ========================================================================

    async def find_occurrence_task(self, tracker_id: UUID, due_date: datetime) -> Optional[Task]:
        """Non-archived task due within the tolerance window of `due_date`"""
        window_start, window_end = tolerance_window(due_date, self.tolerance_seconds)
        tasks = await self.store.find_tasks(TaskQuery(
            tracker_id=tracker_id,
            statuses=list(NON_ARCHIVED_STATUSES),
            due_from=window_start,
            due_to=window_end,
        ))
        return tasks[0] if tasks else None

    async def create_occurrence_task(self, tracker: Tracker, due_date: datetime) -> Optional[Task]:
        """
        Create the task for one occurrence unless it already exists

        Returns:
            The new task, or None when a task for the occurrence exists
        """
        if await self.find_occurrence_task(tracker.id, due_date) is not None:
            return None

        try:
            task = await self.store.create_task(build_occurrence_task(tracker, due_date))
        except DuplicateOccurrenceError:
            # Lost the race to a concurrent materialization
            return None

        logger.info(f"Created task '{task.title}' for tracker {tracker.id} due {due_date.isoformat()}")
        return task

    async def create_all_scheduled_tasks(self, tracker: Tracker, now: datetime) -> List[Task]:
        """Materialize every occurrence of the current period (tracker creation)"""
        tasks = []
        for occurrence in occurrences_in_current_period(tracker, now):
            task = await self.create_occurrence_task(tracker, occurrence)
            if task is not None:
                tasks.append(task)

        logger.info(f"Created {len(tasks)} initial task(s) for tracker '{tracker.name}'")
        return tasks

    async def create_next_tracker_task(
        self,
        tracker: Tracker,
        completed_task: Task,
        now: Optional[datetime] = None
    ) -> Optional[Task]:
        """
        Create the task for the first upcoming occurrence that has none

        Looks at the next few occurrences after the completed task's due
        date (or `now` for undated tasks).

        Returns:
            The new task, or None when upcoming tasks already exist
        """
        anchor = completed_task.due_date or now
        if anchor is None:
            return None

        for occurrence in next_scheduled_occurrences(tracker, anchor, NEXT_OCCURRENCE_LOOKAHEAD):
            if within_tolerance(occurrence, completed_task.due_date, self.tolerance_seconds):
                continue
            task = await self.create_occurrence_task(tracker, occurrence)
            if task is not None:
                return task

        logger.info(f"No new task needed for tracker '{tracker.name}' - upcoming tasks already exist")
        return None

    # ========================================================================
    # Sweep
    # ========================================================================

    async def materialize_tracker(self, tracker: Tracker, now: datetime, result: MaterializationResult) -> None:
        result.archived += await self.archive_stale_tasks(tracker, now)

        for occurrence in occurrences_in_current_period(tracker, now):
            task = await self.create_occurrence_task(tracker, occurrence)
            if task is None:
                result.skipped += 1
            else:
                result.created += 1
                result.created_task_ids.append(task.id)

    async def generate_recurring_tasks(
        self,
        trackers: Iterable[Tracker],
        now: datetime
    ) -> MaterializationResult:
        """
        Bring every generating tracker's current period up to date.

        Failures are isolated per tracker: they are logged and recorded in
        `errors`, and the sweep continues with the next tracker.
        """
        result = MaterializationResult()

        for tracker in trackers:
            if not tracker.generates_now:
                continue
            try:
                await self.materialize_tracker(tracker, now, result)
            except Exception as e:
                logger.error(f"Error generating tasks for tracker {tracker.id}: {e}", exc_info=True)
                result.errors.append({"tracker_id": str(tracker.id), "error": str(e)})

        if result.created or result.archived:
            logger.info(
                f"Task generation: {result.created} created, "
                f"{result.archived} archived, {result.skipped} skipped"
            )
        return result
