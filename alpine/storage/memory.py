"""
In-memory tracker store

Keeps trackers and tasks in dicts. Used by the test suite and by
single-process deployments that do not need durability.

Each operation runs without awaiting in between its check and its write,
so under asyncio every call is atomic: concurrent create_task calls for the
same occurrence leave exactly one task.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from alpine.exceptions import (
    ConcurrentUpdateError,
    DuplicateOccurrenceError,
    RecordNotFoundError,
)
from alpine.models.task import Task, TaskQuery, TaskStatus
from alpine.models.tracker import Tracker
from alpine.storage.base import TrackerStateStore
from alpine.utils.datetime_helpers import now_utc, occurrence_key

logger = logging.getLogger(__name__)


def _sort_key(task: Task) -> Tuple[bool, datetime]:
    # Undated tasks last
    return (task.due_date is None, task.due_date or task.created_at)


class InMemoryTrackerStore(TrackerStateStore):
    """Dict-backed store with uniqueness and version checks"""

    def __init__(self):
        self._trackers: Dict[UUID, Tracker] = {}
        self._tasks: Dict[UUID, Task] = {}
        logger.debug("InMemoryTrackerStore initialized")

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _conflicting_task(self, task: Task, tasks: Optional[Dict[UUID, Task]] = None) -> Optional[Task]:
        """Another non-archived task holding the same occurrence slot"""
        if task.tracker_id is None or task.due_date is None or task.status == TaskStatus.ARCHIVED:
            return None
        key = occurrence_key(task.due_date)
        for other in (self._tasks if tasks is None else tasks).values():
            if (
                other.id != task.id
                and other.tracker_id == task.tracker_id
                and other.status != TaskStatus.ARCHIVED
                and other.due_date is not None
                and occurrence_key(other.due_date) == key
            ):
                return other
        return None

    async def find_task(self, task_id: UUID) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def find_tasks(self, query: TaskQuery) -> List[Task]:
        matches = [t.model_copy(deep=True) for t in self._tasks.values() if query.matches(t)]
        return sorted(matches, key=_sort_key)

    async def create_task(self, task: Task) -> Task:
        conflict = self._conflicting_task(task)
        if conflict is not None:
            raise DuplicateOccurrenceError(
                message=f"Task {conflict.id} already holds occurrence {task.due_date.isoformat()}",
                occurrence_key=occurrence_key(task.due_date).isoformat(),
                tracker_id=str(task.tracker_id),
                operation="create_task"
            )
        self._tasks[task.id] = task.model_copy(deep=True)
        logger.debug(f"Stored task {task.id} for tracker {task.tracker_id}")
        return task.model_copy(deep=True)

    def _apply_task_fields(
        self,
        task: Task,
        fields: Dict[str, Any],
        tasks: Optional[Dict[UUID, Task]] = None
    ) -> Task:
        updated = Task.model_validate({**task.model_dump(), **fields, "updated_at": now_utc()})
        conflict = self._conflicting_task(updated, tasks)
        if conflict is not None:
            raise DuplicateOccurrenceError(
                message=f"Task {conflict.id} already holds occurrence {updated.due_date.isoformat()}",
                occurrence_key=occurrence_key(updated.due_date).isoformat(),
                tracker_id=str(updated.tracker_id),
                operation="update_task"
            )
        return updated

    async def update_task(self, task_id: UUID, fields: Dict[str, Any]) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise RecordNotFoundError(
                message=f"Task {task_id} not found",
                record_type="Task",
                record_id=task_id,
                operation="update_task"
            )
        updated = self._apply_task_fields(task, fields)
        self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    async def update_tasks(self, query: TaskQuery, fields: Dict[str, Any]) -> int:
        # Stage the whole batch so a conflict leaves no partial update
        staged = dict(self._tasks)
        count = 0
        for task_id, task in self._tasks.items():
            if query.matches(task):
                staged[task_id] = self._apply_task_fields(task, fields, staged)
                count += 1
        self._tasks = staged
        return count

    async def delete_tasks(self, query: TaskQuery) -> int:
        doomed = [task_id for task_id, t in self._tasks.items() if query.matches(t)]
        for task_id in doomed:
            del self._tasks[task_id]
        return len(doomed)

    # ------------------------------------------------------------------
    # Trackers
    # ------------------------------------------------------------------

    async def find_tracker(self, tracker_id: UUID) -> Optional[Tracker]:
        tracker = self._trackers.get(tracker_id)
        return tracker.model_copy(deep=True) if tracker else None

    async def create_tracker(self, tracker: Tracker) -> Tracker:
        self._trackers[tracker.id] = tracker.model_copy(deep=True)
        return tracker.model_copy(deep=True)

    async def update_tracker(
        self,
        tracker_id: UUID,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Tracker:
        tracker = self._trackers.get(tracker_id)
        if tracker is None:
            raise RecordNotFoundError(
                message=f"Tracker {tracker_id} not found",
                record_type="Tracker",
                record_id=tracker_id,
                operation="update_tracker"
            )
        if expected_version is not None and tracker.version != expected_version:
            raise ConcurrentUpdateError(
                message=f"Tracker {tracker_id} changed since it was read",
                expected_version=expected_version,
                actual_version=tracker.version,
                tracker_id=str(tracker_id),
                operation="update_tracker"
            )

        updated = Tracker.model_validate({
            **tracker.model_dump(),
            **fields,
            "version": tracker.version + 1,
            "updated_at": now_utc(),
        })
        self._trackers[tracker_id] = updated
        return updated.model_copy(deep=True)

    async def delete_tracker(self, tracker_id: UUID) -> bool:
        return self._trackers.pop(tracker_id, None) is not None

    async def list_trackers(self) -> List[Tracker]:
        return [t.model_copy(deep=True) for t in self._trackers.values()]

    async def list_active_trackers(self) -> List[Tracker]:
        return [t.model_copy(deep=True) for t in self._trackers.values() if t.is_active]
