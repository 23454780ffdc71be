"""Persistence boundary for trackers and their tasks"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from uuid import UUID

from alpine.models.task import Task, TaskQuery
from alpine.models.tracker import Tracker


class TrackerStateStore(ABC):
    """
    Record store consumed by the engine.

    Every call is transactionally consistent on its own; the engine never
    spans a transaction across calls.

    Stores must enforce at most one non-archived task per
    (tracker_id, occurrence_key(due_date)) and report a conflict with
    DuplicateOccurrenceError. Tracker writes bump `version`; when
    `expected_version` is given and does not match, they raise
    ConcurrentUpdateError without writing anything.
    """

    async def open(self) -> None:
        """Acquire resources (connections, pools)"""

    async def close(self) -> None:
        """Release resources"""

    # Tasks

    @abstractmethod
    async def find_task(self, task_id: UUID) -> Optional[Task]:
        """Task by id, or None"""

    @abstractmethod
    async def find_tasks(self, query: TaskQuery) -> List[Task]:
        """Tasks matching the query, ordered by due date"""

    @abstractmethod
    async def create_task(self, task: Task) -> Task:
        """Insert a task; DuplicateOccurrenceError on occurrence conflict"""

    @abstractmethod
    async def update_task(self, task_id: UUID, fields: Dict[str, Any]) -> Task:
        """Update one task; RecordNotFoundError when missing"""

    @abstractmethod
    async def update_tasks(self, query: TaskQuery, fields: Dict[str, Any]) -> int:
        """Update every matching task, returning the count"""

    @abstractmethod
    async def delete_tasks(self, query: TaskQuery) -> int:
        """Delete every matching task, returning the count"""

    # Trackers

    @abstractmethod
    async def find_tracker(self, tracker_id: UUID) -> Optional[Tracker]:
        """Tracker by id, or None"""

    @abstractmethod
    async def create_tracker(self, tracker: Tracker) -> Tracker:
        """Insert a tracker"""

    @abstractmethod
    async def update_tracker(
        self,
        tracker_id: UUID,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Tracker:
        """Apply all fields in one write and return the stored tracker"""

    @abstractmethod
    async def delete_tracker(self, tracker_id: UUID) -> bool:
        """Delete a tracker, True when it existed"""

    @abstractmethod
    async def list_trackers(self) -> List[Tracker]:
        """All trackers"""

    @abstractmethod
    async def list_active_trackers(self) -> List[Tracker]:
        """Trackers with is_active set"""
