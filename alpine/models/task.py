"""Task models"""
from enum import Enum
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4
from pydantic import BaseModel, Field

from alpine.models.tracker import Urgency
from alpine.utils.datetime_helpers import now_utc


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARCHIVED = "archived"


OPEN_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
NON_ARCHIVED_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)


class Task(BaseModel):
    """Actionable task; tracker-originated tasks are materialized occurrences"""
    id: UUID = Field(default_factory=uuid4)
    title: str
    description: Optional[str] = None
    tracker_id: Optional[UUID] = None
    due_date: Optional[datetime] = None
    status: TaskStatus = TaskStatus.PENDING
    urgency: Urgency = Urgency.MEDIUM
    category_id: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


class TaskQuery(BaseModel):
    """
    Predicate over tasks understood by every store.

    All set criteria must hold. Due-date bounds skip tasks without a due date.
    """
    tracker_id: Optional[UUID] = None
    statuses: Optional[list[TaskStatus]] = None
    due_before: Optional[datetime] = None  # exclusive
    due_from: Optional[datetime] = None  # inclusive
    due_to: Optional[datetime] = None  # inclusive

    def matches(self, task: Task) -> bool:
        if self.tracker_id is not None and task.tracker_id != self.tracker_id:
            return False
        if self.statuses is not None and task.status not in self.statuses:
            return False
        if self.due_before is not None or self.due_from is not None or self.due_to is not None:
            if task.due_date is None:
                return False
            if self.due_before is not None and not task.due_date < self.due_before:
                return False
            if self.due_from is not None and task.due_date < self.due_from:
                return False
            if self.due_to is not None and task.due_date > self.due_to:
                return False
        return True
