"""Tracker and task models"""

from alpine.models.tracker import Frequency, Urgency, Tracker, TrackerConfig, SCHEDULE_FIELDS
from alpine.models.task import Task, TaskQuery, TaskStatus, OPEN_STATUSES, NON_ARCHIVED_STATUSES

__all__ = [
    "Frequency",
    "Urgency",
    "Tracker",
    "TrackerConfig",
    "SCHEDULE_FIELDS",
    "Task",
    "TaskQuery",
    "TaskStatus",
    "OPEN_STATUSES",
    "NON_ARCHIVED_STATUSES",
]
