"""Tracker and task persistence"""

from alpine.storage.base import TrackerStateStore
from alpine.storage.memory import InMemoryTrackerStore
from alpine.storage.provider import StoreProvider

__all__ = [
    "TrackerStateStore",
    "InMemoryTrackerStore",
    "StoreProvider",
]
