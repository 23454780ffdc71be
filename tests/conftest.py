"""Global test fixtures and utilities for tracker engine tests"""
import pytest
from unittest.mock import AsyncMock, Mock
from datetime import datetime, timezone

from alpine.models.tracker import Tracker
from alpine.models.task import Task
from alpine.services.materializer import TaskMaterializer
from alpine.services.tracker_service import TrackerService
from alpine.storage.memory import InMemoryTrackerStore
from alpine.utils.datetime_helpers import FixedClock


def utc(*args) -> datetime:
    """Shorthand for an aware UTC datetime"""
    return datetime(*args, tzinfo=timezone.utc)


# ============================================================================
# Time Fixtures
# ============================================================================

@pytest.fixture
def monday_morning():
    """Monday 2024-01-15 08:00 UTC, an hour before the default scheduled time"""
    return utc(2024, 1, 15, 8, 0)


@pytest.fixture
def clock(monday_morning):
    """Clock pinned to Monday morning"""
    return FixedClock(monday_morning)


# ============================================================================
# Store & Service Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Fresh in-memory tracker store"""
    return InMemoryTrackerStore()


@pytest.fixture
def materializer(store):
    return TaskMaterializer(store)


@pytest.fixture
def service(store, clock, materializer):
    return TrackerService(store, clock, materializer)


# ============================================================================
# Tracker & Task Factories
# ============================================================================

@pytest.fixture
def make_tracker(monday_morning):
    """Build an unsaved tracker; keyword arguments override defaults"""
    def _make(**overrides) -> Tracker:
        data = {
            "name": "Morning run",
            "frequency": "daily",
            "scheduled_time": "09:00",
            "generate_tasks": True,
            "period_start_date": monday_morning,
            "created_at": monday_morning,
            "updated_at": monday_morning,
        }
        data.update(overrides)
        return Tracker(**data)
    return _make


@pytest.fixture
def make_task():
    """Build an unsaved task for a tracker"""
    def _make(tracker: Tracker, due_date: datetime, **overrides) -> Task:
        data = {
            "title": tracker.name,
            "tracker_id": tracker.id,
            "due_date": due_date,
        }
        data.update(overrides)
        return Task(**data)
    return _make


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def mock_db_cursor():
    """Mock database cursor with standard query results"""
    cursor = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=None)
    cursor.fetchall = AsyncMock(return_value=[])
    cursor.execute = AsyncMock()
    cursor.description = None
    return cursor


@pytest.fixture
def mock_db_pool():
    """Mock database connection pool"""
    pool = Mock()
    pool.open = AsyncMock()
    pool.close = AsyncMock()
    return pool
