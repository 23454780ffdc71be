"""Unit tests for Streak System (alpine/gamification/streak_system.py)"""
import pytest
from unittest.mock import patch
from datetime import datetime, timezone, timedelta

from alpine.gamification.streak_system import check_missed_occurrence, next_streak
from alpine.models.task import TaskStatus

UTC = timezone.utc

MONDAY_9 = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)
SUNDAY_9 = datetime(2024, 1, 14, 9, 0, tzinfo=UTC)


# ============================================================================
# Missed Occurrence Tests
# ============================================================================

@pytest.mark.asyncio
async def test_no_previous_occurrence_keeps_streak(store, make_tracker):
    """Test first ever occurrence carries no streak penalty"""
    tracker = make_tracker(current_streak=0)

    with patch('alpine.gamification.streak_system.previous_scheduled_occurrence', return_value=None):
        result = await check_missed_occurrence(store, tracker, MONDAY_9)

    assert result == {"streak_broken": False, "missed_count": 0, "previous_occurrence": None}


@pytest.mark.asyncio
async def test_last_occurrence_date_matches_previous(store, make_tracker):
    tracker = make_tracker(current_streak=3, last_occurrence_date=SUNDAY_9)

    result = await check_missed_occurrence(store, tracker, MONDAY_9)

    assert result["streak_broken"] is False
    assert result["previous_occurrence"] == SUNDAY_9


@pytest.mark.asyncio
async def test_completed_task_within_tolerance(store, make_tracker, make_task):
    """Test a completed task 30s off the previous occurrence counts as kept"""
    tracker = make_tracker(current_streak=3)
    await store.create_task(make_task(
        tracker, SUNDAY_9 + timedelta(seconds=30), status=TaskStatus.COMPLETED
    ))

    result = await check_missed_occurrence(store, tracker, MONDAY_9)

    assert result["streak_broken"] is False


@pytest.mark.asyncio
async def test_pending_task_does_not_count(store, make_tracker, make_task):
    tracker = make_tracker(current_streak=3)
    await store.create_task(make_task(tracker, SUNDAY_9))

    result = await check_missed_occurrence(store, tracker, MONDAY_9)

    assert result["streak_broken"] is True
    assert result["missed_count"] == 1
    assert result["previous_occurrence"] == SUNDAY_9


@pytest.mark.asyncio
async def test_completed_task_outside_tolerance(store, make_tracker, make_task):
    tracker = make_tracker(current_streak=3)
    await store.create_task(make_task(
        tracker, SUNDAY_9 + timedelta(minutes=5), status=TaskStatus.COMPLETED
    ))

    result = await check_missed_occurrence(store, tracker, MONDAY_9)

    assert result["streak_broken"] is True


@pytest.mark.asyncio
async def test_other_trackers_tasks_ignored(store, make_tracker, make_task):
    tracker = make_tracker()
    other = make_tracker(name="Other")
    await store.create_task(make_task(other, SUNDAY_9, status=TaskStatus.COMPLETED))

    result = await check_missed_occurrence(store, tracker, MONDAY_9)

    assert result["streak_broken"] is True


# ============================================================================
# Streak Progression Tests
# ============================================================================

def test_next_streak_continues():
    assert next_streak(4, streak_broken=False) == 5


def test_next_streak_restarts_at_one():
    assert next_streak(4, streak_broken=True) == 1
    assert next_streak(0, streak_broken=True) == 1
