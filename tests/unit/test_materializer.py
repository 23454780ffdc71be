"""Unit tests for TaskMaterializer (alpine/services/materializer.py)"""
import asyncio
import pytest
from unittest.mock import AsyncMock, patch
from datetime import datetime, timezone

from alpine.models.task import TaskQuery, TaskStatus
from alpine.models.tracker import Urgency
from alpine.services.materializer import TaskMaterializer, build_occurrence_task
from alpine.storage.memory import InMemoryTrackerStore

UTC = timezone.utc


def at(day: int, hour: int = 9, minute: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


class InterleavingStore(InMemoryTrackerStore):
    """Yields to the event loop inside reads so concurrent sweeps interleave"""

    async def find_tasks(self, query):
        await asyncio.sleep(0)
        return await super().find_tasks(query)


async def tasks_of(store, tracker, *statuses):
    return await store.find_tasks(TaskQuery(
        tracker_id=tracker.id,
        statuses=list(statuses) or None,
    ))


# ============================================================================
# Task Building
# ============================================================================

def test_build_occurrence_task(make_tracker):
    tracker = make_tracker(task_urgency="high", task_category_id=4)

    task = build_occurrence_task(tracker, at(15))

    assert task.title == "Morning run"
    assert task.description == "Auto-generated task for tracker: Morning run"
    assert task.tracker_id == tracker.id
    assert task.due_date == at(15)
    assert task.urgency == Urgency.HIGH
    assert task.category_id == 4
    assert task.tags == ["tracked"]
    assert task.status == TaskStatus.PENDING


def test_build_occurrence_task_keeps_description(make_tracker):
    task = build_occurrence_task(make_tracker(description="5k easy"), at(15))

    assert task.description == "5k easy"


# ============================================================================
# Generation Sweep
# ============================================================================

@pytest.mark.asyncio
async def test_generation_is_idempotent(store, materializer, make_tracker):
    """Test a second sweep over the same instant creates nothing"""
    tracker = await store.create_tracker(make_tracker())

    first = await materializer.generate_recurring_tasks([tracker], at(15, 8))
    second = await materializer.generate_recurring_tasks([tracker], at(15, 8))

    assert (first.created, first.skipped) == (1, 0)
    assert (second.created, second.skipped) == (0, 1)
    assert [t.due_date for t in await tasks_of(store, tracker)] == [at(15)]


@pytest.mark.asyncio
async def test_weekly_sweep_creates_each_occurrence(store, materializer, make_tracker):
    tracker = await store.create_tracker(make_tracker(frequency="weekly", scheduled_days=[1, 3, 5]))

    result = await materializer.generate_recurring_tasks([tracker], at(16, 12))

    assert result.created == 3
    assert [t.due_date for t in await tasks_of(store, tracker)] == [at(15), at(17), at(19)]


@pytest.mark.asyncio
async def test_completed_occurrence_not_recreated(store, materializer, make_tracker, make_task):
    tracker = await store.create_tracker(make_tracker())
    await store.create_task(make_task(tracker, at(15), status=TaskStatus.COMPLETED))

    result = await materializer.generate_recurring_tasks([tracker], at(15, 10))

    assert result.created == 0
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_concurrent_sweeps_create_one_task(make_tracker):
    """Test racing sweeps that all pass the pre-check still leave one task"""
    store = InterleavingStore()
    materializer = TaskMaterializer(store)
    tracker = await store.create_tracker(make_tracker())

    results = await asyncio.gather(*(
        materializer.generate_recurring_tasks([tracker], at(15, 8)) for _ in range(5)
    ))

    assert sum(r.created for r in results) == 1
    assert sum(r.skipped for r in results) == 4
    assert all(not r.errors for r in results)
    assert len(await tasks_of(store, tracker)) == 1


@pytest.mark.asyncio
async def test_sweep_skips_non_generating_trackers(store, materializer, make_tracker):
    trackers = [
        await store.create_tracker(make_tracker(is_active=False)),
        await store.create_tracker(make_tracker(is_paused=True)),
        await store.create_tracker(make_tracker(generate_tasks=False)),
    ]

    result = await materializer.generate_recurring_tasks(trackers, at(15, 8))

    assert result.created == 0
    assert await store.find_tasks(TaskQuery()) == []


@pytest.mark.asyncio
async def test_sweep_isolates_tracker_failures(store, materializer, make_tracker):
    """Test one failing tracker is recorded and the rest still materialize"""
    broken = await store.create_tracker(make_tracker(name="Broken"))
    healthy = await store.create_tracker(make_tracker(name="Healthy"))

    with patch.object(
        materializer,
        "archive_stale_tasks",
        AsyncMock(side_effect=[RuntimeError("boom"), 0]),
    ):
        result = await materializer.generate_recurring_tasks([broken, healthy], at(15, 8))

    assert result.errors == [{"tracker_id": str(broken.id), "error": "boom"}]
    assert result.created == 1
    assert len(await tasks_of(store, healthy)) == 1


# ============================================================================
# Archival
# ============================================================================

@pytest.mark.asyncio
async def test_stale_tasks_archived(store, materializer, make_tracker, make_task):
    tracker = await store.create_tracker(make_tracker())
    stale = await store.create_task(make_task(tracker, at(14)))
    done = await store.create_task(make_task(tracker, at(13), status=TaskStatus.COMPLETED))
    current = await store.create_task(make_task(tracker, at(15)))

    archived = await materializer.archive_stale_tasks(tracker, at(15, 8))

    assert archived == 1
    assert (await store.find_task(stale.id)).status == TaskStatus.ARCHIVED
    assert (await store.find_task(done.id)).status == TaskStatus.COMPLETED
    assert (await store.find_task(current.id)).status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_weekly_archival_uses_week_start(store, materializer, make_tracker, make_task):
    """Test Monday's open task survives until the week ends"""
    tracker = await store.create_tracker(make_tracker(frequency="weekly", scheduled_days=[1, 3, 5]))
    monday = await store.create_task(make_task(tracker, at(15)))

    assert await materializer.archive_stale_tasks(tracker, at(19, 12)) == 0
    assert await materializer.archive_stale_tasks(tracker, at(22, 8)) == 1
    assert (await store.find_task(monday.id)).status == TaskStatus.ARCHIVED


@pytest.mark.asyncio
async def test_period_rollover_resets_progress(store, materializer, make_tracker):
    tracker = await store.create_tracker(make_tracker(
        target_value=3,
        current_value=2,
        last_completed_at=at(14, 9, 30),
    ))

    await materializer.archive_stale_tasks(tracker, at(15, 8))

    stored = await store.find_tracker(tracker.id)
    assert stored.current_value == 0
    assert stored.period_start_date == at(15, 0)


@pytest.mark.asyncio
async def test_no_rollover_within_period(store, materializer, make_tracker):
    tracker = await store.create_tracker(make_tracker(
        target_value=3,
        current_value=2,
        last_completed_at=at(15, 7, 30),
    ))

    await materializer.archive_stale_tasks(tracker, at(15, 8))

    assert (await store.find_tracker(tracker.id)).current_value == 2


# ============================================================================
# Creation Helpers
# ============================================================================

@pytest.mark.asyncio
async def test_create_all_scheduled_tasks(store, materializer, make_tracker):
    tracker = await store.create_tracker(make_tracker(frequency="monthly", scheduled_dates_of_month=[1, 15]))

    tasks = await materializer.create_all_scheduled_tasks(tracker, at(10))

    assert [t.due_date for t in tasks] == [at(1), at(15)]


@pytest.mark.asyncio
async def test_create_next_tracker_task(store, materializer, make_tracker, make_task):
    tracker = await store.create_tracker(make_tracker())
    completed = await store.create_task(make_task(tracker, at(15), status=TaskStatus.COMPLETED))

    next_task = await materializer.create_next_tracker_task(tracker, completed)

    assert next_task.due_date == at(16)


@pytest.mark.asyncio
async def test_create_next_tracker_task_skips_existing(store, materializer, make_tracker, make_task):
    tracker = await store.create_tracker(make_tracker())
    completed = await store.create_task(make_task(tracker, at(15), status=TaskStatus.COMPLETED))
    await store.create_task(make_task(tracker, at(16)))

    next_task = await materializer.create_next_tracker_task(tracker, completed)

    assert next_task.due_date == at(17)


@pytest.mark.asyncio
async def test_create_next_tracker_task_all_exist(store, materializer, make_tracker, make_task):
    tracker = await store.create_tracker(make_tracker())
    completed = await store.create_task(make_task(tracker, at(15), status=TaskStatus.COMPLETED))
    for day in (16, 17, 18):
        await store.create_task(make_task(tracker, at(day)))

    assert await materializer.create_next_tracker_task(tracker, completed) is None
