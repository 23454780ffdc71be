"""
TrackerService - Recurring goal operations

Entry points called by request handlers: lazy materialization, completing
and uncompleting occurrence tasks, and tracker lifecycle.

Completion and reversal of one tracker are serialized by a per-tracker
asyncio.Lock owned by this service, and every tracker write carries the
version it was computed from, so a write computed from a stale read fails
with ConcurrentUpdateError instead of losing an update.
"""

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel

from alpine.exceptions import (
    AlreadyCompletedThisPeriod,
    RecordNotFoundError,
    TrackerUnavailableError,
    ValidationError,
)
from alpine.gamification.engine import StreakGamificationEngine
from alpine.gamification.xp_system import get_streak_multiplier, get_xp_progress, round_half_up
from alpine.models.task import OPEN_STATUSES, Task, TaskQuery, TaskStatus
from alpine.models.tracker import SCHEDULE_FIELDS, Tracker, TrackerConfig
from alpine.scheduling.schedule import (
    current_occurrence,
    current_period,
    describe_schedule,
    next_scheduled_occurrences,
)
from alpine.services.materializer import MaterializationResult, TaskMaterializer
from alpine.storage.base import TrackerStateStore
from alpine.utils.datetime_helpers import Clock, SystemClock, is_same_day

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "name",
    "description",
    "icon",
    "color",
    "target_value",
    "target_unit",
    "frequency",
    "is_active",
    "is_paused",
    "generate_tasks",
    "task_category_id",
    "task_urgency",
    "scheduled_time",
    "scheduled_days",
    "scheduled_dates_of_month",
)

REOPEN_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


class CompletionResult(BaseModel):
    """Outcome of completing one occurrence"""
    task: Optional[Task] = None
    tracker: Tracker
    occurrence: datetime
    xp_earned: int
    multiplier: float
    leveled_up: bool
    new_level: int
    new_streak: int
    streak_broken: bool
    next_task: Optional[Task] = None
    next_task_error: Optional[str] = None


class ReversalResult(BaseModel):
    """Outcome of moving a task back out of `completed`"""
    task: Task
    tracker: Tracker
    reverted: bool


class CreatedTracker(BaseModel):
    tracker: Tracker
    tasks: List[Task]


class TrackerSummary(BaseModel):
    """Tracker with the computed fields shown next to it"""
    tracker: Tracker
    progress_percentage: int
    xp_progress: Dict[str, int]
    streak_multiplier: float
    schedule: str
    next_occurrence: Optional[datetime] = None
    pending_count: int = 0
    is_overdue: bool = False


class TrackerService:
    """
    Service for recurring trackers.

    Responsibilities:
    - Lazy, idempotent task materialization
    - Guarded completion with streak, XP and level updates
    - Reversal of completions (counters only)
    - Tracker creation, updates, reset, deletion
    """

    def __init__(
        self,
        store: TrackerStateStore,
        clock: Optional[Clock] = None,
        materializer: Optional[TaskMaterializer] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.materializer = materializer or TaskMaterializer(store)
        self.engine = StreakGamificationEngine(store)
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()
        logger.debug("TrackerService initialized")

    def _lock_for(self, tracker_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(tracker_id)
        if lock is None:
            lock = self._locks[tracker_id] = asyncio.Lock()
        return lock

    async def get_tracker(self, tracker_id: UUID) -> Tracker:
        """
        Raises:
            RecordNotFoundError: when the tracker does not exist
        """
        tracker = await self.store.find_tracker(tracker_id)
        if tracker is None:
            raise RecordNotFoundError(
                message=f"Tracker {tracker_id} not found",
                record_type="Tracker",
                record_id=tracker_id,
                operation="get_tracker"
            )
        return tracker

    # ========================================================================
    # Materialization
    # ========================================================================

    async def ensure_occurrences_materialized(
        self,
        trackers: Optional[Iterable[Tracker]] = None,
        now: Optional[datetime] = None
    ) -> MaterializationResult:
        """
        Create any missing tasks for the current period of each tracker.

        Args:
            trackers: Trackers to process (all active trackers when omitted)
            now: Reference instant (clock time when omitted)

        Returns:
            MaterializationResult with created/skipped/archived counts and
            per-tracker errors
        """
        now = now or self.clock.now()
        if trackers is None:
            trackers = await self.store.list_active_trackers()
        return await self.materializer.generate_recurring_tasks(trackers, now)

    # ========================================================================
    # Completion
    # ========================================================================

    async def complete_occurrence(
        self,
        tracker_id: UUID,
        task: Optional[Task],
        now: Optional[datetime] = None,
        value: int = 1
    ) -> CompletionResult:
        """
        Complete one occurrence of a tracker.

        The task is marked completed first. If the completion is rejected or
        the tracker write fails, the task's previous status is restored and
        the error propagates.

        Args:
            tracker_id: Tracker the occurrence belongs to
            task: Occurrence task being completed, or None to complete the
                current occurrence (see current_occurrence) without a task
            now: Completion instant (clock time when omitted)
            value: Progress amount

        Raises:
            CompletionRejectedError: when the completion may not register
            ConcurrentUpdateError: when the tracker changed underneath
            RecordNotFoundError: when the tracker does not exist
        """
        now = now or self.clock.now()
        if task is not None and task.tracker_id is not None and task.tracker_id != tracker_id:
            raise ValidationError(
                f"Task {task.id} belongs to tracker {task.tracker_id}, not {tracker_id}",
                field="task",
                value=str(task.id),
                tracker_id=str(tracker_id),
                operation="complete_occurrence"
            )

        async with self._lock_for(tracker_id):
            tracker = await self.get_tracker(tracker_id)

            completed_task = None
            if task is None:
                occurrence = current_occurrence(tracker, now)
            else:
                current = await self._get_task(task.id, "complete_occurrence")
                if current.status == TaskStatus.COMPLETED:
                    raise AlreadyCompletedThisPeriod(
                        message=f"Task {task.id} is already completed",
                        tracker_id=str(tracker_id),
                        operation="complete_occurrence"
                    )
                previous_status = current.status
                occurrence = current.due_date or current_occurrence(tracker, now)
                completed_task = await self.store.update_task(task.id, {"status": TaskStatus.COMPLETED})

            try:
                outcome = await self.engine.on_occurrence_completed(tracker, occurrence, now, value)
                updated = await self.store.update_tracker(
                    tracker.id, outcome.updates, expected_version=tracker.version
                )
            except Exception:
                if task is not None:
                    await self._restore_status(task, previous_status)
                raise

            result = CompletionResult(
                task=completed_task,
                tracker=updated,
                occurrence=occurrence,
                xp_earned=outcome.xp_earned,
                multiplier=outcome.multiplier,
                leveled_up=outcome.leveled_up,
                new_level=outcome.new_level,
                new_streak=outcome.new_streak,
                streak_broken=outcome.streak_broken,
            )

            if updated.generate_tasks and completed_task is not None:
                try:
                    result.next_task = await self.materializer.create_next_tracker_task(
                        updated, completed_task, now
                    )
                except Exception as e:
                    logger.error(f"Error creating next task for tracker {tracker_id}: {e}", exc_info=True)
                    result.next_task_error = str(e)

        return result

    async def _get_task(self, task_id: UUID, operation: str) -> Task:
        task = await self.store.find_task(task_id)
        if task is None:
            raise RecordNotFoundError(
                message=f"Task {task_id} not found",
                record_type="Task",
                record_id=task_id,
                operation=operation
            )
        return task

    async def _restore_status(self, task: Task, status: TaskStatus) -> None:
        try:
            await self.store.update_task(task.id, {"status": status})
            logger.info(f"Restored task {task.id} to '{status.value}' after rejected completion")
        except Exception as e:
            logger.error(f"Failed to restore status of task {task.id}: {e}", exc_info=True)

    async def uncomplete_occurrence(
        self,
        tracker_id: UUID,
        task: Task,
        new_status: Union[TaskStatus, str] = TaskStatus.PENDING
    ) -> ReversalResult:
        """
        Move a completed task back to pending / in_progress.

        Reverts the completion counters of the tracker. XP, level and streaks
        are kept. A task that is not completed only has its status changed.
        """
        new_status = TaskStatus(new_status)
        if new_status not in REOPEN_STATUSES:
            raise ValidationError(
                f"Cannot uncomplete a task into status '{new_status.value}'",
                field="new_status",
                value=new_status.value,
                tracker_id=str(tracker_id),
                operation="uncomplete_occurrence"
            )

        async with self._lock_for(tracker_id):
            tracker = await self.get_tracker(tracker_id)
            current = await self._get_task(task.id, "uncomplete_occurrence")
            was_completed = current.status == TaskStatus.COMPLETED
            reopened = await self.store.update_task(task.id, {"status": new_status})

            if not was_completed:
                return ReversalResult(task=reopened, tracker=tracker, reverted=False)

            updates = self.engine.on_occurrence_uncompleted(tracker)
            try:
                updated = await self.store.update_tracker(
                    tracker.id, updates, expected_version=tracker.version
                )
            except Exception:
                await self._restore_status(task, TaskStatus.COMPLETED)
                raise

        return ReversalResult(task=reopened, tracker=updated, reverted=True)

    async def log_progress(
        self,
        tracker_id: UUID,
        value: int = 1,
        now: Optional[datetime] = None
    ) -> CompletionResult:
        """
        Log progress against a tracker's current occurrence.

        Completes today's open task when there is one, otherwise the earliest
        open task due before the current period ends, otherwise the current
        occurrence without a task.
        """
        now = now or self.clock.now()
        tracker = await self.get_tracker(tracker_id)
        dated = await self.store.find_tasks(TaskQuery(
            tracker_id=tracker.id,
            statuses=list(OPEN_STATUSES),
            due_before=current_period(tracker, now).end,
        ))

        task = next((t for t in dated if is_same_day(t.due_date, now)), None)
        if task is None and dated:
            task = dated[0]

        return await self.complete_occurrence(tracker_id, task, now=now, value=value)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def create_tracker_with_initial_occurrences(
        self,
        config: Union[TrackerConfig, Dict[str, Any]],
        now: Optional[datetime] = None,
        strict: bool = False
    ) -> CreatedTracker:
        """
        Create a tracker and materialize its current period.

        Args:
            config: TrackerConfig or raw field dict
            now: Creation instant (clock time when omitted)
            strict: Reject malformed schedule fields instead of defaulting them

        Raises:
            ScheduleConfigInvalid: in strict mode, for malformed schedules
        """
        now = now or self.clock.now()
        if isinstance(config, dict):
            config = TrackerConfig.strict(**config) if strict else TrackerConfig(**config)

        tracker = await self.store.create_tracker(config.to_tracker(now))
        logger.info(f"Created tracker '{tracker.name}' ({tracker.frequency.value})")

        tasks: List[Task] = []
        if tracker.generates_now:
            tasks = await self.materializer.create_all_scheduled_tasks(tracker, now)

        return CreatedTracker(tracker=tracker, tasks=tasks)

    async def update_tracker(
        self,
        tracker_id: UUID,
        changes: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> Tracker:
        """
        Apply field changes to a tracker.

        When the schedule changes on a generating tracker, its open tasks are
        deleted, its completion state is cleared and the current period is
        materialized again.
        """
        now = now or self.clock.now()
        updates = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        ignored = set(changes) - set(updates)
        if ignored:
            logger.debug(f"Ignoring non-updatable tracker fields: {sorted(ignored)}")

        async with self._lock_for(tracker_id):
            tracker = await self.get_tracker(tracker_id)

            # Normalize through the model so "same schedule, different spelling" is not a change
            candidate = Tracker.model_validate({**tracker.model_dump(), **updates})
            schedule_changed = any(
                getattr(candidate, field) != getattr(tracker, field) for field in SCHEDULE_FIELDS
            )
            normalized = {field: getattr(candidate, field) for field in updates}

            updated = await self.store.update_tracker(tracker.id, normalized, expected_version=tracker.version)

            if schedule_changed and updated.generate_tasks:
                deleted = await self.store.delete_tasks(TaskQuery(
                    tracker_id=tracker.id,
                    statuses=list(OPEN_STATUSES),
                ))
                updated = await self.store.update_tracker(
                    tracker.id,
                    {"last_completed_at": None, "current_value": 0},
                    expected_version=updated.version,
                )
                tasks = await self.materializer.create_all_scheduled_tasks(updated, now)
                logger.info(
                    f"Tracker '{updated.name}' schedule updated: deleted {deleted} old tasks, "
                    f"created {len(tasks)} new tasks"
                )

        return updated

    async def reset_tracker(self, tracker_id: UUID) -> Tracker:
        """Clear the current occurrence's progress"""
        async with self._lock_for(tracker_id):
            tracker = await self.get_tracker(tracker_id)
            return await self.store.update_tracker(
                tracker.id,
                {"current_value": 0, "last_completed_at": None},
                expected_version=tracker.version,
            )

    async def _detach_tasks(self, tracker_id: UUID) -> int:
        detached = await self.store.update_tasks(TaskQuery(tracker_id=tracker_id), {"tracker_id": None})
        logger.info(f"Detached {detached} task(s) from tracker {tracker_id}")
        return detached

    async def delete_tracker(self, tracker_id: UUID) -> None:
        """Delete a tracker; its tasks are kept, unlinked"""
        async with self._lock_for(tracker_id):
            await self.get_tracker(tracker_id)
            await self._detach_tasks(tracker_id)
            await self.store.delete_tracker(tracker_id)
        logger.info(f"Deleted tracker {tracker_id}")

    async def deactivate_tracker(self, tracker_id: UUID) -> Tracker:
        """Stop a tracker; its tasks are kept, unlinked"""
        async with self._lock_for(tracker_id):
            tracker = await self.get_tracker(tracker_id)
            await self._detach_tasks(tracker_id)
            return await self.store.update_tracker(
                tracker.id, {"is_active": False}, expected_version=tracker.version
            )

    async def generate_task_now(self, tracker_id: UUID, now: Optional[datetime] = None) -> Task:
        """
        Create the task for the tracker's next upcoming occurrence.

        Returns the existing task when that occurrence already has one.

        Raises:
            TrackerUnavailableError: when the tracker is inactive or paused
        """
        now = now or self.clock.now()
        tracker = await self.get_tracker(tracker_id)

        if not tracker.is_active:
            raise TrackerUnavailableError(
                f"Tracker '{tracker.name}' is not active",
                reason="inactive",
                tracker_id=str(tracker.id),
                operation="generate_task_now"
            )
        if tracker.is_paused:
            raise TrackerUnavailableError(
                f"Tracker '{tracker.name}' is paused",
                reason="paused",
                tracker_id=str(tracker.id),
                operation="generate_task_now"
            )

        occurrence = next_scheduled_occurrences(tracker, now, 1)[0]
        task = await self.materializer.create_occurrence_task(tracker, occurrence)
        if task is None:
            task = await self.materializer.find_occurrence_task(tracker.id, occurrence)
        return task

    # ========================================================================
    # Read models
    # ========================================================================

    async def list_tracker_tasks(
        self,
        tracker_id: UUID,
        status: Optional[Union[TaskStatus, str]] = None
    ) -> List[Task]:
        statuses = [TaskStatus(status)] if status is not None else None
        return await self.store.find_tasks(TaskQuery(tracker_id=tracker_id, statuses=statuses))

    async def describe_tracker(self, tracker_id: UUID, now: Optional[datetime] = None) -> TrackerSummary:
        now = now or self.clock.now()
        tracker = await self.get_tracker(tracker_id)

        open_tasks = await self.store.find_tasks(TaskQuery(
            tracker_id=tracker.id,
            statuses=list(OPEN_STATUSES),
        ))
        first_due = open_tasks[0].due_date if open_tasks else None

        return TrackerSummary(
            tracker=tracker,
            progress_percentage=min(100, round_half_up(tracker.current_value / tracker.target_value * 100)),
            xp_progress=get_xp_progress(tracker.total_xp, tracker.level),
            streak_multiplier=get_streak_multiplier(tracker.current_streak),
            schedule=describe_schedule(tracker),
            next_occurrence=next_scheduled_occurrences(tracker, now, 1)[0],
            pending_count=len(open_tasks),
            is_overdue=first_due is not None and first_due < now,
        )

    async def overall_stats(self) -> Dict[str, Any]:
        """
        Totals across active trackers

        Returns:
            {
                'total_trackers': int,
                'total_xp': int,
                'total_completions': int,
                'avg_level': int,
                'longest_streak': int,
                'active_streaks': int
            }
        """
        trackers = await self.store.list_active_trackers()

        return {
            "total_trackers": len(trackers),
            "total_xp": sum(t.total_xp for t in trackers),
            "total_completions": sum(t.total_completions for t in trackers),
            "avg_level": round_half_up(sum(t.level for t in trackers) / len(trackers)) if trackers else 1,
            "longest_streak": max((t.best_streak for t in trackers), default=0),
            "active_streaks": sum(1 for t in trackers if t.current_streak > 0),
        }
