"""PostgreSQL tracker store (psycopg 3, async pool)"""
import json
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple
from uuid import UUID

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from alpine.config import DATABASE_URL, DB_POOL_MIN_SIZE, DB_POOL_MAX_SIZE
from alpine.exceptions import (
    ConcurrentUpdateError,
    RecordNotFoundError,
    StorageConnectionError,
    wrap_external_exception,
)
from alpine.models.task import Task, TaskQuery
from alpine.models.tracker import Tracker
from alpine.storage.base import TrackerStateStore
from alpine.utils.datetime_helpers import occurrence_key

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS trackers (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    icon TEXT NOT NULL DEFAULT '🎯',
    color TEXT NOT NULL DEFAULT '#805AD5',
    frequency TEXT NOT NULL DEFAULT 'daily',
    scheduled_time TEXT,
    scheduled_days JSONB,
    scheduled_dates_of_month JSONB,
    target_value INTEGER NOT NULL DEFAULT 1 CHECK (target_value >= 1),
    target_unit TEXT NOT NULL DEFAULT 'times',
    current_value INTEGER NOT NULL DEFAULT 0 CHECK (current_value >= 0),
    period_start_date TIMESTAMPTZ NOT NULL DEFAULT now(),
    total_xp INTEGER NOT NULL DEFAULT 0 CHECK (total_xp >= 0),
    level INTEGER NOT NULL DEFAULT 1 CHECK (level >= 1),
    current_streak INTEGER NOT NULL DEFAULT 0,
    best_streak INTEGER NOT NULL DEFAULT 0,
    last_completed_at TIMESTAMPTZ,
    last_occurrence_date TIMESTAMPTZ,
    total_completions INTEGER NOT NULL DEFAULT 0,
    total_periods INTEGER NOT NULL DEFAULT 0,
    successful_periods INTEGER NOT NULL DEFAULT 0,
    is_active BOOLEAN NOT NULL DEFAULT true,
    is_paused BOOLEAN NOT NULL DEFAULT false,
    generate_tasks BOOLEAN NOT NULL DEFAULT false,
    task_category_id INTEGER,
    task_urgency TEXT NOT NULL DEFAULT 'medium',
    version INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS tasks (
    id UUID PRIMARY KEY,
    title VARCHAR(255) NOT NULL,
    description TEXT,
    tracker_id UUID REFERENCES trackers(id) ON DELETE SET NULL,
    due_date TIMESTAMPTZ,
    occurrence_key TIMESTAMPTZ,
    status TEXT NOT NULL DEFAULT 'pending',
    urgency TEXT NOT NULL DEFAULT 'medium',
    category_id INTEGER,
    tags JSONB NOT NULL DEFAULT '[]',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE UNIQUE INDEX IF NOT EXISTS tasks_tracker_occurrence_uniq
    ON tasks (tracker_id, occurrence_key)
    WHERE status <> 'archived' AND tracker_id IS NOT NULL;

CREATE INDEX IF NOT EXISTS tasks_tracker_due_idx ON tasks (tracker_id, due_date);
"""

TRACKER_COLUMNS = tuple(name for name in Tracker.model_fields)
TASK_COLUMNS = tuple(name for name in Task.model_fields) + ("occurrence_key",)
JSON_COLUMNS = {"scheduled_days", "scheduled_dates_of_month", "tags"}
# Maintained by the UPDATE statements themselves
MANAGED_COLUMNS = {"id", "version", "updated_at"}


def _to_db(column: str, value: Any) -> Any:
    """Adapt a model value to its column"""
    if isinstance(value, Enum):
        return value.value
    if column in JSON_COLUMNS and value is not None:
        return json.dumps(value)
    return value


def _task_where(query: TaskQuery) -> Tuple[sql.Composable, List[Any]]:
    clauses: List[sql.Composable] = []
    params: List[Any] = []

    if query.tracker_id is not None:
        clauses.append(sql.SQL("tracker_id = %s"))
        params.append(query.tracker_id)
    if query.statuses is not None:
        clauses.append(sql.SQL("status = ANY(%s)"))
        params.append([s.value for s in query.statuses])
    if query.due_before is not None:
        clauses.append(sql.SQL("due_date < %s"))
        params.append(query.due_before)
    if query.due_from is not None:
        clauses.append(sql.SQL("due_date >= %s"))
        params.append(query.due_from)
    if query.due_to is not None:
        clauses.append(sql.SQL("due_date <= %s"))
        params.append(query.due_to)

    if not clauses:
        return sql.SQL("TRUE"), params
    return sql.SQL(" AND ").join(clauses), params


def _set_clause(fields: Dict[str, Any], allowed: Tuple[str, ...]) -> Tuple[List[sql.Composable], List[Any]]:
    assignments: List[sql.Composable] = []
    params: List[Any] = []
    for column, value in fields.items():
        if column in MANAGED_COLUMNS:
            continue
        if column not in allowed:
            raise ValueError(f"Unknown column: {column}")
        assignments.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
        params.append(_to_db(column, value))
    return assignments, params


class PostgresTrackerStore(TrackerStateStore):
    """Tracker store backed by a psycopg connection pool"""

    def __init__(
        self,
        connection_string: str = DATABASE_URL,
        min_size: int = DB_POOL_MIN_SIZE,
        max_size: int = DB_POOL_MAX_SIZE
    ):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[AsyncConnectionPool] = None

    async def open(self) -> None:
        """Initialize connection pool"""
        if self._pool is not None:
            return
        logger.info("Initializing database connection pool")
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=self.min_size,
            max_size=self.max_size,
            open=False
        )
        await self._pool.open()

    async def close(self) -> None:
        """Close connection pool"""
        if self._pool:
            logger.info("Closing database connection pool")
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Get database connection from pool"""
        if not self._pool:
            raise StorageConnectionError("Database pool not initialized", operation="connection")

        async with self._pool.connection() as conn:
            conn.row_factory = dict_row
            yield conn

    async def ensure_schema(self) -> None:
        """Create tables and the occurrence uniqueness index if missing"""
        try:
            async with self.connection() as conn:
                await conn.execute(SCHEMA_SQL)
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="ensure_schema")
        logger.info("Database schema ready")

    async def _fetch(self, operation: str, query: sql.Composable, params: List[Any]) -> List[dict]:
        try:
            async with self.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    rows = await cur.fetchall() if cur.description else []
                await conn.commit()
                return rows
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation, context={"query": str(query)})

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def find_task(self, task_id: UUID) -> Optional[Task]:
        rows = await self._fetch(
            "find_task",
            sql.SQL("SELECT * FROM tasks WHERE id = %s"),
            [task_id],
        )
        return Task.model_validate(rows[0]) if rows else None

    async def find_tasks(self, query: TaskQuery) -> List[Task]:
        where, params = _task_where(query)
        rows = await self._fetch(
            "find_tasks",
            sql.SQL("SELECT * FROM tasks WHERE {} ORDER BY due_date ASC NULLS LAST").format(where),
            params,
        )
        return [Task.model_validate(row) for row in rows]

    async def create_task(self, task: Task) -> Task:
        values = task.model_dump()
        values["occurrence_key"] = occurrence_key(task.due_date) if task.due_date else None
        columns = list(values)
        query = sql.SQL("INSERT INTO tasks ({}) VALUES ({}) RETURNING *").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        try:
            async with self.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, [_to_db(c, values[c]) for c in columns])
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="create_task",
                tracker_id=str(task.tracker_id) if task.tracker_id else None,
                context={"query": "INSERT INTO tasks"}
            )
        logger.debug(f"Created task {task.id} for tracker {task.tracker_id}")
        return Task.model_validate(row)

    def _task_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields = dict(fields)
        if "due_date" in fields:
            due_date = fields["due_date"]
            fields["occurrence_key"] = occurrence_key(due_date) if due_date else None
        return fields

    async def update_task(self, task_id: UUID, fields: Dict[str, Any]) -> Task:
        assignments, params = _set_clause(self._task_fields(fields), TASK_COLUMNS)
        assignments.append(sql.SQL("updated_at = now()"))
        query = sql.SQL("UPDATE tasks SET {} WHERE id = %s RETURNING *").format(
            sql.SQL(", ").join(assignments)
        )
        rows = await self._fetch("update_task", query, params + [task_id])
        if not rows:
            raise RecordNotFoundError(
                message=f"Task {task_id} not found",
                record_type="Task",
                record_id=task_id,
                operation="update_task"
            )
        return Task.model_validate(rows[0])

    async def update_tasks(self, query: TaskQuery, fields: Dict[str, Any]) -> int:
        assignments, params = _set_clause(self._task_fields(fields), TASK_COLUMNS)
        assignments.append(sql.SQL("updated_at = now()"))
        where, where_params = _task_where(query)
        statement = sql.SQL("UPDATE tasks SET {} WHERE {} RETURNING id").format(
            sql.SQL(", ").join(assignments), where
        )
        rows = await self._fetch("update_tasks", statement, params + where_params)
        return len(rows)

    async def delete_tasks(self, query: TaskQuery) -> int:
        where, params = _task_where(query)
        rows = await self._fetch(
            "delete_tasks",
            sql.SQL("DELETE FROM tasks WHERE {} RETURNING id").format(where),
            params,
        )
        return len(rows)

    # ------------------------------------------------------------------
    # Trackers
    # ------------------------------------------------------------------

    async def find_tracker(self, tracker_id: UUID) -> Optional[Tracker]:
        rows = await self._fetch(
            "find_tracker",
            sql.SQL("SELECT * FROM trackers WHERE id = %s"),
            [tracker_id],
        )
        return Tracker.model_validate(rows[0]) if rows else None

    async def create_tracker(self, tracker: Tracker) -> Tracker:
        values = tracker.model_dump()
        columns = list(values)
        query = sql.SQL("INSERT INTO trackers ({}) VALUES ({}) RETURNING *").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        rows = await self._fetch("create_tracker", query, [_to_db(c, values[c]) for c in columns])
        logger.info(f"Created tracker: {tracker.name} ({tracker.id})")
        return Tracker.model_validate(rows[0])

    async def update_tracker(
        self,
        tracker_id: UUID,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Tracker:
        assignments, params = _set_clause(fields, TRACKER_COLUMNS)
        assignments.append(sql.SQL("version = version + 1"))
        assignments.append(sql.SQL("updated_at = now()"))
        params.append(tracker_id)

        condition = sql.SQL("id = %s")
        if expected_version is not None:
            condition = sql.SQL("id = %s AND version = %s")
            params.append(expected_version)

        query = sql.SQL("UPDATE trackers SET {} WHERE {} RETURNING *").format(
            sql.SQL(", ").join(assignments), condition
        )
        rows = await self._fetch("update_tracker", query, params)
        if rows:
            return Tracker.model_validate(rows[0])

        current = await self.find_tracker(tracker_id)
        if current is None:
            raise RecordNotFoundError(
                message=f"Tracker {tracker_id} not found",
                record_type="Tracker",
                record_id=tracker_id,
                operation="update_tracker"
            )
        raise ConcurrentUpdateError(
            message=f"Tracker {tracker_id} changed since it was read",
            expected_version=expected_version,
            actual_version=current.version,
            tracker_id=str(tracker_id),
            operation="update_tracker"
        )

    async def delete_tracker(self, tracker_id: UUID) -> bool:
        rows = await self._fetch(
            "delete_tracker",
            sql.SQL("DELETE FROM trackers WHERE id = %s RETURNING id"),
            [tracker_id],
        )
        return bool(rows)

    async def list_trackers(self) -> List[Tracker]:
        rows = await self._fetch(
            "list_trackers",
            sql.SQL("SELECT * FROM trackers ORDER BY created_at ASC"),
            [],
        )
        return [Tracker.model_validate(row) for row in rows]

    async def list_active_trackers(self) -> List[Tracker]:
        rows = await self._fetch(
            "list_active_trackers",
            sql.SQL("SELECT * FROM trackers WHERE is_active = true ORDER BY created_at ASC"),
            [],
        )
        return [Tracker.model_validate(row) for row in rows]
