"""SQLiteStorage: aiosqlite implementation of the Storage contract."""

from __future__ import annotations

import functools
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import aiosqlite

from keepalive.config import settings
from keepalive.logs.models import ExecutionLog, LogQuery, LogSummary
from keepalive.notifications.models import NotificationSettings
from keepalive.storage.base import StoreResult, TaskFilter
from keepalive.tasks.models import Task

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('keepalive', 'notification')),
        schedule TEXT NOT NULL,
        config TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        created_by TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        last_executed TEXT,
        last_status TEXT CHECK (last_status IN ('success', 'failure'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS execution_logs (
        id TEXT PRIMARY KEY,
        task_id TEXT,
        log_type TEXT NOT NULL DEFAULT 'execution'
            CHECK (log_type IN ('execution', 'system', 'audit')),
        execution_time TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('success', 'failure')),
        response_time INTEGER,
        status_code INTEGER,
        error_message TEXT,
        details TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_execution_logs_task_id ON execution_logs(task_id)",
    "CREATE INDEX IF NOT EXISTS idx_execution_logs_log_type ON execution_logs(log_type)",
    "CREATE INDEX IF NOT EXISTS idx_execution_logs_time ON execution_logs(execution_time)",
    """
    CREATE TABLE IF NOT EXISTS notification_settings (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE,
        email_enabled INTEGER NOT NULL DEFAULT 0,
        email_address TEXT,
        email_api_key TEXT,
        webhook_enabled INTEGER NOT NULL DEFAULT 0,
        webhook_url TEXT,
        notifyx_enabled INTEGER NOT NULL DEFAULT 0,
        notifyx_api_key TEXT,
        failure_threshold INTEGER NOT NULL DEFAULT 3,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)

_TASK_COLUMNS = (
    "id, name, type, schedule, config, enabled, created_by, "
    "created_at, updated_at, last_executed, last_status"
)
_LOG_COLUMNS = (
    "id, task_id, log_type, execution_time, status, "
    "response_time, status_code, error_message, details"
)
_SETTINGS_COLUMNS = (
    "id, user_id, email_enabled, email_address, email_api_key, webhook_enabled, "
    "webhook_url, notifyx_enabled, notifyx_api_key, failure_threshold, created_at, updated_at"
)

_TABLES = ("tasks", "execution_logs", "notification_settings")

# Columns a partial task update may touch.
_UPDATABLE_TASK_FIELDS = {
    "name",
    "type",
    "schedule",
    "config",
    "enabled",
    "last_executed",
    "last_status",
}


def _store_call(op: str) -> Callable:
    """Turn exceptions raised by a storage method into a failed StoreResult."""

    def decorator(fn: Callable[..., Awaitable[StoreResult]]) -> Callable[..., Awaitable[StoreResult]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> StoreResult:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                logger.exception("Storage operation failed: %s", op)
                return StoreResult.fail(f"{op} failed: {exc}")

        return wrapper

    return decorator


def _encode_task_field(name: str, value: Any) -> Any:
    if name == "config":
        return json.dumps(value)
    if name == "enabled":
        return int(bool(value))
    return value


class SQLiteStorage:
    """Persists tasks, execution logs and notification settings in SQLite.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    async def _fetch_task(self, db: aiosqlite.Connection, task_id: str) -> Task | None:
        cursor = await db.execute(f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        return Task.from_row(row) if row else None

    # -- Tasks -----------------------------------------------------------------

    @_store_call("get_task_by_id")
    async def get_task_by_id(self, task_id: str) -> StoreResult[Task]:
        db = await self._connect()
        try:
            return StoreResult.ok(await self._fetch_task(db, task_id))
        finally:
            await db.close()

    @_store_call("get_all_tasks")
    async def get_all_tasks(self, task_filter: TaskFilter | None = None) -> StoreResult[list[Task]]:
        clauses: list[str] = []
        params: list[Any] = []
        if task_filter is not None:
            if task_filter.type is not None:
                clauses.append("type = ?")
                params.append(task_filter.type)
            if task_filter.enabled is not None:
                clauses.append("enabled = ?")
                params.append(int(task_filter.enabled))
            if task_filter.created_by is not None:
                clauses.append("created_by = ?")
                params.append(task_filter.created_by)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks{where} ORDER BY created_at DESC",
                tuple(params),
            )
            rows = await cursor.fetchall()
            return StoreResult.ok([Task.from_row(row) for row in rows])
        finally:
            await db.close()

    @_store_call("create_task")
    async def create_task(self, task: Task) -> StoreResult[Task]:
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO tasks ({_TASK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                task.to_row(),
            )
            await db.commit()
            logger.info("Created task: %s (%s)", task.name, task.id)
            return StoreResult.ok(task)
        finally:
            await db.close()

    @_store_call("update_task")
    async def update_task(self, task_id: str, fields: dict[str, Any]) -> StoreResult[Task]:
        unknown = set(fields) - _UPDATABLE_TASK_FIELDS
        if unknown:
            return StoreResult.fail(f"Cannot update task fields: {', '.join(sorted(unknown))}")

        updates = dict(fields)
        updates["updated_at"] = datetime.now(UTC).isoformat()
        assignments = ", ".join(f"{name} = ?" for name in updates)
        params = tuple(_encode_task_field(name, value) for name, value in updates.items())

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?", (*params, task_id)
            )
            await db.commit()
            if cursor.rowcount == 0:
                return StoreResult.fail(f"Task not found: {task_id}")
            return StoreResult.ok(await self._fetch_task(db, task_id))
        finally:
            await db.close()

    @_store_call("delete_task")
    async def delete_task(self, task_id: str) -> StoreResult[bool]:
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            await db.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("Deleted task: %s", task_id)
            return StoreResult.ok(deleted)
        finally:
            await db.close()

    # -- Execution logs --------------------------------------------------------

    @_store_call("create_execution_log")
    async def create_execution_log(self, log: ExecutionLog) -> StoreResult[ExecutionLog]:
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO execution_logs ({_LOG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                log.to_row(),
            )
            await db.commit()
            return StoreResult.ok(log)
        finally:
            await db.close()

    @_store_call("get_execution_logs_by_task_id")
    async def get_execution_logs_by_task_id(
        self, task_id: str, limit: int = 100
    ) -> StoreResult[list[ExecutionLog]]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_LOG_COLUMNS} FROM execution_logs
                WHERE task_id = ? AND log_type = 'execution'
                ORDER BY execution_time DESC, rowid DESC
                LIMIT ?
                """,
                (task_id, limit),
            )
            rows = await cursor.fetchall()
            return StoreResult.ok([ExecutionLog.from_row(row) for row in rows])
        finally:
            await db.close()

    @_store_call("query_logs")
    async def query_logs(self, query: LogQuery) -> StoreResult[list[ExecutionLog]]:
        clauses: list[str] = []
        params: list[Any] = []
        if query.task_id is not None:
            clauses.append("l.task_id = ?")
            params.append(query.task_id)
        if query.task_type is not None:
            clauses.append("t.type = ?")
            params.append(query.task_type)
        if query.log_type is not None:
            clauses.append("l.log_type = ?")
            params.append(query.log_type)
        if query.status is not None:
            clauses.append("l.status = ?")
            params.append(query.status)
        if query.start_time is not None:
            clauses.append("l.execution_time >= ?")
            params.append(query.start_time)
        if query.end_time is not None:
            clauses.append("l.execution_time <= ?")
            params.append(query.end_time)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        columns = ", ".join(f"l.{c.strip()}" for c in _LOG_COLUMNS.split(","))

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {columns} FROM execution_logs l
                LEFT JOIN tasks t ON t.id = l.task_id
                {where}
                ORDER BY l.execution_time DESC, l.rowid DESC
                LIMIT ? OFFSET ?
                """,
                (*params, query.limit, query.offset),
            )
            rows = await cursor.fetchall()
            return StoreResult.ok([ExecutionLog.from_row(row) for row in rows])
        finally:
            await db.close()

    @_store_call("summarize_logs")
    async def summarize_logs(
        self, log_type: str = "execution", since: str | None = None
    ) -> StoreResult[LogSummary]:
        clauses = ["log_type = ?"]
        params: list[Any] = [log_type]
        if since is not None:
            clauses.append("execution_time >= ?")
            params.append(since)

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT COUNT(*),
                       COALESCE(SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END), 0),
                       AVG(response_time)
                FROM execution_logs
                WHERE {' AND '.join(clauses)}
                """,
                params,
            )
            total, succeeded, average = await cursor.fetchone()
            return StoreResult.ok(
                LogSummary(total=total, succeeded=succeeded, average_response_time=average)
            )
        finally:
            await db.close()

    @_store_call("get_table_counts")
    async def get_table_counts(self) -> StoreResult[dict[str, int]]:
        db = await self._connect()
        try:
            counts: dict[str, int] = {}
            for table in _TABLES:
                cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
                (counts[table],) = await cursor.fetchone()
            return StoreResult.ok(counts)
        finally:
            await db.close()

    # -- Notification settings -------------------------------------------------

    @_store_call("get_notification_settings_by_user_id")
    async def get_notification_settings_by_user_id(
        self, user_id: str
    ) -> StoreResult[NotificationSettings]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_SETTINGS_COLUMNS} FROM notification_settings WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
            return StoreResult.ok(NotificationSettings.from_row(row) if row else None)
        finally:
            await db.close()

    @_store_call("save_notification_settings")
    async def save_notification_settings(
        self, notification_settings: NotificationSettings
    ) -> StoreResult[NotificationSettings]:
        notification_settings.updated_at = datetime.now(UTC).isoformat()
        db = await self._connect()
        try:
            await db.execute(
                f"""
                INSERT INTO notification_settings ({_SETTINGS_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    email_enabled = excluded.email_enabled,
                    email_address = excluded.email_address,
                    email_api_key = excluded.email_api_key,
                    webhook_enabled = excluded.webhook_enabled,
                    webhook_url = excluded.webhook_url,
                    notifyx_enabled = excluded.notifyx_enabled,
                    notifyx_api_key = excluded.notifyx_api_key,
                    failure_threshold = excluded.failure_threshold,
                    updated_at = excluded.updated_at
                """,
                notification_settings.to_row(),
            )
            await db.commit()
            return StoreResult.ok(notification_settings)
        finally:
            await db.close()
