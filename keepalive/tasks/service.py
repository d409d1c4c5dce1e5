"""Task management with ownership checks, validation and auditing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from keepalive.config import settings
from keepalive.scheduler.rules import validate_rule
from keepalive.storage.base import StoreResult, TaskFilter
from keepalive.tasks.models import (
    TASK_TYPES,
    Task,
    TaskConfigError,
    make_id,
    parse_task_config,
    round_half_up,
)

if TYPE_CHECKING:
    from keepalive.logs.service import LogService
    from keepalive.storage.base import Storage

logger = logging.getLogger(__name__)

TASK_NOT_FOUND = "Task not found"
NOT_PERMITTED = "Not permitted"

_MUTABLE_FIELDS = {"name", "type", "schedule", "config", "enabled"}
_STATISTICS_WINDOW = 1000


@dataclass
class TaskStatistics:
    total_executions: int
    success_count: int
    failure_count: int
    average_response_time: int
    last_execution: str | None = None


def _normalize_schedule(schedule: Any) -> str:
    """Interval rules are stored as JSON text, cron strings as-is."""
    if isinstance(schedule, dict):
        return json.dumps(schedule)
    if isinstance(schedule, str):
        return schedule.strip()
    msg = "schedule must be a cron string or an interval rule object"
    raise ValueError(msg)


class TaskService:
    """User-facing task management.

    Only a task's creator may update, delete or toggle it. Schedules and
    configs are validated before anything is written, and every successful
    mutation leaves an audit log entry.

    Args:
        storage: Storage backend.
        log_service: Audit log sink.
    """

    def __init__(self, storage: Storage, log_service: LogService) -> None:
        self._storage = storage
        self._log_service = log_service

    def _validate(self, task_type: str, schedule: str, config: Any) -> str | None:
        if task_type not in TASK_TYPES:
            return f"Unknown task type: {task_type!r}"
        problem = validate_rule(schedule, tz=settings.scheduler_timezone)
        if problem:
            return f"Invalid schedule: {problem}"
        try:
            parse_task_config(task_type, config)
        except TaskConfigError as exc:
            return str(exc)
        return None

    async def create_task(self, data: dict[str, Any], user_id: str) -> StoreResult[Task]:
        """Create a task owned by *user_id* from ``name/type/schedule/config/enabled``."""
        name = str(data.get("name") or "").strip()
        if not name:
            return StoreResult.fail("Task name is required")
        try:
            schedule = _normalize_schedule(data.get("schedule"))
        except ValueError as exc:
            return StoreResult.fail(str(exc))

        task_type = data.get("type", "")
        config = data.get("config")
        problem = self._validate(task_type, schedule, config)
        if problem:
            return StoreResult.fail(problem)

        task = Task(
            id=make_id(),
            name=name,
            type=task_type,
            schedule=schedule,
            config=config,
            created_by=user_id,
            enabled=bool(data.get("enabled", True)),
        )
        result = await self._storage.create_task(task)
        if not result.success:
            logger.error("Failed to create task %s: %s", name, result.error)
            return result

        logger.info("Created task '%s' (%s) for %s", task.name, task.id, user_id)
        await self._log_service.log_audit(
            user_id, "create_task", "task", task.id, {"name": task.name, "type": task.type}
        )
        return result

    async def _owned_task(self, task_id: str, user_id: str) -> StoreResult[Task]:
        result = await self._storage.get_task_by_id(task_id)
        if not result.success:
            return result
        if result.data is None:
            return StoreResult.fail(TASK_NOT_FOUND)
        if result.data.created_by != user_id:
            logger.warning("User %s tried to modify task %s", user_id, task_id)
            return StoreResult.fail(NOT_PERMITTED)
        return result

    async def update_task(
        self, task_id: str, fields: dict[str, Any], user_id: str
    ) -> StoreResult[Task]:
        """Apply a partial update; unknown fields are ignored."""
        owned = await self._owned_task(task_id, user_id)
        if not owned.success:
            return owned
        current = owned.data

        changes = {k: v for k, v in fields.items() if k in _MUTABLE_FIELDS}
        if not changes:
            return StoreResult.ok(current)
        if "name" in changes:
            changes["name"] = str(changes["name"] or "").strip()
            if not changes["name"]:
                return StoreResult.fail("Task name is required")
        if "schedule" in changes:
            try:
                changes["schedule"] = _normalize_schedule(changes["schedule"])
            except ValueError as exc:
                return StoreResult.fail(str(exc))
        if "enabled" in changes:
            changes["enabled"] = bool(changes["enabled"])

        if {"type", "schedule", "config"} & changes.keys():
            problem = self._validate(
                changes.get("type", current.type),
                changes.get("schedule", current.schedule),
                changes.get("config", current.config),
            )
            if problem:
                return StoreResult.fail(problem)

        result = await self._storage.update_task(task_id, changes)
        if result.success:
            await self._log_service.log_audit(
                user_id, "update_task", "task", task_id, {"fields": sorted(changes)}
            )
        return result

    async def delete_task(self, task_id: str, user_id: str) -> StoreResult[bool]:
        owned = await self._owned_task(task_id, user_id)
        if not owned.success:
            return StoreResult.fail(owned.error or TASK_NOT_FOUND)

        result = await self._storage.delete_task(task_id)
        if result.success:
            logger.info("Deleted task %s", task_id)
            await self._log_service.log_audit(
                user_id, "delete_task", "task", task_id, {"name": owned.data.name}
            )
        return result

    async def toggle_task(self, task_id: str, user_id: str) -> StoreResult[Task]:
        """Flip ``enabled``."""
        owned = await self._owned_task(task_id, user_id)
        if not owned.success:
            return owned

        enabled = not owned.data.enabled
        result = await self._storage.update_task(task_id, {"enabled": enabled})
        if result.success:
            await self._log_service.log_audit(
                user_id, "toggle_task", "task", task_id, {"enabled": enabled}
            )
        return result

    async def get_task(self, task_id: str) -> StoreResult[Task]:
        result = await self._storage.get_task_by_id(task_id)
        if result.success and result.data is None:
            return StoreResult.fail(TASK_NOT_FOUND)
        return result

    async def list_tasks(self, task_filter: TaskFilter | None = None) -> StoreResult[list[Task]]:
        return await self._storage.get_all_tasks(task_filter)

    async def get_task_statistics(self, task_id: str) -> StoreResult[TaskStatistics]:
        """Counts and the mean response time over the newest 1000 runs."""
        result = await self._storage.get_execution_logs_by_task_id(
            task_id, limit=_STATISTICS_WINDOW
        )
        if not result.success:
            return StoreResult.fail(f"Failed to load execution logs: {result.error}")

        logs = result.data or []
        times = [entry.response_time for entry in logs if entry.response_time is not None]
        average = round_half_up(sum(times) / len(times)) if times else 0
        return StoreResult.ok(
            TaskStatistics(
                total_executions=len(logs),
                success_count=sum(1 for entry in logs if entry.status == "success"),
                failure_count=sum(1 for entry in logs if entry.status == "failure"),
                average_response_time=average,
                last_execution=logs[0].execution_time if logs else None,
            )
        )
