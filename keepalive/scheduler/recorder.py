"""Persists run results and the task's last-run state."""

from __future__ import annotations

import logging
import traceback
from typing import TYPE_CHECKING

from keepalive.logs.models import ExecutionLog
from keepalive.tasks.models import utc_now

if TYPE_CHECKING:
    from keepalive.logs.service import LogService
    from keepalive.storage.base import Storage
    from keepalive.tasks.models import ExecutionResult

logger = logging.getLogger(__name__)


class ExecutionRecorder:
    """Turns an ExecutionResult into an execution log plus a task update.

    The log is written first, then the task's ``last_executed`` and
    ``last_status`` are updated whatever the outcome of that write. Storage
    failures are reported to the system log and never raised.

    Args:
        storage: Storage backend.
        log_service: Receives persistence errors as system log entries.
    """

    def __init__(self, storage: Storage, log_service: LogService) -> None:
        self._storage = storage
        self._log_service = log_service

    async def record(self, task_id: str, result: ExecutionResult) -> ExecutionLog | None:
        """Persist *result* for *task_id*; returns the stored log or None."""
        stored = await self._write_log(task_id, result)
        await self._update_task(task_id, result)
        return stored

    async def _write_log(self, task_id: str, result: ExecutionResult) -> ExecutionLog | None:
        try:
            entry = ExecutionLog.from_result(task_id, result)
            outcome = await self._storage.create_execution_log(entry)
        except Exception as exc:
            logger.exception("Writing execution log for task %s raised", task_id)
            await self._report(
                "execution_log_write",
                str(exc),
                task_id,
                stack_trace=traceback.format_exc(),
            )
            return None

        if not outcome.success:
            logger.error("Failed to write execution log for task %s: %s", task_id, outcome.error)
            await self._report("execution_log_write", outcome.error or "unknown error", task_id)
            return None
        return outcome.data

    async def _update_task(self, task_id: str, result: ExecutionResult) -> None:
        fields = {"last_executed": utc_now().isoformat(), "last_status": result.status}
        try:
            outcome = await self._storage.update_task(task_id, fields)
        except Exception as exc:
            logger.exception("Updating last-run state of task %s raised", task_id)
            await self._report(
                "task_status_update",
                str(exc),
                task_id,
                stack_trace=traceback.format_exc(),
            )
            return

        if not outcome.success:
            logger.error("Failed to update last-run state of task %s: %s", task_id, outcome.error)
            await self._report("task_status_update", outcome.error or "unknown error", task_id)

    async def _report(
        self,
        error_type: str,
        message: str,
        task_id: str,
        stack_trace: str | None = None,
    ) -> None:
        await self._log_service.log_error(
            error_type,
            message,
            stack_trace=stack_trace,
            context={"task_id": task_id},
        )
