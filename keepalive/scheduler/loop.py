"""Drives one scheduler tick over every enabled task."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from keepalive.config import settings
from keepalive.scheduler.rules import evaluate
from keepalive.storage.base import TaskFilter
from keepalive.tasks.models import utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from keepalive.logs.service import LogService
    from keepalive.scheduler.executor import TaskExecutor
    from keepalive.storage.base import Storage
    from keepalive.tasks.models import ExecutionResult, Task

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    """What one tick did.

    ``succeeded`` and ``failed`` grow as the runs it started finish.
    """

    started_at: str
    evaluated: int = 0
    due: int = 0
    succeeded: int = 0
    failed: int = 0
    invalid: int = 0
    executed: list[str] = field(default_factory=list)
    error: str | None = None


class SchedulerLoop:
    """Starts due tasks for one tick.

    All enabled tasks are evaluated first; each due task is then started as
    its own asyncio task and ``tick`` returns without waiting for them, so a
    slow or hung run never holds up later ticks. The summary's ``succeeded``
    and ``failed`` counts fill in as runs finish; ``drain`` waits for them.

    Args:
        storage: Storage backend.
        executor: Runs each due task.
        timezone: IANA zone cron fields are matched in (default from settings).
        log_service: Receives tick-level storage failures.
    """

    def __init__(
        self,
        storage: Storage,
        executor: TaskExecutor,
        timezone: str | None = None,
        log_service: LogService | None = None,
    ) -> None:
        self._storage = storage
        self._executor = executor
        self._timezone = timezone or settings.scheduler_timezone
        self._log_service = log_service
        self._inflight: set[asyncio.Task[ExecutionResult | None]] = set()

    @property
    def pending(self) -> int:
        """Runs started by earlier ticks that have not finished yet."""
        return len(self._inflight)

    async def tick(self, now: datetime | None = None) -> TickSummary:
        now = now or utc_now()
        summary = TickSummary(started_at=now.isoformat())

        result = await self._storage.get_all_tasks(TaskFilter(enabled=True))
        if not result.success:
            logger.error("Tick aborted, could not load tasks: %s", result.error)
            summary.error = result.error
            if self._log_service is not None:
                await self._log_service.log_error("scheduler_tick", result.error or "unknown error")
            return summary

        due_tasks = [task for task in result.data or [] if self._is_due(task, now, summary)]
        summary.due = len(due_tasks)
        if not due_tasks:
            logger.debug("Tick %s: %d task(s), none due", summary.started_at, summary.evaluated)
            return summary

        for task in due_tasks:
            job = asyncio.create_task(self._run(task), name=f"keepalive-run-{task.id}")
            self._inflight.add(job)
            job.add_done_callback(functools.partial(self._finished, summary, task.id))
            summary.executed.append(task.id)

        logger.info(
            "Tick %s: evaluated=%d due=%d invalid=%d in_flight=%d",
            summary.started_at,
            summary.evaluated,
            summary.due,
            summary.invalid,
            len(self._inflight),
        )
        return summary

    async def drain(self, timeout: float | None = None) -> int:
        """Wait for in-flight runs; returns how many are still running."""
        if not self._inflight:
            return 0
        _, still_running = await asyncio.wait(set(self._inflight), timeout=timeout)
        return len(still_running)

    def _is_due(self, task: Task, now: datetime, summary: TickSummary) -> bool:
        summary.evaluated += 1
        try:
            last_executed = task.last_executed_at
        except ValueError:
            logger.warning("Task %s has an unreadable last_executed: %r", task.id, task.last_executed)
            last_executed = None

        check = evaluate(task.schedule, last_executed, now, tz=self._timezone)
        if not check.valid:
            summary.invalid += 1
            logger.warning("Task %s has an invalid schedule: %s", task.id, check.error)
            return False
        return check.due

    async def _run(self, task: Task) -> ExecutionResult | None:
        try:
            return await self._executor.execute(task)
        except Exception:
            logger.exception("Executor raised for task %s", task.id)
            return None

    def _finished(
        self, summary: TickSummary, task_id: str, job: asyncio.Task[ExecutionResult | None]
    ) -> None:
        self._inflight.discard(job)
        if job.cancelled():
            logger.warning("Run of task %s was cancelled", task_id)
            summary.failed += 1
            return
        outcome = job.result()
        if outcome is not None and outcome.success:
            summary.succeeded += 1
        else:
            summary.failed += 1
