"""Runs one task, records the result, then evaluates alerts."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from keepalive.notifications.notifyx_channel import NotifyXChannel, build_notifyx_body
from keepalive.tasks.models import (
    ExecutionResult,
    KeepaliveConfig,
    NotificationConfig,
    TaskConfigError,
)
from keepalive.transport import HttpTransport, TransportError

if TYPE_CHECKING:
    from keepalive.notifications.alerts import AlertEngine
    from keepalive.scheduler.recorder import ExecutionRecorder
    from keepalive.storage.base import Storage
    from keepalive.tasks.models import Task

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))


class TaskExecutor:
    """Executes tasks by dispatching on their parsed config variant.

    Nothing raised while running a task escapes ``execute``: config errors,
    transport errors and unexpected exceptions all become a failed
    ExecutionResult, which is recorded like any other run.

    Args:
        storage: Storage backend, used to look tasks and credentials up.
        recorder: Persists each result.
        alerts: Evaluates failure/recovery alerting after each run.
        transport: HTTP transport for keepalive requests.
        notifyx: Channel used to deliver ``notification`` tasks.
    """

    def __init__(
        self,
        storage: Storage,
        recorder: ExecutionRecorder,
        alerts: AlertEngine,
        transport: HttpTransport | None = None,
        notifyx: NotifyXChannel | None = None,
    ) -> None:
        self._storage = storage
        self._recorder = recorder
        self._alerts = alerts
        self._transport = transport or HttpTransport()
        self._notifyx = notifyx or NotifyXChannel(self._transport)

    async def execute_by_id(self, task_id: str) -> ExecutionResult | None:
        """Look up and execute a task; None when it cannot be loaded."""
        result = await self._storage.get_task_by_id(task_id)
        if not result.success:
            logger.error("Could not load task %s: %s", task_id, result.error)
            return None
        if result.data is None:
            logger.warning("Task not found: %s", task_id)
            return None
        return await self.execute(result.data)

    async def execute(self, task: Task) -> ExecutionResult:
        """Run *task* once and return the recorded result."""
        logger.info("Executing task: '%s' (%s) type=%s", task.name, task.id, task.type)
        started = time.monotonic()
        try:
            result = await self._dispatch(task, started)
        except Exception as exc:
            logger.exception("Task execution raised: '%s' (%s)", task.name, task.id)
            result = ExecutionResult(success=False, response_time=_elapsed_ms(started), error=str(exc))

        if result.success:
            logger.info("Task succeeded: '%s' (%s) in %dms", task.name, task.id, result.response_time)
        else:
            logger.warning("Task failed: '%s' (%s): %s", task.name, task.id, result.error)

        await self._recorder.record(task.id, result)

        try:
            await self._alerts.evaluate(task, result)
        except Exception:
            logger.exception("Alert evaluation failed for task %s", task.id)
        return result

    async def _dispatch(self, task: Task, started: float) -> ExecutionResult:
        try:
            config = task.parsed_config()
        except TaskConfigError as exc:
            return ExecutionResult(success=False, response_time=_elapsed_ms(started), error=str(exc))

        if isinstance(config, KeepaliveConfig):
            return await self._run_keepalive(config)
        if isinstance(config, NotificationConfig):
            return await self._run_notification(task, config)
        msg = f"No handler for task type: {task.type}"
        raise TaskConfigError(msg)

    async def _run_keepalive(self, config: KeepaliveConfig) -> ExecutionResult:
        """Issue the configured request; 2xx/3xx is success."""
        started = time.monotonic()
        try:
            resp = await self._transport.request(
                config.method,
                config.url,
                headers=config.headers,
                body=config.request_body,
                timeout=config.timeout_seconds,
            )
        except TransportError as exc:
            return ExecutionResult(success=False, response_time=_elapsed_ms(started), error=str(exc))

        elapsed = _elapsed_ms(started)
        if not resp.ok:
            return ExecutionResult(
                success=False,
                response_time=elapsed,
                status_code=resp.status_code,
                error=f"HTTP {resp.status_code}: {resp.reason}",
            )
        return ExecutionResult(success=True, response_time=elapsed, status_code=resp.status_code)

    async def _run_notification(self, task: Task, config: NotificationConfig) -> ExecutionResult:
        """Push the task's message through NotifyX."""
        started = time.monotonic()
        notifyx = config.notifyx
        api_key = notifyx.api_key if notifyx and notifyx.api_key else None
        if not api_key:
            api_key = await self._owner_notifyx_key(task.created_by)
        if not api_key or not api_key.strip():
            return ExecutionResult(
                success=False,
                response_time=_elapsed_ms(started),
                error="NotifyX API key not configured",
            )

        body = build_notifyx_body(
            config.resolved_title,
            config.message,
            priority=config.priority,
            channel_id=notifyx.channel_id if notifyx else None,
            recipients=notifyx.recipients if notifyx else None,
        )
        delivery = await self._notifyx.send_payload(api_key, body)
        return ExecutionResult(
            success=delivery.success,
            response_time=_elapsed_ms(started),
            status_code=delivery.status_code,
            error=delivery.error,
        )

    async def _owner_notifyx_key(self, user_id: str) -> str | None:
        result = await self._storage.get_notification_settings_by_user_id(user_id)
        if not result.success or result.data is None:
            return None
        return result.data.notifyx_api_key
