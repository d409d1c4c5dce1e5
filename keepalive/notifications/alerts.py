"""Failure and recovery alert decisions plus channel fan-out."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from keepalive.config import settings as app_settings
from keepalive.notifications.models import AlertOutcome, AlertPayload, DeliveryResult
from keepalive.notifications.validation import MAX_MESSAGE_LENGTH, MAX_TITLE_LENGTH
from keepalive.tasks.models import utc_now

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from keepalive.logs.service import LogService
    from keepalive.notifications.channels import NotificationChannel
    from keepalive.notifications.models import NotificationSettings
    from keepalive.storage.base import Storage
    from keepalive.tasks.models import ExecutionResult, Task

logger = logging.getLogger(__name__)

ALERT_KINDS = ("failure", "recovery")


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


class AlertEngine:
    """Decides when a task's run history warrants an alert and delivers it.

    Failure alerts fire while the newest ``failure_threshold`` execution logs
    are all failures. Recovery alerts fire once, on the first success after a
    failure. Delivery fans out to every channel the task owner enabled; each
    channel succeeds or fails on its own.

    Args:
        storage: Storage backend (execution logs and notification settings).
        channels: Available channel implementations, keyed by ``name``.
        log_service: Optional sink for delivery failures.
    """

    def __init__(
        self,
        storage: Storage,
        channels: Iterable[NotificationChannel] = (),
        log_service: LogService | None = None,
    ) -> None:
        self._storage = storage
        self._channels = {channel.name: channel for channel in channels}
        self._log_service = log_service

    # -- Decisions ---------------------------------------------------------------

    async def should_alert_on_failure(self, task_id: str, threshold: int | None = None) -> bool:
        """True iff the newest ``threshold`` execution logs are all failures."""
        threshold = max(threshold or app_settings.default_failure_threshold, 1)
        result = await self._storage.get_execution_logs_by_task_id(task_id, limit=threshold)
        if not result.success:
            logger.error("Could not load logs for failure check of %s: %s", task_id, result.error)
            return False

        consecutive = 0
        for entry in result.data or []:
            if entry.succeeded:
                break
            consecutive += 1
            if consecutive >= threshold:
                break
        return consecutive >= threshold

    async def should_alert_on_recovery(self, task_id: str) -> bool:
        """True iff the newest log is a success directly after a failure."""
        result = await self._storage.get_execution_logs_by_task_id(task_id, limit=2)
        if not result.success:
            logger.error("Could not load logs for recovery check of %s: %s", task_id, result.error)
            return False
        logs = result.data or []
        if len(logs) < 2:
            return False
        newest, previous = logs[0], logs[1]
        return newest.succeeded and not previous.succeeded

    # -- Payloads ----------------------------------------------------------------

    def build_alert_payload(
        self,
        kind: str,
        task: Task,
        error: str | None = None,
        now: datetime | None = None,
    ) -> AlertPayload:
        """Channel-neutral alert content for *task*."""
        if kind not in ALERT_KINDS:
            msg = f"Unknown alert kind: {kind!r}"
            raise ValueError(msg)
        timestamp = (now or utc_now()).isoformat()

        if kind == "failure":
            title = f"Task failed: {task.name}"
            lines = [
                f"Task '{task.name}' ({task.type}) failed.",
                f"Time: {timestamp}",
                f"Error: {error or 'unknown error'}",
            ]
            priority = "high"
        else:
            title = f"Task recovered: {task.name}"
            lines = [
                f"Task '{task.name}' ({task.type}) is succeeding again.",
                f"Time: {timestamp}",
            ]
            priority = "normal"

        return AlertPayload(
            kind=kind,
            task_id=task.id,
            task_name=task.name,
            task_type=task.type,
            title=_clip(title, MAX_TITLE_LENGTH),
            message=_clip("\n".join(lines), MAX_MESSAGE_LENGTH),
            priority=priority,
            timestamp=timestamp,
            error=error,
        )

    # -- Delivery ----------------------------------------------------------------

    async def send_failure_alert(self, task: Task, error: str | None) -> AlertOutcome:
        """Deliver a failure alert once the owner's failure threshold is reached.

        Below the threshold nothing is sent and the outcome is still a success.
        """
        notification_settings = await self._load_settings(task.created_by)
        if notification_settings is None or not notification_settings.enabled_channels():
            return AlertOutcome(success=True)

        threshold = notification_settings.failure_threshold
        if not await self.should_alert_on_failure(task.id, threshold):
            logger.debug("Task %s is below its failure threshold (%d)", task.id, threshold)
            return AlertOutcome(success=True)

        logger.info("Failure threshold (%d) reached for task %s", threshold, task.id)
        payload = self.build_alert_payload("failure", task, error=error)
        return await self._dispatch(notification_settings, payload)

    async def send_recovery_alert(self, task: Task) -> AlertOutcome:
        """Deliver a recovery alert to every channel the task owner enabled."""
        notification_settings = await self._load_settings(task.created_by)
        if notification_settings is None:
            return AlertOutcome(success=True)
        payload = self.build_alert_payload("recovery", task)
        return await self._dispatch(notification_settings, payload)

    async def evaluate(self, task: Task, result: ExecutionResult) -> AlertOutcome:
        """Apply the failure or recovery rule after a recorded run of *task*."""
        if not result.success:
            return await self.send_failure_alert(task, result.error)
        if await self.should_alert_on_recovery(task.id):
            logger.info("Task %s recovered", task.id)
            return await self.send_recovery_alert(task)
        return AlertOutcome(success=True)

    async def _load_settings(self, user_id: str) -> NotificationSettings | None:
        result = await self._storage.get_notification_settings_by_user_id(user_id)
        if not result.success:
            logger.error("Could not load notification settings for %s: %s", user_id, result.error)
            return None
        return result.data

    async def _dispatch(
        self, notification_settings: NotificationSettings, payload: AlertPayload
    ) -> AlertOutcome:
        names = notification_settings.enabled_channels()
        if not names:
            logger.debug("No alert channels enabled for %s", notification_settings.user_id)
            return AlertOutcome(success=True)

        deliveries = await asyncio.gather(
            *(self._deliver(name, notification_settings, payload) for name in names)
        )
        failed = [d for d in deliveries if not d.success]
        for delivery in failed:
            logger.warning(
                "%s alert for task %s via %s failed: %s",
                payload.kind,
                payload.task_id,
                delivery.channel,
                delivery.error,
            )

        error = "; ".join(f"{d.channel}: {d.error}" for d in failed) or None
        if error and self._log_service is not None:
            await self._log_service.log_error(
                "alert_delivery",
                error,
                context={"task_id": payload.task_id, "kind": payload.kind},
            )
        return AlertOutcome(
            success=len(failed) < len(deliveries),
            triggered=True,
            deliveries=list(deliveries),
            error=error,
        )

    async def _deliver(
        self, name: str, notification_settings: NotificationSettings, payload: AlertPayload
    ) -> DeliveryResult:
        channel = self._channels.get(name)
        if channel is None:
            return DeliveryResult(name, success=False, error="channel not available")
        try:
            return await channel.send(notification_settings, payload)
        except Exception as exc:
            logger.exception("Channel %s raised while sending alert", name)
            return DeliveryResult(name, success=False, error=str(exc))
