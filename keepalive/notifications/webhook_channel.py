"""Generic JSON webhook implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from keepalive.config import settings
from keepalive.notifications.models import DeliveryResult
from keepalive.notifications.validation import validate_webhook_config
from keepalive.transport import HttpTransport, TransportError

if TYPE_CHECKING:
    from keepalive.notifications.models import AlertPayload, NotificationSettings

logger = logging.getLogger(__name__)


class WebhookChannel:
    """POSTs the alert payload as JSON to the user's webhook URL."""

    def __init__(self, transport: HttpTransport | None = None) -> None:
        self._transport = transport or HttpTransport()

    @property
    def name(self) -> str:
        return "webhook"

    async def send(
        self, notification_settings: NotificationSettings, payload: AlertPayload
    ) -> DeliveryResult:
        report = validate_webhook_config({"url": notification_settings.webhook_url})
        if not report.valid:
            return DeliveryResult(self.name, success=False, error=report.summary())

        try:
            resp = await self._transport.request(
                "POST",
                notification_settings.webhook_url or "",
                headers={"Content-Type": "application/json"},
                json={"event": f"task.{payload.kind}", **payload.to_dict()},
                timeout=settings.notification_timeout_seconds,
            )
        except TransportError as exc:
            logger.warning("Webhook delivery to %s failed: %s", notification_settings.webhook_url, exc)
            return DeliveryResult(self.name, success=False, error=str(exc))
        except Exception as exc:
            logger.exception("WebhookChannel.send failed for user_id=%s", notification_settings.user_id)
            return DeliveryResult(self.name, success=False, error=str(exc))

        if not resp.ok:
            return DeliveryResult(
                self.name,
                success=False,
                status_code=resp.status_code,
                error=f"HTTP {resp.status_code}: {resp.reason}",
            )
        return DeliveryResult(self.name, success=True, status_code=resp.status_code)
