"""Email implementation of the NotificationChannel protocol (Resend REST API)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from keepalive.config import settings
from keepalive.notifications.models import DeliveryResult
from keepalive.notifications.validation import validate_email_config
from keepalive.transport import HttpTransport, TransportError

if TYPE_CHECKING:
    from keepalive.notifications.models import AlertPayload, NotificationSettings

logger = logging.getLogger(__name__)


class EmailChannel:
    """Sends alert emails through an HTTP email API using the user's API key."""

    def __init__(
        self,
        transport: HttpTransport | None = None,
        api_url: str | None = None,
        from_address: str | None = None,
    ) -> None:
        self._transport = transport or HttpTransport()
        self._api_url = api_url or settings.email_api_url
        self._from = from_address or settings.email_from_address

    @property
    def name(self) -> str:
        return "email"

    async def send(
        self, notification_settings: NotificationSettings, payload: AlertPayload
    ) -> DeliveryResult:
        report = validate_email_config(
            {
                "address": notification_settings.email_address,
                "api_key": notification_settings.email_api_key,
                "subject": payload.title,
            }
        )
        if not report.valid:
            return DeliveryResult(self.name, success=False, error=report.summary())

        body = {
            "from": self._from,
            "to": [notification_settings.email_address],
            "subject": payload.title,
            "text": payload.message,
        }
        headers = {"Authorization": f"Bearer {notification_settings.email_api_key}"}
        try:
            resp = await self._transport.request(
                "POST",
                self._api_url,
                headers=headers,
                json=body,
                timeout=settings.notification_timeout_seconds,
            )
        except TransportError as exc:
            logger.warning("Email delivery failed: %s", exc)
            return DeliveryResult(self.name, success=False, error=str(exc))
        except Exception as exc:
            logger.exception("EmailChannel.send failed for user_id=%s", notification_settings.user_id)
            return DeliveryResult(self.name, success=False, error=str(exc))

        if not resp.ok:
            return DeliveryResult(
                self.name,
                success=False,
                status_code=resp.status_code,
                error=f"HTTP {resp.status_code}: {resp.text or resp.reason}",
            )
        return DeliveryResult(self.name, success=True, status_code=resp.status_code)
