"""NotifyX implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from keepalive.config import settings
from keepalive.notifications.models import DeliveryResult
from keepalive.notifications.validation import validate_notifyx_config
from keepalive.transport import HttpTransport, TransportError

if TYPE_CHECKING:
    from keepalive.notifications.models import AlertPayload, NotificationSettings

logger = logging.getLogger(__name__)


def build_notifyx_body(
    title: str,
    message: str,
    *,
    priority: str = "normal",
    channel_id: str | None = None,
    recipients: list[str] | None = None,
) -> dict[str, Any]:
    """JSON body for the NotifyX send endpoint."""
    body: dict[str, Any] = {"title": title, "message": message, "priority": priority}
    if channel_id:
        body["channel_id"] = channel_id
    if recipients:
        body["recipients"] = recipients
    return body


class NotifyXChannel:
    """Sends push notifications through the NotifyX HTTP API.

    Also used directly by the executor for ``notification`` tasks, which
    carry their own message and, optionally, their own API key.
    """

    def __init__(self, transport: HttpTransport | None = None, api_url: str | None = None) -> None:
        self._transport = transport or HttpTransport()
        self._api_url = api_url or settings.notifyx_api_url

    @property
    def name(self) -> str:
        return "notifyx"

    async def send(
        self, notification_settings: NotificationSettings, payload: AlertPayload
    ) -> DeliveryResult:
        """Push an alert with the user's NotifyX key."""
        report = validate_notifyx_config(
            {
                "api_key": notification_settings.notifyx_api_key,
                "title": payload.title,
                "message": payload.message,
            }
        )
        if not report.valid:
            logger.warning(
                "NotifyX config invalid for user %s: %s",
                notification_settings.user_id,
                report.summary(),
            )
            return DeliveryResult(self.name, success=False, error=report.summary())

        body = build_notifyx_body(payload.title, payload.message, priority=payload.priority)
        return await self.send_payload(notification_settings.notifyx_api_key or "", body)

    async def send_payload(self, api_key: str, body: dict[str, Any]) -> DeliveryResult:
        """POST a prepared body; the result carries the HTTP status when one arrived."""
        headers = {
            "Authorization": f"Bearer {api_key.strip()}",
            "Content-Type": "application/json",
        }
        try:
            resp = await self._transport.request(
                "POST",
                self._api_url,
                headers=headers,
                json=body,
                timeout=settings.notification_timeout_seconds,
            )
        except TransportError as exc:
            logger.warning("NotifyX request failed: %s", exc)
            return DeliveryResult(self.name, success=False, error=str(exc))
        except Exception as exc:
            logger.exception("NotifyXChannel.send_payload failed")
            return DeliveryResult(self.name, success=False, error=str(exc))

        if not resp.ok:
            error = f"Notification delivery failed: HTTP {resp.status_code} - {resp.text}"
            logger.warning("NotifyX returned HTTP %d", resp.status_code)
            return DeliveryResult(
                self.name, success=False, status_code=resp.status_code, error=error
            )
        return DeliveryResult(self.name, success=True, status_code=resp.status_code)
