"""Interface shared by every alert delivery channel."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from keepalive.notifications.models import AlertPayload, DeliveryResult, NotificationSettings


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all alert channels must satisfy."""

    @property
    def name(self) -> str:
        """Channel identifier matching ``NotificationSettings.enabled_channels()``."""
        ...

    async def send(
        self, notification_settings: NotificationSettings, payload: AlertPayload
    ) -> DeliveryResult:
        """Deliver *payload* using the user's channel settings. Never raises."""
        ...
