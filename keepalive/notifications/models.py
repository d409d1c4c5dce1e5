"""Notification settings and alert data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from keepalive.config import settings as app_settings


@dataclass
class NotificationSettings:
    """Per-user alert channel configuration.

    Attributes:
        id: Unique identifier.
        user_id: Owner of the settings (and of the tasks they apply to).
        email_enabled / email_address / email_api_key: Email channel.
        webhook_enabled / webhook_url: Generic JSON webhook channel.
        notifyx_enabled / notifyx_api_key: NotifyX push channel.
        failure_threshold: Consecutive failures needed before a failure alert.
    """

    id: str
    user_id: str
    email_enabled: bool = False
    email_address: str | None = None
    email_api_key: str | None = None
    webhook_enabled: bool = False
    webhook_url: str | None = None
    notifyx_enabled: bool = False
    notifyx_api_key: str | None = None
    failure_threshold: int = field(default_factory=lambda: app_settings.default_failure_threshold)
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        now = datetime.now(UTC).isoformat()
        if not self.created_at:
            self.created_at = now
        if not self.updated_at:
            self.updated_at = self.created_at

    def enabled_channels(self) -> list[str]:
        """Names of the channels switched on, in fan-out order."""
        names = []
        if self.notifyx_enabled:
            names.append("notifyx")
        if self.webhook_enabled:
            names.append("webhook")
        if self.email_enabled:
            names.append("email")
        return names

    def to_row(self) -> tuple:
        return (
            self.id,
            self.user_id,
            int(self.email_enabled),
            self.email_address,
            self.email_api_key,
            int(self.webhook_enabled),
            self.webhook_url,
            int(self.notifyx_enabled),
            self.notifyx_api_key,
            self.failure_threshold,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> NotificationSettings:
        return cls(
            id=row[0],
            user_id=row[1],
            email_enabled=bool(row[2]),
            email_address=row[3],
            email_api_key=row[4],
            webhook_enabled=bool(row[5]),
            webhook_url=row[6],
            notifyx_enabled=bool(row[7]),
            notifyx_api_key=row[8],
            failure_threshold=row[9],
            created_at=row[10],
            updated_at=row[11],
        )


@dataclass
class AlertPayload:
    """Channel-neutral content of a failure or recovery alert."""

    kind: str
    task_id: str
    task_name: str
    task_type: str
    title: str
    message: str
    priority: str
    timestamp: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "task_id": self.task_id,
            "task_name": self.task_name,
            "task_type": self.task_type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "timestamp": self.timestamp,
            "error": self.error,
        }


@dataclass
class DeliveryResult:
    """Outcome of one channel delivery attempt."""

    channel: str
    success: bool
    status_code: int | None = None
    error: str | None = None


@dataclass
class AlertOutcome:
    """Result of a failure/recovery alert request.

    ``triggered`` is False when the decision rule did not fire or no channel
    is configured; in both cases ``success`` stays True.
    """

    success: bool
    triggered: bool = False
    deliveries: list[DeliveryResult] = field(default_factory=list)
    error: str | None = None

    @property
    def attempts(self) -> int:
        return len(self.deliveries)
