"""Alert decisions, channel validation and delivery channels."""

from keepalive.notifications.alerts import AlertEngine
from keepalive.notifications.channels import NotificationChannel
from keepalive.notifications.email_channel import EmailChannel
from keepalive.notifications.notifyx_channel import NotifyXChannel
from keepalive.notifications.validation import ValidationReport, validate_config
from keepalive.notifications.webhook_channel import WebhookChannel

__all__ = [
    "AlertEngine",
    "EmailChannel",
    "NotificationChannel",
    "NotifyXChannel",
    "ValidationReport",
    "WebhookChannel",
    "validate_config",
]
