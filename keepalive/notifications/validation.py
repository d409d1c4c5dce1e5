"""Field-level validation of notification channel configurations.

Validators never raise: they return a ValidationReport listing every
problem found, so callers can show all of them at once.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

MAX_MESSAGE_LENGTH = 2000
MAX_TITLE_LENGTH = 100
MAX_CHANNEL_ID_LENGTH = 100

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class FieldError:
    field: str
    message: str


@dataclass
class ValidationReport:
    errors: list[FieldError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def add(self, field_name: str, message: str) -> None:
        self.errors.append(FieldError(field_name, message))

    def summary(self) -> str:
        """All errors on one line, e.g. for an ExecutionResult error."""
        return "; ".join(f"{e.field}: {e.message}" for e in self.errors)


def _value(config: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in config:
            return config[key]
    return None


def _check_text(
    report: ValidationReport,
    config: Mapping[str, Any],
    name: str,
    *aliases: str,
    required: bool = True,
    max_length: int | None = None,
) -> str | None:
    value = _value(config, name, *aliases)
    if value is None:
        if required:
            report.add(name, "is required")
        return None
    if not isinstance(value, str):
        report.add(name, "must be a string")
        return None
    # Length counts surrounding whitespace; emptiness does not.
    if max_length is not None and len(value) > max_length:
        report.add(name, f"must be at most {max_length} characters")
        return None
    value = value.strip()
    if not value:
        if required:
            report.add(name, "must not be empty")
        return None
    return value


def validate_notifyx_config(config: Mapping[str, Any]) -> ValidationReport:
    """NotifyX push: ``api_key``, ``message`` and ``title`` required."""
    report = ValidationReport()
    _check_text(report, config, "api_key", "apiKey")
    _check_text(report, config, "message", "content", max_length=MAX_MESSAGE_LENGTH)
    _check_text(report, config, "title", max_length=MAX_TITLE_LENGTH)
    _check_text(
        report,
        config,
        "channel_id",
        "channelId",
        required=False,
        max_length=MAX_CHANNEL_ID_LENGTH,
    )
    recipients = _value(config, "recipients")
    if recipients is not None and (
        not isinstance(recipients, list) or not all(isinstance(r, str) for r in recipients)
    ):
        report.add("recipients", "must be a list of strings")
    return report


def validate_webhook_config(config: Mapping[str, Any]) -> ValidationReport:
    report = ValidationReport()
    url = _check_text(report, config, "url", "webhook_url")
    if url is not None and not url.startswith(("http://", "https://")):
        report.add("url", "must start with http:// or https://")
    return report


def validate_email_config(config: Mapping[str, Any]) -> ValidationReport:
    report = ValidationReport()
    address = _check_text(report, config, "address", "email_address", "to")
    if address is not None and not _EMAIL_RE.match(address):
        report.add("address", "must be a valid email address")
    _check_text(report, config, "api_key", "apiKey", "email_api_key")
    _check_text(report, config, "subject", "title", required=False, max_length=MAX_TITLE_LENGTH)
    return report


_VALIDATORS: dict[str, Callable[[Mapping[str, Any]], ValidationReport]] = {
    "notifyx": validate_notifyx_config,
    "webhook": validate_webhook_config,
    "email": validate_email_config,
}


def validate_config(channel: str, config: Any) -> ValidationReport:
    """Validate *config* for the named channel."""
    validator = _VALIDATORS.get(channel)
    if validator is None:
        report = ValidationReport()
        report.add("channel", f"unknown channel {channel!r}")
        return report
    if not isinstance(config, Mapping):
        report = ValidationReport()
        report.add("config", "must be an object")
        return report
    return validator(config)
