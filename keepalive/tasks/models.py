"""Task data model and the type-specific config variants."""

from __future__ import annotations

import json
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from keepalive.config import settings

TASK_TYPES = ("keepalive", "notification")
TASK_STATUSES = ("success", "failure")

# Methods that carry a request body.
_BODY_METHODS = {"POST", "PUT", "PATCH"}


class TaskConfigError(ValueError):
    """Raised when a task's config does not match its declared type."""


class KeepaliveConfig(BaseModel):
    """Config for a ``keepalive`` task: the HTTP request to issue."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"] = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None
    timeout: int = Field(default_factory=lambda: settings.http_timeout_ms, gt=0)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            msg = "url must start with http:// or https://"
            raise ValueError(msg)
        return value

    @property
    def request_body(self) -> str | None:
        """The body to send, or None when the method does not take one."""
        if self.body and self.method in _BODY_METHODS:
            return self.body
        return None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000


class NotifyXTaskConfig(BaseModel):
    """NotifyX credentials and routing embedded in a notification task."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str | None = Field(default=None, validation_alias=AliasChoices("api_key", "apiKey"))
    channel_id: str | None = Field(
        default=None, validation_alias=AliasChoices("channel_id", "channelId")
    )
    recipients: list[str] = Field(default_factory=list)
    title: str | None = None


class NotificationConfig(BaseModel):
    """Config for a ``notification`` task: the message to push."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: str = Field(validation_alias=AliasChoices("message", "content"))
    title: str | None = None
    priority: Literal["low", "normal", "high", "urgent"] = "normal"
    notifyx: NotifyXTaskConfig | None = Field(
        default=None, validation_alias=AliasChoices("notifyx", "notifyxConfig")
    )

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: str) -> str:
        if not value.strip():
            msg = "message must not be empty"
            raise ValueError(msg)
        return value

    @property
    def resolved_title(self) -> str:
        if self.title:
            return self.title
        if self.notifyx and self.notifyx.title:
            return self.notifyx.title
        return "Scheduled notification"


TaskConfig = KeepaliveConfig | NotificationConfig

_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    "keepalive": KeepaliveConfig,
    "notification": NotificationConfig,
}


def parse_task_config(task_type: str, raw: dict[str, Any] | None) -> TaskConfig:
    """Parse *raw* into the config variant selected by *task_type*.

    Raises TaskConfigError for unknown types or a payload that does not fit
    the variant.
    """
    model = _CONFIG_MODELS.get(task_type)
    if model is None:
        msg = f"Unknown task type: {task_type!r}"
        raise TaskConfigError(msg)
    if not isinstance(raw, dict):
        msg = f"Config for {task_type} task must be an object"
        raise TaskConfigError(msg)
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        msg = f"Invalid {task_type} config: {problems}"
        raise TaskConfigError(msg) from exc


@dataclass
class Task:
    """A scheduled job owned by a user.

    Attributes:
        id: Unique identifier (UUID).
        name: Human-readable name.
        type: ``"keepalive"`` or ``"notification"``.
        schedule: Recurrence rule, either a 5-field cron string or a
            JSON-encoded interval rule.
        config: Type-specific payload, see ``parse_task_config``.
        created_by: Owner user id.
        enabled: Whether the scheduler considers the task.
        created_at: ISO 8601 timestamp.
        updated_at: ISO 8601 timestamp.
        last_executed: ISO 8601 timestamp of the last attempt.
        last_status: ``"success"``, ``"failure"`` or None.
    """

    id: str
    name: str
    type: str
    schedule: str
    config: dict[str, Any]
    created_by: str
    enabled: bool = True
    created_at: str = ""
    updated_at: str = ""
    last_executed: str | None = None
    last_status: str | None = None

    def __post_init__(self) -> None:
        now = datetime.now(UTC).isoformat()
        if not self.created_at:
            self.created_at = now
        if not self.updated_at:
            self.updated_at = self.created_at

    @property
    def is_keepalive(self) -> bool:
        return self.type == "keepalive"

    @property
    def is_notification(self) -> bool:
        return self.type == "notification"

    @property
    def last_executed_at(self) -> datetime | None:
        return parse_timestamp(self.last_executed)

    def parsed_config(self) -> TaskConfig:
        return parse_task_config(self.type, self.config)

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.id,
            self.name,
            self.type,
            self.schedule,
            json.dumps(self.config),
            int(self.enabled),
            self.created_by,
            self.created_at,
            self.updated_at,
            self.last_executed,
            self.last_status,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            name=row[1],
            type=row[2],
            schedule=row[3],
            config=json.loads(row[4]) if row[4] else {},
            enabled=bool(row[5]),
            created_by=row[6],
            created_at=row[7],
            updated_at=row[8],
            last_executed=row[9],
            last_status=row[10],
        )


@dataclass
class ExecutionResult:
    """Outcome of one task run, before it is persisted as an ExecutionLog."""

    success: bool
    response_time: int
    status_code: int | None = None
    error: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def status(self) -> str:
        return "success" if self.success else "failure"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def make_id() -> str:
    """Generate a new record ID."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)."""
    return math.floor(value + 0.5)
