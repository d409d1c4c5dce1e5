"""ExecutionLog data model and log query filters."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from keepalive.tasks.models import make_id

if TYPE_CHECKING:
    from keepalive.tasks.models import ExecutionResult

LOG_TYPES = ("execution", "system", "audit")


@dataclass
class ExecutionLog:
    """An append-only history entry.

    ``execution`` entries describe one task run and always carry a task id.
    ``system`` (errors) and ``audit`` (user actions) entries never do.
    """

    id: str
    status: str
    task_id: str | None = None
    log_type: str = "execution"
    execution_time: str = ""
    response_time: int | None = None
    status_code: int | None = None
    error_message: str | None = None
    details: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.log_type not in LOG_TYPES:
            msg = f"Unknown log type: {self.log_type!r}"
            raise ValueError(msg)
        if self.status not in ("success", "failure"):
            msg = f"Unknown log status: {self.status!r}"
            raise ValueError(msg)
        if self.log_type == "execution" and not self.task_id:
            msg = "execution logs require a task_id"
            raise ValueError(msg)
        if self.log_type != "execution" and self.task_id is not None:
            msg = f"{self.log_type} logs must not carry a task_id"
            raise ValueError(msg)
        if not self.execution_time:
            self.execution_time = datetime.now(UTC).isoformat()

    @classmethod
    def from_result(cls, task_id: str, result: ExecutionResult) -> ExecutionLog:
        """Build an execution log from a run's result."""
        return cls(
            id=make_id(),
            task_id=task_id,
            log_type="execution",
            execution_time=result.timestamp,
            status=result.status,
            response_time=result.response_time,
            status_code=result.status_code,
            error_message=result.error,
            details=result.to_dict(),
        )

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``execution_logs`` column order."""
        return (
            self.id,
            self.task_id,
            self.log_type,
            self.execution_time,
            self.status,
            self.response_time,
            self.status_code,
            self.error_message,
            json.dumps(self.details) if self.details is not None else None,
        )

    @classmethod
    def from_row(cls, row: tuple) -> ExecutionLog:
        return cls(
            id=row[0],
            task_id=row[1],
            log_type=row[2],
            execution_time=row[3],
            status=row[4],
            response_time=row[5],
            status_code=row[6],
            error_message=row[7],
            details=json.loads(row[8]) if row[8] else None,
        )


@dataclass
class LogQuery:
    """Filters for listing logs. Results are always newest first."""

    task_id: str | None = None
    task_type: str | None = None
    log_type: str | None = None
    status: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    limit: int = 100
    offset: int = 0


@dataclass
class LogSummary:
    """Aggregate counts over a slice of the log table."""

    total: int = 0
    succeeded: int = 0
    average_response_time: float | None = None

    @property
    def failed(self) -> int:
        return self.total - self.succeeded
