"""Storage contract: the narrow CRUD surface the core depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from keepalive.logs.models import ExecutionLog, LogQuery, LogSummary
    from keepalive.notifications.models import NotificationSettings
    from keepalive.tasks.models import Task

T = TypeVar("T")


@dataclass
class StoreResult(Generic[T]):
    """Uniform result of a storage call.

    Storage never raises across this boundary: callers check ``success``.
    """

    data: T | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, data: T | None = None) -> StoreResult[T]:
        return cls(data=data)

    @classmethod
    def fail(cls, error: str) -> StoreResult[T]:
        return cls(error=error)


@dataclass
class TaskFilter:
    """Optional filters for ``get_all_tasks``."""

    type: str | None = None
    enabled: bool | None = None
    created_by: str | None = None


@runtime_checkable
class Storage(Protocol):
    """Protocol every storage backend must satisfy."""

    async def get_task_by_id(self, task_id: str) -> StoreResult[Task]:
        """Fetch a task; ``data`` is None when it does not exist."""
        ...

    async def get_all_tasks(self, task_filter: TaskFilter | None = None) -> StoreResult[list[Task]]:
        ...

    async def create_task(self, task: Task) -> StoreResult[Task]:
        ...

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> StoreResult[Task]:
        """Apply a partial update and return the stored task."""
        ...

    async def delete_task(self, task_id: str) -> StoreResult[bool]:
        ...

    async def create_execution_log(self, log: ExecutionLog) -> StoreResult[ExecutionLog]:
        ...

    async def get_execution_logs_by_task_id(
        self, task_id: str, limit: int = 100
    ) -> StoreResult[list[ExecutionLog]]:
        """Execution logs for a task, newest first."""
        ...

    async def query_logs(self, query: LogQuery) -> StoreResult[list[ExecutionLog]]:
        ...

    async def summarize_logs(
        self, log_type: str = "execution", since: str | None = None
    ) -> StoreResult[LogSummary]:
        """Counts and mean response time for one log type, optionally since a time."""
        ...

    async def get_table_counts(self) -> StoreResult[dict[str, int]]:
        """Row count per table; a failed call means the database is unreachable."""
        ...

    async def get_notification_settings_by_user_id(
        self, user_id: str
    ) -> StoreResult[NotificationSettings]:
        """Fetch a user's settings; ``data`` is None when none are saved."""
        ...

    async def save_notification_settings(
        self, notification_settings: NotificationSettings
    ) -> StoreResult[NotificationSettings]:
        ...
