"""System error and audit entries in the execution log table."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from keepalive.logs.models import ExecutionLog, LogQuery
from keepalive.storage.base import StoreResult
from keepalive.tasks.models import make_id

if TYPE_CHECKING:
    from keepalive.storage.base import Storage

logger = logging.getLogger(__name__)


class LogService:
    """Writes and reads ``system`` and ``audit`` log entries.

    Writing never raises: a storage failure is reported through ``logging``
    and returned as a failed StoreResult.

    Args:
        storage: Storage backend holding the ``execution_logs`` table.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def log_error(
        self,
        error_type: str,
        message: str,
        stack_trace: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> StoreResult[ExecutionLog]:
        """Record a system error."""
        try:
            entry = ExecutionLog(
                id=make_id(),
                log_type="system",
                status="failure",
                error_message=message,
                details={
                    "error_type": error_type,
                    "stack_trace": stack_trace,
                    "context": context,
                },
            )
            result = await self._storage.create_execution_log(entry)
        except Exception as exc:
            logger.exception("Failed to record system error (%s): %s", error_type, message)
            return StoreResult.fail(str(exc))
        if not result.success:
            logger.error(
                "Failed to record system error (%s): %s: %s", error_type, message, result.error
            )
        return result

    async def log_audit(
        self,
        user_id: str,
        action: str,
        resource_type: str,
        resource_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> StoreResult[ExecutionLog]:
        """Record a user action (create_task, delete_task, update_settings, ...)."""
        try:
            entry = ExecutionLog(
                id=make_id(),
                log_type="audit",
                status="success",
                details={
                    "user_id": user_id,
                    "action": action,
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "details": details,
                },
            )
            result = await self._storage.create_execution_log(entry)
        except Exception as exc:
            logger.exception("Failed to record audit entry: %s %s", action, resource_id)
            return StoreResult.fail(str(exc))
        if not result.success:
            logger.error("Failed to record audit entry %s: %s", action, result.error)
        return result

    async def get_error_logs(self, limit: int = 100, offset: int = 0) -> StoreResult[list[ExecutionLog]]:
        """System errors, newest first."""
        return await self._storage.query_logs(
            LogQuery(log_type="system", limit=limit, offset=offset)
        )

    async def get_audit_logs(
        self, user_id: str | None = None, limit: int = 100, offset: int = 0
    ) -> StoreResult[list[ExecutionLog]]:
        """Audit entries, newest first, optionally only those made by *user_id*."""
        if user_id is None:
            return await self._storage.query_logs(
                LogQuery(log_type="audit", limit=limit, offset=offset)
            )
        # The acting user lives in the details blob, so filter after loading.
        result = await self._storage.query_logs(LogQuery(log_type="audit", limit=10_000))
        if not result.success:
            return result
        entries = [
            entry
            for entry in result.data or []
            if (entry.details or {}).get("user_id") == user_id
        ]
        return StoreResult.ok(entries[offset : offset + limit])

    async def query_logs(self, query: LogQuery) -> StoreResult[list[ExecutionLog]]:
        return await self._storage.query_logs(query)
