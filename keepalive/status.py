"""System status: task and execution counts, recent errors, database health."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from keepalive.logs.models import LogQuery, LogSummary
from keepalive.storage.base import StoreResult
from keepalive.tasks.models import round_half_up

if TYPE_CHECKING:
    from collections.abc import Callable

    from keepalive.logs.models import ExecutionLog
    from keepalive.storage.base import Storage

logger = logging.getLogger(__name__)

STATUS_WINDOW = timedelta(hours=24)
RECENT_ERROR_LIMIT = 5

# Failure rate is only judged once the window holds this many runs.
MIN_EXECUTIONS_FOR_RATE = 10
FAILURE_RATE_CRITICAL = 50.0
FAILURE_RATE_WARNING = 20.0
ERROR_SPIKE_THRESHOLD = 10


@dataclass
class TaskCounts:
    total: int = 0
    active: int = 0
    inactive: int = 0
    keepalive: int = 0
    notification: int = 0


@dataclass
class ExecutionStats:
    total: int = 0
    last_24h: int = 0
    success_rate: float = 0.0
    average_response_time: int = 0


@dataclass
class ErrorStats:
    last_24h: int = 0
    recent_errors: list[ExecutionLog] = field(default_factory=list)


@dataclass
class DatabaseHealth:
    healthy: bool
    tables: dict[str, int] = field(default_factory=dict)
    error: str | None = None


@dataclass
class Anomaly:
    type: str
    severity: str
    message: str


@dataclass
class SystemStatus:
    timestamp: str
    uptime: float
    health: str
    tasks: TaskCounts
    executions: ExecutionStats
    errors: ErrorStats
    database: DatabaseHealth
    anomalies: list[Anomaly] = field(default_factory=list)


@dataclass
class HealthCheck:
    status: str
    timestamp: str
    database: DatabaseHealth

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


def detect_anomalies(
    database: DatabaseHealth, recent: LogSummary, errors_last_24h: int
) -> list[Anomaly]:
    """Flag an unreachable database, a high failure rate and error spikes."""
    anomalies: list[Anomaly] = []
    if not database.healthy:
        anomalies.append(
            Anomaly("database_error", "critical", f"Database check failed: {database.error}")
        )

    if recent.total >= MIN_EXECUTIONS_FOR_RATE:
        failure_rate = recent.failed / recent.total * 100
        severity = None
        if failure_rate >= FAILURE_RATE_CRITICAL:
            severity = "critical"
        elif failure_rate >= FAILURE_RATE_WARNING:
            severity = "warning"
        if severity:
            anomalies.append(
                Anomaly(
                    "high_failure_rate",
                    severity,
                    f"{failure_rate:.1f}% of {recent.total} runs failed in the last 24 hours",
                )
            )

    if errors_last_24h >= ERROR_SPIKE_THRESHOLD:
        anomalies.append(
            Anomaly(
                "error_spike",
                "warning",
                f"{errors_last_24h} system errors in the last 24 hours",
            )
        )
    return anomalies


def overall_health(anomalies: list[Anomaly]) -> str:
    severities = {anomaly.severity for anomaly in anomalies}
    if "critical" in severities:
        return "critical"
    if "warning" in severities:
        return "warning"
    return "healthy"


class StatusService:
    """Aggregates a point-in-time view of the scheduler's state.

    Uptime counts from construction. Each section is loaded independently:
    a failed query leaves that section at its zero value and is logged, so
    the report is still produced while the database is degraded.

    Args:
        storage: Storage backend to inspect.
        clock: Monotonic clock used for uptime.
    """

    def __init__(self, storage: Storage, clock: Callable[[], float] = time.monotonic) -> None:
        self._storage = storage
        self._clock = clock
        self._started = clock()

    @property
    def uptime(self) -> float:
        """Seconds since the service was created."""
        return self._clock() - self._started

    async def check_database(self) -> DatabaseHealth:
        result = await self._storage.get_table_counts()
        if not result.success:
            return DatabaseHealth(healthy=False, error=result.error)
        return DatabaseHealth(healthy=True, tables=result.data or {})

    async def check_health(self, now: datetime | None = None) -> HealthCheck:
        """Liveness check: healthy while the database answers."""
        now = now or datetime.now(UTC)
        database = await self.check_database()
        if not database.healthy:
            logger.warning("Health check failed: %s", database.error)
        return HealthCheck(
            status="healthy" if database.healthy else "unhealthy",
            timestamp=now.isoformat(),
            database=database,
        )

    async def get_system_status(self, now: datetime | None = None) -> StoreResult[SystemStatus]:
        now = now or datetime.now(UTC)
        since = (now - STATUS_WINDOW).isoformat()

        database = await self.check_database()
        tasks = await self._task_counts()
        overall = await self._summary("execution")
        recent = await self._summary("execution", since)
        system_errors = await self._summary("system", since)
        recent_errors = await self._storage.query_logs(
            LogQuery(log_type="system", limit=RECENT_ERROR_LIMIT)
        )
        if not recent_errors.success:
            logger.warning("Status: failed to load recent errors: %s", recent_errors.error)

        success_rate = overall.succeeded / overall.total * 100 if overall.total else 0.0
        average = overall.average_response_time
        anomalies = detect_anomalies(database, recent, system_errors.total)
        status = SystemStatus(
            timestamp=now.isoformat(),
            uptime=self.uptime,
            health=overall_health(anomalies),
            tasks=tasks,
            executions=ExecutionStats(
                total=overall.total,
                last_24h=recent.total,
                success_rate=round(success_rate, 2),
                average_response_time=round_half_up(average) if average is not None else 0,
            ),
            errors=ErrorStats(
                last_24h=system_errors.total,
                recent_errors=recent_errors.data or [],
            ),
            database=database,
            anomalies=anomalies,
        )
        if status.health != "healthy":
            logger.warning(
                "System health %s: %s",
                status.health,
                "; ".join(anomaly.message for anomaly in anomalies),
            )
        return StoreResult.ok(status)

    async def _task_counts(self) -> TaskCounts:
        result = await self._storage.get_all_tasks()
        if not result.success:
            logger.warning("Status: failed to load tasks: %s", result.error)
            return TaskCounts()
        tasks = result.data or []
        active = sum(1 for task in tasks if task.enabled)
        return TaskCounts(
            total=len(tasks),
            active=active,
            inactive=len(tasks) - active,
            keepalive=sum(1 for task in tasks if task.type == "keepalive"),
            notification=sum(1 for task in tasks if task.type == "notification"),
        )

    async def _summary(self, log_type: str, since: str | None = None) -> LogSummary:
        result = await self._storage.summarize_logs(log_type, since)
        if not result.success:
            logger.warning("Status: failed to summarize %s logs: %s", log_type, result.error)
            return LogSummary()
        return result.data or LogSummary()
