#!/usr/bin/env python3
"""Show system status and health from the local SQLite database.

Usage examples:
    # Full status report
    python scripts/status.py

    # Health check only; exits 1 when unhealthy
    python scripts/status.py --health
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from keepalive.status import StatusService
from keepalive.storage.sqlite import SQLiteStorage

COLORS = {
    "healthy": "\033[32m",  # green
    "warning": "\033[33m",  # yellow
    "critical": "\033[31m",  # red
    "unhealthy": "\033[31m",
}
RESET = "\033[0m"


def _paint(label: str, color: bool) -> str:
    return f"{COLORS.get(label, '')}{label}{RESET}" if color else label


def print_status(status, *, color: bool = True) -> None:
    tasks, runs, errors = status.tasks, status.executions, status.errors
    print(f"Health:     {_paint(status.health, color)}  ({status.timestamp})")
    print(
        f"Tasks:      {tasks.total} total, {tasks.active} active, {tasks.inactive} inactive "
        f"({tasks.keepalive} keepalive, {tasks.notification} notification)"
    )
    print(
        f"Executions: {runs.total} total, {runs.last_24h} in 24h, "
        f"{runs.success_rate:.2f}% success, {runs.average_response_time}ms avg"
    )
    print(f"Errors:     {errors.last_24h} in 24h")
    for entry in errors.recent_errors:
        print(f"  {entry.execution_time} {entry.error_message}")
    db = status.database
    tables = ", ".join(f"{name}={count}" for name, count in db.tables.items())
    print(f"Database:   {'ok' if db.healthy else db.error}  {tables}")
    for anomaly in status.anomalies:
        print(f"  ! [{_paint(anomaly.severity, color)}] {anomaly.type}: {anomaly.message}")


async def run(db_path: Path | None, health_only: bool, color: bool) -> int:
    service = StatusService(SQLiteStorage(db_path=db_path))
    if health_only:
        check = await service.check_health()
        print(f"{_paint(check.status, color)} {check.database.error or ''}".rstrip())
        return 0 if check.healthy else 1

    result = await service.get_system_status()
    if not result.success:
        print(f"ERROR: {result.error}", file=sys.stderr)
        return 1
    print_status(result.data, color=color)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Show keepalive scheduler status")
    parser.add_argument("--db", type=Path, help="Database path (default from settings)")
    parser.add_argument("--health", action="store_true", help="Only run the health check")
    parser.add_argument("--no-color", action="store_true", help="Disable color output")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.db, args.health, not args.no_color)))


if __name__ == "__main__":
    main()
