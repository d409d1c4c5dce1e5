#!/usr/bin/env python3
"""Query execution, system and audit logs from the local SQLite database.

Usage examples:
    # Latest 20 log entries
    python scripts/logs.py

    # Failed runs only
    python scripts/logs.py --status failure

    # Last hour of one task's runs
    python scripts/logs.py --task 3f2c... --hours 1

    # System errors
    python scripts/logs.py --type system --limit 50
"""

import argparse
import asyncio
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from keepalive.logs.models import LogQuery
from keepalive.logs.service import LogService
from keepalive.storage.sqlite import SQLiteStorage

COLORS = {
    "failure": "\033[31m",  # red
    "success": "\033[32m",  # green
}
RESET = "\033[0m"


def format_log(entry, *, color: bool = True) -> str:
    """Format a single log entry for display."""
    status = entry.status
    if color:
        status = f"{COLORS.get(entry.status, '')}{entry.status:8s}{RESET}"
    else:
        status = f"{entry.status:8s}"

    if entry.log_type == "execution":
        timing = f"{entry.response_time}ms" if entry.response_time is not None else "-"
        code = entry.status_code if entry.status_code is not None else "-"
        detail = f"task={entry.task_id} code={code} time={timing}"
    elif entry.log_type == "system":
        detail = f"{(entry.details or {}).get('error_type', '?')}"
    else:
        details = entry.details or {}
        detail = f"{details.get('user_id', '?')} {details.get('action', '?')} {details.get('resource_id', '')}"

    message = f" {entry.error_message}" if entry.error_message else ""
    return f"{entry.execution_time} {status} [{entry.log_type}] {detail}{message}"


async def fetch_logs(db_path: Path | None, query: LogQuery):
    service = LogService(SQLiteStorage(db_path=db_path))
    result = await service.query_logs(query)
    if not result.success:
        print(f"ERROR: {result.error}", file=sys.stderr)
        sys.exit(1)
    return result.data or []


def main() -> None:
    parser = argparse.ArgumentParser(description="Query keepalive scheduler logs")
    parser.add_argument("--db", type=Path, help="Database path (default from settings)")
    parser.add_argument("--task", help="Only logs for this task id")
    parser.add_argument("--type", choices=["execution", "system", "audit"], help="Log type")
    parser.add_argument("--status", choices=["success", "failure"], help="Log status")
    parser.add_argument("--hours", type=float, help="Show logs from the last N hours")
    parser.add_argument("--limit", "-n", type=int, default=20, help="Max entries (default: 20)")
    parser.add_argument("--no-color", action="store_true", help="Disable color output")
    args = parser.parse_args()

    start_time = None
    if args.hours:
        start_time = (datetime.now(UTC) - timedelta(hours=args.hours)).isoformat()

    query = LogQuery(
        task_id=args.task,
        log_type=args.type,
        status=args.status,
        start_time=start_time,
        limit=args.limit,
    )
    logs = asyncio.run(fetch_logs(args.db, query))

    if not logs:
        print("No logs found matching criteria.")
        return

    print(f"--- {len(logs)} log entries ---\n")
    for entry in logs:
        print(format_log(entry, color=not args.no_color))


if __name__ == "__main__":
    main()
