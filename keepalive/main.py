"""Keepalive scheduler entry point."""

import asyncio
import logging

from keepalive.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper()),
)
logger = logging.getLogger(__name__)


def build_engine():
    """Wire storage, services and the tick loop into a SchedulerEngine."""
    from keepalive.logs.service import LogService
    from keepalive.notifications.alerts import AlertEngine
    from keepalive.notifications.email_channel import EmailChannel
    from keepalive.notifications.notifyx_channel import NotifyXChannel
    from keepalive.notifications.webhook_channel import WebhookChannel
    from keepalive.scheduler.engine import SchedulerEngine
    from keepalive.scheduler.executor import TaskExecutor
    from keepalive.scheduler.loop import SchedulerLoop
    from keepalive.scheduler.recorder import ExecutionRecorder
    from keepalive.storage.sqlite import SQLiteStorage
    from keepalive.transport import HttpTransport

    storage = SQLiteStorage()
    log_service = LogService(storage)
    transport = HttpTransport()
    notifyx = NotifyXChannel(transport)
    alerts = AlertEngine(
        storage,
        channels=[notifyx, WebhookChannel(transport), EmailChannel(transport)],
        log_service=log_service,
    )
    executor = TaskExecutor(
        storage,
        recorder=ExecutionRecorder(storage, log_service),
        alerts=alerts,
        transport=transport,
        notifyx=notifyx,
    )
    loop = SchedulerLoop(storage, executor, log_service=log_service)
    return SchedulerEngine(loop)


async def run() -> None:
    engine = build_engine()
    await engine.start()
    try:
        await asyncio.Event().wait()
    finally:
        await engine.stop()


def main() -> None:
    """Start the scheduler and run until interrupted."""
    logger.info(
        "Starting keepalive scheduler (db=%s, tick=%ds)...",
        settings.database_path,
        settings.scheduler_tick_seconds,
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
