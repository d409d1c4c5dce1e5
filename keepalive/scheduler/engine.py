"""APScheduler lifecycle driving the tick loop."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from keepalive.config import settings

if TYPE_CHECKING:
    from keepalive.scheduler.loop import SchedulerLoop, TickSummary

logger = logging.getLogger(__name__)

TICK_JOB_ID = "keepalive-tick"


class SchedulerEngine:
    """Fires ``SchedulerLoop.tick`` on a fixed interval.

    Ticks start on a minute boundary. A tick only evaluates tasks and starts
    the due runs, so it returns quickly; ``max_overlapping_ticks`` bounds how
    many ticks may still be evaluating at once.

    Args:
        loop: The tick driver.
        tick_seconds: Seconds between ticks (default from settings).
        timezone: IANA timezone string (default from settings).
        max_overlapping_ticks: APScheduler ``max_instances`` for the tick job.
    """

    def __init__(
        self,
        loop: SchedulerLoop,
        tick_seconds: int | None = None,
        timezone: str | None = None,
        max_overlapping_ticks: int | None = None,
    ) -> None:
        self._loop = loop
        self._tick_seconds = tick_seconds or settings.scheduler_tick_seconds
        self._timezone = timezone or settings.scheduler_timezone
        self._max_instances = max_overlapping_ticks or settings.scheduler_max_overlapping_ticks
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._running = False
        self.last_summary: TickSummary | None = None

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register the tick job and start the scheduler."""
        now = datetime.now(ZoneInfo(self._timezone))
        first_tick = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
        self._scheduler.add_job(
            self._run_tick,
            trigger=IntervalTrigger(
                seconds=self._tick_seconds,
                start_date=first_tick,
                timezone=self._timezone,
            ),
            id=TICK_JOB_ID,
            name="Scheduler tick",
            max_instances=self._max_instances,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Scheduler started: tick every %ds from %s (tz=%s)",
            self._tick_seconds,
            first_tick.isoformat(),
            self._timezone,
        )

    async def stop(self, drain_timeout: float | None = 30) -> None:
        """Shut down the scheduler, then wait up to *drain_timeout* for in-flight runs."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            still_running = await self._loop.drain(timeout=drain_timeout)
            if still_running:
                logger.warning("Scheduler stopped with %d run(s) still in flight", still_running)
            else:
                logger.info("Scheduler stopped")

    def next_tick_time(self) -> datetime | None:
        job = self._scheduler.get_job(TICK_JOB_ID)
        return job.next_run_time if job else None

    # -- Internal --------------------------------------------------------------

    async def _run_tick(self) -> None:
        """Callback invoked by APScheduler."""
        try:
            self.last_summary = await self._loop.tick()
        except Exception:
            logger.exception("Scheduler tick failed")
