"""Tests for SchedulerEngine lifecycle."""

from unittest.mock import AsyncMock

import pytest

from keepalive.scheduler.engine import TICK_JOB_ID, SchedulerEngine
from keepalive.scheduler.loop import TickSummary


@pytest.fixture
def loop() -> AsyncMock:
    lp = AsyncMock()
    lp.tick = AsyncMock(return_value=TickSummary(started_at="2025-06-01T10:15:00+00:00", evaluated=2))
    lp.drain = AsyncMock(return_value=0)
    return lp


@pytest.fixture
def engine(loop: AsyncMock) -> SchedulerEngine:
    return SchedulerEngine(loop, tick_seconds=60, timezone="America/Chicago", max_overlapping_ticks=4)


# -- Lifecycle -----------------------------------------------------------------


async def test_start_and_stop(engine: SchedulerEngine, loop: AsyncMock) -> None:
    await engine.start()
    assert engine.running is True

    await engine.stop()
    assert engine.running is False
    loop.drain.assert_awaited_once_with(timeout=30)


async def test_stop_when_not_running(engine: SchedulerEngine) -> None:
    await engine.stop()
    assert engine.running is False


async def test_tick_job_configuration(engine: SchedulerEngine) -> None:
    await engine.start()
    try:
        job = engine._scheduler.get_job(TICK_JOB_ID)
        assert job is not None
        assert job.max_instances == 4
        assert job.trigger.interval.total_seconds() == 60
        next_tick = engine.next_tick_time()
        assert next_tick.second == 0
        assert next_tick.microsecond == 0
    finally:
        await engine.stop()


# -- Tick callback -------------------------------------------------------------


async def test_run_tick_delegates_to_loop(engine: SchedulerEngine, loop: AsyncMock) -> None:
    await engine._run_tick()
    loop.tick.assert_awaited_once()
    assert engine.last_summary.evaluated == 2


async def test_run_tick_survives_loop_errors(engine: SchedulerEngine, loop: AsyncMock) -> None:
    loop.tick.side_effect = RuntimeError("boom")
    await engine._run_tick()
    assert engine.last_summary is None
