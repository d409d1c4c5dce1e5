"""Tests for AlertEngine decisions and channel fan-out."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from keepalive.logs.models import ExecutionLog
from keepalive.notifications.alerts import AlertEngine
from keepalive.notifications.models import DeliveryResult, NotificationSettings
from keepalive.storage.base import StoreResult
from keepalive.storage.sqlite import SQLiteStorage
from keepalive.tasks.models import ExecutionResult, Task, make_id

BASE_TIME = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)


def _make_task(task_id: str = "task1", user_id: str = "user1") -> Task:
    return Task(
        id=task_id,
        name="API health",
        type="keepalive",
        schedule="*/5 * * * *",
        config={"url": "https://example.com"},
        created_by=user_id,
    )


def _make_channel(name: str, success: bool = True) -> AsyncMock:
    channel = AsyncMock()
    channel.name = name
    channel.send = AsyncMock(
        return_value=DeliveryResult(name, success=success, error=None if success else "down")
    )
    return channel


async def _add_history(storage: SQLiteStorage, task_id: str, statuses: list[str]) -> None:
    """Write logs oldest first, so ``statuses[-1]`` is the newest."""
    for i, status in enumerate(statuses):
        await storage.create_execution_log(
            ExecutionLog(
                id=make_id(),
                task_id=task_id,
                status=status,
                execution_time=(BASE_TIME + timedelta(minutes=i)).isoformat(),
            )
        )


async def _save_settings(storage: SQLiteStorage, **kwargs) -> NotificationSettings:
    settings = NotificationSettings(id="s1", user_id="user1", **kwargs)
    await storage.save_notification_settings(settings)
    return settings


@pytest.fixture
def channels() -> dict[str, AsyncMock]:
    return {name: _make_channel(name) for name in ("notifyx", "webhook", "email")}


@pytest.fixture
def engine(storage: SQLiteStorage, channels: dict[str, AsyncMock]) -> AlertEngine:
    return AlertEngine(storage, channels=channels.values())


# -- should_alert_on_failure -----------------------------------------------------


class TestShouldAlertOnFailure:
    @pytest.mark.parametrize(
        ("history", "threshold", "expected"),
        [
            (["failure", "failure"], 3, False),
            (["failure", "failure", "failure"], 3, True),
            (["success", "failure", "failure", "failure", "failure"], 3, True),
            (["failure", "failure", "success", "failure", "failure"], 3, False),
            (["failure", "success", "failure"], 1, True),
            (["failure", "failure", "success"], 1, False),
            ([], 1, False),
        ],
    )
    async def test_consecutive_failures(
        self, engine: AlertEngine, storage: SQLiteStorage, history, threshold, expected
    ):
        await _add_history(storage, "task1", history)
        assert await engine.should_alert_on_failure("task1", threshold) is expected

    async def test_threshold_below_one_is_one(self, engine: AlertEngine, storage: SQLiteStorage):
        await _add_history(storage, "task1", ["failure"])
        assert await engine.should_alert_on_failure("task1", 0) is True

    async def test_only_execution_logs_count(
        self, engine: AlertEngine, storage: SQLiteStorage, log_service
    ):
        await _add_history(storage, "task1", ["failure", "failure"])
        await log_service.log_error("boom", "system trouble")
        assert await engine.should_alert_on_failure("task1", 3) is False

    async def test_storage_error_means_no_alert(self):
        storage = AsyncMock()
        storage.get_execution_logs_by_task_id = AsyncMock(return_value=StoreResult.fail("db down"))
        engine = AlertEngine(storage)
        assert await engine.should_alert_on_failure("task1", 1) is False


# -- should_alert_on_recovery ----------------------------------------------------


class TestShouldAlertOnRecovery:
    @pytest.mark.parametrize(
        ("history", "expected"),
        [
            (["failure", "success"], True),
            (["failure", "failure", "failure", "success"], True),
            (["success", "success"], False),
            (["failure", "failure"], False),
            (["success", "failure"], False),
            (["failure", "success", "success"], False),
            (["success"], False),
            ([], False),
        ],
    )
    async def test_transition(self, engine: AlertEngine, storage: SQLiteStorage, history, expected):
        await _add_history(storage, "task1", history)
        assert await engine.should_alert_on_recovery("task1") is expected


# -- build_alert_payload ---------------------------------------------------------


class TestBuildAlertPayload:
    def test_failure_payload(self, engine: AlertEngine):
        payload = engine.build_alert_payload("failure", _make_task(), error="HTTP 500: Error", now=BASE_TIME)
        assert payload.kind == "failure"
        assert payload.title == "Task failed: API health"
        assert "HTTP 500: Error" in payload.message
        assert payload.priority == "high"
        assert payload.timestamp == BASE_TIME.isoformat()
        assert payload.to_dict()["task_id"] == "task1"

    def test_recovery_payload(self, engine: AlertEngine):
        payload = engine.build_alert_payload("recovery", _make_task(), now=BASE_TIME)
        assert payload.title == "Task recovered: API health"
        assert payload.priority == "normal"
        assert payload.error is None

    def test_respects_length_limits(self, engine: AlertEngine):
        task = _make_task()
        task.name = "n" * 300
        payload = engine.build_alert_payload("failure", task, error="e" * 5000)
        assert len(payload.title) <= 100
        assert len(payload.message) <= 2000
        assert payload.title.endswith("...")

    def test_unknown_kind(self, engine: AlertEngine):
        with pytest.raises(ValueError, match="Unknown alert kind"):
            engine.build_alert_payload("warning", _make_task())


# -- send_failure_alert / send_recovery_alert ------------------------------------


class TestSendAlerts:
    async def test_zero_channels_is_success(self, engine: AlertEngine, storage: SQLiteStorage):
        await _save_settings(storage)
        outcome = await engine.send_failure_alert(_make_task(), "boom")
        assert outcome.success is True
        assert outcome.triggered is False
        assert outcome.attempts == 0

    async def test_missing_settings_is_success(self, engine: AlertEngine, channels):
        outcome = await engine.send_failure_alert(_make_task(), "boom")
        assert outcome.success is True
        assert outcome.attempts == 0
        channels["notifyx"].send.assert_not_awaited()

    async def test_fans_out_to_enabled_channels(
        self, engine: AlertEngine, storage: SQLiteStorage, channels
    ):
        await _save_settings(storage, notifyx_enabled=True, email_enabled=True, failure_threshold=1)
        await _add_history(storage, "task1", ["failure"])
        outcome = await engine.send_failure_alert(_make_task(), "boom")

        assert outcome.success is True
        assert outcome.triggered is True
        assert [d.channel for d in outcome.deliveries] == ["notifyx", "email"]
        channels["notifyx"].send.assert_awaited_once()
        channels["email"].send.assert_awaited_once()
        channels["webhook"].send.assert_not_awaited()
        payload = channels["notifyx"].send.await_args.args[1]
        assert payload.kind == "failure"

    async def test_failure_alert_waits_for_threshold(
        self, engine: AlertEngine, storage: SQLiteStorage, channels
    ):
        await _save_settings(storage, notifyx_enabled=True, failure_threshold=3)
        await _add_history(storage, "task1", ["failure"])

        outcome = await engine.send_failure_alert(_make_task(), "boom")

        assert outcome.success is True
        assert outcome.triggered is False
        assert outcome.attempts == 0
        channels["notifyx"].send.assert_not_awaited()

    @pytest.mark.parametrize(("threshold", "failures"), [(1, 1), (3, 3), (3, 5), (2, 1), (5, 4)])
    async def test_failure_alert_sent_iff_threshold_reached(
        self, engine: AlertEngine, storage: SQLiteStorage, channels, threshold, failures
    ):
        await _save_settings(storage, notifyx_enabled=True, failure_threshold=threshold)
        await _add_history(storage, "task1", ["failure"] * failures)

        outcome = await engine.send_failure_alert(_make_task(), "boom")

        assert outcome.success is True
        assert channels["notifyx"].send.await_count == (1 if failures >= threshold else 0)

    async def test_one_channel_failure_does_not_block_others(self, storage: SQLiteStorage):
        broken = _make_channel("notifyx")
        broken.send = AsyncMock(side_effect=RuntimeError("socket closed"))
        webhook = _make_channel("webhook")
        engine = AlertEngine(storage, channels=[broken, webhook])
        await _save_settings(storage, notifyx_enabled=True, webhook_enabled=True)

        outcome = await engine.send_recovery_alert(_make_task())

        webhook.send.assert_awaited_once()
        assert outcome.success is True
        assert outcome.deliveries[0].success is False
        assert "socket closed" in outcome.deliveries[0].error
        assert "notifyx" in outcome.error

    async def test_all_channels_failing(self, storage: SQLiteStorage, log_service):
        engine = AlertEngine(
            storage, channels=[_make_channel("webhook", success=False)], log_service=log_service
        )
        await _save_settings(storage, webhook_enabled=True, failure_threshold=1)
        await _add_history(storage, "task1", ["failure"])

        outcome = await engine.send_failure_alert(_make_task(), "boom")

        assert outcome.success is False
        assert outcome.attempts == 1
        errors = (await log_service.get_error_logs()).data
        assert errors[0].details["error_type"] == "alert_delivery"

    async def test_enabled_channel_without_implementation(self, storage: SQLiteStorage):
        engine = AlertEngine(storage, channels=[])
        await _save_settings(storage, email_enabled=True, failure_threshold=1)
        await _add_history(storage, "task1", ["failure"])
        outcome = await engine.send_failure_alert(_make_task(), "boom")
        assert outcome.success is False
        assert outcome.deliveries[0].error == "channel not available"


# -- evaluate --------------------------------------------------------------------


class TestEvaluate:
    async def test_threshold_scenario(self, engine: AlertEngine, storage: SQLiteStorage, channels):
        await _save_settings(
            storage, notifyx_enabled=True, webhook_enabled=True, failure_threshold=3
        )
        task = _make_task()
        failed = ExecutionResult(success=False, response_time=10, error="HTTP 500: Error")

        await _add_history(storage, "task1", ["failure", "failure"])
        outcome = await engine.evaluate(task, failed)
        assert outcome.triggered is False
        channels["notifyx"].send.assert_not_awaited()

        await _add_history(storage, "task1", ["failure", "failure", "failure"])
        outcome = await engine.evaluate(task, failed)
        assert outcome.triggered is True
        assert channels["notifyx"].send.await_count == 1
        assert channels["webhook"].send.await_count == 1

    async def test_recovery_after_failure(self, engine: AlertEngine, storage: SQLiteStorage, channels):
        await _save_settings(storage, webhook_enabled=True)
        await _add_history(storage, "task1", ["failure", "success"])

        outcome = await engine.evaluate(_make_task(), ExecutionResult(success=True, response_time=5))

        assert outcome.triggered is True
        payload = channels["webhook"].send.await_args.args[1]
        assert payload.kind == "recovery"

    async def test_no_recovery_on_steady_success(
        self, engine: AlertEngine, storage: SQLiteStorage, channels
    ):
        await _save_settings(storage, webhook_enabled=True)
        await _add_history(storage, "task1", ["success", "success"])

        outcome = await engine.evaluate(_make_task(), ExecutionResult(success=True, response_time=5))

        assert outcome.triggered is False
        channels["webhook"].send.assert_not_awaited()
