"""Tests for Settings configuration model."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from keepalive.config import Settings


class TestDefaults:
    def test_default_database_path(self):
        assert Settings().database_path == Path("data/keepalive.db")

    def test_default_scheduler(self):
        s = Settings()
        assert s.scheduler_timezone == "UTC"
        assert s.scheduler_tick_seconds == 60
        assert s.scheduler_max_overlapping_ticks == 5

    def test_default_failure_threshold(self):
        assert Settings().default_failure_threshold == 3

    def test_default_notifyx_url(self):
        assert Settings().notifyx_api_url == "https://api.notifyx.cn/v1/send"

    def test_default_log_level(self):
        assert Settings().log_level == "INFO"


class TestTimeouts:
    def test_seconds_from_milliseconds(self):
        s = Settings(http_timeout_ms=1500, notification_timeout_ms=250)
        assert s.http_timeout_seconds == 1.5
        assert s.notification_timeout_seconds == 0.25

    def test_default_http_timeout(self):
        assert Settings().http_timeout_seconds == 30.0


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"scheduler_tick_seconds": 0},
            {"http_timeout_ms": -1},
            {"default_failure_threshold": 0},
        ],
    )
    def test_rejects_out_of_range(self, kwargs):
        with pytest.raises(ValidationError):
            Settings(**kwargs)


def test_environment_ignored_under_pytest(monkeypatch):
    monkeypatch.setenv("SCHEDULER_TICK_SECONDS", "5")
    assert Settings().scheduler_tick_seconds == 60
