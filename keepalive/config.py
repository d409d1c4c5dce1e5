"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Keepalive scheduler configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/keepalive.db"))

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")
    scheduler_tick_seconds: int = Field(default=60, gt=0)
    scheduler_max_overlapping_ticks: int = Field(default=5, gt=0)

    # Execution
    http_timeout_ms: int = Field(default=30000, gt=0)
    default_failure_threshold: int = Field(default=3, ge=1)

    # Notification channels
    notifyx_api_url: str = Field(default="https://api.notifyx.cn/v1/send")
    email_api_url: str = Field(default="https://api.resend.com/emails")
    email_from_address: str = Field(default="alerts@keepalive.local")
    notification_timeout_ms: int = Field(default=30000, gt=0)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def http_timeout_seconds(self) -> float:
        return self.http_timeout_ms / 1000

    @property
    def notification_timeout_seconds(self) -> float:
        return self.notification_timeout_ms / 1000


settings = Settings()
