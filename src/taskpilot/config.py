"""Application settings loaded from environment variables."""

import os
from datetime import timedelta
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """taskpilot configuration. All values come from environment variables."""

    # Storage
    data_dir: Path = Field(default=Path("data"))

    # Scheduler
    # Cron schedules without an explicit timezone are evaluated here. Changing
    # it shifts every persisted cron task that relies on the default.
    scheduler_timezone: str = Field(default="Asia/Shanghai")
    execution_retention_days: int = Field(default=30, ge=1)

    # Work hook
    dispatch_url: str = Field(default="")
    dispatch_timeout_seconds: float = Field(default=30.0, gt=0)

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

    def get_execution_retention(self) -> timedelta:
        """Return EXECUTION_RETENTION_DAYS as a timedelta."""
        return timedelta(days=self.execution_retention_days)


settings = Settings()
