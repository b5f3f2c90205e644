"""Application settings loaded from environment variables."""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Cadence configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/cadence.db"))

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")
    scheduler_interval_seconds: int = Field(default=60, ge=1)
    missed_grace_period_minutes: int = Field(default=60, ge=0)
    tick_timeout_seconds: int = Field(default=30, ge=1)

    # Deduplication
    due_key_precision: Literal["hour", "exact"] = Field(default="hour")
    recovery_key_precision: Literal["hour", "exact"] = Field(default="exact")
    emitted_keys_max: int = Field(default=1000, ge=2)

    # Recurrence safety limits
    max_recovery_iterations: int = Field(default=100, ge=1)
    max_occurrence_iterations: int = Field(default=1000, ge=1)

    # RRULE cache
    rule_cache_size: int = Field(default=500)

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


settings = Settings()
