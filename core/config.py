"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for the lifecycle engine happen here. No module
should call os.getenv() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. eol_api_base -> EOL_API_BASE).

  Snapshot, not global: the rule engine never reads Settings. Callers take a
      frozen TaskGenerationConfig via Settings.task_generation_config() and pass
      it explicitly into every evaluation.

Layer rule: core/ is the kernel. This module may not import from api/,
portfolio/, or cache/.
"""

import logging
from datetime import date, datetime, timezone
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import TaskGenerationConfig

logger = logging.getLogger("lifecycle.config")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in tests
    without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///lifecycle.db"

    # ------------------------------------------------------------------
    # End-of-life feed
    # ------------------------------------------------------------------

    eol_api_base: str = "https://endoflife.date/api"
    eol_timeout_seconds: int = 10
    eol_cache_ttl_seconds: int = 86400
    eol_refresh_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Task generation
    # ------------------------------------------------------------------

    task_generation_enabled: bool = True
    role_revalidation_days: int = 180
    documentation_review_days: int = 365
    app_info_review_days: int = 365
    critical_vulnerability_due_days: int = 30
    high_vulnerability_due_days: int = 60
    medium_vulnerability_due_days: int = 90
    treat_exposed_secrets_as_critical: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_thresholds(self) -> "Settings":
        """Reject day thresholds that would make every check fire (or none)."""
        for name in (
            "role_revalidation_days",
            "documentation_review_days",
            "app_info_review_days",
            "critical_vulnerability_due_days",
            "high_vulnerability_due_days",
            "medium_vulnerability_due_days",
            "eol_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive number of days/seconds.")
        if self.eol_cache_ttl_seconds < 0:
            raise ValueError("EOL_CACHE_TTL_SECONDS must not be negative.")
        return self

    def task_generation_config(self) -> TaskGenerationConfig:
        """Immutable snapshot of the task-generation thresholds."""
        return TaskGenerationConfig(
            role_revalidation_days=self.role_revalidation_days,
            documentation_review_days=self.documentation_review_days,
            app_info_review_days=self.app_info_review_days,
            critical_vulnerability_due_days=self.critical_vulnerability_due_days,
            high_vulnerability_due_days=self.high_vulnerability_due_days,
            medium_vulnerability_due_days=self.medium_vulnerability_due_days,
            treat_exposed_secrets_as_critical=self.treat_exposed_secrets_as_critical,
            enabled=self.task_generation_enabled,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


def utc_now() -> datetime:
    """Timezone-aware current UTC time. Default for every injectable `now`."""
    return datetime.now(timezone.utc)


def short_date(value: date) -> str:
    """Render a date as "Nov 10, 2026"."""
    return f"{value:%b} {value.day}, {value.year}"
