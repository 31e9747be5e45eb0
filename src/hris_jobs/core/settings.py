"""Engine settings.

All fields can be set through ``HRIS_JOBS_*`` environment variables
(``HRIS_JOBS_LOG_LEVEL=DEBUG``) or a ``.env`` file in the working directory.

Examples:
    >>> from hris_jobs.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.payroll_chunk_size
    10
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Configuration for the job engine, scheduler and built-in jobs."""

    model_config = SettingsConfigDict(
        env_prefix="HRIS_JOBS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    json_logs: bool | None = Field(
        default=None,
        description="Force JSON (true) or console (false) output; auto-detect when unset",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".hris-jobs" / "runs.db",
        description="SQLite file holding runs and step checkpoints",
    )

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_interval_seconds: float = Field(default=60.0)

    # ── Retries ──────────────────────────────────────────────────
    default_max_attempts: int = Field(default=4, description="1 initial attempt + 3 retries")
    default_base_delay: float = Field(default=1.0)
    default_max_delay: float = Field(default=60.0)

    # ── Jobs ─────────────────────────────────────────────────────
    payroll_chunk_size: int = Field(default=10)
    payroll_cancel_timeout_seconds: float = Field(default=600.0)
    email_concurrency: int = Field(default=10)
    token_refresh_window_minutes: int = Field(default=10)
    webhook_timeout_seconds: float = Field(default=30.0)

    @field_validator("default_max_attempts", "payroll_chunk_size", "email_concurrency")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value


_settings: EngineSettings | None = None


def get_settings(*, _force_reload: bool = False) -> EngineSettings:
    """Load, validate and cache the process-wide settings."""
    global _settings
    if _settings is None or _force_reload:
        _settings = EngineSettings()
    return _settings
