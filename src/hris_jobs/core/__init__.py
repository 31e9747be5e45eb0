"""Cross-cutting primitives: logging, errors, settings, serialization."""

from hris_jobs.core.errors import (
    ConfigError,
    JobEngineError,
    TransientError,
    ValidationError,
)
from hris_jobs.core.logging import LogContext, configure_logging, get_logger
from hris_jobs.core.settings import EngineSettings, get_settings

__all__ = [
    "ConfigError",
    "JobEngineError",
    "TransientError",
    "ValidationError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "EngineSettings",
    "get_settings",
]
