"""
Typed error hierarchy for the job engine.

Every error raised by the engine or a job carries a category, an explicit
``retryable`` flag and structured context, so the step executor can decide
between retrying a step and failing the run without string matching.

Hierarchy::

    JobEngineError  (category, retryable, context, cause)
    ├── TransientError        retryable=True   network / database hiccups
    ├── ValidationError       retryable=False  bad input, wrong period status
    ├── ConfigError           retryable=False  static catalog problems
    │   ├── DuplicateJobError
    │   └── JobNotFoundError
    ├── InvalidTransitionError                 illegal run status change
    ├── StepFailedError                        a step exhausted its attempts
    └── UnsupportedActionError                 unknown workflow action type

Errors that are not ``JobEngineError`` (``ConnectionError``, driver errors,
``httpx`` failures...) are treated as transient by :func:`is_retryable`.

Usage:
    from hris_jobs.core.errors import ValidationError

    if period["status"] != "draft":
        raise ValidationError("Payroll period is not in draft status").with_context(
            payroll_period_id=period["id"],
        )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard categories for routing and retry decisions."""

    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    EXECUTION = "EXECUTION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging."""

    job_id: str | None = None
    run_id: str | None = None
    step: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging, dropping unset fields."""
        result = {}
        for key in ["job_id", "run_id", "step"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class JobEngineError(Exception):
    """Base exception for all job engine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> JobEngineError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class TransientError(JobEngineError):
    """Temporary infrastructure failure; the step should be retried."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class ValidationError(JobEngineError):
    """Input or state validation failure. Never retried."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class ConfigError(JobEngineError):
    """Invalid static configuration, detected at startup."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class DuplicateJobError(ConfigError):
    """Two job definitions share the same id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job definition already registered: {job_id}")
        self.job_id = job_id


class JobNotFoundError(ConfigError):
    """No job definition is registered under the requested id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job definition not found: {job_id}")
        self.job_id = job_id


class InvalidTransitionError(JobEngineError):
    """Raised when an illegal run status transition is attempted."""

    default_category = ErrorCategory.INTERNAL

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid JobStatus transition: {current} → {target}")
        self.current = current
        self.target = target


class StepFailedError(JobEngineError):
    """A step failed on every allowed attempt."""

    default_category = ErrorCategory.EXECUTION

    def __init__(self, step: str, attempts: int, cause: Exception):
        super().__init__(
            f"Step '{step}' failed after {attempts} attempt(s): {cause}",
            cause=cause,
        )
        self.step = step
        self.attempts = attempts
        self.context.step = step


class UnsupportedActionError(JobEngineError):
    """A workflow step declares an action type with no handler."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, action_type: str):
        super().__init__(f"Unsupported action type: {action_type}")
        self.action_type = action_type


def is_retryable(error: Exception) -> bool:
    """Check if a failed step attempt may be retried.

    Engine errors answer for themselves; anything else is an unexpected
    infrastructure failure and is retried within the policy's bound.
    """
    if isinstance(error, JobEngineError):
        return error.retryable
    return True


def error_message(error: BaseException) -> str:
    """Human-readable message for a captured error."""
    if isinstance(error, JobEngineError):
        return error.message
    return str(error) or error.__class__.__name__


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "JobEngineError",
    "TransientError",
    "ValidationError",
    "ConfigError",
    "DuplicateJobError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "StepFailedError",
    "UnsupportedActionError",
    "is_retryable",
    "error_message",
]
