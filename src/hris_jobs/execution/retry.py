"""Retry policies with fixed or exponential backoff.

A :class:`RetryPolicy` is part of every job definition and bounds how many
times a failing step is attempted. ``max_attempts`` counts the first attempt,
so ``max_attempts=1`` means "no retry".

Example:
    >>> from hris_jobs.execution.retry import RetryPolicy
    >>>
    >>> policy = RetryPolicy.exponential(max_attempts=4, base_delay=1.0)
    >>> [policy.next_delay(n) for n in (1, 2, 3)]
    [1.0, 2.0, 4.0]
"""

from __future__ import annotations

import asyncio
import inspect
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from hris_jobs.core.errors import ConfigError, is_retryable
from hris_jobs.execution.models import utcnow


class BackoffKind(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry configuration.

    Attributes:
        max_attempts: Total attempts per step, including the first (>= 1)
        backoff: Delay shape between attempts
        base_delay: Delay before the first retry, in seconds
        max_delay: Cap for exponential growth
        multiplier: Exponential growth factor
        jitter: Randomise delays by +/- ``jitter_range`` to avoid herds
    """

    max_attempts: int = 4
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ConfigError(f"base_delay must be >= 0, got {self.base_delay}")

    @classmethod
    def fixed(cls, max_attempts: int, delay: float = 1.0) -> RetryPolicy:
        return cls(max_attempts=max_attempts, backoff=BackoffKind.FIXED, base_delay=delay)

    @classmethod
    def exponential(
        cls,
        max_attempts: int,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
    ) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts,
            backoff=BackoffKind.EXPONENTIAL,
            base_delay=base_delay,
            max_delay=max_delay,
            multiplier=multiplier,
        )

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1, backoff=BackoffKind.FIXED, base_delay=0.0)

    @classmethod
    def with_retries(cls, retries: int, base_delay: float = 1.0) -> RetryPolicy:
        """Policy allowing ``retries`` retries after the first attempt."""
        return cls.exponential(max_attempts=retries + 1, base_delay=base_delay)

    def next_delay(self, failed_attempts: int) -> float:
        """Delay before the next attempt, given how many attempts have failed."""
        if failed_attempts <= 0:
            return 0.0
        if self.backoff == BackoffKind.FIXED:
            delay = self.base_delay
        else:
            delay = min(
                self.base_delay * (self.multiplier ** (failed_attempts - 1)),
                self.max_delay,
            )

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay

    def should_retry(self, failed_attempts: int, error: Exception | None = None) -> bool:
        """True while attempts remain and the error is retryable."""
        if failed_attempts >= self.max_attempts:
            return False
        if error is not None and not is_retryable(error):
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "backoff": self.backoff.value,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
        }


SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class RetryContext:
    """Tracks the attempts of a single step and runs it under a policy.

    Example:
        >>> ctx = RetryContext(RetryPolicy.fixed(3, delay=0))
        >>> result = await ctx.run(call_api)
    """

    policy: RetryPolicy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: SleepFn = asyncio.sleep
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        return self.attempt

    @property
    def elapsed_seconds(self) -> float:
        return (utcnow() - self.started_at).total_seconds()

    async def run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call ``func`` (sync or async) until it succeeds or the policy gives up.

        Raises:
            The last exception once attempts are exhausted or it is not retryable.
        """
        while True:
            self.attempt += 1
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.policy.should_retry(self.attempt, e):
                    raise

                delay = self.policy.next_delay(self.attempt)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                await self.sleep(delay)
