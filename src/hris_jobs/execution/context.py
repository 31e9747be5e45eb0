"""Step context handed to job bodies, and the services bundle behind it.

A job body never reaches for globals. Everything it needs arrives through the
:class:`StepContext`:

    async def body(ctx: StepContext) -> dict:
        period = await ctx.run("validate-period", load_period, ctx.payload["payrollPeriodId"])
        await ctx.sleep("cool-down", 5)
        await ctx.emit("email/send", {...})
        return {"success": True}

``ctx.services`` is a :class:`JobServices`: the store, the senders, the
concurrency limiter, the HTTP client and the settings, all injectable so
tests swap in fakes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from hris_jobs.core.logging import get_logger
from hris_jobs.core.settings import EngineSettings, get_settings
from hris_jobs.execution.cancellation import CancellationToken
from hris_jobs.execution.limiter import ConcurrencyLimiter
from hris_jobs.execution.models import JobRun, utcnow
from hris_jobs.execution.retry import RetryPolicy, SleepFn

if TYPE_CHECKING:
    from hris_jobs.execution.executor import StepExecutor
    from hris_jobs.ports import (
        BackupService,
        CacheWarmer,
        EmailSender,
        HRStore,
        PushSender,
        TokenProvider,
    )

Emitter = Callable[[str, dict[str, Any]], Awaitable[Any]]


@dataclass
class JobServices:
    """Shared resources injected into every run."""

    store: HRStore
    email: EmailSender | None = None
    push: PushSender | None = None
    token_providers: dict[str, TokenProvider] = field(default_factory=dict)
    cache: CacheWarmer | None = None
    backups: BackupService | None = None
    http: httpx.AsyncClient | None = None
    limiter: ConcurrencyLimiter = field(default_factory=ConcurrencyLimiter)
    settings: EngineSettings = field(default_factory=get_settings)
    clock: Callable[[], datetime] = utcnow
    sleep: SleepFn = asyncio.sleep

    def now(self) -> datetime:
        return self.clock()


class StepContext:
    """Per-run handle through which a job body executes its steps."""

    def __init__(
        self,
        run: JobRun,
        services: JobServices,
        executor: StepExecutor,
        *,
        policy: RetryPolicy,
        token: CancellationToken,
        emitter: Emitter | None = None,
    ):
        self.run_state = run
        self.services = services
        self.policy = policy
        self.token = token
        self._executor = executor
        self._emitter = emitter
        self.logger = get_logger("hris_jobs.jobs").bind(job_id=run.job_id, run_id=run.run_id)

    @property
    def run_id(self) -> str:
        return self.run_state.run_id

    @property
    def job_id(self) -> str:
        return self.run_state.job_id

    @property
    def payload(self) -> dict[str, Any]:
        return self.run_state.trigger_payload

    @property
    def store(self) -> HRStore:
        return self.services.store

    @property
    def settings(self) -> EngineSettings:
        return self.services.settings

    async def run(self, step_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute ``fn`` as the checkpointed step ``step_name``.

        Returns the cached result when the step already has a checkpoint.

        Raises:
            StepFailedError: Once the retry policy gives up on the step
        """
        return await self._executor.run_step(self, step_name, fn, *args, **kwargs)

    async def sleep(self, step_name: str, seconds: float) -> dict[str, Any]:
        """Checkpointed wait; a replayed run does not wait again."""

        async def _wait() -> dict[str, Any]:
            if seconds > 0:
                await self.services.sleep(seconds)
            return {"slept": seconds}

        return await self.run(step_name, _wait)

    async def emit(self, name: str, payload: dict[str, Any]) -> Any:
        """Publish a follow-up event through the dispatcher."""
        if self._emitter is None:
            self.logger.warning("event.dropped", event_name=name, reason="no dispatcher")
            return None
        self.logger.info("event.emitted", event_name=name)
        return await self._emitter(name, payload)
