"""Cron scheduler - drives ``TriggerDispatcher.on_cron_tick``.

Beat-as-poller: an asyncio loop wakes every ``interval_seconds`` and hands
the current minute to the dispatcher, which decides which cron definitions
are due. Each wall-clock minute is dispatched at most once, so a poll
interval shorter than a minute never double-fires a schedule. A late poll
dispatches every minute since the previous one, up to an hour back.

┌──────────────────────────────────────────────────────────────┐
│  CronScheduler                                               │
│                                                              │
│   start() ──► asyncio task: while running                    │
│                 ├── tick(now)                                │
│                 │     ├── minute already dispatched? → skip  │
│                 │     └── per missed minute, oldest first:   │
│                 │           dispatcher.on_cron_tick(minute)  │
│                 └── sleep(interval)                          │
│                                                              │
│   stop()  ──► cancel loop task, optionally drain runs        │
└──────────────────────────────────────────────────────────────┘

Example:
    >>> scheduler = CronScheduler(dispatcher, interval_seconds=30)
    >>> scheduler.start()
    >>> ...
    >>> await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from hris_jobs.core.logging import get_logger
from hris_jobs.execution.dispatcher import TriggerDispatcher
from hris_jobs.execution.models import utcnow

logger = get_logger(__name__)

ONE_MINUTE = timedelta(minutes=1)
MAX_CATCH_UP_MINUTES = 60


@dataclass
class SchedulerStats:
    """Statistics for the cron scheduler."""

    tick_count: int = 0
    runs_started: int = 0
    ticks_failed: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "runs_started": self.runs_started,
            "ticks_failed": self.ticks_failed,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


class CronScheduler:
    """Polls the clock and fires cron-triggered jobs through the dispatcher."""

    def __init__(
        self,
        dispatcher: TriggerDispatcher,
        interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.dispatcher = dispatcher
        self.interval = interval_seconds
        self.clock = clock

        self._stats = SchedulerStats()
        self._last_minute: datetime | None = None
        self._task: asyncio.Task | None = None

    # === Lifecycle ===

    def start(self, *, max_ticks: int | None = None) -> None:
        """Start the tick loop on the running event loop.

        Args:
            max_ticks: End the loop after this many ticks; run forever when None
        """
        if self.is_running:
            logger.warning("scheduler.already_running")
            return
        logger.info("scheduler.starting", interval_seconds=self.interval, max_ticks=max_ticks)
        self._task = asyncio.create_task(self._loop(max_ticks), name="cron-scheduler")

    async def wait(self) -> None:
        """Block until the loop ends on its own (``max_ticks`` reached)."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def stop(self, *, drain: bool = True) -> None:
        """Stop ticking; with ``drain`` also wait for in-flight runs."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("scheduler.stopped", ticks=self._stats.tick_count)
        if drain:
            await self.dispatcher.drain()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self, max_ticks: int | None) -> None:
        ticks = 0
        while True:
            await self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                return
            await asyncio.sleep(self.interval)

    # === Tick Processing ===

    def _minutes_due(self, minute: datetime) -> list[datetime]:
        """Minutes in ``(last dispatched, minute]``, oldest first."""
        if self._last_minute is None:
            return [minute]
        if minute <= self._last_minute:
            return []
        missed = int((minute - self._last_minute) / ONE_MINUTE)
        if missed > MAX_CATCH_UP_MINUTES:
            logger.warning(
                "scheduler.catch_up_truncated",
                missed_minutes=missed,
                dispatched_minutes=MAX_CATCH_UP_MINUTES,
            )
            missed = MAX_CATCH_UP_MINUTES
        return [minute - ONE_MINUTE * offset for offset in range(missed - 1, -1, -1)]

    async def tick(self, now: datetime | None = None) -> int:
        """Dispatch every minute since the last tick, up to the one containing ``now``.

        A late tick catches up on the minutes it skipped, so a schedule that
        fell between two polls still fires. Each minute is dispatched once.

        Returns the number of runs started.
        """
        now = now or self.clock()
        minute = now.replace(second=0, microsecond=0)
        self._stats.tick_count += 1
        self._stats.last_tick = now

        started = 0
        for due in self._minutes_due(minute):
            self._last_minute = due
            try:
                runs = await self.dispatcher.on_cron_tick(due)
            except Exception as e:
                self._stats.ticks_failed += 1
                self._stats.last_error = str(e)
                logger.exception("scheduler.tick_failed", minute=due.isoformat())
                continue

            started += len(runs)
            self._stats.runs_started += len(runs)
            if runs:
                logger.info(
                    "scheduler.tick",
                    minute=due.isoformat(),
                    jobs=[run.job_id for run in runs],
                )
        return started

    # === Stats ===

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()
