"""Trigger Dispatcher: turns events and cron ticks into job runs.

ARCHITECTURE
────────────
::

    on_event(evt) ─┬─ CancellationMonitor.handle_event(evt)
                   └─ registry.lookup_by_event(evt.name)
                        └── per definition: JobRun → ledger → cancel watch → asyncio task

    on_cron_tick(now) ── registry.lookup_by_cron() ── croniter.match(schedule, now)
                        └── per due definition: JobRun (empty payload) → task

    task:  [per-job semaphore when concurrency_limit is set]
             └── StepExecutor.execute(run, definition.handler)

Creating runs never waits for them: ``on_event`` returns the pending runs as
soon as their tasks are scheduled. Repeated deliveries of the same event are
not deduplicated, and runs started together have no ordering between them.

Example:
    >>> dispatcher = TriggerDispatcher(registry, services, ledger=ledger)
    >>> runs = await dispatcher.emit("payroll/process", {"payrollPeriodId": "p-1", ...})
    >>> await dispatcher.drain()
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from croniter import croniter

from hris_jobs.core.logging import get_logger
from hris_jobs.execution.cancellation import CancellationMonitor
from hris_jobs.execution.context import JobServices
from hris_jobs.execution.executor import StepExecutor
from hris_jobs.execution.ledger import RunLedger
from hris_jobs.execution.models import Event, JobRun, TriggerSource
from hris_jobs.execution.registry import JobDefinition, JobRegistry

logger = get_logger(__name__)


def cron_matches(schedule: str, now: datetime) -> bool:
    """True when ``schedule`` fires in the minute containing ``now``."""
    return croniter.match(schedule, now.replace(second=0, microsecond=0))


class TriggerDispatcher:
    """Maps inbound events and cron ticks to runs executed on asyncio tasks."""

    def __init__(
        self,
        registry: JobRegistry,
        services: JobServices,
        *,
        ledger: RunLedger | None = None,
        monitor: CancellationMonitor | None = None,
    ):
        self.registry = registry
        self.services = services
        self.ledger = ledger
        self.monitor = monitor if monitor is not None else CancellationMonitor()
        self.executor = StepExecutor(
            services,
            ledger=ledger,
            monitor=self.monitor,
            emitter=self.emit,
        )
        self._tasks: set[asyncio.Task] = set()
        self._runs: dict[str, JobRun] = {}
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._collectors: list[list[JobRun]] = []

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    async def on_event(self, event: Event) -> list[JobRun]:
        """Start one run per definition subscribed to ``event.name``."""
        cancelled = self.monitor.handle_event(event)
        definitions = self.registry.lookup_by_event(event.name)
        if not definitions and not cancelled:
            logger.debug("event.unhandled", event_name=event.name)

        runs = []
        for definition in definitions:
            run = JobRun.create(
                definition.id,
                event.payload,
                trigger_source=TriggerSource.EVENT,
                event_name=event.name,
            )
            runs.append(self._start(run, definition))

        logger.info(
            "event.dispatched",
            event_name=event.name,
            event_id=event.event_id,
            runs=len(runs),
            cancelled=len(cancelled),
        )
        return runs

    async def emit(self, name: str, payload: dict[str, Any] | None = None) -> list[JobRun]:
        return await self.on_event(Event(name=name, payload=dict(payload or {})))

    async def on_cron_tick(self, now: datetime) -> list[JobRun]:
        """Start one run (empty payload) per cron definition due at ``now``."""
        runs = []
        for definition in self.due_definitions(now):
            run = JobRun.create(definition.id, {}, trigger_source=TriggerSource.CRON)
            runs.append(self._start(run, definition))
        if runs:
            logger.info("cron.dispatched", tick=now.isoformat(), runs=len(runs))
        return runs

    def due_definitions(self, now: datetime) -> list[JobDefinition]:
        return [
            d
            for d in self.registry.lookup_by_cron()
            if any(cron_matches(schedule, now) for schedule in d.cron_schedules)
        ]

    async def trigger(self, job_id: str, payload: dict[str, Any] | None = None) -> JobRun:
        """Start a run of ``job_id`` directly, bypassing its triggers."""
        definition = self.registry.lookup(job_id)
        run = JobRun.create(definition.id, payload, trigger_source=TriggerSource.MANUAL)
        return self._start(run, definition)

    async def resume_incomplete(self) -> list[JobRun]:
        """Restart every persisted run that never reached a terminal status.

        Completed steps are replayed from their checkpoints.
        """
        if self.ledger is None:
            return []
        resumed = []
        for run in self.ledger.list_incomplete():
            if run.run_id in self._runs:
                continue
            if run.job_id not in self.registry:
                logger.warning("run.resume_skipped", run_id=run.run_id, job_id=run.job_id)
                continue
            definition = self.registry.lookup(run.job_id)
            resumed.append(self._start(run, definition, persist=False))
        if resumed:
            logger.info("runs.resumed", count=len(resumed))
        return resumed

    def cancel(self, run_id: str, reason: str = "cancelled manually") -> bool:
        return self.monitor.cancel(run_id, reason)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def get_run(self, run_id: str) -> JobRun | None:
        run = self._runs.get(run_id)
        if run is None and self.ledger is not None:
            run = self.ledger.get_run(run_id)
        return run

    async def drain(self) -> list[JobRun]:
        """Wait until no run is in flight, including runs started meanwhile.

        Returns every run that finished while draining, follow-up runs
        emitted by other runs included.
        """
        finished = [
            task.result()
            for task in self._tasks
            if task.done() and not task.cancelled() and task.exception() is None
        ]
        self._collectors.append(finished)
        try:
            while self._tasks:
                await asyncio.gather(*list(self._tasks))
        finally:
            self._collectors = [c for c in self._collectors if c is not finished]
        return finished

    def _start(self, run: JobRun, definition: JobDefinition, *, persist: bool = True) -> JobRun:
        if persist and self.ledger is not None:
            self.ledger.create_run(run)
        self._runs[run.run_id] = run
        # Watch from creation so a cancel reaches runs still queued or unscheduled.
        cancel_on = definition.cancel_on
        self.monitor.watch(
            run,
            cancel_event=cancel_on.event if cancel_on else None,
            timeout=cancel_on.timeout if cancel_on else None,
            match=cancel_on.match if cancel_on else (),
        )
        task = asyncio.create_task(self._execute(run, definition), name=f"run-{run.run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run

    async def _execute(self, run: JobRun, definition: JobDefinition) -> JobRun:
        try:
            if definition.concurrency_limit is None:
                return await self._execute_now(run, definition)
            semaphore = self._semaphores.setdefault(
                definition.id, asyncio.Semaphore(definition.concurrency_limit)
            )
            async with semaphore:
                return await self._execute_now(run, definition)
        finally:
            self._runs.pop(run.run_id, None)
            for collected in self._collectors:
                collected.append(run)

    async def _execute_now(self, run: JobRun, definition: JobDefinition) -> JobRun:
        return await self.executor.execute(
            run,
            definition.handler,
            policy=definition.retry_policy,
            cancel_on=definition.cancel_on,
        )
