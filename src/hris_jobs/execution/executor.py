"""Step Executor: runs a job body as ordered, checkpointed steps.

WHY
───
A payroll run touches hundreds of rows and sends mail at the end. If the
process dies half way, re-running the whole job would recalculate and
re-notify. Checkpointing each step makes a replay skip everything that
already completed, so only the unfinished tail runs again.

ARCHITECTURE
────────────
::

    execute(run, body)
      │  PENDING → RUNNING  (a resumed run is already RUNNING)
      │  PENDING → CANCELLED when cancelled while queued
      │
      ├── body(ctx)
      │     └── ctx.run(step, fn)
      │           1. token cancelled?      → RunCancelled
      │           2. checkpoint exists?    → cached result
      │           3. fn() under RetryPolicy
      │                ok   → checkpoint (ledger) → result
      │                fail → StepFailedError
      │
      ├── result.failedCount > 0  → PARTIAL
      ├── otherwise               → SUCCEEDED
      ├── RunCancelled            → CANCELLED
      └── any error               → FAILED  (logged with job_id, run_id, payload)

Delivery is at-least-once: a crash between a step's side effect and its
checkpoint repeats that step on resume.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from hris_jobs.core.errors import StepFailedError, error_message
from hris_jobs.core.logging import LogContext, get_logger
from hris_jobs.core.serialization import to_jsonable
from hris_jobs.execution.cancellation import CancellationMonitor, CancellationToken
from hris_jobs.execution.context import Emitter, JobServices, StepContext
from hris_jobs.execution.ledger import RunLedger
from hris_jobs.execution.models import JobRun, JobStatus, StepCheckpoint
from hris_jobs.execution.registry import CancelOn
from hris_jobs.execution.retry import RetryContext, RetryPolicy

logger = get_logger(__name__)

JobBody = Callable[[StepContext], Awaitable[Any]]


class RunCancelled(Exception):
    """Raised inside a body to unwind a cancelled run. Not an error."""

    def __init__(self, run_id: str, reason: str | None):
        super().__init__(f"Run {run_id} cancelled: {reason}")
        self.run_id = run_id
        self.reason = reason


def _failed_count(result: Any) -> int:
    if isinstance(result, dict):
        try:
            return int(result.get("failedCount") or 0)
        except (TypeError, ValueError):
            return 0
    return 0


class StepExecutor:
    """Drives runs through their steps and persists every transition.

    Args:
        services: Shared resources handed to bodies through the context
        ledger: Durable store for runs and checkpoints; in-memory only when None
        monitor: Cancellation monitor owning the per-run tokens
        emitter: Callback used by ``ctx.emit`` (the dispatcher's ``emit``)
    """

    def __init__(
        self,
        services: JobServices,
        *,
        ledger: RunLedger | None = None,
        monitor: CancellationMonitor | None = None,
        emitter: Emitter | None = None,
    ):
        self.services = services
        self.ledger = ledger
        self.monitor = monitor if monitor is not None else CancellationMonitor()
        self.emitter = emitter

    async def execute(
        self,
        run: JobRun,
        body: JobBody,
        *,
        policy: RetryPolicy | None = None,
        cancel_on: CancelOn | None = None,
    ) -> JobRun:
        """Run ``body`` to a terminal status and return the run."""
        if run.is_terminal:
            logger.warning("run.already_terminal", job_id=run.job_id, run_id=run.run_id)
            self.monitor.unwatch(run.run_id)
            return run

        # Reuses the watch the dispatcher registered when it created the run.
        token = self.monitor.watch(
            run,
            cancel_event=cancel_on.event if cancel_on else None,
            timeout=cancel_on.timeout if cancel_on else None,
            match=cancel_on.match if cancel_on else (),
        )

        if run.status == JobStatus.PENDING:
            if token.is_cancelled:
                return self._cancel_pending(run, token)
            run.transition_to(JobStatus.RUNNING)
            self._persist(run)

        ctx = StepContext(
            run,
            self.services,
            self,
            policy=policy or RetryPolicy(),
            token=token,
            emitter=self.emitter,
        )

        async with LogContext(job_id=run.job_id, run_id=run.run_id):
            logger.info(
                "run.started",
                resumed_steps=len(run.checkpoints),
                trigger_source=run.trigger_source.value,
            )
            try:
                result = to_jsonable(await body(ctx))
            except RunCancelled as e:
                run.error = e.reason
                run.transition_to(JobStatus.CANCELLED)
                logger.info("run.cancelled", reason=e.reason, checkpoints=len(run.checkpoints))
            except Exception as e:
                cause = e.cause if isinstance(e, StepFailedError) and e.cause else e
                run.error = error_message(cause)
                run.transition_to(JobStatus.FAILED)
                logger.error(
                    "run.failed",
                    payload=run.trigger_payload,
                    step=getattr(e, "step", None),
                    error=run.error,
                    error_type=type(cause).__name__,
                )
            else:
                run.result = result
                if _failed_count(result) > 0:
                    run.transition_to(JobStatus.PARTIAL)
                else:
                    run.transition_to(JobStatus.SUCCEEDED)
                logger.info(
                    "run.completed",
                    status=run.status.value,
                    duration_seconds=run.duration_seconds,
                )
            finally:
                self.monitor.unwatch(run.run_id)

        self._persist(run)
        return run

    async def run_step(
        self,
        ctx: StepContext,
        step_name: str,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        run = ctx.run_state
        self._check_cancelled(run, ctx.token)

        checkpoint = run.checkpoint_for(step_name)
        if checkpoint is not None:
            logger.debug("step.replayed", step=step_name)
            return checkpoint.result

        def _on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning(
                "step.retry",
                step=step_name,
                attempt=attempt,
                max_attempts=ctx.policy.max_attempts,
                delay=delay,
                error=error_message(error),
            )

        retry = RetryContext(ctx.policy, on_retry=_on_retry, sleep=self.services.sleep)
        try:
            value = await retry.run(fn, *args, **kwargs)
        except Exception as e:
            raise StepFailedError(step_name, retry.attempts, e).with_context(
                job_id=run.job_id, run_id=run.run_id
            ) from e

        checkpoint = StepCheckpoint(
            step_name=step_name,
            attempt=retry.attempts,
            result=to_jsonable(value),
        )
        run.checkpoints.append(checkpoint)
        if self.ledger is not None:
            self.ledger.append_checkpoint(run.run_id, checkpoint)
        logger.debug("step.completed", step=step_name, attempt=retry.attempts)
        return checkpoint.result

    def _cancel_pending(self, run: JobRun, token: CancellationToken) -> JobRun:
        self.monitor.unwatch(run.run_id)
        run.error = token.reason
        run.transition_to(JobStatus.CANCELLED)
        self._persist(run)
        logger.info(
            "run.cancelled",
            job_id=run.job_id,
            run_id=run.run_id,
            reason=token.reason,
            checkpoints=0,
        )
        return run

    def _check_cancelled(self, run: JobRun, token: CancellationToken) -> None:
        if token.is_cancelled:
            raise RunCancelled(run.run_id, token.reason)

    def _persist(self, run: JobRun) -> None:
        if self.ledger is not None:
            self.ledger.update_status(run)
