"""Tests for StepExecutor: checkpointed steps, retries, cancellation, terminal status."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from hris_jobs.core.errors import TransientError, ValidationError
from hris_jobs.execution import (
    JobRun,
    JobStatus,
    RetryPolicy,
    StepCheckpoint,
    StepExecutor,
)
from hris_jobs.execution.registry import CancelOn


# ── Helpers ──────────────────────────────────────────────────────────────


class CountingStep:
    """Step function that fails ``failures`` times before returning ``value``."""

    def __init__(self, value=None, failures: int = 0, error: Exception | None = None):
        self.value = value
        self.failures = failures
        self.error = error or RuntimeError("connection reset")
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


def _new_run(ledger, job_id: str = "test-job", payload: dict | None = None) -> JobRun:
    run = JobRun.create(job_id, payload or {})
    ledger.create_run(run)
    return run


# ── Happy path ───────────────────────────────────────────────────────────


class TestExecute:
    """Tests for executing a run to a terminal status."""

    @pytest.mark.asyncio
    async def test_steps_run_in_order_and_succeed(self, executor, ledger):
        """Test steps run in order and the run is persisted as succeeded."""
        order: list[str] = []

        async def body(ctx):
            await ctx.run("first", lambda: order.append("first"))
            await ctx.run("second", lambda: order.append("second"))
            return {"success": True}

        run = await executor.execute(_new_run(ledger), body)

        assert run.status == JobStatus.SUCCEEDED
        assert order == ["first", "second"]
        assert run.completed_steps == ["first", "second"]
        assert run.result == {"success": True}
        persisted = ledger.get_run(run.run_id)
        assert persisted.status == JobStatus.SUCCEEDED
        assert persisted.completed_steps == ["first", "second"]

    @pytest.mark.asyncio
    async def test_step_arguments_passed_through(self, executor, ledger):
        """Test positional and keyword arguments reach the step."""
        async def add(a, b, *, scale=1):
            return (a + b) * scale

        async def body(ctx):
            return {"total": await ctx.run("add", add, 2, 3, scale=10)}

        run = await executor.execute(_new_run(ledger), body)
        assert run.result == {"total": 50}

    @pytest.mark.asyncio
    async def test_failed_count_makes_run_partial(self, executor, ledger):
        """Test a result with failedCount above zero ends PARTIAL."""
        async def body(ctx):
            return {"success": True, "successCount": 2, "failedCount": 1}

        run = await executor.execute(_new_run(ledger), body)
        assert run.status == JobStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_step_results_normalised_to_json(self, executor, ledger):
        """Test step results are stored in JSON form."""
        async def body(ctx):
            value = await ctx.run("money", lambda: {"net": Decimal("4800000.00")})
            return value

        run = await executor.execute(_new_run(ledger), body)
        assert run.result == {"net": "4800000.00"}
        assert ledger.get_checkpoints(run.run_id)[0].result == {"net": "4800000.00"}

    @pytest.mark.asyncio
    async def test_terminal_run_is_not_executed(self, executor, ledger):
        """Test a terminal run is returned without running its body."""
        run = _new_run(ledger)
        run.transition_to(JobStatus.RUNNING)
        run.transition_to(JobStatus.SUCCEEDED)
        step = CountingStep()

        async def body(ctx):
            await ctx.run("never", step)

        assert (await executor.execute(run, body)).status == JobStatus.SUCCEEDED
        assert step.calls == 0

    @pytest.mark.asyncio
    async def test_emit_without_dispatcher_is_dropped(self, executor, ledger):
        """Test ctx.emit is a no-op without an emitter."""
        async def body(ctx):
            return {"emitted": await ctx.emit("email/send", {"to": "x"})}

        run = await executor.execute(_new_run(ledger), body)
        assert run.result == {"emitted": None}

    @pytest.mark.asyncio
    async def test_checkpointed_sleep(self, executor, ledger, sleeper):
        """Test ctx.sleep is a checkpointed step."""
        async def body(ctx):
            await ctx.sleep("cool-down", 30)
            return None

        run = await executor.execute(_new_run(ledger), body)
        assert run.completed_steps == ["cool-down"]
        assert sleeper.delays == [30]


# ── Replay ───────────────────────────────────────────────────────────────


class TestReplay:
    """Tests for replaying checkpointed steps."""

    @pytest.mark.asyncio
    async def test_checkpointed_steps_are_skipped(self, executor, ledger):
        """Test a checkpointed step returns its stored result."""
        run = _new_run(ledger)
        run.checkpoints.append(StepCheckpoint("fetch", 1, result=[{"id": "e-1"}]))
        fetch = CountingStep(value=[{"id": "e-9"}])
        notify = CountingStep(value={"sent": True})

        async def body(ctx):
            employees = await ctx.run("fetch", fetch)
            await ctx.run("notify", notify)
            return {"employees": employees}

        run = await executor.execute(run, body)

        assert fetch.calls == 0
        assert notify.calls == 1
        assert run.result == {"employees": [{"id": "e-1"}]}
        assert run.completed_steps == ["fetch", "notify"]

    @pytest.mark.asyncio
    async def test_resume_from_ledger_after_crash(self, services, ledger):
        """Test a run restored from the ledger only runs its unfinished steps."""
        run = _new_run(ledger)
        run.transition_to(JobStatus.RUNNING)
        ledger.update_status(run)
        ledger.append_checkpoint(run.run_id, StepCheckpoint("validate", 1, result={"ok": True}))

        validate = CountingStep(value={"ok": True})
        calculate = CountingStep(value={"total": 3})

        async def body(ctx):
            await ctx.run("validate", validate)
            return await ctx.run("calculate", calculate)

        restored = ledger.get_run(run.run_id)
        finished = await StepExecutor(services, ledger=ledger).execute(restored, body)

        assert finished.status == JobStatus.SUCCEEDED
        assert validate.calls == 0
        assert calculate.calls == 1
        assert [cp.step_name for cp in ledger.get_checkpoints(run.run_id)] == [
            "validate",
            "calculate",
        ]


# ── Retries ──────────────────────────────────────────────────────────────


class TestRetries:
    """Tests for step retries under a RetryPolicy."""

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_the_run(self, executor, ledger):
        """Test a step out of attempts fails the run and stops later steps."""
        step = CountingStep(failures=100, error=RuntimeError("boom"))
        later = CountingStep()

        async def body(ctx):
            await ctx.run("flaky", step)
            await ctx.run("later", later)

        run = await executor.execute(
            _new_run(ledger), body, policy=RetryPolicy.fixed(3, delay=0)
        )

        assert run.status == JobStatus.FAILED
        assert step.calls == 3
        assert later.calls == 0
        assert run.error == "boom"
        assert run.completed_steps == []
        assert ledger.get_run(run.run_id).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, executor, ledger, sleeper):
        """Test a transient failure is retried with backoff."""
        step = CountingStep(value="ok", failures=2, error=TransientError("smtp 421"))

        async def body(ctx):
            return {"value": await ctx.run("send", step)}

        run = await executor.execute(
            _new_run(ledger), body, policy=RetryPolicy.exponential(4, base_delay=1.0)
        )

        assert run.status == JobStatus.SUCCEEDED
        assert run.checkpoint_for("send").attempt == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_validation_error_is_not_retried(self, executor, ledger):
        """Test a validation error fails the run on the first attempt."""
        step = CountingStep(failures=100, error=ValidationError("Payroll period not found"))

        async def body(ctx):
            await ctx.run("validate-period", step)

        run = await executor.execute(
            _new_run(ledger), body, policy=RetryPolicy.fixed(4, delay=0)
        )

        assert run.status == JobStatus.FAILED
        assert step.calls == 1
        assert run.error == "Payroll period not found"

    @pytest.mark.asyncio
    async def test_error_outside_steps_fails_run(self, executor, ledger):
        """Test an error raised by the body itself fails the run."""
        async def body(ctx):
            raise ValidationError("No email sender configured")

        run = await executor.execute(_new_run(ledger), body)
        assert run.status == JobStatus.FAILED
        assert run.error == "No email sender configured"


# ── Cancellation ─────────────────────────────────────────────────────────


class TestCancellation:
    """Tests for cancelling a run between steps."""

    @pytest.mark.asyncio
    async def test_cancel_during_step_two_of_five(self, executor, ledger):
        """Test a cancel during step two stops before step three."""
        run = _new_run(ledger)
        calls: list[str] = []

        def make_step(name: str):
            async def step():
                calls.append(name)
                if name == "step-2":
                    executor.monitor.cancel(run.run_id, "operator request")
                return name

            return step

        async def body(ctx):
            for i in range(1, 6):
                await ctx.run(f"step-{i}", make_step(f"step-{i}"))
            return {"success": True}

        run = await executor.execute(run, body)

        assert run.status == JobStatus.CANCELLED
        assert run.completed_steps == ["step-1", "step-2"]
        assert calls == ["step-1", "step-2"]
        assert run.error == "operator request"
        assert ledger.get_run(run.run_id).status == JobStatus.CANCELLED
        assert not executor.monitor.is_watching(run.run_id)

    @pytest.mark.asyncio
    async def test_timeout_cancels_before_next_step(self, executor, ledger):
        """Test a cancel timeout stops the run at the next step."""
        after = CountingStep()

        async def body(ctx):
            await ctx.run("slow", asyncio.sleep, 0.05)
            await ctx.run("after", after)

        run = await executor.execute(
            _new_run(ledger),
            body,
            cancel_on=CancelOn("x/cancelled", timeout=0.01),
        )

        assert run.status == JobStatus.CANCELLED
        assert run.error == "timeout"
        assert after.calls == 0
        assert run.completed_steps == ["slow"]

    @pytest.mark.asyncio
    async def test_run_cancelled_while_pending_never_starts(self, executor, ledger):
        """Test a run cancelled before it starts ends CANCELLED without running."""
        run = _new_run(ledger)
        body_calls = CountingStep()

        async def body(ctx):
            await ctx.run("only", body_calls)

        executor.monitor.watch(run)
        assert executor.monitor.cancel(run.run_id, "superseded")
        run = await executor.execute(run, body)

        assert run.status == JobStatus.CANCELLED
        assert run.error == "superseded"
        assert run.started_at is None
        assert body_calls.calls == 0
        assert ledger.get_run(run.run_id).status == JobStatus.CANCELLED
        assert not executor.monitor.is_watching(run.run_id)
