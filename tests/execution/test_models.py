"""Tests for run models and the status state machine."""

from __future__ import annotations

import pytest

from hris_jobs.core.errors import InvalidTransitionError
from hris_jobs.execution.models import (
    TERMINAL_STATUSES,
    BatchItemResult,
    BatchSummary,
    JobRun,
    JobStatus,
    StepCheckpoint,
    TriggerSource,
    validate_transition,
)


class TestJobStatus:
    """Tests for JobStatus and the transition table."""

    def test_terminal_statuses(self):
        """Test which statuses are terminal."""
        assert TERMINAL_STATUSES == {
            JobStatus.SUCCEEDED,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
            JobStatus.PARTIAL,
        }
        assert not JobStatus.RUNNING.is_terminal

    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.PENDING, JobStatus.RUNNING),
            (JobStatus.PENDING, JobStatus.CANCELLED),
            (JobStatus.RUNNING, JobStatus.PARTIAL),
            (JobStatus.RUNNING, JobStatus.FAILED),
        ],
    )
    def test_valid_transitions(self, current, target):
        """Test allowed transitions pass validation."""
        validate_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.PENDING, JobStatus.SUCCEEDED),
            (JobStatus.SUCCEEDED, JobStatus.RUNNING),
            (JobStatus.FAILED, JobStatus.CANCELLED),
            (JobStatus.CANCELLED, JobStatus.RUNNING),
        ],
    )
    def test_invalid_transitions(self, current, target):
        """Test disallowed transitions raise InvalidTransitionError."""
        with pytest.raises(InvalidTransitionError):
            validate_transition(current, target)


class TestJobRun:
    """Tests for the JobRun record."""

    def test_create(self):
        """Test a new run is pending with an id and event trigger."""
        run = JobRun.create("send-email", {"to": "a@b.c"}, event_name="email/send")
        assert run.status == JobStatus.PENDING
        assert run.trigger_source == TriggerSource.EVENT
        assert run.trigger_payload == {"to": "a@b.c"}
        assert run.run_id

    def test_create_copies_payload(self):
        """Test the run keeps its own copy of the payload."""
        payload = {"to": "a@b.c"}
        run = JobRun.create("send-email", payload)
        payload["to"] = "changed"
        assert run.trigger_payload["to"] == "a@b.c"

    def test_transition_sets_timestamps(self):
        """Test started and completed timestamps follow the status."""
        run = JobRun.create("cache-warming")
        run.transition_to(JobStatus.RUNNING)
        assert run.started_at is not None
        assert run.completed_at is None
        run.transition_to(JobStatus.SUCCEEDED)
        assert run.completed_at is not None
        assert run.duration_seconds is not None
        assert run.is_terminal

    def test_terminal_run_is_frozen(self):
        """Test a terminal run cannot move again."""
        run = JobRun.create("cache-warming")
        run.transition_to(JobStatus.RUNNING)
        run.transition_to(JobStatus.FAILED)
        with pytest.raises(InvalidTransitionError):
            run.transition_to(JobStatus.RUNNING)

    def test_checkpoint_lookup(self):
        """Test checkpoint_for and completed_steps."""
        run = JobRun.create("cache-warming")
        run.checkpoints.append(StepCheckpoint("list-active-companies", 1, result=[]))
        assert run.checkpoint_for("list-active-companies").result == []
        assert run.checkpoint_for("warm-company-c1") is None
        assert run.completed_steps == ["list-active-companies"]

    def test_to_dict(self):
        """Test enums serialize as their values."""
        run = JobRun.create("cache-warming", trigger_source=TriggerSource.CRON)
        data = run.to_dict()
        assert data["status"] == "pending"
        assert data["trigger_source"] == "cron"
        assert data["checkpoints"] == []


class TestBatchResults:
    """Tests for per-item batch results."""

    def test_item_to_dict(self):
        """Test successful and failed items serialize in camelCase."""
        assert BatchItemResult.ok("e-1", netSalary="100").to_dict() == {
            "itemId": "e-1",
            "success": True,
            "netSalary": "100",
        }
        assert BatchItemResult.fail("e-2", "No compensation data found").to_dict() == {
            "itemId": "e-2",
            "success": False,
            "error": "No compensation data found",
        }

    def test_summary_counts(self):
        """Test BatchSummary totals."""
        summary = BatchSummary(
            [BatchItemResult.ok("a"), BatchItemResult.fail("b", "x"), BatchItemResult.ok("c")]
        )
        assert summary.total == 3
        assert summary.success_count == 2
        assert summary.failed_count == 1
        assert summary.to_dict()["failedCount"] == 1
