"""Execution domain models.

Defines the core data structures of the job engine:
- Event: the unit of inter-job communication
- JobRun: one execution of a job definition, with its checkpoint history
- StepCheckpoint: durable record of a completed step
- BatchItemResult / BatchSummary: per-item outcomes of a fan-out step

These models are used by the RunLedger, the StepExecutor and the
TriggerDispatcher.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from hris_jobs.core.errors import InvalidTransitionError


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class JobStatus(str, Enum):
    """Status of a job run.

    Valid transition graph::

        PENDING  → RUNNING | CANCELLED
        RUNNING  → SUCCEEDED | FAILED | CANCELLED | PARTIAL
        SUCCEEDED / FAILED / CANCELLED / PARTIAL → (terminal)
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    JobStatus.SUCCEEDED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
    JobStatus.PARTIAL,
})

VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({
        JobStatus.SUCCEEDED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
        JobStatus.PARTIAL,
    }),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
    JobStatus.PARTIAL: frozenset(),
}


def validate_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value)


class TriggerSource(str, Enum):
    """What created a run."""

    EVENT = "event"
    CRON = "cron"
    MANUAL = "manual"
    RESUME = "resume"


@dataclass(frozen=True)
class Event:
    """A named payload travelling through the dispatcher."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=utcnow)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "name": self.name,
            "payload": self.payload,
            "emitted_at": self.emitted_at.isoformat(),
        }


@dataclass
class StepCheckpoint:
    """A completed step of a run and its (JSON-normalised) result."""

    step_name: str
    attempt: int
    result: Any = None
    error: str | None = None
    completed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "attempt": self.attempt,
            "result": self.result,
            "error": self.error,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class JobRun:
    """One execution instance of a job definition.

    ``checkpoints`` is append-only; the run is immutable once its status is
    terminal.
    """

    run_id: str
    job_id: str
    trigger_payload: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    trigger_source: TriggerSource = TriggerSource.EVENT
    event_name: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    checkpoints: list[StepCheckpoint] = field(default_factory=list)
    result: Any = None
    error: str | None = None

    @classmethod
    def create(
        cls,
        job_id: str,
        payload: dict[str, Any] | None = None,
        *,
        trigger_source: TriggerSource = TriggerSource.EVENT,
        event_name: str | None = None,
    ) -> JobRun:
        return cls(
            run_id=str(uuid.uuid4()),
            job_id=job_id,
            trigger_payload=dict(payload or {}),
            trigger_source=trigger_source,
            event_name=event_name,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def completed_steps(self) -> list[str]:
        return [cp.step_name for cp in self.checkpoints]

    def checkpoint_for(self, step_name: str) -> StepCheckpoint | None:
        for checkpoint in self.checkpoints:
            if checkpoint.step_name == step_name:
                return checkpoint
        return None

    def transition_to(self, target: JobStatus) -> None:
        """Move to ``target``, enforcing the state machine."""
        validate_transition(self.status, target)
        self.status = target
        if target == JobStatus.RUNNING:
            self.started_at = self.started_at or utcnow()
        elif target.is_terminal:
            self.completed_at = utcnow()

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "job_id": self.job_id,
            "status": self.status.value,
            "trigger_source": self.trigger_source.value,
            "event_name": self.event_name,
            "trigger_payload": self.trigger_payload,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "checkpoints": [cp.to_dict() for cp in self.checkpoints],
            "result": self.result,
            "error": self.error,
        }


@dataclass
class BatchItemResult:
    """Outcome of one element of a fan-out operation."""

    item_id: str
    success: bool
    error: str | None = None
    payload: dict[str, Any] | None = None

    @classmethod
    def ok(cls, item_id: str, **payload: Any) -> BatchItemResult:
        return cls(item_id=item_id, success=True, payload=payload or None)

    @classmethod
    def fail(cls, item_id: str, error: str) -> BatchItemResult:
        return cls(item_id=item_id, success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"itemId": self.item_id, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        if self.payload:
            data.update(self.payload)
        return data


@dataclass
class BatchSummary:
    """Aggregate counts over a list of batch item results."""

    results: list[BatchItemResult]

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def total(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "results": [r.to_dict() for r in self.results],
        }
