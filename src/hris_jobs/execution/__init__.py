"""Durable job execution: registry, dispatcher, step executor, limiter, cancellation."""

from hris_jobs.execution.cancellation import CancellationMonitor, CancellationToken
from hris_jobs.execution.context import JobServices, StepContext
from hris_jobs.execution.dispatcher import TriggerDispatcher
from hris_jobs.execution.executor import RunCancelled, StepExecutor
from hris_jobs.execution.ledger import RunLedger, initialize_schema
from hris_jobs.execution.limiter import ConcurrencyLimiter
from hris_jobs.execution.models import (
    BatchItemResult,
    BatchSummary,
    Event,
    JobRun,
    JobStatus,
    StepCheckpoint,
    TriggerSource,
)
from hris_jobs.execution.registry import (
    CancelOn,
    JobDefinition,
    JobRegistry,
    OnCron,
    OnEvent,
)
from hris_jobs.execution.retry import BackoffKind, RetryPolicy

__all__ = [
    "BackoffKind",
    "BatchItemResult",
    "BatchSummary",
    "CancelOn",
    "CancellationMonitor",
    "CancellationToken",
    "ConcurrencyLimiter",
    "Event",
    "JobDefinition",
    "JobRegistry",
    "JobRun",
    "JobServices",
    "JobStatus",
    "OnCron",
    "OnEvent",
    "RetryPolicy",
    "RunCancelled",
    "RunLedger",
    "StepCheckpoint",
    "StepContext",
    "StepExecutor",
    "TriggerDispatcher",
    "TriggerSource",
    "initialize_schema",
]
