"""hris-jobs: durable background job execution for the HR/payroll platform.

Quick start::

    from hris_jobs import JobServices, TriggerDispatcher, build_registry
    from hris_jobs.memory import MemoryHRStore

    dispatcher = TriggerDispatcher(build_registry(), JobServices(store=MemoryHRStore()))
    await dispatcher.emit("payroll/process", {...})
    await dispatcher.drain()
"""

from hris_jobs.execution import (
    Event,
    JobDefinition,
    JobRegistry,
    JobRun,
    JobServices,
    JobStatus,
    RetryPolicy,
    StepContext,
    TriggerDispatcher,
)
from hris_jobs.jobs.catalog import build_registry

__version__ = "0.1.0"

__all__ = [
    "Event",
    "JobDefinition",
    "JobRegistry",
    "JobRun",
    "JobServices",
    "JobStatus",
    "RetryPolicy",
    "StepContext",
    "TriggerDispatcher",
    "build_registry",
    "__version__",
]
