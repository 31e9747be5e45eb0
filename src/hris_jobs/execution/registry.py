"""Job Registry: the static catalog of job definitions.

ARCHITECTURE
────────────
::

    JobRegistry
      ├── .register(definition)          ─ startup only; duplicate id is fatal
      ├── .lookup(job_id)                ─ JobNotFoundError when missing
      ├── .lookup_by_event(event_name)   ─ every definition subscribed to the event
      └── .lookup_by_cron()              ─ every cron-triggered definition

    JobDefinition  (frozen)
      ├── id / name
      ├── triggers      ─ OnEvent(event) and/or OnCron(schedule)
      ├── handler       ─ async body(ctx) -> result
      ├── retry_policy
      ├── concurrency_limit
      └── cancel_on     ─ CancelOn(event, timeout, match)

Definitions are built once at process start (see ``hris_jobs.jobs.catalog``)
and never mutated afterwards.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from croniter import croniter

from hris_jobs.core.errors import ConfigError, DuplicateJobError, JobNotFoundError
from hris_jobs.execution.retry import RetryPolicy

if TYPE_CHECKING:
    from hris_jobs.execution.context import StepContext

JobHandler = Callable[["StepContext"], Awaitable[Any]]


@dataclass(frozen=True)
class OnEvent:
    """Run the job whenever ``event`` is dispatched."""

    event: str


@dataclass(frozen=True)
class OnCron:
    """Run the job whenever the 5-field cron ``schedule`` matches a tick."""

    schedule: str

    def __post_init__(self) -> None:
        if not croniter.is_valid(self.schedule):
            raise ConfigError(f"Invalid cron expression: {self.schedule!r}")


Trigger = OnEvent | OnCron


@dataclass(frozen=True)
class CancelOn:
    """Cancellation contract for a job.

    Attributes:
        event: Event name that cancels a matching run
        timeout: Seconds after which a still-running run is cancelled
        match: Payload keys that must be equal between the cancel event and
            the run's trigger payload. When empty, the cancel event must carry
            the run's ``runId``.
    """

    event: str
    timeout: float | None = None
    match: tuple[str, ...] = ()


@dataclass(frozen=True)
class JobDefinition:
    """Immutable description of a unit of background work."""

    id: str
    handler: JobHandler
    triggers: tuple[Trigger, ...]
    name: str = ""
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    concurrency_limit: int | None = None
    cancel_on: CancelOn | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigError("Job definition id must not be empty")
        if not self.triggers:
            raise ConfigError(f"Job definition {self.id!r} declares no trigger")
        if self.concurrency_limit is not None and self.concurrency_limit < 1:
            raise ConfigError(f"Job definition {self.id!r}: concurrency_limit must be >= 1")

    @property
    def trigger(self) -> Trigger:
        """The primary trigger."""
        return self.triggers[0]

    @property
    def events(self) -> list[str]:
        return [t.event for t in self.triggers if isinstance(t, OnEvent)]

    @property
    def cron_schedules(self) -> list[str]:
        return [t.schedule for t in self.triggers if isinstance(t, OnCron)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name or self.id,
            "events": self.events,
            "cron": self.cron_schedules,
            "retry_policy": self.retry_policy.to_dict(),
            "concurrency_limit": self.concurrency_limit,
            "cancel_on": (
                {
                    "event": self.cancel_on.event,
                    "timeout": self.cancel_on.timeout,
                    "match": list(self.cancel_on.match),
                }
                if self.cancel_on
                else None
            ),
            "description": self.description,
        }


class JobRegistry:
    """Injectable catalog of job definitions.

    Example:
        >>> registry = JobRegistry()
        >>> registry.register(JobDefinition(
        ...     id="send-email",
        ...     handler=send_email,
        ...     triggers=(OnEvent("email/send"),),
        ... ))
        >>> [d.id for d in registry.lookup_by_event("email/send")]
        ['send-email']
    """

    def __init__(self, definitions: list[JobDefinition] | None = None):
        self._definitions: dict[str, JobDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: JobDefinition) -> JobDefinition:
        """Add a definition.

        Raises:
            DuplicateJobError: If the id is already registered
        """
        if definition.id in self._definitions:
            raise DuplicateJobError(definition.id)
        self._definitions[definition.id] = definition
        return definition

    def lookup(self, job_id: str) -> JobDefinition:
        try:
            return self._definitions[job_id]
        except KeyError:
            raise JobNotFoundError(job_id) from None

    def lookup_by_event(self, event_name: str) -> list[JobDefinition]:
        return [d for d in self._definitions.values() if event_name in d.events]

    def lookup_by_cron(self) -> list[JobDefinition]:
        return [d for d in self._definitions.values() if d.cron_schedules]

    def cancel_events(self) -> dict[str, list[JobDefinition]]:
        """Map cancel event name → definitions that can be cancelled by it."""
        mapping: dict[str, list[JobDefinition]] = {}
        for definition in self._definitions.values():
            if definition.cancel_on is not None:
                mapping.setdefault(definition.cancel_on.event, []).append(definition)
        return mapping

    def definitions(self) -> list[JobDefinition]:
        return sorted(self._definitions.values(), key=lambda d: d.id)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(self.definitions())
