"""Cancellation Monitor: cooperative cancellation of in-flight runs.

A run is never interrupted mid-step. The monitor only flips a
:class:`CancellationToken`; the step executor checks the token before each
step and ends the run as ``cancelled`` when it is set.

ARCHITECTURE
────────────
::

    TriggerDispatcher.on_event(evt)
      └── CancellationMonitor.handle_event(evt)
            └── for each watch with cancel_event == evt.name:
                  evt.payload["runId"] == run_id          → cancel
                  all match keys equal trigger payload    → cancel

    loop.call_later(timeout) ─────────────────────────────→ cancel("timeout")

    StepExecutor (before every step)
      └── token.is_cancelled → RunCancelled → status CANCELLED
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from hris_jobs.core.logging import get_logger
from hris_jobs.execution.models import Event, JobRun

logger = get_logger(__name__)


class CancellationToken:
    """Flag shared between the monitor and the executor for one run."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Set the token. Returns False if it was already set."""
        if self._reason is not None:
            return False
        self._reason = reason
        return True

    def __repr__(self) -> str:
        return f"CancellationToken(run_id={self.run_id!r}, reason={self._reason!r})"


@dataclass
class _Watch:
    run_id: str
    token: CancellationToken
    trigger_payload: dict[str, Any]
    cancel_event: str | None = None
    match: tuple[str, ...] = ()
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def matches(self, event: Event) -> bool:
        if self.cancel_event is None or event.name != self.cancel_event:
            return False
        if event.payload.get("runId") == self.run_id:
            return True
        if not self.match:
            return False
        return all(
            event.payload.get(key) is not None
            and event.payload.get(key) == self.trigger_payload.get(key)
            for key in self.match
        )


class CancellationMonitor:
    """Tracks a token per active run and sets it on cancel events or timeout."""

    def __init__(self) -> None:
        self._watches: dict[str, _Watch] = {}

    def watch(
        self,
        run: JobRun,
        cancel_event: str | None = None,
        timeout: float | None = None,
        match: Iterable[str] = (),
    ) -> CancellationToken:
        """Start watching ``run`` and return its token.

        Watching the same run twice returns the existing token. The timeout
        timer needs a running event loop.
        """
        existing = self._watches.get(run.run_id)
        if existing is not None:
            return existing.token

        watch = _Watch(
            run_id=run.run_id,
            token=CancellationToken(run.run_id),
            trigger_payload=dict(run.trigger_payload),
            cancel_event=cancel_event,
            match=tuple(match),
        )
        if timeout is not None:
            loop = asyncio.get_running_loop()
            watch.timer = loop.call_later(timeout, self._expire, run.run_id)
        self._watches[run.run_id] = watch
        return watch.token

    def unwatch(self, run_id: str) -> None:
        watch = self._watches.pop(run_id, None)
        if watch is not None and watch.timer is not None:
            watch.timer.cancel()

    def handle_event(self, event: Event) -> list[str]:
        """Cancel every watched run the event matches. Returns their run ids."""
        cancelled = []
        for watch in list(self._watches.values()):
            if watch.matches(event) and watch.token.cancel(f"cancel event {event.name}"):
                logger.info(
                    "run.cancel_requested",
                    run_id=watch.run_id,
                    event_name=event.name,
                )
                cancelled.append(watch.run_id)
        return cancelled

    def cancel(self, run_id: str, reason: str = "cancelled manually") -> bool:
        """Cancel a watched run directly."""
        watch = self._watches.get(run_id)
        if watch is None:
            return False
        if watch.token.cancel(reason):
            logger.info("run.cancel_requested", run_id=run_id, reason=reason)
        return True

    def token_for(self, run_id: str) -> CancellationToken | None:
        watch = self._watches.get(run_id)
        return watch.token if watch else None

    def is_watching(self, run_id: str) -> bool:
        return run_id in self._watches

    def _expire(self, run_id: str) -> None:
        watch = self._watches.get(run_id)
        if watch is not None and watch.token.cancel("timeout"):
            logger.warning("run.cancel_timeout", run_id=run_id)

    def __len__(self) -> int:
        return len(self._watches)
