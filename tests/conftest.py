"""
Shared pytest fixtures for hris-jobs tests.

This module provides:
- In-memory collaborators (store, senders, providers, backups)
- JobServices with a fixed clock and an instant, recording sleep
- An in-memory SQLite run ledger
- The full job catalog wired to a TriggerDispatcher
- ``run_job`` for executing a single job body without the dispatcher

Usage:
    async def test_something(dispatcher, store):
        store.employees["e-1"] = {...}
        await dispatcher.emit("payroll/process", {...})
        runs = await dispatcher.drain()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import pytest
import structlog

from hris_jobs.core.settings import EngineSettings
from hris_jobs.execution import (
    JobRun,
    JobServices,
    RetryPolicy,
    StepExecutor,
    TriggerDispatcher,
)
from hris_jobs.execution.ledger import RunLedger, connect
from hris_jobs.jobs.catalog import build_registry
from hris_jobs.memory import (
    MemoryBackupService,
    MemoryCacheWarmer,
    MemoryEmailSender,
    MemoryHRStore,
    MemoryPushSender,
    MemoryTokenProvider,
)

FIXED_NOW = datetime(2025, 1, 15, 10, 0, tzinfo=UTC)


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo configure_logging() calls made by a test (CLI callback included)."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    """The instant every clock in ``services`` reports."""
    return FIXED_NOW


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    return EngineSettings(_env_file=None, database_path=tmp_path / "runs.db")


@pytest.fixture
def store() -> MemoryHRStore:
    return MemoryHRStore()


@pytest.fixture
def email_sender() -> MemoryEmailSender:
    return MemoryEmailSender()


@pytest.fixture
def push_sender() -> MemoryPushSender:
    return MemoryPushSender()


@pytest.fixture
def token_providers() -> dict[str, MemoryTokenProvider]:
    clock = lambda: FIXED_NOW  # noqa: E731
    return {
        "google": MemoryTokenProvider("google", clock=clock),
        "zoom": MemoryTokenProvider("zoom", clock=clock),
        "slack": MemoryTokenProvider("slack", expires=False, clock=clock),
    }


@pytest.fixture
def cache_warmer() -> MemoryCacheWarmer:
    return MemoryCacheWarmer()


@pytest.fixture
def backups() -> MemoryBackupService:
    return MemoryBackupService(clock=lambda: FIXED_NOW)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def services(
    store,
    email_sender,
    push_sender,
    token_providers,
    cache_warmer,
    backups,
    settings,
    sleeper,
) -> JobServices:
    return JobServices(
        store=store,
        email=email_sender,
        push=push_sender,
        token_providers=token_providers,
        cache=cache_warmer,
        backups=backups,
        settings=settings,
        clock=lambda: FIXED_NOW,
        sleep=sleeper,
    )


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture
def ledger():
    """Run ledger on an in-memory SQLite database."""
    conn = connect(":memory:")
    yield RunLedger(conn)
    conn.close()


@pytest.fixture
def executor(services, ledger) -> StepExecutor:
    return StepExecutor(services, ledger=ledger)


@pytest.fixture
def dispatcher(services, ledger, settings) -> TriggerDispatcher:
    return TriggerDispatcher(build_registry(settings), services, ledger=ledger)


@pytest.fixture
def run_job(executor, ledger):
    """Execute one job body to completion outside the dispatcher."""

    async def _run(
        handler,
        payload: dict[str, Any] | None = None,
        *,
        job_id: str = "test-job",
        policy: RetryPolicy | None = None,
    ) -> JobRun:
        run = JobRun.create(job_id, payload)
        ledger.create_run(run)
        return await executor.execute(run, handler, policy=policy or RetryPolicy.fixed(1, delay=0))

    return _run
