"""
CLI utility helpers: output formatting and runtime wiring.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from hris_jobs.core.errors import JobEngineError
from hris_jobs.core.serialization import json_default
from hris_jobs.core.settings import EngineSettings, get_settings
from hris_jobs.execution.context import JobServices
from hris_jobs.execution.dispatcher import TriggerDispatcher
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

console = Console()
err_console = Console(stderr=True)


# ── Runtime helpers ──────────────────────────────────────────────────────


def open_ledger(database: str | None = None, settings: EngineSettings | None = None) -> RunLedger:
    """Open the run ledger. Defaults to ``settings.database_path``."""
    settings = settings or get_settings()
    path = Path(database) if database else settings.database_path
    return RunLedger(connect(path))


@dataclass
class Runtime:
    dispatcher: TriggerDispatcher
    services: JobServices
    ledger: RunLedger


def build_runtime(database: str | None = None) -> Runtime:
    """Wire the full catalog against the in-memory collaborators."""
    settings = get_settings()
    ledger = open_ledger(database, settings)
    services = JobServices(
        store=MemoryHRStore(),
        email=MemoryEmailSender(),
        push=MemoryPushSender(),
        token_providers={
            "google": MemoryTokenProvider("google"),
            "zoom": MemoryTokenProvider("zoom"),
            "slack": MemoryTokenProvider("slack", expires=False),
        },
        cache=MemoryCacheWarmer(),
        backups=MemoryBackupService(),
        settings=settings,
    )
    dispatcher = TriggerDispatcher(build_registry(settings), services, ledger=ledger)
    return Runtime(dispatcher=dispatcher, services=services, ledger=ledger)


def fail(error: Exception | str) -> None:
    """Print an error and exit with status 1."""
    if isinstance(error, JobEngineError):
        name = error.__class__.__name__
        err_console.print(f"[bold red]Error[/bold red] ({name}): {error.message}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {error}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=json_default))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
