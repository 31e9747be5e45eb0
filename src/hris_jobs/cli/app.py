"""
Root Typer application for the hris-jobs CLI.
"""

from __future__ import annotations

import asyncio
import json
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

from hris_jobs.cli.utils import build_runtime, console, fail, print_table
from hris_jobs.core.logging import configure_logging
from hris_jobs.core.settings import get_settings

app = Typer(
    name="hris-jobs",
    help="hris-jobs: durable background jobs for the HR platform.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("hris-jobs")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"hris-jobs {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override HRIS_JOBS_LOG_LEVEL"),
) -> None:
    """hris-jobs CLI: inspect jobs and runs, emit events, run the scheduler."""
    settings = get_settings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.json_logs)


# ── Sub-command registration ─────────────────────────────────────────────

from hris_jobs.cli.jobs import app as jobs_app  # noqa: E402
from hris_jobs.cli.runs import app as runs_app  # noqa: E402
from hris_jobs.cli.scheduler import app as scheduler_app  # noqa: E402

app.add_typer(jobs_app, name="jobs", help="Job catalog.")
app.add_typer(runs_app, name="runs", help="Persisted job runs.")
app.add_typer(scheduler_app, name="scheduler", help="Cron scheduler.")


@app.command("emit")
def emit(
    event: str = typer.Argument(..., help="Event name, e.g. payroll/process"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON object"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Emit an event and wait for the runs it starts."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        fail(f"Invalid --payload JSON: {e}")
        return
    if not isinstance(data, dict):
        fail("--payload must be a JSON object")
        return

    async def _emit() -> list:
        runtime = build_runtime(database)
        await runtime.dispatcher.emit(event, data)
        return await runtime.dispatcher.drain()

    runs = asyncio.run(_emit())
    if not runs:
        console.print(f"[dim]No job subscribed to {event}.[/dim]")
        return
    print_table(
        [
            {"run_id": r.run_id, "job_id": r.job_id, "status": r.status.value, "error": r.error}
            for r in runs
        ],
        title=f"Runs for {event}",
    )
