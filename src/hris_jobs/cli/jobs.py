"""
CLI ``hris-jobs jobs``: inspect the job catalog.
"""

from __future__ import annotations

from datetime import UTC, datetime

import typer

from hris_jobs.cli.utils import console, fail, print_json, print_table
from hris_jobs.execution.dispatcher import cron_matches
from hris_jobs.jobs.catalog import build_registry

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_jobs(
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List every registered job definition."""
    definitions = build_registry().definitions()
    if json_out:
        print_json([d.to_dict() for d in definitions])
        return
    print_table(
        [
            {
                "id": d.id,
                "trigger": ", ".join(d.events + d.cron_schedules),
                "max_attempts": d.retry_policy.max_attempts,
                "concurrency": d.concurrency_limit,
                "cancel_on": d.cancel_on.event if d.cancel_on else None,
            }
            for d in definitions
        ],
        title="Jobs",
    )


@app.command("due")
def due_jobs(
    at: str = typer.Option(None, "--at", help="ISO timestamp (default: now, UTC)"),
) -> None:
    """Show which cron jobs fire in the minute containing --at."""
    try:
        moment = datetime.fromisoformat(at) if at else datetime.now(UTC)
    except ValueError as e:
        fail(f"Invalid --at timestamp: {e}")
        return

    due = [
        d
        for d in build_registry().lookup_by_cron()
        if any(cron_matches(schedule, moment) for schedule in d.cron_schedules)
    ]
    if not due:
        console.print(f"[dim]No jobs due at {moment.isoformat()}.[/dim]")
        return
    print_table(
        [{"id": d.id, "cron": ", ".join(d.cron_schedules)} for d in due],
        title=f"Due at {moment.isoformat()}",
    )
