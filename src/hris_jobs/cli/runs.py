"""
CLI ``hris-jobs runs``: inspect persisted job runs.
"""

from __future__ import annotations

import typer

from hris_jobs.cli.utils import console, fail, open_ledger, print_dict, print_json, print_table
from hris_jobs.execution.models import JobStatus

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_runs(
    status: str | None = typer.Option(None, "--status", "-s"),
    job: str | None = typer.Option(None, "--job", "-j"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List runs, newest first."""
    try:
        status_filter = JobStatus(status) if status else None
    except ValueError:
        fail(f"Unknown status: {status}")
        return

    runs = open_ledger(database).list_runs(status=status_filter, job_id=job, limit=limit)
    if json_out:
        print_json([run.to_dict() for run in runs])
        return
    print_table(
        [
            {
                "run_id": run.run_id,
                "job_id": run.job_id,
                "status": run.status.value,
                "trigger": run.trigger_source.value,
                "created_at": run.created_at.isoformat(timespec="seconds"),
                "error": run.error,
            }
            for run in runs
        ],
        title="Runs",
    )


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a run and its step checkpoints."""
    run = open_ledger(database).get_run(run_id)
    if run is None:
        fail(f"Run not found: {run_id}")
        return

    if json_out:
        print_json(run.to_dict())
        return

    data = run.to_dict()
    checkpoints = data.pop("checkpoints")
    data.pop("result")
    print_dict(data, title=f"Run: {run_id}")
    console.print()
    print_table(
        [
            {"step": cp["step_name"], "attempt": cp["attempt"], "completed_at": cp["completed_at"]}
            for cp in checkpoints
        ],
        title="Checkpoints",
    )
