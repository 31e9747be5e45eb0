"""
CLI ``hris-jobs scheduler``: run the cron loop in the foreground.
"""

from __future__ import annotations

import asyncio

import typer

from hris_jobs.cli.utils import build_runtime, console
from hris_jobs.core.settings import get_settings
from hris_jobs.scheduling import CronScheduler

app = typer.Typer(no_args_is_help=True)


async def _run(interval: float, ticks: int, database: str | None, resume: bool) -> int:
    runtime = build_runtime(database)
    if resume:
        resumed = await runtime.dispatcher.resume_incomplete()
        if resumed:
            console.print(f"Resumed {len(resumed)} incomplete run(s)")

    scheduler = CronScheduler(runtime.dispatcher, interval_seconds=interval)
    scheduler.start(max_ticks=ticks or None)
    try:
        await scheduler.wait()
    finally:
        await scheduler.stop()
    return scheduler.get_stats().runs_started


@app.command("run")
def run_scheduler(
    interval: float = typer.Option(None, "--interval", "-i", help="Seconds between ticks"),
    ticks: int = typer.Option(0, "--ticks", "-t", help="Stop after N ticks (0 = forever)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    resume: bool = typer.Option(True, "--resume/--no-resume", help="Resume incomplete runs first"),
) -> None:
    """Tick the cron scheduler against the in-memory collaborators."""
    interval = interval if interval is not None else get_settings().scheduler_interval_seconds
    console.print(f"[bold]Scheduler[/bold] interval={interval}s ticks={ticks or 'forever'}")
    try:
        started = asyncio.run(_run(interval, ticks, database, resume))
    except KeyboardInterrupt:
        console.print("[dim]Interrupted.[/dim]")
        raise typer.Exit(code=130) from None
    console.print(f"Started {started} run(s)")
