"""Run ledger - persistent record of job runs and their step checkpoints.

The RunLedger is what makes a run durable: the executor writes a checkpoint
row after every successful step, so a process restart can reload the run and
replay it, skipping every step that already has a checkpoint.

Architecture:

    .. code-block:: text

        RunLedger: Single Source of Truth
        ┌───────────────────────────────────────────────────────────┐
        │  RUN CRUD                 CHECKPOINTS                     │
        │  ────────                 ───────────                     │
        │  create_run()             append_checkpoint()             │
        │  get_run()                get_checkpoints()               │
        │  update_status()                                          │
        │  list_runs()                                              │
        │  list_incomplete()  ─ pending/running runs to resume      │
        ├───────────────────────────────────────────────────────────┤
        │  ┌──────────────────┐     ┌──────────────────────────┐   │
        │  │ job_runs         │────>│ job_step_checkpoints     │   │
        │  │ (state machine)  │     │ (append-only)            │   │
        │  └──────────────────┘     └──────────────────────────┘   │
        └───────────────────────────────────────────────────────────┘

Example:
    >>> import sqlite3
    >>> from hris_jobs.execution.ledger import RunLedger, initialize_schema
    >>>
    >>> conn = sqlite3.connect(":memory:")
    >>> initialize_schema(conn)
    >>> ledger = RunLedger(conn)
    >>> run = ledger.create_run(JobRun.create("cache-warming"))
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from hris_jobs.core.serialization import dumps
from hris_jobs.execution.models import (
    JobRun,
    JobStatus,
    StepCheckpoint,
    TriggerSource,
)

LEDGER_DDL: dict[str, str] = {
    "job_runs": """
        CREATE TABLE IF NOT EXISTS job_runs (
            run_id TEXT PRIMARY KEY,
            job_id TEXT NOT NULL,
            trigger_payload TEXT DEFAULT '{}',   -- JSON
            trigger_source TEXT NOT NULL DEFAULT 'event',
            event_name TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT,
            result TEXT,                         -- JSON
            error TEXT
        )
    """,
    "job_runs_idx_status": """
        CREATE INDEX IF NOT EXISTS idx_job_runs_status
        ON job_runs(status)
    """,
    "job_runs_idx_job_id": """
        CREATE INDEX IF NOT EXISTS idx_job_runs_job_id
        ON job_runs(job_id)
    """,
    "job_step_checkpoints": """
        CREATE TABLE IF NOT EXISTS job_step_checkpoints (
            run_id TEXT NOT NULL,
            seq INTEGER NOT NULL,
            step_name TEXT NOT NULL,
            attempt INTEGER NOT NULL,
            result TEXT,                         -- JSON
            error TEXT,
            completed_at TEXT NOT NULL,

            PRIMARY KEY (run_id, step_name),
            FOREIGN KEY (run_id) REFERENCES job_runs(run_id) ON DELETE CASCADE
        )
    """,
}


def initialize_schema(conn) -> None:
    """Create the ledger tables. Safe to call multiple times."""
    for _name, ddl in LEDGER_DDL.items():
        conn.execute(ddl)
    conn.commit()


def connect(path: str | Path) -> sqlite3.Connection:
    """Open (and initialise) a ledger database file."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    initialize_schema(conn)
    return conn


class RunLedger:
    """CRUD for job runs and their checkpoints.

    Works with any DB-API connection using ``?`` placeholders (sqlite3).
    """

    def __init__(self, conn):
        self._conn = conn

    # =========================================================================
    # RUN CRUD
    # =========================================================================

    def create_run(self, run: JobRun) -> JobRun:
        cursor = self._conn.cursor()
        cursor.execute(
            """
            INSERT INTO job_runs (
                run_id, job_id, trigger_payload, trigger_source, event_name,
                status, created_at, started_at, completed_at, result, error
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.run_id,
                run.job_id,
                dumps(run.trigger_payload),
                run.trigger_source.value,
                run.event_name,
                run.status.value,
                run.created_at.isoformat(),
                run.started_at.isoformat() if run.started_at else None,
                run.completed_at.isoformat() if run.completed_at else None,
                dumps(run.result) if run.result is not None else None,
                run.error,
            ),
        )
        self._conn.commit()
        return run

    def get_run(self, run_id: str) -> JobRun | None:
        """Load a run together with its checkpoints."""
        cursor = self._conn.cursor()
        cursor.execute(
            """
            SELECT run_id, job_id, trigger_payload, trigger_source, event_name,
                   status, created_at, started_at, completed_at, result, error
            FROM job_runs
            WHERE run_id = ?
            """,
            (run_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None
        run = self._row_to_run(row)
        run.checkpoints = self.get_checkpoints(run_id)
        return run

    def update_status(self, run: JobRun) -> None:
        """Persist the run's current status, timestamps, result and error."""
        cursor = self._conn.cursor()
        cursor.execute(
            """
            UPDATE job_runs
            SET status = ?, started_at = ?, completed_at = ?, result = ?, error = ?
            WHERE run_id = ?
            """,
            (
                run.status.value,
                run.started_at.isoformat() if run.started_at else None,
                run.completed_at.isoformat() if run.completed_at else None,
                dumps(run.result) if run.result is not None else None,
                run.error,
                run.run_id,
            ),
        )
        self._conn.commit()

    def list_runs(
        self,
        status: JobStatus | None = None,
        job_id: str | None = None,
        limit: int = 100,
    ) -> list[JobRun]:
        """List runs, newest first. Checkpoints are not loaded."""
        query = """
            SELECT run_id, job_id, trigger_payload, trigger_source, event_name,
                   status, created_at, started_at, completed_at, result, error
            FROM job_runs
            WHERE 1=1
        """
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status.value)
        if job_id:
            query += " AND job_id = ?"
            params.append(job_id)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        cursor = self._conn.cursor()
        cursor.execute(query, params)
        return [self._row_to_run(row) for row in cursor.fetchall()]

    def list_incomplete(self) -> list[JobRun]:
        """Runs that never reached a terminal status, oldest first, with checkpoints."""
        cursor = self._conn.cursor()
        cursor.execute(
            """
            SELECT run_id FROM job_runs
            WHERE status IN (?, ?)
            ORDER BY created_at ASC
            """,
            (JobStatus.PENDING.value, JobStatus.RUNNING.value),
        )
        runs = []
        for (run_id,) in cursor.fetchall():
            run = self.get_run(run_id)
            if run is not None:
                runs.append(run)
        return runs

    # =========================================================================
    # CHECKPOINTS
    # =========================================================================

    def append_checkpoint(self, run_id: str, checkpoint: StepCheckpoint) -> None:
        cursor = self._conn.cursor()
        cursor.execute(
            """
            INSERT INTO job_step_checkpoints (
                run_id, seq, step_name, attempt, result, error, completed_at
            ) VALUES (
                ?, (SELECT COUNT(*) FROM job_step_checkpoints WHERE run_id = ?),
                ?, ?, ?, ?, ?
            )
            """,
            (
                run_id,
                run_id,
                checkpoint.step_name,
                checkpoint.attempt,
                json.dumps(checkpoint.result),
                checkpoint.error,
                checkpoint.completed_at.isoformat(),
            ),
        )
        self._conn.commit()

    def get_checkpoints(self, run_id: str) -> list[StepCheckpoint]:
        """Checkpoints of a run in the order they were written."""
        cursor = self._conn.cursor()
        cursor.execute(
            """
            SELECT step_name, attempt, result, error, completed_at
            FROM job_step_checkpoints
            WHERE run_id = ?
            ORDER BY seq ASC
            """,
            (run_id,),
        )
        return [
            StepCheckpoint(
                step_name=row[0],
                attempt=row[1],
                result=json.loads(row[2]) if row[2] is not None else None,
                error=row[3],
                completed_at=datetime.fromisoformat(row[4]),
            )
            for row in cursor.fetchall()
        ]

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _row_to_run(self, row: tuple) -> JobRun:
        return JobRun(
            run_id=row[0],
            job_id=row[1],
            trigger_payload=json.loads(row[2]) if row[2] else {},
            trigger_source=TriggerSource(row[3]),
            event_name=row[4],
            status=JobStatus(row[5]),
            created_at=datetime.fromisoformat(row[6]),
            started_at=datetime.fromisoformat(row[7]) if row[7] else None,
            completed_at=datetime.fromisoformat(row[8]) if row[8] else None,
            result=json.loads(row[9]) if row[9] else None,
            error=row[10],
        )
