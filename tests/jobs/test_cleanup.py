"""Tests for the housekeeping jobs."""

from __future__ import annotations

from datetime import timedelta

import pytest

from hris_jobs.core.errors import TransientError
from hris_jobs.execution import JobStatus, RetryPolicy
from hris_jobs.jobs import cleanup
from hris_jobs.jobs.cleanup import archive_old_logs, cleanup_expired_tokens, cleanup_failed_jobs


def ago(now, **delta) -> str:
    return (now - timedelta(**delta)).isoformat()


def ahead(now, **delta) -> str:
    return (now + timedelta(**delta)).isoformat()


class TestCleanupExpiredTokens:
    """Tests for the expired token cleanup job."""

    @pytest.mark.asyncio
    async def test_removes_only_expired_rows(self, run_job, store, fixed_now):
        """Test only rows past their retention are removed."""
        store.sessions = [
            {"id": "old", "expires_at": ago(fixed_now, days=31)},
            {"id": "recent", "expires_at": ago(fixed_now, days=29)},
        ]
        store.password_reset_tokens = [
            {"id": "used-up", "expires_at": ago(fixed_now, hours=1)},
            {"id": "valid", "expires_at": ahead(fixed_now, hours=1)},
        ]
        store.employee_invitations = [
            {"id": "stale", "status": "pending", "created_at": ago(fixed_now, days=8)},
            {"id": "accepted", "status": "accepted", "created_at": ago(fixed_now, days=8)},
            {"id": "fresh", "status": "pending", "created_at": ago(fixed_now, days=1)},
        ]
        store.temp_files = [
            {"id": "tmp-old", "created_at": ago(fixed_now, hours=25)},
            {"id": "tmp-new", "created_at": ago(fixed_now, hours=1)},
        ]

        run = await run_job(cleanup_expired_tokens, job_id="cleanup-expired-tokens")

        assert run.status == JobStatus.SUCCEEDED
        assert run.result["cleaned"] == {
            "sessions": 1,
            "tokens": 1,
            "invitations": 1,
            "tempFiles": 1,
        }
        assert [s["id"] for s in store.sessions] == ["recent"]
        assert [t["id"] for t in store.password_reset_tokens] == ["valid"]
        assert [i["id"] for i in store.employee_invitations] == ["accepted", "fresh"]
        assert [f["id"] for f in store.temp_files] == ["tmp-new"]

    @pytest.mark.asyncio
    async def test_nothing_to_clean(self, run_job, fixed_now):
        """Test an empty store reports zero counts."""
        run = await run_job(cleanup_expired_tokens, job_id="cleanup-expired-tokens")
        assert run.status == JobStatus.SUCCEEDED
        assert set(run.result["cleaned"].values()) == {0}
        assert run.result["timestamp"] == fixed_now.isoformat()


class TestArchiveOldLogs:
    """Tests for the audit log archive job."""

    @pytest.mark.asyncio
    async def test_archives_then_deletes(self, run_job, store, fixed_now):
        """Test logs older than a year are archived then deleted."""
        store.audit_logs = [
            {"id": "a-1", "created_at": ago(fixed_now, days=400)},
            {"id": "a-2", "created_at": ago(fixed_now, days=366)},
            {"id": "a-3", "created_at": ago(fixed_now, days=10)},
        ]

        run = await run_job(archive_old_logs, job_id="archive-old-logs")

        assert run.result["archivedCount"] == 2
        assert [log["id"] for log in store.audit_logs_archive] == ["a-1", "a-2"]
        assert [log["id"] for log in store.audit_logs] == ["a-3"]

    @pytest.mark.asyncio
    async def test_respects_archive_limit(self, run_job, store, monkeypatch, fixed_now):
        """Test a run archives at most the batch limit."""
        monkeypatch.setattr(cleanup, "AUDIT_LOG_ARCHIVE_LIMIT", 2)
        old = ago(fixed_now, days=500)
        store.audit_logs = [{"id": f"a-{i}", "created_at": old} for i in range(3)]

        run = await run_job(archive_old_logs, job_id="archive-old-logs")

        assert run.result["archivedCount"] == 2
        assert [log["id"] for log in store.audit_logs] == ["a-2"]

    @pytest.mark.asyncio
    async def test_nothing_to_archive(self, run_job):
        """Test a run with no old logs archives nothing."""
        run = await run_job(archive_old_logs, job_id="archive-old-logs")
        assert run.result["archivedCount"] == 0

    @pytest.mark.asyncio
    async def test_delete_retry_skips_archive(self, run_job, store, monkeypatch, fixed_now):
        """Test a failed delete is retried on its own without archiving again."""
        store.audit_logs = [
            {"id": "a-1", "created_at": ago(fixed_now, days=400)},
            {"id": "a-2", "created_at": ago(fixed_now, days=10)},
        ]
        archive_calls: list[list[str]] = []
        delete_calls: list[list[str]] = []
        archive, delete = store.archive_audit_logs, store.delete_audit_logs

        async def counting_archive(logs):
            archive_calls.append([log["id"] for log in logs])
            await archive(logs)

        async def flaky_delete(log_ids):
            delete_calls.append(list(log_ids))
            if len(delete_calls) == 1:
                raise TransientError("connection reset")
            return await delete(log_ids)

        monkeypatch.setattr(store, "archive_audit_logs", counting_archive)
        monkeypatch.setattr(store, "delete_audit_logs", flaky_delete)

        run = await run_job(
            archive_old_logs,
            job_id="archive-old-logs",
            policy=RetryPolicy.fixed(2, delay=0),
        )

        assert run.status == JobStatus.SUCCEEDED
        assert run.completed_steps == ["archive-logs", "delete-archived-logs"]
        assert archive_calls == [["a-1"]]
        assert delete_calls == [["a-1"], ["a-1"]]
        assert [log["id"] for log in store.audit_logs_archive] == ["a-1"]
        assert [log["id"] for log in store.audit_logs] == ["a-2"]


class TestCleanupFailedJobs:
    """Tests for the failed workflow execution cleanup job."""

    @pytest.mark.asyncio
    async def test_removes_old_failed_executions(self, run_job, store, fixed_now):
        """Test only failed executions older than thirty days are removed."""
        store.workflow_executions = [
            {"id": "x-1", "status": "failed", "executed_at": ago(fixed_now, days=40)},
            {"id": "x-2", "status": "failed", "executed_at": ago(fixed_now, days=5)},
            {"id": "x-3", "status": "completed", "executed_at": ago(fixed_now, days=40)},
        ]

        run = await run_job(cleanup_failed_jobs, job_id="cleanup-failed-jobs")

        assert run.result["cleanedCount"] == 1
        assert [x["id"] for x in store.workflow_executions] == ["x-2", "x-3"]
