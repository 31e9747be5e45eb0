"""Housekeeping jobs on cron schedules.

=====================  ============  ==============================================
Job                    Schedule      Removes
=====================  ============  ==============================================
cleanup-expired-tokens ``0 2 * * *`` sessions expired > 30 days ago, expired
                                     password reset tokens, pending invitations
                                     older than 7 days, temp files older than 24h
archive-old-logs       ``0 3 1 * *`` audit logs older than a year (at most 10,000
                                     per run), copied to the archive then deleted
cleanup-failed-jobs    ``0 4 * * 0`` failed workflow executions older than 30 days
=====================  ============  ==============================================

Nothing to clean is a success with zero counts.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from hris_jobs.execution.context import StepContext

SESSION_RETENTION = timedelta(days=30)
INVITATION_RETENTION = timedelta(days=7)
TEMP_FILE_RETENTION = timedelta(hours=24)
AUDIT_LOG_RETENTION = timedelta(days=365)
AUDIT_LOG_ARCHIVE_LIMIT = 10_000
FAILED_EXECUTION_RETENTION = timedelta(days=30)


async def cleanup_expired_tokens(ctx: StepContext) -> dict[str, Any]:
    store = ctx.store
    now = ctx.services.now()

    sessions = await ctx.run(
        "cleanup-sessions", store.delete_sessions_expired_before, now - SESSION_RETENTION
    )
    tokens = await ctx.run("cleanup-reset-tokens", store.delete_reset_tokens_expired_before, now)
    invitations = await ctx.run(
        "cleanup-invitations", store.delete_pending_invitations_before, now - INVITATION_RETENTION
    )
    temp_files = await ctx.run(
        "cleanup-temp-files", store.delete_temp_files_before, now - TEMP_FILE_RETENTION
    )

    cleaned = {
        "sessions": sessions,
        "tokens": tokens,
        "invitations": invitations,
        "tempFiles": temp_files,
    }
    ctx.logger.info("cleanup.tokens_completed", **cleaned)
    return {"success": True, "timestamp": now.isoformat(), "cleaned": cleaned}


async def archive_old_logs(ctx: StepContext) -> dict[str, Any]:
    store = ctx.store
    now = ctx.services.now()

    async def archive() -> list[str]:
        logs = await store.list_audit_logs_before(
            now - AUDIT_LOG_RETENTION, AUDIT_LOG_ARCHIVE_LIMIT
        )
        if logs:
            await store.archive_audit_logs(logs)
        return [log["id"] for log in logs]

    # Deleting is its own step so a retried delete never re-archives the batch.
    log_ids = await ctx.run("archive-logs", archive)
    if log_ids:
        await ctx.run("delete-archived-logs", store.delete_audit_logs, log_ids)
    archived = len(log_ids)
    ctx.logger.info("cleanup.logs_archived", archived=archived)
    return {"success": True, "timestamp": now.isoformat(), "archivedCount": archived}


async def cleanup_failed_jobs(ctx: StepContext) -> dict[str, Any]:
    now = ctx.services.now()
    cleaned = await ctx.run(
        "cleanup-failed-jobs",
        ctx.store.delete_failed_workflow_executions,
        now - FAILED_EXECUTION_RETENTION,
    )
    return {"success": True, "timestamp": now.isoformat(), "cleanedCount": cleaned}
