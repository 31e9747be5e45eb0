"""Database backup jobs.

- ``backup-daily-full`` (02:00): create a full backup, verify it, prune old ones
- ``backup-incremental`` (every 6 hours): incremental since the newest backup
- ``backup-weekly-verification`` (Sunday 03:00): verify every stored backup

A backup that fails verification fails the step (and is retried); the weekly
sweep reports invalid backups in its result instead.
"""

from __future__ import annotations

from typing import Any

from hris_jobs.core.errors import TransientError, ValidationError
from hris_jobs.execution.context import StepContext
from hris_jobs.ports import BackupService


def _backups(ctx: StepContext) -> BackupService:
    if ctx.services.backups is None:
        raise ValidationError("No backup service configured")
    return ctx.services.backups


async def _verify(backups: BackupService, backup_id: str) -> dict[str, Any]:
    verification = await backups.verify_backup(backup_id)
    if not verification.get("valid"):
        raise TransientError(
            f"Backup verification failed: {', '.join(verification.get('errors') or [])}"
        ).with_context(backup_id=backup_id)
    return {"backupId": backup_id, "valid": True}


async def daily_full_backup(ctx: StepContext) -> dict[str, Any]:
    backups = _backups(ctx)
    metadata = await ctx.run("create-full-backup", backups.create_full_backup)
    await ctx.run("verify-backup", _verify, backups, metadata["id"])
    cleaned = await ctx.run("clean-old-backups", backups.clean_old_backups)
    if cleaned.get("errors"):
        ctx.logger.warning("backup.clean_errors", errors=cleaned["errors"])
    ctx.logger.info("backup.full_completed", backup_id=metadata["id"], size=metadata.get("size"))
    return {"success": True, "backupId": metadata["id"], "deleted": cleaned.get("deleted", 0)}


async def incremental_backup(ctx: StepContext) -> dict[str, Any]:
    backups = _backups(ctx)
    existing = await ctx.run("list-backups", backups.list_backups)
    if not existing:
        ctx.logger.warning("backup.incremental_skipped", reason="no-previous-backup")
        return {"success": False, "reason": "no-previous-backup"}

    since = existing[0]["timestamp"]
    metadata = await ctx.run("create-incremental-backup", backups.create_incremental_backup, since)
    await ctx.run("verify-backup", _verify, backups, metadata["id"])
    return {"success": True, "backupId": metadata["id"], "since": since}


async def weekly_backup_verification(ctx: StepContext) -> dict[str, Any]:
    backups = _backups(ctx)

    async def verify_all() -> dict[str, Any]:
        stored = await backups.list_backups()
        report: dict[str, Any] = {"total": len(stored), "valid": 0, "invalid": 0, "errors": []}
        for backup in stored:
            verification = await backups.verify_backup(backup["id"])
            if verification.get("valid"):
                report["valid"] += 1
            else:
                report["invalid"] += 1
                report["errors"].append(
                    f"{backup['id']}: {', '.join(verification.get('errors') or [])}"
                )
        return report

    report = await ctx.run("verify-all-backups", verify_all)
    if report["invalid"]:
        ctx.logger.error(
            "backup.invalid_detected", invalid=report["invalid"], errors=report["errors"]
        )
    return {"success": True, **report}
