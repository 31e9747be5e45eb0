"""Static catalog of every job the engine runs.

:func:`build_registry` is called once at process start; the resulting
:class:`~hris_jobs.execution.registry.JobRegistry` is never mutated again.

Schedules (cron, UTC)::

    cache-warming                */30 * * * *
    scheduled-token-refresh      */5 * * * *
    cleanup-expired-tokens       0 2 * * *
    archive-old-logs             0 3 1 * *
    cleanup-failed-jobs          0 4 * * 0
    backup-daily-full            0 2 * * *
    backup-incremental           0 */6 * * *
    backup-weekly-verification   0 3 * * 0
"""

from __future__ import annotations

from hris_jobs.core.settings import EngineSettings, get_settings
from hris_jobs.execution.registry import CancelOn, JobDefinition, JobRegistry, OnCron, OnEvent
from hris_jobs.execution.retry import RetryPolicy
from hris_jobs.jobs import (
    backup,
    cache,
    cleanup,
    email,
    events,
    notifications,
    payroll,
    tokens,
    workflow,
)

CACHE_WARMING_CRON = "*/30 * * * *"
TOKEN_REFRESH_CRON = "*/5 * * * *"
CLEANUP_TOKENS_CRON = "0 2 * * *"
ARCHIVE_LOGS_CRON = "0 3 1 * *"
CLEANUP_FAILED_JOBS_CRON = "0 4 * * 0"
BACKUP_FULL_CRON = "0 2 * * *"
BACKUP_INCREMENTAL_CRON = "0 */6 * * *"
BACKUP_VERIFICATION_CRON = "0 3 * * 0"


def build_definitions(settings: EngineSettings | None = None) -> list[JobDefinition]:
    settings = settings or get_settings()

    def retries(count: int) -> RetryPolicy:
        return RetryPolicy.exponential(
            max_attempts=count + 1,
            base_delay=settings.default_base_delay,
            max_delay=settings.default_max_delay,
        )

    default_policy = RetryPolicy.exponential(
        max_attempts=settings.default_max_attempts,
        base_delay=settings.default_base_delay,
        max_delay=settings.default_max_delay,
    )

    return [
        JobDefinition(
            id="process-payroll",
            name="Process Payroll",
            handler=payroll.process_payroll,
            triggers=(OnEvent(events.PAYROLL_PROCESS),),
            retry_policy=retries(3),
            cancel_on=CancelOn(
                event=events.PAYROLL_PROCESS_CANCELLED,
                timeout=settings.payroll_cancel_timeout_seconds,
                match=("payrollPeriodId",),
            ),
        ),
        JobDefinition(
            id="execute-workflow",
            name="Execute Workflow",
            handler=workflow.execute_workflow,
            triggers=(OnEvent(events.WORKFLOW_EXECUTE),),
            retry_policy=retries(2),
        ),
        JobDefinition(
            id="send-email",
            name="Send Email",
            handler=email.send_email,
            triggers=(OnEvent(events.EMAIL_SEND),),
            retry_policy=retries(3),
        ),
        JobDefinition(
            id="send-batch-emails",
            name="Send Batch Emails",
            handler=email.send_batch_emails,
            triggers=(OnEvent(events.EMAIL_SEND_BATCH),),
            retry_policy=default_policy,
            concurrency_limit=settings.email_concurrency,
        ),
        JobDefinition(
            id="send-notification",
            name="Send Push Notification",
            handler=notifications.send_notification,
            triggers=(OnEvent(events.NOTIFICATIONS_SEND),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="refresh-integration-tokens",
            name="Refresh Integration Tokens",
            handler=tokens.refresh_tokens,
            triggers=(OnEvent(events.INTEGRATIONS_REFRESH_TOKENS),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="scheduled-token-refresh",
            name="Scheduled Token Refresh",
            handler=tokens.refresh_tokens,
            triggers=(OnCron(TOKEN_REFRESH_CRON),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="cache-warming",
            name="Cache Warming",
            handler=cache.warm_caches,
            triggers=(OnCron(CACHE_WARMING_CRON),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="cleanup-expired-tokens",
            name="Cleanup Expired Tokens",
            handler=cleanup.cleanup_expired_tokens,
            triggers=(OnCron(CLEANUP_TOKENS_CRON),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="archive-old-logs",
            name="Archive Old Audit Logs",
            handler=cleanup.archive_old_logs,
            triggers=(OnCron(ARCHIVE_LOGS_CRON),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="cleanup-failed-jobs",
            name="Cleanup Failed Jobs",
            handler=cleanup.cleanup_failed_jobs,
            triggers=(OnCron(CLEANUP_FAILED_JOBS_CRON),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="backup-daily-full",
            name="Daily Full Database Backup",
            handler=backup.daily_full_backup,
            triggers=(OnCron(BACKUP_FULL_CRON),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="backup-incremental",
            name="Incremental Database Backup",
            handler=backup.incremental_backup,
            triggers=(OnCron(BACKUP_INCREMENTAL_CRON),),
            retry_policy=default_policy,
        ),
        JobDefinition(
            id="backup-weekly-verification",
            name="Weekly Backup Verification",
            handler=backup.weekly_backup_verification,
            triggers=(OnCron(BACKUP_VERIFICATION_CRON),),
            retry_policy=default_policy,
        ),
    ]


def build_registry(settings: EngineSettings | None = None) -> JobRegistry:
    return JobRegistry(build_definitions(settings))
