"""Interfaces of the external collaborators the jobs talk to.

The engine does not own the HR domain. Employees, payroll periods, workflows,
sessions, integrations and audit logs live in an external store reached
through :class:`HRStore`; mail, push, OAuth refresh, cache warming and
database backups are likewise external. Jobs only see these protocols, so
tests (and the CLI demo) substitute the in-memory versions from
:mod:`hris_jobs.memory`.

Records cross the boundary as plain ``dict`` rows with snake_case keys, as a
database driver would return them.

Implementors
------------
* :class:`hris_jobs.memory.MemoryHRStore` and friends, for tests
* Production adapters over the platform database and providers
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

Row = dict[str, Any]


@runtime_checkable
class HRStore(Protocol):
    """Repository over the HR platform's persistent store.

    Every write is independently committed; callers make their steps safe to
    repeat (upserts keyed by natural id).
    """

    # ── Payroll ─────────────────────────────────────────────────
    async def get_payroll_period(self, period_id: str, company_id: str) -> Row | None: ...

    async def list_active_employees(self, company_id: str) -> list[Row]: ...

    async def get_compensation(self, employee_id: str) -> Row | None: ...

    async def sum_overtime_hours(self, employee_id: str, start: Any, end: Any) -> Decimal: ...

    async def upsert_payroll_detail(
        self, period_id: str, employee_id: str, detail: Row
    ) -> None: ...

    async def update_payroll_period(self, period_id: str, changes: Row) -> None: ...

    # ── Workflows ───────────────────────────────────────────────
    async def get_workflow(self, workflow_id: str, company_id: str) -> Row | None: ...

    async def list_workflow_steps(self, workflow_id: str) -> list[Row]:
        """Active steps of a workflow ordered by their ``order`` column."""
        ...

    async def update_record_status(self, table: str, record_id: str, status: str) -> None: ...

    async def create_approval_request(self, request: Row) -> None: ...

    async def insert_workflow_execution(self, execution: Row) -> None: ...

    async def delete_failed_workflow_executions(self, before: datetime) -> int: ...

    # ── Housekeeping ────────────────────────────────────────────
    async def delete_sessions_expired_before(self, before: datetime) -> int: ...

    async def delete_reset_tokens_expired_before(self, before: datetime) -> int: ...

    async def delete_pending_invitations_before(self, before: datetime) -> int: ...

    async def delete_temp_files_before(self, before: datetime) -> int: ...

    async def list_audit_logs_before(self, before: datetime, limit: int) -> list[Row]: ...

    async def archive_audit_logs(self, logs: list[Row]) -> None: ...

    async def delete_audit_logs(self, log_ids: list[str]) -> int: ...

    # ── Integrations ────────────────────────────────────────────
    async def get_integration(self, integration_id: str) -> Row | None: ...

    async def list_expiring_integrations(
        self,
        before: datetime,
        *,
        company_id: str | None = None,
    ) -> list[Row]:
        """Active integrations holding a refresh token that expire before ``before``."""
        ...

    async def update_integration_tokens(self, integration_id: str, tokens: Row) -> None: ...

    # ── Companies / devices ─────────────────────────────────────
    async def list_active_companies(self) -> list[Row]: ...

    async def list_device_tokens(self, user_id: str) -> list[str]: ...

    async def remove_device_tokens(self, tokens: list[str]) -> None: ...


@dataclass
class EmailMessage:
    to: list[str]
    subject: str
    html: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"to": self.to, "subject": self.subject, "html": self.html, "text": self.text}


@dataclass
class SendResult:
    """Outcome reported by a sender; failures are values, not exceptions."""

    success: bool
    message_id: str | None = None
    error: str | None = None


@runtime_checkable
class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> SendResult: ...


@dataclass
class PushNotification:
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PushResult:
    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: list[str] = field(default_factory=list)


@runtime_checkable
class PushSender(Protocol):
    async def send(self, tokens: list[str], notification: PushNotification) -> PushResult: ...


@runtime_checkable
class TokenProvider(Protocol):
    """OAuth refresh flow of one integration provider.

    ``expires`` is False for providers whose tokens never expire (Slack).
    ``refresh`` returns ``access_token``, optionally a rotated
    ``refresh_token``, and ``expires_at``; it raises on failure.
    """

    name: str
    expires: bool

    async def refresh(self, refresh_token: str) -> Row: ...


@runtime_checkable
class CacheWarmer(Protocol):
    async def warm_company(self, company_id: str) -> None: ...


@runtime_checkable
class BackupService(Protocol):
    async def create_full_backup(self) -> Row: ...

    async def create_incremental_backup(self, since: str) -> Row: ...

    async def verify_backup(self, backup_id: str) -> Row:
        """``{"valid": bool, "errors": [str]}``"""
        ...

    async def clean_old_backups(self) -> Row:
        """``{"deleted": int, "errors": [str]}``"""
        ...

    async def list_backups(self) -> list[Row]:
        """Backups newest first."""
        ...
