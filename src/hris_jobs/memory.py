"""In-memory implementations of the collaborator protocols.

Used by the test suite and by ``hris-jobs scheduler run`` when no real store
is wired in. Rows are kept as plain dicts and copied on the way out, so a
job mutating a fetched row never changes the store behind it.
"""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from hris_jobs.core.logging import get_logger
from hris_jobs.execution.models import utcnow
from hris_jobs.ports import (
    EmailMessage,
    PushNotification,
    PushResult,
    Row,
    SendResult,
)

logger = get_logger(__name__)


def _copy(row: Row | None) -> Row | None:
    return copy.deepcopy(row) if row is not None else None


def _as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class MemoryHRStore:
    """Dict-backed :class:`~hris_jobs.ports.HRStore`.

    Tables are lists/dicts of rows named after the platform tables they stand
    in for. Tests seed them directly (``store.employees["e-1"] = {...}``).
    """

    def __init__(self) -> None:
        self.payroll_periods: dict[str, Row] = {}
        self.employees: dict[str, Row] = {}
        self.compensation: dict[str, Row] = {}
        self.attendance: list[Row] = []
        self.payroll_details: dict[tuple[str, str], Row] = {}
        self.workflows: dict[str, Row] = {}
        self.workflow_steps: list[Row] = []
        self.workflow_executions: list[Row] = []
        self.approval_requests: list[Row] = []
        self.records: dict[str, dict[str, Row]] = {}
        self.sessions: list[Row] = []
        self.password_reset_tokens: list[Row] = []
        self.employee_invitations: list[Row] = []
        self.temp_files: list[Row] = []
        self.audit_logs: list[Row] = []
        self.audit_logs_archive: list[Row] = []
        self.integrations: dict[str, Row] = {}
        self.companies: dict[str, Row] = {}
        self.device_tokens: dict[str, list[str]] = {}

    # ── Payroll ─────────────────────────────────────────────────

    async def get_payroll_period(self, period_id: str, company_id: str) -> Row | None:
        period = self.payroll_periods.get(period_id)
        if period is None or period.get("employer_id") != company_id:
            return None
        return _copy(period)

    async def list_active_employees(self, company_id: str) -> list[Row]:
        return [
            copy.deepcopy(e)
            for e in self.employees.values()
            if e.get("employer_id") == company_id and e.get("status") == "active"
        ]

    async def get_compensation(self, employee_id: str) -> Row | None:
        return _copy(self.compensation.get(employee_id))

    async def sum_overtime_hours(self, employee_id: str, start: Any, end: Any) -> Decimal:
        total = Decimal("0")
        for record in self.attendance:
            if record.get("employee_id") != employee_id:
                continue
            day = str(record.get("date"))
            if start is not None and day < str(start):
                continue
            if end is not None and day > str(end):
                continue
            total += Decimal(str(record.get("overtime_hours") or 0))
        return total

    async def upsert_payroll_detail(self, period_id: str, employee_id: str, detail: Row) -> None:
        row = dict(detail, payroll_period_id=period_id, employee_id=employee_id)
        self.payroll_details[(period_id, employee_id)] = row

    async def update_payroll_period(self, period_id: str, changes: Row) -> None:
        self.payroll_periods.setdefault(period_id, {"id": period_id}).update(changes)

    # ── Workflows ───────────────────────────────────────────────

    async def get_workflow(self, workflow_id: str, company_id: str) -> Row | None:
        workflow = self.workflows.get(workflow_id)
        if workflow is None or workflow.get("employer_id") != company_id:
            return None
        return _copy(workflow)

    async def list_workflow_steps(self, workflow_id: str) -> list[Row]:
        steps = [
            copy.deepcopy(s)
            for s in self.workflow_steps
            if s.get("workflow_id") == workflow_id and s.get("is_active", True)
        ]
        return sorted(steps, key=lambda s: s.get("order", 0))

    async def update_record_status(self, table: str, record_id: str, status: str) -> None:
        record = self.records.setdefault(table, {}).setdefault(record_id, {"id": record_id})
        record["status"] = status

    async def create_approval_request(self, request: Row) -> None:
        self.approval_requests.append(dict(request, id=str(uuid.uuid4())))

    async def insert_workflow_execution(self, execution: Row) -> None:
        self.workflow_executions.append(dict(execution, id=str(uuid.uuid4())))

    async def delete_failed_workflow_executions(self, before: datetime) -> int:
        keep, removed = [], 0
        for execution in self.workflow_executions:
            executed_at = _as_datetime(execution.get("executed_at"))
            if execution.get("status") == "failed" and executed_at and executed_at < before:
                removed += 1
            else:
                keep.append(execution)
        self.workflow_executions = keep
        return removed

    # ── Housekeeping ────────────────────────────────────────────

    @staticmethod
    def _purge(
        rows: list[Row], column: str, before: datetime, **where: Any
    ) -> tuple[list[Row], int]:
        keep = []
        for row in rows:
            stamp = _as_datetime(row.get(column))
            matches = all(row.get(k) == v for k, v in where.items())
            if matches and stamp is not None and stamp < before:
                continue
            keep.append(row)
        return keep, len(rows) - len(keep)

    async def delete_sessions_expired_before(self, before: datetime) -> int:
        self.sessions, count = self._purge(self.sessions, "expires_at", before)
        return count

    async def delete_reset_tokens_expired_before(self, before: datetime) -> int:
        self.password_reset_tokens, count = self._purge(
            self.password_reset_tokens, "expires_at", before
        )
        return count

    async def delete_pending_invitations_before(self, before: datetime) -> int:
        self.employee_invitations, count = self._purge(
            self.employee_invitations, "created_at", before, status="pending"
        )
        return count

    async def delete_temp_files_before(self, before: datetime) -> int:
        self.temp_files, count = self._purge(self.temp_files, "created_at", before)
        return count

    async def list_audit_logs_before(self, before: datetime, limit: int) -> list[Row]:
        old = [
            copy.deepcopy(log)
            for log in self.audit_logs
            if (stamp := _as_datetime(log.get("created_at"))) is not None and stamp < before
        ]
        return old[:limit]

    async def archive_audit_logs(self, logs: list[Row]) -> None:
        archived = {log["id"] for log in self.audit_logs_archive}
        self.audit_logs_archive.extend(
            copy.deepcopy(log) for log in logs if log["id"] not in archived
        )

    async def delete_audit_logs(self, log_ids: list[str]) -> int:
        ids = set(log_ids)
        before = len(self.audit_logs)
        self.audit_logs = [log for log in self.audit_logs if log["id"] not in ids]
        return before - len(self.audit_logs)

    # ── Integrations ────────────────────────────────────────────

    async def get_integration(self, integration_id: str) -> Row | None:
        return _copy(self.integrations.get(integration_id))

    async def list_expiring_integrations(
        self,
        before: datetime,
        *,
        company_id: str | None = None,
    ) -> list[Row]:
        expiring = []
        for integration in self.integrations.values():
            if integration.get("status") != "active" or not integration.get("refresh_token"):
                continue
            if company_id is not None and integration.get("company_id") != company_id:
                continue
            expires_at = _as_datetime(integration.get("expires_at"))
            if expires_at is not None and expires_at < before:
                expiring.append(copy.deepcopy(integration))
        return expiring

    async def update_integration_tokens(self, integration_id: str, tokens: Row) -> None:
        self.integrations[integration_id].update(tokens)

    # ── Companies / devices ─────────────────────────────────────

    async def list_active_companies(self) -> list[Row]:
        return [copy.deepcopy(c) for c in self.companies.values() if c.get("status") == "active"]

    async def list_device_tokens(self, user_id: str) -> list[str]:
        return list(self.device_tokens.get(user_id, []))

    async def remove_device_tokens(self, tokens: list[str]) -> None:
        invalid = set(tokens)
        for user_id, user_tokens in self.device_tokens.items():
            self.device_tokens[user_id] = [t for t in user_tokens if t not in invalid]


class MemoryEmailSender:
    """Records messages instead of delivering them.

    ``fail_for`` lists recipients whose sends report failure.
    """

    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[EmailMessage] = []
        self.fail_for = set(fail_for or ())

    async def send(self, message: EmailMessage) -> SendResult:
        if any(to in self.fail_for for to in message.to):
            return SendResult(success=False, error=f"Delivery refused for {', '.join(message.to)}")
        self.sent.append(message)
        logger.debug("email.recorded", to=message.to, subject=message.subject)
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")


class MemoryPushSender:
    """Records push notifications; tokens in ``invalid`` are reported invalid."""

    def __init__(self, invalid: set[str] | None = None):
        self.sent: list[tuple[list[str], PushNotification]] = []
        self.invalid = set(invalid or ())

    async def send(self, tokens: list[str], notification: PushNotification) -> PushResult:
        self.sent.append((list(tokens), notification))
        bad = [t for t in tokens if t in self.invalid]
        return PushResult(
            success_count=len(tokens) - len(bad),
            failure_count=len(bad),
            invalid_tokens=bad,
        )


class MemoryTokenProvider:
    """OAuth provider stub that issues sequential access tokens."""

    def __init__(
        self, name: str, *, expires: bool = True, lifetime_seconds: int = 3600, clock=None
    ):
        self.name = name
        self.expires = expires
        self.lifetime_seconds = lifetime_seconds
        self.refreshed: list[str] = []
        self._clock = clock

    async def refresh(self, refresh_token: str) -> Row:
        now = self._clock() if self._clock else utcnow()
        self.refreshed.append(refresh_token)
        return {
            "access_token": f"{self.name}-access-{len(self.refreshed)}",
            "refresh_token": refresh_token,
            "expires_at": now + timedelta(seconds=self.lifetime_seconds),
        }


class MemoryCacheWarmer:
    def __init__(self) -> None:
        self.warmed: list[str] = []

    async def warm_company(self, company_id: str) -> None:
        self.warmed.append(company_id)


class MemoryBackupService:
    """Keeps backup metadata in a list; ``corrupt`` ids fail verification."""

    def __init__(self, clock=None) -> None:
        self.backups: list[Row] = []
        self.corrupt: set[str] = set()
        self.cleaned = 0
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock() if self._clock else utcnow()

    async def create_full_backup(self) -> Row:
        return self._record("full", None)

    async def create_incremental_backup(self, since: str) -> Row:
        return self._record("incremental", since)

    def _record(self, kind: str, since: str | None) -> Row:
        backup = {
            "id": f"backup-{len(self.backups) + 1}",
            "type": kind,
            "since": since,
            "timestamp": self._now().isoformat(),
            "size": 0,
            "tables": [],
        }
        self.backups.insert(0, backup)
        return dict(backup)

    async def verify_backup(self, backup_id: str) -> Row:
        if backup_id in self.corrupt:
            return {"valid": False, "errors": ["checksum mismatch"]}
        return {"valid": True, "errors": []}

    async def clean_old_backups(self) -> Row:
        return {"deleted": self.cleaned, "errors": []}

    async def list_backups(self) -> list[Row]:
        return [dict(b) for b in self.backups]
