"""Email delivery jobs.

``send-email`` (event ``email/send``, payload ``{type, to, subject?, data}``)
routes the message type to its template and hands the rendered message to
the injected :class:`~hris_jobs.ports.EmailSender`. A send that reports
failure raises, so the step is retried by the job's policy.

``send-batch-emails`` (event ``email/send-batch``, payload ``{emails: [...]}``)
sends every email through the concurrency limiter and reports per-recipient
results.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from enum import Enum
from typing import Any

from hris_jobs.core.errors import TransientError, ValidationError
from hris_jobs.core.logging import get_logger
from hris_jobs.execution.context import StepContext
from hris_jobs.execution.models import BatchItemResult
from hris_jobs.ports import EmailMessage

logger = get_logger(__name__)


class EmailType(str, Enum):
    LEAVE_SUBMITTED = "leave-submitted"
    LEAVE_APPROVED = "leave-approved"
    LEAVE_REJECTED = "leave-rejected"
    PAYSLIP_READY = "payslip-ready"
    WELCOME = "welcome"
    PASSWORD_RESET = "password-reset"
    MFA_ENABLED = "mfa-enabled"
    PAYROLL_PROCESSED = "payroll-processed"
    GENERIC = "generic"

    @classmethod
    def parse(cls, value: str | None) -> EmailType:
        """Map a payload ``type``; anything unknown is GENERIC."""
        try:
            return cls(value)
        except ValueError:
            return cls.GENERIC


SUBJECTS: dict[EmailType, str] = {
    EmailType.LEAVE_SUBMITTED: "New Leave Request Submitted",
    EmailType.LEAVE_APPROVED: "Your Leave Request Has Been Approved",
    EmailType.LEAVE_REJECTED: "Your Leave Request Has Been Rejected",
    EmailType.PAYSLIP_READY: "Your Payslip Is Ready",
    EmailType.WELCOME: "Welcome to HRIS",
    EmailType.PASSWORD_RESET: "Reset Your Password",
    EmailType.MFA_ENABLED: "Two-Factor Authentication Enabled",
    EmailType.PAYROLL_PROCESSED: "Payroll Processing Complete",
}


def _html(title: str, lines: list[str]) -> str:
    body = "".join(f"<p>{line}</p>" for line in lines)
    return f"<h2>{title}</h2>{body}"


def _text(title: str, lines: list[str]) -> str:
    return "\n\n".join([title, *lines])


def _render(title: str, lines: list[str]) -> tuple[str, str]:
    return _html(title, lines), _text(title, lines)


def _leave_submitted(data: dict[str, Any]) -> tuple[str, str]:
    return _render(
        "New Leave Request",
        [
            f"{data.get('employeeName')} has submitted a leave request"
            " that requires your approval.",
            f"Leave Type: {data.get('leaveType')}",
            f"Duration: {data.get('startDate')} to {data.get('endDate')} ({data.get('days')} days)",
        ],
    )


def _leave_approved(data: dict[str, Any]) -> tuple[str, str]:
    return _render(
        "Leave Request Approved",
        [
            f"Hello {data.get('employeeName')}, your leave request has been approved.",
            f"Leave Type: {data.get('leaveType')}",
            f"Duration: {data.get('startDate')} to {data.get('endDate')} ({data.get('days')} days)",
            f"Approved by: {data.get('approvedBy')}",
        ],
    )


def _leave_rejected(data: dict[str, Any]) -> tuple[str, str]:
    return _render(
        "Leave Request Rejected",
        [
            f"Hello {data.get('employeeName')}, your leave request has been rejected.",
            f"Leave Type: {data.get('leaveType')}",
            f"Reason: {data.get('reason', '')}",
        ],
    )


def _payslip_ready(data: dict[str, Any]) -> tuple[str, str]:
    return _render(
        "Your Payslip Is Ready",
        [
            f"Hello {data.get('employeeName')}, your payslip for"
            f" {data.get('period')} is available.",
            f"Net salary: {data.get('netSalary')}",
        ],
    )


def _welcome(data: dict[str, Any]) -> tuple[str, str]:
    return _render(
        "Welcome",
        [f"Hello {data.get('name')}, welcome to {data.get('companyName', 'HRIS')}."],
    )


def _password_reset(data: dict[str, Any]) -> tuple[str, str]:
    return _render(
        "Reset Your Password",
        [
            f"Hello {data.get('name')}, use the link below to reset your password.",
            str(data.get("resetUrl", "")),
        ],
    )


def _mfa_enabled(data: dict[str, Any]) -> tuple[str, str]:
    return _render(
        "Two-Factor Authentication Enabled",
        [f"Hello {data.get('name')}, two-factor authentication is now enabled on your account."],
    )


def _payroll_processed(data: dict[str, Any]) -> tuple[str, str]:
    return _render(
        "Payroll Processing Complete",
        [
            f"The payroll for period {data.get('period')} has been processed.",
            f"Total Employees: {data.get('totalEmployees')}",
            f"Successful: {data.get('successCount')}",
            f"Failed: {data.get('failedCount')}",
        ],
    )


def _generic(data: dict[str, Any]) -> tuple[str, str]:
    fallback = json.dumps(data, default=str)
    return data.get("html") or fallback, data.get("text") or fallback


TEMPLATES: dict[EmailType, Callable[[dict[str, Any]], tuple[str, str]]] = {
    EmailType.LEAVE_SUBMITTED: _leave_submitted,
    EmailType.LEAVE_APPROVED: _leave_approved,
    EmailType.LEAVE_REJECTED: _leave_rejected,
    EmailType.PAYSLIP_READY: _payslip_ready,
    EmailType.WELCOME: _welcome,
    EmailType.PASSWORD_RESET: _password_reset,
    EmailType.MFA_ENABLED: _mfa_enabled,
    EmailType.PAYROLL_PROCESSED: _payroll_processed,
    EmailType.GENERIC: _generic,
}


def _recipients(to: Any) -> list[str]:
    if isinstance(to, list | tuple):
        return [str(t) for t in to]
    if not to:
        raise ValidationError("Email recipient is required")
    return [str(to)]


def build_message(
    email_type: EmailType,
    to: Any,
    data: dict[str, Any] | None = None,
    subject: str | None = None,
) -> EmailMessage:
    """Render a typed email.

    Raises:
        ValidationError: GENERIC without a subject, or no recipient
    """
    data = data or {}
    if email_type == EmailType.GENERIC:
        if not subject:
            raise ValidationError("Subject is required for generic email")
        resolved_subject = subject
    elif email_type == EmailType.PAYROLL_PROCESSED:
        resolved_subject = subject or SUBJECTS[email_type]
    else:
        resolved_subject = SUBJECTS[email_type]
    html, text = TEMPLATES[email_type](data)
    return EmailMessage(to=_recipients(to), subject=resolved_subject, html=html, text=text)


async def send_email(ctx: StepContext) -> dict[str, Any]:
    payload = ctx.payload
    email_type = EmailType.parse(payload.get("type"))
    sender = ctx.services.email
    if sender is None:
        raise ValidationError("No email sender configured")

    async def deliver() -> dict[str, Any]:
        message = build_message(
            email_type, payload.get("to"), payload.get("data"), payload.get("subject")
        )
        result = await sender.send(message)
        if not result.success:
            raise TransientError(f"Email sending failed: {result.error}")
        return {"messageId": result.message_id}

    sent = await ctx.run("send-email", deliver)
    return {
        "success": True,
        "messageId": sent.get("messageId"),
        "type": email_type.value,
        "to": payload.get("to"),
    }


async def send_batch_emails(ctx: StepContext) -> dict[str, Any]:
    emails: list[dict[str, Any]] = list(ctx.payload.get("emails") or [])
    sender = ctx.services.email
    if sender is None:
        raise ValidationError("No email sender configured")

    async def send_one(email: dict[str, Any]) -> BatchItemResult:
        data = email.get("data") or {}
        message = EmailMessage(
            to=_recipients(email.get("to")),
            subject=data.get("subject") or "HRIS Notification",
            html=data.get("html") or "",
            text=data.get("text") or "",
        )
        result = await sender.send(message)
        if not result.success:
            return BatchItemResult.fail(
                str(email.get("to")), result.error or "Failed to send email"
            )
        return BatchItemResult.ok(str(email.get("to")), to=email.get("to"))

    async def send_all() -> list[dict[str, Any]]:
        results = await ctx.services.limiter.for_each(
            emails,
            ctx.settings.email_concurrency,
            send_one,
            item_id=lambda e: str(e.get("to")),
        )
        return [r.to_dict() for r in results]

    results = await ctx.run("send-all-emails", send_all)
    success_count = sum(1 for r in results if r["success"])
    return {
        "success": True,
        "total": len(emails),
        "successCount": success_count,
        "failedCount": len(results) - success_count,
        "results": results,
    }
