"""Event names and helpers that enqueue work through the dispatcher.

Application code does not build event payloads by hand:

    >>> await queue_payroll_processing(dispatcher, "period-123", "company-456", "hr@acme.id")
    {'success': True, 'runIds': ['...']}
"""

from __future__ import annotations

from typing import Any, Protocol

PAYROLL_PROCESS = "payroll/process"
PAYROLL_PROCESS_CANCELLED = "payroll/process.cancelled"
EMAIL_SEND = "email/send"
EMAIL_SEND_BATCH = "email/send-batch"
NOTIFICATIONS_SEND = "notifications/send"
INTEGRATIONS_REFRESH_TOKENS = "integrations/refresh-tokens"
WORKFLOW_EXECUTE = "workflow/execute"

ALL_EVENTS = (
    PAYROLL_PROCESS,
    PAYROLL_PROCESS_CANCELLED,
    EMAIL_SEND,
    EMAIL_SEND_BATCH,
    NOTIFICATIONS_SEND,
    INTEGRATIONS_REFRESH_TOKENS,
    WORKFLOW_EXECUTE,
)


class EventEmitter(Protocol):
    async def emit(self, name: str, payload: dict[str, Any] | None = None) -> list[Any]: ...


async def _queue(emitter: EventEmitter, name: str, payload: dict[str, Any]) -> dict[str, Any]:
    runs = await emitter.emit(name, payload)
    return {"success": True, "runIds": [run.run_id for run in runs]}


async def queue_payroll_processing(
    emitter: EventEmitter, payroll_period_id: str, company_id: str, initiated_by: str
) -> dict[str, Any]:
    return await _queue(
        emitter,
        PAYROLL_PROCESS,
        {
            "payrollPeriodId": payroll_period_id,
            "companyId": company_id,
            "initiatedBy": initiated_by,
        },
    )


async def cancel_payroll_processing(
    emitter: EventEmitter, payroll_period_id: str
) -> dict[str, Any]:
    return await _queue(emitter, PAYROLL_PROCESS_CANCELLED, {"payrollPeriodId": payroll_period_id})


async def queue_email(
    emitter: EventEmitter,
    email_type: str,
    to: str | list[str],
    data: dict[str, Any] | None = None,
    subject: str = "",
) -> dict[str, Any]:
    return await _queue(
        emitter,
        EMAIL_SEND,
        {"type": email_type, "to": to, "subject": subject, "data": data or {}},
    )


async def queue_batch_emails(emitter: EventEmitter, emails: list[dict[str, Any]]) -> dict[str, Any]:
    return await _queue(emitter, EMAIL_SEND_BATCH, {"emails": emails})


async def queue_token_refresh(
    emitter: EventEmitter,
    integration_id: str | None = None,
    company_id: str | None = None,
) -> dict[str, Any]:
    return await _queue(
        emitter,
        INTEGRATIONS_REFRESH_TOKENS,
        {"integrationId": integration_id, "companyId": company_id},
    )


async def queue_workflow_execution(
    emitter: EventEmitter,
    workflow_id: str,
    trigger_id: str,
    payload: dict[str, Any],
    company_id: str,
) -> dict[str, Any]:
    return await _queue(
        emitter,
        WORKFLOW_EXECUTE,
        {
            "workflowId": workflow_id,
            "triggerId": trigger_id,
            "payload": payload,
            "companyId": company_id,
        },
    )


async def queue_notification(
    emitter: EventEmitter,
    user_id: str,
    title: str,
    body: str,
    company_id: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return await _queue(
        emitter,
        NOTIFICATIONS_SEND,
        {
            "userId": user_id,
            "title": title,
            "body": body,
            "data": data or {},
            "companyId": company_id,
        },
    )
