"""Workflow execution job.

``execute-workflow`` (event ``workflow/execute``, payload ``{workflowId,
triggerId, payload, companyId}``) runs the active steps of a workflow in
order, one checkpointed ``execute-step-{id}`` per step, then records a
workflow execution row.

A failing step (including an unknown action type) is recorded as a failed
step result rather than failing the run. Without ``continue_on_error`` the
workflow stops at the first failed step; later steps are never attempted.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from hris_jobs.core.errors import UnsupportedActionError, ValidationError, error_message
from hris_jobs.execution.context import StepContext


class ActionType(str, Enum):
    SEND_EMAIL = "send_email"
    SEND_NOTIFICATION = "send_notification"
    UPDATE_STATUS = "update_status"
    CREATE_APPROVAL = "create_approval"
    WAIT = "wait"
    WEBHOOK = "webhook"

    @classmethod
    def parse(cls, value: str | None) -> ActionType:
        """Resolve an action type. ``call_webhook`` is an alias of ``webhook``.

        Raises:
            UnsupportedActionError: For any other unknown value
        """
        if value == "call_webhook":
            return cls.WEBHOOK
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedActionError(str(value)) from None


class WorkflowRun:
    """What an action handler sees about the current workflow execution."""

    def __init__(
        self, ctx: StepContext, workflow_id: str, company_id: str, payload: dict[str, Any]
    ):
        self.ctx = ctx
        self.workflow_id = workflow_id
        self.company_id = company_id
        self.payload = payload


ActionHandler = Callable[[WorkflowRun, dict[str, Any]], Awaitable[None]]


async def _send_email(wf: WorkflowRun, config: dict[str, Any]) -> None:
    await wf.ctx.emit(
        "email/send",
        {
            "type": config.get("emailType") or "generic",
            "to": config.get("to") or wf.payload.get("recipientEmail"),
            "subject": config.get("subject") or "Workflow Notification",
            "data": {**wf.payload, **(config.get("data") or {})},
        },
    )


async def _send_notification(wf: WorkflowRun, config: dict[str, Any]) -> None:
    await wf.ctx.emit(
        "notifications/send",
        {
            "userId": config.get("userId") or wf.payload.get("userId"),
            "title": config.get("title") or "Notification",
            "body": config.get("body") or "",
            "data": wf.payload,
            "companyId": wf.company_id,
        },
    )


async def _update_status(wf: WorkflowRun, config: dict[str, Any]) -> None:
    table = config.get("table")
    record_id = config.get("recordId") or wf.payload.get("recordId")
    if not table or not record_id:
        raise ValidationError("update_status requires a table and a record id")
    await wf.ctx.store.update_record_status(table, record_id, config.get("status"))


async def _create_approval(wf: WorkflowRun, config: dict[str, Any]) -> None:
    await wf.ctx.store.create_approval_request(
        {
            "workflow_id": wf.workflow_id,
            "approver_id": config.get("approverId"),
            "entity_type": config.get("entityType"),
            "entity_id": wf.payload.get("entityId"),
            "status": "pending",
            "employer_id": wf.company_id,
        }
    )


async def _wait(wf: WorkflowRun, config: dict[str, Any]) -> None:
    duration = float(config.get("duration") or 0)
    if duration > 0:
        await wf.ctx.services.sleep(duration)


async def _webhook(wf: WorkflowRun, config: dict[str, Any]) -> None:
    client = wf.ctx.services.http
    if client is None:
        raise ValidationError("No HTTP client configured for webhook steps")
    url = config.get("url")
    if not url:
        raise ValidationError("webhook step requires a url")
    response = await client.request(
        config.get("method") or "POST",
        url,
        json=wf.payload,
        headers={"Content-Type": "application/json", **(config.get("headers") or {})},
        timeout=wf.ctx.settings.webhook_timeout_seconds,
    )
    response.raise_for_status()


ACTION_HANDLERS: dict[ActionType, ActionHandler] = {
    ActionType.SEND_EMAIL: _send_email,
    ActionType.SEND_NOTIFICATION: _send_notification,
    ActionType.UPDATE_STATUS: _update_status,
    ActionType.CREATE_APPROVAL: _create_approval,
    ActionType.WAIT: _wait,
    ActionType.WEBHOOK: _webhook,
}


async def execute_action(wf: WorkflowRun, step: dict[str, Any]) -> dict[str, Any]:
    """Run one workflow step, capturing any failure in the returned result."""
    try:
        action = ActionType.parse(step.get("action_type"))
        await ACTION_HANDLERS[action](wf, step.get("config") or {})
    except Exception as e:
        wf.ctx.logger.warning(
            "workflow.step_failed",
            workflow_id=wf.workflow_id,
            step_id=step.get("id"),
            action_type=step.get("action_type"),
            error=error_message(e),
        )
        return {"stepId": step.get("id"), "success": False, "error": error_message(e)}
    return {"stepId": step.get("id"), "success": True}


async def execute_workflow(ctx: StepContext) -> dict[str, Any]:
    payload = ctx.payload
    workflow_id = payload.get("workflowId")
    company_id = payload.get("companyId")
    trigger_id = payload.get("triggerId")
    store = ctx.store

    async def get_workflow() -> dict[str, Any]:
        workflow = await store.get_workflow(workflow_id, company_id)
        if workflow is None:
            raise ValidationError("Workflow not found").with_context(workflow_id=workflow_id)
        if not workflow.get("is_active"):
            raise ValidationError("Workflow is not active").with_context(workflow_id=workflow_id)
        return workflow

    workflow = await ctx.run("get-workflow", get_workflow)
    steps = await ctx.run("get-workflow-steps", store.list_workflow_steps, workflow_id)

    wf = WorkflowRun(ctx, workflow_id, company_id, payload.get("payload") or {})
    results: list[dict[str, Any]] = []
    for step in steps:
        result = await ctx.run(f"execute-step-{step['id']}", execute_action, wf, step)
        results.append(result)
        if not result["success"] and not workflow.get("continue_on_error"):
            break

    success_count = sum(1 for r in results if r["success"])
    failed_count = len(results) - success_count

    async def log_execution() -> dict[str, Any]:
        await store.insert_workflow_execution(
            {
                "workflow_id": workflow_id,
                "trigger_id": trigger_id,
                "status": "completed" if failed_count == 0 else "failed",
                "executed_at": ctx.services.now(),
                "steps_executed": len(results),
                "steps_success": success_count,
                "steps_failed": failed_count,
                "execution_data": results,
            }
        )
        return {"logged": True}

    await ctx.run("log-execution", log_execution)

    return {
        "success": True,
        "workflowId": workflow_id,
        "stepsExecuted": len(results),
        "successCount": success_count,
        "failedCount": failed_count,
        "results": results,
    }
