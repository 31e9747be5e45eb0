"""Tests for the execute-workflow job and its action handlers."""

from __future__ import annotations

import dataclasses
import json

import httpx
import pytest

from hris_jobs.core.errors import UnsupportedActionError
from hris_jobs.execution import JobRun, JobStatus, StepExecutor
from hris_jobs.jobs.events import queue_workflow_execution
from hris_jobs.jobs.workflow import ActionType, execute_workflow
from hris_jobs.memory import MemoryHRStore

PAYLOAD = {
    "workflowId": "w-1",
    "triggerId": "t-1",
    "companyId": "c-1",
    "payload": {"recordId": "leave-9", "entityId": "leave-9", "userId": "u-1"},
}


# ── Helpers ──────────────────────────────────────────────────────────────


def seed_workflow(store: MemoryHRStore, steps: list[dict], **workflow) -> None:
    store.workflows["w-1"] = {
        "id": "w-1",
        "employer_id": "c-1",
        "is_active": True,
        "continue_on_error": False,
        **workflow,
    }
    for order, step in enumerate(steps, start=1):
        store.workflow_steps.append(
            {"workflow_id": "w-1", "order": order, "is_active": True, **step}
        )


def update_status_step(step_id: str = "s-1") -> dict:
    return {
        "id": step_id,
        "action_type": "update_status",
        "config": {"table": "leave_requests", "status": "approved"},
    }


def approval_step(step_id: str = "s-3") -> dict:
    return {
        "id": step_id,
        "action_type": "create_approval",
        "config": {"approverId": "mgr-1", "entityType": "leave_request"},
    }


def _run(ledger) -> JobRun:
    run = JobRun.create("execute-workflow", PAYLOAD)
    ledger.create_run(run)
    return run


# ── Tests ────────────────────────────────────────────────────────────────


class TestActionType:
    """Tests for ActionType parsing."""

    def test_known(self):
        """Test a known action name parses."""
        assert ActionType.parse("wait") == ActionType.WAIT

    def test_call_webhook_alias(self):
        """Test call_webhook is an alias for webhook."""
        assert ActionType.parse("call_webhook") == ActionType.WEBHOOK

    def test_unknown(self):
        """Test an unknown action raises UnsupportedActionError."""
        with pytest.raises(UnsupportedActionError):
            ActionType.parse("teleport")


class TestExecuteWorkflow:
    """Tests for the execute-workflow job."""

    @pytest.mark.asyncio
    async def test_all_steps_succeed(self, run_job, store, sleeper):
        """Test every step runs and the execution is recorded as completed."""
        seed_workflow(
            store,
            [
                update_status_step("s-1"),
                approval_step("s-2"),
                {"id": "s-3", "action_type": "wait", "config": {"duration": 15}},
            ],
        )

        run = await run_job(execute_workflow, PAYLOAD, job_id="execute-workflow")

        assert run.status == JobStatus.SUCCEEDED
        assert run.result["stepsExecuted"] == 3
        assert run.result["successCount"] == 3
        assert run.completed_steps == [
            "get-workflow",
            "get-workflow-steps",
            "execute-step-s-1",
            "execute-step-s-2",
            "execute-step-s-3",
            "log-execution",
        ]
        assert store.records["leave_requests"]["leave-9"]["status"] == "approved"
        assert store.approval_requests[0]["approver_id"] == "mgr-1"
        assert store.approval_requests[0]["entity_id"] == "leave-9"
        assert sleeper.delays == [15.0]
        [execution] = store.workflow_executions
        assert execution["status"] == "completed"
        assert execution["steps_executed"] == 3

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, run_job, store, sleeper):
        """Test the first failing step stops the workflow."""
        seed_workflow(
            store,
            [
                update_status_step("s-1"),
                {"id": "s-2", "action_type": "teleport", "config": {}},
                approval_step("s-3"),
                {"id": "s-4", "action_type": "wait", "config": {"duration": 5}},
            ],
        )

        run = await run_job(execute_workflow, PAYLOAD, job_id="execute-workflow")

        assert run.status == JobStatus.PARTIAL
        assert run.result["results"] == [
            {"stepId": "s-1", "success": True},
            {"stepId": "s-2", "success": False, "error": "Unsupported action type: teleport"},
        ]
        assert store.approval_requests == []
        assert sleeper.delays == []
        assert store.workflow_executions[0]["status"] == "failed"
        assert store.workflow_executions[0]["steps_failed"] == 1

    @pytest.mark.asyncio
    async def test_continue_on_error(self, run_job, store):
        """Test continue_on_error runs the remaining steps."""
        seed_workflow(
            store,
            [
                {"id": "s-1", "action_type": "update_status", "config": {}},
                approval_step("s-2"),
            ],
            continue_on_error=True,
        )

        run = await run_job(execute_workflow, PAYLOAD | {"payload": {}}, job_id="execute-workflow")

        assert run.status == JobStatus.PARTIAL
        assert run.result["stepsExecuted"] == 2
        assert run.result["failedCount"] == 1
        assert run.result["results"][0]["error"] == (
            "update_status requires a table and a record id"
        )
        assert len(store.approval_requests) == 1

    @pytest.mark.asyncio
    async def test_inactive_steps_skipped_and_ordered(self, run_job, store):
        """Test inactive steps are skipped and the rest run by order."""
        seed_workflow(store, [])
        store.workflow_steps = [
            {**approval_step("late"), "workflow_id": "w-1", "order": 2, "is_active": True},
            {**update_status_step("early"), "workflow_id": "w-1", "order": 1, "is_active": True},
            {**approval_step("off"), "workflow_id": "w-1", "order": 3, "is_active": False},
        ]

        run = await run_job(execute_workflow, PAYLOAD, job_id="execute-workflow")

        assert [r["stepId"] for r in run.result["results"]] == ["early", "late"]

    @pytest.mark.asyncio
    async def test_workflow_not_found(self, run_job):
        """Test an unknown workflow fails the run."""
        run = await run_job(execute_workflow, PAYLOAD, job_id="execute-workflow")
        assert run.status == JobStatus.FAILED
        assert run.error == "Workflow not found"

    @pytest.mark.asyncio
    async def test_inactive_workflow(self, run_job, store):
        """Test an inactive workflow fails without recording an execution."""
        seed_workflow(store, [update_status_step()], is_active=False)
        run = await run_job(execute_workflow, PAYLOAD, job_id="execute-workflow")
        assert run.status == JobStatus.FAILED
        assert run.error == "Workflow is not active"
        assert store.workflow_executions == []


class TestWorkflowActions:
    """Tests for individual workflow actions."""

    @pytest.mark.asyncio
    async def test_send_email_and_notification_emit_events(
        self, dispatcher, store, email_sender, push_sender
    ):
        """Test email and notification steps start their own jobs."""
        store.device_tokens["u-1"] = ["device-1"]
        seed_workflow(
            store,
            [
                {
                    "id": "s-1",
                    "action_type": "send_email",
                    "config": {"emailType": "leave-approved", "to": "emp@acme.id"},
                },
                {
                    "id": "s-2",
                    "action_type": "send_notification",
                    "config": {"title": "Leave approved", "body": "Enjoy"},
                },
            ],
        )

        await queue_workflow_execution(
            dispatcher, "w-1", "t-1", PAYLOAD["payload"], "c-1"
        )
        runs = {run.job_id: run for run in await dispatcher.drain()}

        assert runs["execute-workflow"].status == JobStatus.SUCCEEDED
        assert runs["send-email"].status == JobStatus.SUCCEEDED
        assert runs["send-notification"].status == JobStatus.SUCCEEDED
        assert email_sender.sent[0].subject == "Your Leave Request Has Been Approved"
        tokens, notification = push_sender.sent[0]
        assert tokens == ["device-1"]
        assert notification.title == "Leave approved"

    @pytest.mark.asyncio
    async def test_webhook_posts_payload(self, services, ledger, store):
        """Test a webhook step posts the trigger payload with its headers."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        seed_workflow(
            store,
            [
                {
                    "id": "s-1",
                    "action_type": "call_webhook",
                    "config": {"url": "https://hooks.example.com/leave", "headers": {"X-Key": "k"}},
                }
            ],
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            executor = StepExecutor(dataclasses.replace(services, http=client), ledger=ledger)
            run = await executor.execute(_run(ledger), execute_workflow)

        assert run.status == JobStatus.SUCCEEDED
        [request] = requests
        assert request.method == "POST"
        assert request.headers["X-Key"] == "k"
        assert json.loads(request.content) == PAYLOAD["payload"]

    @pytest.mark.asyncio
    async def test_webhook_error_status_fails_step(self, services, ledger, store):
        """Test an error status fails the webhook step."""
        seed_workflow(
            store,
            [{"id": "s-1", "action_type": "webhook", "config": {"url": "https://x.test/hook"}}],
        )
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as client:
            executor = StepExecutor(dataclasses.replace(services, http=client), ledger=ledger)
            run = await executor.execute(_run(ledger), execute_workflow)

        assert run.status == JobStatus.PARTIAL
        assert "500" in run.result["results"][0]["error"]

    @pytest.mark.asyncio
    async def test_webhook_without_client(self, run_job, store):
        """Test a webhook step needs an HTTP client."""
        seed_workflow(
            store,
            [{"id": "s-1", "action_type": "webhook", "config": {"url": "https://x.test/hook"}}],
        )
        run = await run_job(execute_workflow, PAYLOAD, job_id="execute-workflow")
        assert run.result["results"][0]["error"] == "No HTTP client configured for webhook steps"
