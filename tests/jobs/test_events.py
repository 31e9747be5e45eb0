"""Tests for the event helpers that enqueue work."""

from __future__ import annotations

import pytest

from hris_jobs.jobs import events


class RecordingEmitter:
    def __init__(self) -> None:
        self.emitted: list[tuple[str, dict]] = []

    async def emit(self, name: str, payload: dict | None = None) -> list:
        self.emitted.append((name, payload))
        return []


class FailingEmitter:
    async def emit(self, name: str, payload: dict | None = None) -> list:
        raise ConnectionError("event bus unreachable")


class TestPayloadShapes:
    """Tests for the event payloads the queue helpers publish."""

    @pytest.mark.asyncio
    async def test_payroll(self):
        """Test the payroll processing payload."""
        emitter = RecordingEmitter()
        result = await events.queue_payroll_processing(emitter, "p-1", "c-1", "hr@acme.id")
        assert result == {"success": True, "runIds": []}
        assert emitter.emitted == [
            (
                "payroll/process",
                {"payrollPeriodId": "p-1", "companyId": "c-1", "initiatedBy": "hr@acme.id"},
            )
        ]

    @pytest.mark.asyncio
    async def test_cancel_payroll(self):
        """Test the payroll cancel payload carries only the period."""
        emitter = RecordingEmitter()
        await events.cancel_payroll_processing(emitter, "p-1")
        assert emitter.emitted == [("payroll/process.cancelled", {"payrollPeriodId": "p-1"})]

    @pytest.mark.asyncio
    async def test_email_defaults(self):
        """Test missing email fields default to empty values."""
        emitter = RecordingEmitter()
        await events.queue_email(emitter, "welcome", "new@acme.id")
        assert emitter.emitted == [
            ("email/send", {"type": "welcome", "to": "new@acme.id", "subject": "", "data": {}})
        ]

    @pytest.mark.asyncio
    async def test_workflow(self):
        """Test the workflow execution payload."""
        emitter = RecordingEmitter()
        await events.queue_workflow_execution(emitter, "w-1", "t-1", {"recordId": "r"}, "c-1")
        assert emitter.emitted[0][1] == {
            "workflowId": "w-1",
            "triggerId": "t-1",
            "payload": {"recordId": "r"},
            "companyId": "c-1",
        }

    @pytest.mark.asyncio
    async def test_notification(self):
        """Test the notification payload."""
        emitter = RecordingEmitter()
        await events.queue_notification(emitter, "u-1", "Title", "Body", "c-1", {"k": "v"})
        assert emitter.emitted[0] == (
            "notifications/send",
            {
                "userId": "u-1",
                "title": "Title",
                "body": "Body",
                "data": {"k": "v"},
                "companyId": "c-1",
            },
        )

    @pytest.mark.asyncio
    async def test_batch_and_tokens(self):
        """Test the batch email and token refresh event names."""
        emitter = RecordingEmitter()
        await events.queue_batch_emails(emitter, [{"to": "a@acme.id"}])
        await events.queue_token_refresh(emitter, integration_id="i-1")
        assert [name for name, _ in emitter.emitted] == [
            "email/send-batch",
            "integrations/refresh-tokens",
        ]


class TestErrors:
    """Tests for emitter failures."""

    @pytest.mark.asyncio
    async def test_emitter_errors_propagate(self):
        """Test emitter errors reach the caller."""
        with pytest.raises(ConnectionError):
            await events.queue_email(FailingEmitter(), "welcome", "x@acme.id")


class TestWithDispatcher:
    """Tests for the helpers against a real dispatcher."""

    @pytest.mark.asyncio
    async def test_cancel_without_active_run_starts_nothing(self, dispatcher):
        """Test cancelling an idle period starts no runs."""
        result = await events.cancel_payroll_processing(dispatcher, "p-404")
        assert result == {"success": True, "runIds": []}
        assert dispatcher.in_flight == 0
