import logging
from unittest.mock import MagicMock, patch

import pytest

from voice_agent_planner.models.enums import PlanEventKind
from voice_agent_planner.models.plan import ExecutionPlan, PlanStep
from voice_agent_planner.notifications.sink import (
    CallbackSink,
    CompositeSink,
    LoggingSink,
    NotificationSink,
    RecordingSink,
    WebhookSink,
)


@pytest.fixture
def plan():
    return ExecutionPlan(
        id="plan_1",
        user_request="Research X",
        steps=[PlanStep(id="step_1", type="web_search", description="Find X")],
    )


class BrokenSink(NotificationSink):
    async def notify(self, kind, plan, step_id=None):
        raise RuntimeError("unreachable")


class TestRecordingSink:
    @pytest.mark.asyncio
    async def test_records_snapshots_in_order(self, plan):
        sink = RecordingSink()
        await sink.notify(PlanEventKind.PLAN_CREATED, plan)
        await sink.notify(PlanEventKind.PLAN_UPDATED, plan, "step_1")
        plan.steps[0].description = "changed later"

        assert sink.kinds() == [PlanEventKind.PLAN_CREATED, PlanEventKind.PLAN_UPDATED]
        assert sink.events[1].step_id == "step_1"
        assert sink.events[0].plan.steps[0].description == "Find X"

        sink.clear()
        assert sink.events == []


class TestCallbackSink:
    @pytest.mark.asyncio
    async def test_sync_callback(self, plan):
        received = []
        await CallbackSink(received.append).notify(PlanEventKind.PLAN_FINISHED, plan)
        assert received[0].kind == PlanEventKind.PLAN_FINISHED
        assert received[0].plan.id == "plan_1"

    @pytest.mark.asyncio
    async def test_async_callback(self, plan):
        received = []

        async def callback(event):
            received.append(event.step_id)

        await CallbackSink(callback).notify(PlanEventKind.PLAN_UPDATED, plan, "step_1")
        assert received == ["step_1"]


class TestLoggingSink:
    @pytest.mark.asyncio
    async def test_logs_event(self, plan, caplog):
        with caplog.at_level(logging.INFO):
            await LoggingSink().notify(PlanEventKind.PLAN_CREATED, plan)

        record = next(r for r in caplog.records if r.getMessage() == "Plan event: plan_created")
        assert record.extra_fields["plan_id"] == "plan_1"
        assert record.extra_fields["phase"] == "created"
        assert "step_id" not in record.extra_fields


class TestWebhookSink:
    @pytest.mark.asyncio
    async def test_posts_event_json(self, plan):
        with patch("voice_agent_planner.notifications.sink.requests.post") as post:
            post.return_value = MagicMock()
            await WebhookSink("https://hooks.example/plan", timeout=1.5).notify(
                PlanEventKind.PLAN_UPDATED, plan, "step_1"
            )

        post.assert_called_once()
        args, kwargs = post.call_args
        assert args == ("https://hooks.example/plan",)
        assert kwargs["timeout"] == 1.5
        assert kwargs["json"]["kind"] == "plan_updated"
        assert kwargs["json"]["plan"]["id"] == "plan_1"
        post.return_value.raise_for_status.assert_called_once()

    @pytest.mark.asyncio
    async def test_http_error_propagates(self, plan):
        with patch("voice_agent_planner.notifications.sink.requests.post") as post:
            post.return_value.raise_for_status.side_effect = RuntimeError("502")
            with pytest.raises(RuntimeError):
                await WebhookSink("https://hooks.example/plan").notify(
                    PlanEventKind.PLAN_UPDATED, plan
                )


class TestCompositeSink:
    @pytest.mark.asyncio
    async def test_failing_member_does_not_block_others(self, plan, caplog):
        recorder = RecordingSink()
        sink = CompositeSink([BrokenSink(), recorder])

        with caplog.at_level(logging.WARNING):
            await sink.notify(PlanEventKind.PLAN_CREATED, plan)

        assert recorder.kinds() == [PlanEventKind.PLAN_CREATED]
        assert any("BrokenSink failed" in r.getMessage() for r in caplog.records)
