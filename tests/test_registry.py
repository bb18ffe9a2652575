import pytest

from voice_agent_planner.errors import UnknownStepTypeError
from voice_agent_planner.execution.context import StepContext
from voice_agent_planner.models.plan import PlanStep, StepDeferral
from voice_agent_planner.registry.abstract import StepExecutor
from voice_agent_planner.registry.in_memory import FunctionExecutor, InMemoryRegistry


class EchoExecutor(StepExecutor):
    async def execute(self, step, context):
        return {"echo": step.description}


def make_step(step_type="echo"):
    return PlanStep(id="step_1", type=step_type, description="say hi")


def make_context():
    return StepContext(plan_id="plan_1", user_request="hi", step_index=0, step_count=1)


class TestInMemoryRegistry:
    @pytest.fixture
    def registry(self):
        return InMemoryRegistry({"echo": EchoExecutor()})

    def test_register_and_lookup(self, registry):
        assert isinstance(registry.get_executor("echo"), EchoExecutor)
        assert registry.get_executor("missing") is None
        assert registry.list_types() == ["echo"]

    def test_lookup_is_case_sensitive(self, registry):
        assert registry.get_executor("Echo") is None

    def test_replace_executor(self, registry):
        replacement = EchoExecutor()
        registry.register("echo", replacement)
        assert registry.get_executor("echo") is replacement

    def test_unregister(self, registry):
        registry.unregister("echo")
        registry.unregister("never-registered")
        assert registry.list_types() == []

    def test_rejects_blank_type(self, registry):
        with pytest.raises(ValueError):
            registry.register(" ", EchoExecutor())

    def test_rejects_non_executor(self, registry):
        with pytest.raises(TypeError):
            registry.register("bad", lambda step, context: {})

    def test_describe(self, registry):
        registry.register_function("fn", lambda step, context: {})
        assert registry.describe() == {"echo": "EchoExecutor", "fn": "FunctionExecutor"}

    @pytest.mark.asyncio
    async def test_execute_dispatches_by_type(self, registry):
        output = await registry.execute(make_step(), make_context())
        assert output == {"echo": "say hi"}

    @pytest.mark.asyncio
    async def test_execute_unknown_type(self, registry):
        with pytest.raises(UnknownStepTypeError) as exc_info:
            await registry.execute(make_step("teleport"), make_context())
        assert exc_info.value.code == "step.unknown_type"
        assert exc_info.value.step_type == "teleport"
        assert "teleport" in exc_info.value.detail


class TestFunctionExecutor:
    @pytest.mark.asyncio
    async def test_sync_handler(self):
        executor = FunctionExecutor(lambda step, context: {"index": context.step_index})
        assert await executor.execute(make_step(), make_context()) == {"index": 0}

    @pytest.mark.asyncio
    async def test_async_handler(self):
        async def handler(step, context):
            return StepDeferral(reason="waiting on client")

        output = await FunctionExecutor(handler).execute(make_step(), make_context())
        assert isinstance(output, StepDeferral)
        assert output.reason == "waiting on client"
