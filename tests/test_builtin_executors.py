from unittest.mock import MagicMock

import pytest

from voice_agent_planner.collaborators.generation import (
    GenerationCollaborator,
    OpenAIGenerator,
)
from voice_agent_planner.collaborators.retrieval import (
    RetrievalCollaborator,
    SearchResult,
    TavilyRetriever,
)
from voice_agent_planner.config import OrchestratorConfig
from voice_agent_planner.errors import ExecutorFailure
from voice_agent_planner.execution.context import SessionInfo, StepContext
from voice_agent_planner.models.enums import StepStatus
from voice_agent_planner.models.plan import ExecutionPlan, PlanStep
from voice_agent_planner.registry.builtin import (
    DocumentCreateExecutor,
    GenericActionExecutor,
    SearchExecutor,
    build_default_registry,
    format_digest,
)

RESULTS = [
    SearchResult(title="Solar basics", url="https://example.org/solar", extracted_text="Sunlight to power."),
    SearchResult(title="", url="", extracted_text=""),
]


class FakeRetriever(RetrievalCollaborator):
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.calls = []

    def search(self, query, max_results):
        self.calls.append((query, max_results))
        if self.error:
            raise self.error
        return self.results[:max_results]


class FakeGenerator(GenerationCollaborator):
    def __init__(self, payload=None, error=None):
        self.payload = payload if payload is not None else {"title": "Report", "summary": "s"}
        self.error = error
        self.calls = []

    def generate(self, prompt, context):
        self.calls.append((prompt, context))
        if self.error:
            raise self.error
        return self.payload


def make_context(plan=None, step=None, session=None):
    if plan is None:
        step = step or PlanStep(id="s0", type="web_search", description="Find X")
        plan = ExecutionPlan(id="p1", user_request="Research X", steps=[step])
    return StepContext.for_step(plan, step or plan.steps[-1], session)


class TestFormatDigest:
    def test_no_results(self):
        assert format_digest("quantum", []) == "No results found for: quantum"

    def test_numbered_results_with_sources(self):
        digest = format_digest("solar", RESULTS)
        lines = digest.splitlines()
        assert lines[0] == "Top results for: solar"
        assert "1. Solar basics" in digest
        assert "   Sunlight to power." in digest
        assert "   Source: https://example.org/solar" in digest
        assert "2. No title" in digest
        assert digest.count("Source:") == 1

    def test_long_excerpts_truncated(self):
        digest = format_digest("x", [SearchResult(title="t", extracted_text="a" * 1000)])
        assert "a" * 300 + "..." in digest
        assert "a" * 301 not in digest


class TestSearchExecutor:
    @pytest.mark.asyncio
    async def test_uses_description_as_query(self):
        retriever = FakeRetriever(RESULTS)
        step = PlanStep(id="s0", type="web_search", description="solar panels")
        output = await SearchExecutor(retriever, max_results=3).execute(step, make_context(step=step))

        assert retriever.calls == [("solar panels", 3)]
        assert output["query"] == "solar panels"
        assert output["digest"].startswith("Top results for: solar panels")
        assert output["sources"][0]["url"] == "https://example.org/solar"

    @pytest.mark.asyncio
    async def test_inputs_override_query_and_limit(self):
        retriever = FakeRetriever(RESULTS)
        step = PlanStep(
            id="s0",
            type="web_search",
            description="search",
            inputs={"query": "wind", "max_results": 1},
        )
        output = await SearchExecutor(retriever).execute(step, make_context(step=step))

        assert retriever.calls == [("wind", 1)]
        assert len(output["sources"]) == 1

    @pytest.mark.asyncio
    async def test_bad_limit(self):
        step = PlanStep(id="s0", type="web_search", description="q", inputs={"max_results": "many"})
        with pytest.raises(ExecutorFailure) as exc_info:
            await SearchExecutor(FakeRetriever()).execute(step, make_context(step=step))
        assert exc_info.value.code == "step.invalid_inputs"

    @pytest.mark.asyncio
    async def test_retriever_error_becomes_failure(self):
        step = PlanStep(id="s0", type="web_search", description="q")
        executor = SearchExecutor(FakeRetriever(error=ConnectionError("offline")))
        with pytest.raises(ExecutorFailure) as exc_info:
            await executor.execute(step, make_context(step=step))
        assert exc_info.value.code == "retrieval.failed"
        assert "offline" in exc_info.value.detail


class TestDocumentCreateExecutor:
    @pytest.fixture
    def plan(self):
        search = PlanStep(
            id="s0",
            type="web_search",
            description="Find X",
            status=StepStatus.COMPLETED,
            result={"digest": "Top results for: X"},
        )
        write = PlanStep(
            id="s1", type="document_create", description="Write a summary", status=StepStatus.IN_PROGRESS
        )
        return ExecutionPlan(id="p1", user_request="Research X", steps=[search, write])

    @pytest.mark.asyncio
    async def test_passes_research_to_generator(self, plan):
        generator = FakeGenerator()
        context = make_context(plan, plan.steps[1], SessionInfo(user_id="u1", project_id="proj"))
        output = await DocumentCreateExecutor(generator).execute(plan.steps[1], context)

        prompt, generation_context = generator.calls[0]
        assert "Write a summary" in prompt
        assert "Research X" in prompt
        assert generation_context["research"] == ["Top results for: X"]
        assert generation_context["user_id"] == "u1"
        assert generation_context["project_id"] == "proj"
        assert output == {
            "title": "Report",
            "document": {"title": "Report", "summary": "s"},
            "sources_used": 1,
        }

    @pytest.mark.asyncio
    async def test_explicit_prompt(self, plan):
        generator = FakeGenerator(payload={"summary": "no title"})
        step = plan.steps[1].model_copy(update={"inputs": {"prompt": "Write a haiku"}})
        output = await DocumentCreateExecutor(generator).execute(step, make_context(plan, plan.steps[1]))

        assert generator.calls[0][0] == "Write a haiku"
        assert output["title"] == "Write a summary"

    @pytest.mark.asyncio
    async def test_generator_error(self, plan):
        executor = DocumentCreateExecutor(FakeGenerator(error=RuntimeError("quota")))
        with pytest.raises(ExecutorFailure) as exc_info:
            await executor.execute(plan.steps[1], make_context(plan, plan.steps[1]))
        assert exc_info.value.code == "generation.failed"

    @pytest.mark.asyncio
    async def test_non_object_payload(self, plan):
        executor = DocumentCreateExecutor(FakeGenerator(payload=["a", "b"]))
        with pytest.raises(ExecutorFailure) as exc_info:
            await executor.execute(plan.steps[1], make_context(plan, plan.steps[1]))
        assert exc_info.value.code == "generation.invalid"


class TestGenericActionExecutor:
    @pytest.mark.asyncio
    async def test_acknowledges(self):
        step = PlanStep(id="s0", type="generic_action", description="Tell the user", inputs={"a": 1})
        output = await GenericActionExecutor().execute(step, make_context(step=step))
        assert output == {"acknowledged": True, "description": "Tell the user", "inputs": {"a": 1}}


class TestDefaultRegistry:
    def test_only_generic_without_collaborators(self):
        assert build_default_registry().list_types() == ["generic_action"]

    def test_all_builtin_types(self):
        registry = build_default_registry(
            FakeRetriever(), FakeGenerator(), OrchestratorConfig(search_max_results=7)
        )
        assert registry.list_types() == ["document_create", "generic_action", "web_search"]
        assert registry.get_executor("web_search").max_results == 7


class TestTavilyRetriever:
    def test_maps_results(self):
        client = MagicMock()
        client.search.return_value = {
            "results": [
                {"title": "A", "url": "https://a", "content": "alpha"},
                {"title": None, "url": "https://b", "content": "beta"},
                {"title": "C", "url": "https://c", "content": "gamma"},
            ]
        }
        results = TavilyRetriever(client=client).search("letters", 2)

        client.search.assert_called_once_with(query="letters", max_results=2, search_depth="advanced")
        assert [r.title for r in results] == ["A", ""]
        assert results[1].extracted_text == "beta"

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("TAVILY_API_KEY", raising=False)
        with pytest.raises(ExecutorFailure) as exc_info:
            TavilyRetriever()
        assert exc_info.value.code == "retrieval.unconfigured"


class TestOpenAIGenerator:
    def make_client(self, content):
        client = MagicMock()
        message = MagicMock()
        message.content = content
        choice = MagicMock()
        choice.message = message
        client.chat.completions.create.return_value.choices = [choice]
        return client

    @pytest.fixture(autouse=True)
    def clear_model_env(self, monkeypatch):
        monkeypatch.delenv("OPENAI_MODEL", raising=False)

    def test_json_document(self):
        client = self.make_client('{"title": "T", "summary": "S"}')
        generator = OpenAIGenerator(client=client)
        payload = generator.generate("Write it", {"research": ["digest"]})

        assert payload == {"title": "T", "summary": "S"}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "digest" in kwargs["messages"][1]["content"]

    def test_plain_text_is_wrapped(self):
        generator = OpenAIGenerator(client=self.make_client("just text"))
        assert generator.generate("Write it", {}) == {"content": "just text"}

    def test_model_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
        assert OpenAIGenerator(client=MagicMock()).model_name == "gpt-test"

    def test_no_choices(self):
        client = MagicMock()
        client.chat.completions.create.return_value.choices = []
        with pytest.raises(ExecutorFailure) as exc_info:
            OpenAIGenerator(client=client).generate("Write it", {})
        assert exc_info.value.code == "generation.empty"
