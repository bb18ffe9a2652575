"""Built-in step executors.

- ``web_search``: queries a retrieval collaborator and returns a text digest.
- ``document_create``: asks a generation collaborator for a structured document,
  feeding it the digests of earlier search steps.
- ``generic_action``: acknowledges the step without side effects.
"""

import asyncio
import os
from typing import Any, Optional

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
from voice_agent_planner.execution.context import StepContext
from voice_agent_planner.models.plan import PlanStep
from voice_agent_planner.observability.logging import get_logger, log_fields
from voice_agent_planner.registry.abstract import StepExecutor
from voice_agent_planner.registry.in_memory import InMemoryRegistry

logger = get_logger(__name__)

WEB_SEARCH = "web_search"
DOCUMENT_CREATE = "document_create"
GENERIC_ACTION = "generic_action"

EXCERPT_CHARS = 300


def format_digest(query: str, results: list[SearchResult]) -> str:
    if not results:
        return f"No results found for: {query}"

    parts = [f"Top results for: {query}"]
    for i, result in enumerate(results, 1):
        parts.append(f"\n{i}. {result.title or 'No title'}")
        text = result.extracted_text.strip()
        if text:
            if len(text) > EXCERPT_CHARS:
                text = text[:EXCERPT_CHARS] + "..."
            parts.append(f"   {text}")
        if result.url:
            parts.append(f"   Source: {result.url}")
    return "\n".join(parts)


class SearchExecutor(StepExecutor):
    """Runs a search through the retrieval collaborator."""

    def __init__(self, retriever: RetrievalCollaborator, max_results: int = 5):
        self.retriever = retriever
        self.max_results = max_results

    async def execute(self, step: PlanStep, context: StepContext) -> dict[str, Any]:
        query = str(step.inputs.get("query") or step.description)
        try:
            max_results = int(step.inputs.get("max_results", self.max_results))
        except (TypeError, ValueError) as e:
            raise ExecutorFailure(
                f"Invalid max_results: {step.inputs.get('max_results')!r}",
                code="step.invalid_inputs",
            ) from e

        try:
            results = await asyncio.to_thread(self.retriever.search, query, max_results)
        except ExecutorFailure:
            raise
        except Exception as e:
            raise ExecutorFailure(
                f"Search failed: {e}", code="retrieval.failed"
            ) from e

        logger.info(
            "Search finished",
            extra=log_fields(
                plan_id=context.plan_id, step_id=step.id, results=len(results)
            ),
        )
        return {
            "query": query,
            "digest": format_digest(query, results),
            "sources": [r.model_dump() for r in results],
        }


class DocumentCreateExecutor(StepExecutor):
    """Generates a structured document through the generation collaborator."""

    def __init__(self, generator: GenerationCollaborator):
        self.generator = generator

    def build_prompt(self, step: PlanStep, context: StepContext) -> str:
        prompt = step.inputs.get("prompt")
        if prompt:
            return str(prompt)
        return (
            f"Task: {step.description}\n"
            f"The user originally asked: {context.user_request}"
        )

    async def execute(self, step: PlanStep, context: StepContext) -> dict[str, Any]:
        research = [
            r["digest"] for r in context.results_of_type(WEB_SEARCH) if r.get("digest")
        ]
        generation_context = {
            "user_request": context.user_request,
            "research": research,
            "user_id": context.session.user_id,
            "project_id": context.session.project_id,
        }
        try:
            document = await asyncio.to_thread(
                self.generator.generate,
                self.build_prompt(step, context),
                generation_context,
            )
        except ExecutorFailure:
            raise
        except Exception as e:
            raise ExecutorFailure(
                f"Document generation failed: {e}", code="generation.failed"
            ) from e

        if not isinstance(document, dict):
            raise ExecutorFailure(
                "Generation collaborator returned a non-object payload",
                code="generation.invalid",
            )
        return {
            "title": document.get("title") or step.description,
            "document": document,
            "sources_used": len(research),
        }


class GenericActionExecutor(StepExecutor):
    """Acknowledges a step that has no side effect."""

    async def execute(self, step: PlanStep, context: StepContext) -> dict[str, Any]:
        return {
            "acknowledged": True,
            "description": step.description,
            "inputs": dict(step.inputs),
        }


def build_default_registry(
    retriever: Optional[RetrievalCollaborator] = None,
    generator: Optional[GenerationCollaborator] = None,
    config: Optional[OrchestratorConfig] = None,
) -> InMemoryRegistry:
    """Registers the built-in executors for the collaborators provided."""
    config = config or OrchestratorConfig()
    registry = InMemoryRegistry()
    registry.register(GENERIC_ACTION, GenericActionExecutor())
    if retriever is not None:
        registry.register(
            WEB_SEARCH, SearchExecutor(retriever, max_results=config.search_max_results)
        )
    if generator is not None:
        registry.register(DOCUMENT_CREATE, DocumentCreateExecutor(generator))
    return registry


def build_registry_from_env(
    config: Optional[OrchestratorConfig] = None,
) -> InMemoryRegistry:
    """Builds the default registry with whichever collaborators have credentials."""
    retriever = None
    generator = None
    if os.environ.get("TAVILY_API_KEY"):
        retriever = TavilyRetriever()
    else:
        logger.warning("TAVILY_API_KEY not set; web_search steps will fail")
    if os.environ.get("OPENAI_API_KEY"):
        generator = OpenAIGenerator()
    else:
        logger.warning("OPENAI_API_KEY not set; document_create steps will fail")
    return build_default_registry(retriever, generator, config)
