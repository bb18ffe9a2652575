"""Retrieval collaborator used by search steps.

The orchestrator only depends on the RetrievalCollaborator interface; the
Tavily-backed implementation is one concrete provider.
"""

import os
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field
from tavily import TavilyClient

from voice_agent_planner.errors import ExecutorFailure


class SearchResult(BaseModel):
    """One document returned by a retrieval collaborator.

    Attributes:
        title: Title of the page or document.
        url: Where the document lives.
        extracted_text: Text content extracted from the document.
    """

    title: str = Field(default="", description="Title of the page or document.")
    url: str = Field(default="", description="Where the document lives.")
    extracted_text: str = Field(
        default="", description="Text content extracted from the document."
    )


class RetrievalCollaborator(ABC):
    """Interface for web or document search providers."""

    @abstractmethod
    def search(self, query: str, max_results: int) -> list[SearchResult]:
        """Runs a search.

        Args:
            query: Free-text query.
            max_results: Upper bound on the number of results.

        Returns:
            Results ordered by relevance.
        """
        pass  # pragma: no cover


class TavilyRetriever(RetrievalCollaborator):
    """Retrieval collaborator backed by the Tavily search API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        search_depth: str = "advanced",
        client: Any = None,
    ):
        """Initializes the Tavily retriever.

        Args:
            api_key: Tavily API key. Defaults to the TAVILY_API_KEY env var.
            search_depth: Tavily search depth ('basic' or 'advanced').
            client: Pre-built client, mainly for tests.
        """
        self.search_depth = search_depth
        if client is not None:
            self.client = client
            return

        api_key = api_key or os.environ.get("TAVILY_API_KEY")
        if not api_key:
            raise ExecutorFailure(
                "TAVILY_API_KEY not found in environment variables. Web search is not available.",
                code="retrieval.unconfigured",
            )
        self.client = TavilyClient(api_key=api_key)

    def search(self, query: str, max_results: int) -> list[SearchResult]:
        response = self.client.search(
            query=query,
            max_results=max_results,
            search_depth=self.search_depth,
        )
        result_list = (
            response if isinstance(response, list) else response.get("results", [])
        )
        return [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("url") or "",
                extracted_text=item.get("content") or "",
            )
            for item in result_list[:max_results]
        ]
