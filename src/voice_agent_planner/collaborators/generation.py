"""Generation collaborator used by document creation steps.

This module provides the interface and an implementation that uses OpenAI's
Chat Completion API in JSON mode to produce structured documents.
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any, Optional

from openai import OpenAI

from voice_agent_planner.errors import ExecutorFailure
from voice_agent_planner.observability.logging import get_logger

logger = get_logger(__name__)

DOCUMENT_SYSTEM_PROMPT = (
    "You write documents for a voice assistant's user. "
    "Respond with a JSON object with the keys 'title' (string), "
    "'summary' (string) and 'sections' (list of objects with 'heading' and 'body')."
)


class GenerationCollaborator(ABC):
    """Interface for content generation providers."""

    @abstractmethod
    def generate(self, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        """Generates structured content.

        Args:
            prompt: The instruction describing what to produce.
            context: Supporting material (request, earlier research, ids).

        Returns:
            A structured payload.
        """
        pass  # pragma: no cover


class OpenAIGenerator(GenerationCollaborator):
    """Generation collaborator backed by an OpenAI chat model."""

    def __init__(
        self,
        model_name: str = "gpt-4o-mini",
        client: Optional[OpenAI] = None,
        temperature: float = 0.3,
    ):
        """Initializes the OpenAI generator.

        Args:
            model_name: The identifier of the OpenAI model to use.
                Defaults to 'gpt-4o-mini' unless overridden by the
                OPENAI_MODEL environment variable.
            client: Pre-built client, mainly for tests.
            temperature: Sampling temperature.
        """
        if client is None:
            api_key = os.environ.get("OPENAI_API_KEY")
            base_url = os.environ.get("OPENAI_API_BASE")
            client = OpenAI(api_key=api_key, base_url=base_url)

        self.client = client
        self.model_name = os.environ.get("OPENAI_MODEL", model_name)
        self.temperature = temperature

    def generate(self, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        messages = [
            {"role": "system", "content": DOCUMENT_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"{prompt}\n\nContext:\n{json.dumps(context, default=str)}",
            },
        ]
        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=messages,
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            raise ExecutorFailure("Model returned no choices", code="generation.empty")

        content = response.choices[0].message.content or ""
        try:
            payload = json.loads(content)
        except json.JSONDecodeError:
            logger.warning("Model returned non-JSON content; wrapping as plain text")
            return {"content": content}
        if not isinstance(payload, dict):
            return {"content": payload}
        return payload
