"""In-memory executor registry.

Step types are plain string tags (e.g. ``web_search``); lookups are exact and
case-sensitive.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from voice_agent_planner.execution.context import StepContext
from voice_agent_planner.models.plan import PlanStep
from voice_agent_planner.observability.logging import get_logger, log_fields
from voice_agent_planner.registry.abstract import (
    ExecutorOutput,
    ExecutorRegistry,
    StepExecutor,
)

logger = get_logger(__name__)

StepHandler = Callable[
    [PlanStep, StepContext],
    Union[ExecutorOutput, Awaitable[ExecutorOutput]],
]


class FunctionExecutor(StepExecutor):
    """Adapts a plain (sync or async) handler function to a StepExecutor."""

    def __init__(self, handler: StepHandler):
        self.handler = handler

    async def execute(self, step: PlanStep, context: StepContext) -> ExecutorOutput:
        output = self.handler(step, context)
        if inspect.isawaitable(output):
            output = await output
        return output


class InMemoryRegistry(ExecutorRegistry):
    """Dictionary-backed registry of step executors."""

    def __init__(self, executors: Optional[dict[str, StepExecutor]] = None):
        self._executors: dict[str, StepExecutor] = {}
        for step_type, executor in (executors or {}).items():
            self.register(step_type, executor)

    def register(self, step_type: str, executor: StepExecutor) -> None:
        if not step_type or not step_type.strip():
            raise ValueError("step_type must be a non-empty string")
        if not isinstance(executor, StepExecutor):
            raise TypeError(
                f"Executor for {step_type!r} must be a StepExecutor, got {type(executor).__name__}"
            )
        if step_type in self._executors:
            logger.info(
                "Replacing executor", extra=log_fields(step_type=step_type)
            )
        self._executors[step_type] = executor

    def register_function(self, step_type: str, handler: StepHandler) -> None:
        self.register(step_type, FunctionExecutor(handler))

    def unregister(self, step_type: str) -> None:
        self._executors.pop(step_type, None)

    def get_executor(self, step_type: str) -> Optional[StepExecutor]:
        return self._executors.get(step_type)

    def list_types(self) -> list[str]:
        return sorted(self._executors.keys())

    def describe(self) -> dict[str, Any]:
        return {
            step_type: type(executor).__name__
            for step_type, executor in sorted(self._executors.items())
        }
