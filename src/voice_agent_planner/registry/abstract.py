"""Abstract base classes for step executors and the executor registry.

This module defines the contract a step executor fulfils and the interface for
looking executors up by step type.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from voice_agent_planner.errors import UnknownStepTypeError
from voice_agent_planner.execution.context import StepContext
from voice_agent_planner.models.plan import PlanStep, StepDeferral

ExecutorOutput = Union[dict[str, Any], StepDeferral]


class StepExecutor(ABC):
    """Performs the work of one kind of plan step.

    Executors never touch the plan store; they receive a read-only context and
    return a result payload. Propagating the result is the orchestrator's job.
    """

    @abstractmethod
    async def execute(self, step: PlanStep, context: StepContext) -> ExecutorOutput:
        """Performs the step.

        Args:
            step: The step being executed (a snapshot).
            context: Read-only access to prior results and session identifiers.

        Returns:
            The result payload, or a StepDeferral when the outcome will be
            reported later through the orchestrator.

        Raises:
            ExecutorFailure: If the step, or a collaborator it relies on, fails.
        """
        pass  # pragma: no cover


class ExecutorRegistry(ABC):
    """Interface for associating step types with executors."""

    @abstractmethod
    def register(self, step_type: str, executor: StepExecutor) -> None:
        """Registers (or replaces) the executor for a step type."""
        pass  # pragma: no cover

    @abstractmethod
    def unregister(self, step_type: str) -> None:
        """Removes the executor for a step type, if any."""
        pass  # pragma: no cover

    @abstractmethod
    def get_executor(self, step_type: str) -> Optional[StepExecutor]:
        """Retrieves the executor for a step type.

        Args:
            step_type: The step type tag.

        Returns:
            The executor if registered, otherwise None.
        """
        pass  # pragma: no cover

    @abstractmethod
    def list_types(self) -> list[str]:
        """Lists all registered step types."""
        pass  # pragma: no cover

    async def execute(self, step: PlanStep, context: StepContext) -> ExecutorOutput:
        """Dispatches a step to the executor registered for its type.

        Raises:
            UnknownStepTypeError: If no executor handles the step's type.
        """
        executor = self.get_executor(step.type)
        if executor is None:
            raise UnknownStepTypeError(step.type)
        return await executor.execute(step, context)
