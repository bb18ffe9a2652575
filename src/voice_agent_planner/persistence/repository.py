"""Plan store interface.

This module defines the abstract contract for holding the single active plan
of a session, plus the input validation shared by every implementation.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from voice_agent_planner.errors import ValidationError
from voice_agent_planner.models.enums import StepStatus
from voice_agent_planner.models.plan import ExecutionPlan, PlanStep, StepError, StepSpec

StepSpecLike = Union[StepSpec, Mapping[str, Any], tuple]


def validate_step_specs(
    step_specs: Iterable[StepSpecLike], max_steps: Optional[int] = None
) -> list[StepSpec]:
    """Normalizes and validates the step list of a plan request.

    Accepts StepSpec instances, mappings with ``type``/``description``
    (and optional ``inputs``) keys, or ``(type, description)`` tuples.

    Raises:
        ValidationError: If the list is empty, too long, or a step spec is malformed.
    """
    if step_specs is None or isinstance(step_specs, (str, bytes, Mapping)):
        raise ValidationError("step_specs must be an ordered sequence of steps")

    specs: list[StepSpec] = []
    for index, raw in enumerate(step_specs):
        try:
            if isinstance(raw, StepSpec):
                spec = raw
            elif isinstance(raw, Mapping):
                spec = StepSpec.model_validate(dict(raw))
            elif isinstance(raw, tuple) and len(raw) == 2:
                spec = StepSpec(type=raw[0], description=raw[1])
            else:
                raise ValidationError(
                    f"Step {index}: expected a mapping with type and description"
                )
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(f"Step {index}: {problems}") from e
        specs.append(spec)

    if not specs:
        raise ValidationError("A plan needs at least one step")
    if max_steps is not None and len(specs) > max_steps:
        raise ValidationError(
            f"A plan may contain at most {max_steps} steps (got {len(specs)})"
        )
    return specs


def validate_user_request(user_request: str) -> str:
    if not isinstance(user_request, str) or not user_request.strip():
        raise ValidationError("user_request must be a non-empty string")
    return user_request.strip()


class PlanStore(ABC):
    """Holder of at most one active plan.

    Implementations must serialize every mutation so that concurrent triggers
    never corrupt the plan or claim the same step twice. Returned plans and
    steps are snapshots; mutating them does not affect the store.
    """

    @abstractmethod
    async def create(
        self,
        user_request: str,
        step_specs: Iterable[StepSpecLike],
        session_id: Optional[str] = None,
    ) -> ExecutionPlan:
        """Creates a new plan with every step pending, replacing any current plan.

        Args:
            user_request: The original free-text goal.
            step_specs: Ordered step descriptions.
            session_id: Owning session identifier.

        Returns:
            A snapshot of the new plan.

        Raises:
            ValidationError: If the input is malformed; the store is unchanged.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def get_current(self) -> Optional[ExecutionPlan]:
        """Returns a snapshot of the active plan, or None."""
        pass  # pragma: no cover

    @abstractmethod
    async def update_step(
        self,
        step_id: str,
        status: StepStatus,
        result: Optional[dict[str, Any]] = None,
        error: Optional[StepError] = None,
    ) -> PlanStep:
        """Moves a step of the active plan to a new status.

        Raises:
            NotFoundError: No active plan, or the step is not part of it.
            InvalidTransitionError: The change would regress the status, or
                settle a step that never entered in_progress.
            ValidationError: The payload does not match the status.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def next_pending(self) -> Optional[PlanStep]:
        """Returns the earliest pending step of the active plan, or None."""
        pass  # pragma: no cover

    @abstractmethod
    async def claim_next_pending(self) -> Optional[PlanStep]:
        """Atomically moves the earliest pending step to in_progress.

        Returns None when there is no active plan, no pending step, a step
        is already in progress, or a step has failed.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def fail_remaining(self, error: StepError) -> list[PlanStep]:
        """Marks every non-terminal step of the active plan as failed.

        Returns:
            The steps that were changed.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def history(self) -> list[ExecutionPlan]:
        """Returns replaced plans, oldest first."""
        pass  # pragma: no cover
