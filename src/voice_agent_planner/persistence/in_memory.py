"""In-memory implementation of the PlanStore.

This module provides a task-safe, ephemeral plan store. One instance belongs
to one session; every mutation runs under the instance's asyncio lock.
"""

import asyncio
import copy
import uuid
from collections import deque
from collections.abc import Iterable
from typing import Any, Optional

from voice_agent_planner.errors import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from voice_agent_planner.models.enums import StepStatus
from voice_agent_planner.models.plan import (
    ExecutionPlan,
    PlanStep,
    StepError,
    utcnow,
)
from voice_agent_planner.observability.logging import get_logger
from voice_agent_planner.persistence.repository import (
    PlanStore,
    StepSpecLike,
    validate_step_specs,
    validate_user_request,
)

logger = get_logger(__name__)

# Forward-only lifecycle; terminal statuses accept nothing. A pending step
# reaches a terminal status only through fail_remaining.
ALLOWED_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.IN_PROGRESS: frozenset(
        {StepStatus.COMPLETED, StepStatus.FAILED}
    ),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class InMemoryPlanStore(PlanStore):
    """In-memory implementation of the PlanStore.

    Useful for a single process serving voice sessions, and for tests.
    Replaced plans are kept in a bounded history.
    """

    def __init__(self, history_limit: int = 20, max_steps: Optional[int] = None):
        """Initializes an empty store.

        Args:
            history_limit: How many replaced plans to retain.
            max_steps: Optional upper bound on the number of steps per plan.
        """
        self._lock = asyncio.Lock()
        self._current: Optional[ExecutionPlan] = None
        self._history: deque[ExecutionPlan] = deque(maxlen=max(history_limit, 0))
        self._max_steps = max_steps

    async def create(
        self,
        user_request: str,
        step_specs: Iterable[StepSpecLike],
        session_id: Optional[str] = None,
    ) -> ExecutionPlan:
        # Validate before taking the lock so bad input never touches the store.
        request = validate_user_request(user_request)
        specs = validate_step_specs(step_specs, self._max_steps)

        steps = [
            PlanStep(
                id=_new_id("step"),
                type=spec.type,
                description=spec.description,
                inputs=dict(spec.inputs),
            )
            for spec in specs
        ]
        plan = ExecutionPlan(
            id=_new_id("plan"),
            user_request=request,
            steps=steps,
            session_id=session_id,
        )

        async with self._lock:
            if self._current is not None:
                self._history.append(self._current)
                logger.info(
                    "Plan replaced",
                    extra={
                        "extra_fields": {
                            "plan_id": self._current.id,
                            "replaced_by": plan.id,
                        }
                    },
                )
            self._current = plan
            return plan.model_copy(deep=True)

    async def get_current(self) -> Optional[ExecutionPlan]:
        async with self._lock:
            if self._current is None:
                return None
            return self._current.model_copy(deep=True)

    async def update_step(
        self,
        step_id: str,
        status: StepStatus,
        result: Optional[dict[str, Any]] = None,
        error: Optional[StepError] = None,
    ) -> PlanStep:
        status = StepStatus(status)
        if result is not None and status != StepStatus.COMPLETED:
            raise ValidationError(
                f"A result can only be recorded with status completed, not {status.value}"
            )
        if error is not None and status != StepStatus.FAILED:
            raise ValidationError(
                f"An error can only be recorded with status failed, not {status.value}"
            )

        async with self._lock:
            step = self._find_step(step_id)
            self._apply(step, status, result=result, error=error)
            return step.model_copy(deep=True)

    async def next_pending(self) -> Optional[PlanStep]:
        async with self._lock:
            if self._current is None:
                return None
            for step in self._current.steps:
                if step.status == StepStatus.PENDING:
                    return step.model_copy(deep=True)
            return None

    async def claim_next_pending(self) -> Optional[PlanStep]:
        async with self._lock:
            if self._current is None:
                return None
            candidate: Optional[PlanStep] = None
            for step in self._current.steps:
                if step.status in (StepStatus.IN_PROGRESS, StepStatus.FAILED):
                    # Sequential execution, and halt on first failure.
                    return None
                if step.status == StepStatus.PENDING:
                    candidate = step
                    break
            if candidate is None:
                return None
            self._apply(candidate, StepStatus.IN_PROGRESS)
            return candidate.model_copy(deep=True)

    async def fail_remaining(self, error: StepError) -> list[PlanStep]:
        async with self._lock:
            if self._current is None:
                raise NotFoundError("No active plan")
            changed = []
            for step in self._current.steps:
                if not step.is_terminal:
                    self._apply(step, StepStatus.FAILED, error=error, aborting=True)
                    changed.append(step.model_copy(deep=True))
            return changed

    async def history(self) -> list[ExecutionPlan]:
        async with self._lock:
            return [plan.model_copy(deep=True) for plan in self._history]

    def _find_step(self, step_id: str) -> PlanStep:
        if self._current is None:
            raise NotFoundError("No active plan")
        step = self._current.get_step(step_id)
        if step is None:
            raise NotFoundError(
                f"Step {step_id} is not part of plan {self._current.id}",
                code="step.not_found",
            )
        return step

    def _apply(
        self,
        step: PlanStep,
        status: StepStatus,
        result: Optional[dict[str, Any]] = None,
        error: Optional[StepError] = None,
        aborting: bool = False,
    ) -> None:
        allowed = ALLOWED_TRANSITIONS[step.status]
        if aborting and not step.is_terminal:
            allowed = allowed | {StepStatus.FAILED}
        if status not in allowed:
            raise InvalidTransitionError(
                f"Step {step.id} cannot move from {step.status.value} to {status.value}"
            )

        now = utcnow()
        if status == StepStatus.IN_PROGRESS:
            step.started_at = now
        else:
            # started_at stays None for a pending step that is aborted.
            step.completed_at = now
            if status == StepStatus.COMPLETED:
                step.result = copy.deepcopy(result) if result is not None else {}
            else:
                step.error = error or StepError(
                    code="step.failed", detail="Step failed"
                )
        step.status = status
