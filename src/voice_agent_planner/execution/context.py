"""Read-only context handed to step executors."""

import copy
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from voice_agent_planner.models.enums import StepStatus
from voice_agent_planner.models.plan import ExecutionPlan, PlanStep


class SessionInfo(BaseModel):
    """Identifiers of the session a plan belongs to."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    session_id: Optional[str] = Field(default=None, description="Session identifier.")
    user_id: Optional[str] = Field(default=None, description="User identifier.")
    project_id: Optional[str] = Field(default=None, description="Project identifier.")


class PriorResult(BaseModel):
    """Result of a step that completed earlier in the same plan."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    step_id: str
    type: str
    description: str
    result: dict[str, Any]


class StepContext(BaseModel):
    """
    What an executor may read while performing a step.

    Prior results are deep copies taken when the step was dispatched, so an
    executor can consume earlier research without being able to alter the plan.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    plan_id: str = Field(..., description="Identifier of the plan.")
    user_request: str = Field(..., description="The plan's original goal.")
    step_index: int = Field(..., ge=0, description="Position of the step in the plan.")
    step_count: int = Field(..., ge=1, description="Number of steps in the plan.")
    prior_results: tuple[PriorResult, ...] = Field(
        default=(), description="Completed earlier steps, in plan order."
    )
    session: SessionInfo = Field(default_factory=SessionInfo)

    @classmethod
    def for_step(
        cls, plan: ExecutionPlan, step: PlanStep, session: Optional[SessionInfo] = None
    ) -> "StepContext":
        index = next(i for i, s in enumerate(plan.steps) if s.id == step.id)
        prior = tuple(
            PriorResult(
                step_id=s.id,
                type=s.type,
                description=s.description,
                result=copy.deepcopy(s.result or {}),
            )
            for s in plan.steps[:index]
            if s.status == StepStatus.COMPLETED
        )
        return cls(
            plan_id=plan.id,
            user_request=plan.user_request,
            step_index=index,
            step_count=len(plan.steps),
            prior_results=prior,
            session=session or SessionInfo(session_id=plan.session_id),
        )

    def results_of_type(self, step_type: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(p.result) for p in self.prior_results if p.type == step_type]

    def latest_result(self) -> Optional[dict[str, Any]]:
        if not self.prior_results:
            return None
        return copy.deepcopy(self.prior_results[-1].result)
