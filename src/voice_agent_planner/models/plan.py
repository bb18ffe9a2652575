"""Data models for multi-step execution plans.

This module defines the structure of a plan created from one user request:
the ordered steps, their lifecycle fields and the values derived from them.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from voice_agent_planner.models.base import ModelBase, PlanId, SessionId, StepId, StepType
from voice_agent_planner.models.enums import PlanPhase, StepStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepSpec(BaseModel):
    """Caller-supplied description of one step to plan.

    Attributes:
        type: Tag selecting the executor that performs the step.
        description: Human-readable summary of the work.
        inputs: Optional executor-specific parameters.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: StepType = Field(
        ..., description="Tag selecting the executor that performs the step."
    )
    description: str = Field(
        ..., description="Human-readable summary of the work."
    )
    inputs: dict[str, Any] = Field(
        default_factory=dict,
        description="Optional executor-specific parameters.",
    )

    @field_validator("type", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class StepError(BaseModel):
    """Details regarding a step failure.

    Attributes:
        code: Machine-readable error code (e.g., 'step.unknown_type').
        detail: Human-readable explanation of the error.
    """

    code: str = Field(
        ...,
        description="Machine-readable error code (e.g., 'step.unknown_type').",
    )
    detail: str = Field(
        ..., description="Human-readable explanation of the error."
    )


class PlanStep(ModelBase):
    """One unit of work within a plan."""

    id: StepId = Field(..., description="Unique step identifier.")
    type: StepType = Field(..., description="Executor tag.")
    description: str = Field(..., description="Human-readable summary.")
    inputs: dict[str, Any] = Field(
        default_factory=dict, description="Executor-specific parameters."
    )
    status: StepStatus = Field(
        default=StepStatus.PENDING, description="Current lifecycle status."
    )
    result: Optional[dict[str, Any]] = Field(
        default=None, description="Output payload, set only when completed."
    )
    error: Optional[StepError] = Field(
        default=None, description="Failure detail, set only when failed."
    )
    started_at: Optional[datetime] = Field(
        default=None, description="When the step entered in_progress."
    )
    completed_at: Optional[datetime] = Field(
        default=None, description="When the step reached a terminal status."
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ExecutionPlan(ModelBase):
    """Represents an ordered set of steps derived from one user request.

    Attributes:
        id: Unique identifier for this plan instance.
        user_request: The original free-text goal.
        steps: Ordered steps; insertion order is execution order.
        session_id: Identifier of the owning session, if any.
        created_at: When the plan was created.
    """

    id: PlanId = Field(..., description="Unique identifier for this plan instance.")
    user_request: str = Field(..., description="The original free-text goal.")
    steps: list[PlanStep] = Field(
        ...,
        min_length=1,
        description="Ordered steps; insertion order is execution order.",
    )
    session_id: Optional[SessionId] = Field(
        default=None, description="Identifier of the owning session, if any."
    )
    created_at: datetime = Field(
        default_factory=utcnow, description="When the plan was created."
    )

    @property
    def is_complete(self) -> bool:
        return all(step.is_terminal for step in self.steps)

    @property
    def phase(self) -> PlanPhase:
        if self.is_complete:
            return PlanPhase.FINISHED
        if all(step.status == StepStatus.PENDING for step in self.steps):
            return PlanPhase.CREATED
        return PlanPhase.RUNNING

    @property
    def failed_step(self) -> Optional[PlanStep]:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None

    @property
    def is_stalled(self) -> bool:
        """True when a failed step blocks steps that are still pending."""
        return self.failed_step is not None and not self.is_complete

    @property
    def progress(self) -> dict[str, int]:
        counts = {status.value: 0 for status in StepStatus}
        for step in self.steps:
            counts[step.status.value] += 1
        counts["total"] = len(self.steps)
        return counts

    def get_step(self, step_id: StepId) -> Optional[PlanStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def snapshot(self) -> dict[str, Any]:
        """Serializes the plan, including derived fields, for external consumers."""
        data = self.model_dump(mode="json")
        data["phase"] = self.phase.value
        data["is_complete"] = self.is_complete
        data["is_stalled"] = self.is_stalled
        data["progress"] = self.progress
        return data


class StepOutcome(BaseModel):
    """Outcome reported for a step completing outside the dispatch loop."""

    model_config = ConfigDict(extra="forbid")

    status: StepStatus = Field(
        ..., description="Status to record; normally completed or failed."
    )
    result: Optional[dict[str, Any]] = Field(
        default=None, description="Result payload for a completed step."
    )
    error: Optional[StepError] = Field(
        default=None, description="Error detail for a failed step."
    )


class StepDeferral(BaseModel):
    """Returned by an executor whose work finishes asynchronously.

    The step stays in_progress until someone calls report_step_result.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    reason: str = Field(
        default="", description="Why completion will be reported later."
    )
