"""Data models for plan notifications."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from voice_agent_planner.models.enums import PlanEventKind
from voice_agent_planner.models.plan import ExecutionPlan, utcnow


class PlanEvent(BaseModel):
    """A notification about a plan, carrying a full plan snapshot.

    Attributes:
        kind: What happened (created, updated, finished).
        plan: Deep copy of the plan at the time of the event.
        step_id: The step whose transition caused the event, if any.
        timestamp: When the event was emitted.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: PlanEventKind = Field(..., description="What happened to the plan.")
    plan: ExecutionPlan = Field(
        ..., description="Deep copy of the plan at the time of the event."
    )
    step_id: Optional[str] = Field(
        default=None,
        description="The step whose transition caused the event, if any.",
    )
    timestamp: datetime = Field(
        default_factory=utcnow, description="When the event was emitted."
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "step_id": self.step_id,
            "timestamp": self.timestamp.isoformat(),
            "plan": self.plan.snapshot(),
        }
