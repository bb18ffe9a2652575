"""API endpoint handlers for the plan orchestrator.

This module holds the logic behind the HTTP routes; handlers return plain
JSON-ready dictionaries and raise PlannerError subclasses on failure.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from voice_agent_planner.execution.sessions import SessionManager
from voice_agent_planner.models.plan import StepOutcome


class CreatePlanRequest(BaseModel):
    """Body of a plan creation request."""

    user_request: str = Field(..., description="The user's free-text goal.")
    steps: list[dict[str, Any]] = Field(
        ..., description="Ordered step specs with type and description."
    )
    user_id: Optional[str] = Field(default=None, description="Requesting user.")
    project_id: Optional[str] = Field(default=None, description="Target project.")


class CancelPlanRequest(BaseModel):
    reason: str = Field(default="Plan was cancelled", description="Why the plan stops.")


class PlanEndpoints:
    """Handlers for plan endpoints."""

    def __init__(self, sessions: SessionManager):
        """Initialize with the session manager."""
        self.sessions = sessions

    async def create_plan(
        self, session_id: str, request: CreatePlanRequest, wait: bool = False
    ) -> dict[str, Any]:
        """Creates a plan for the session and starts executing it.

        Args:
            session_id: The voice session the plan belongs to.
            request: Request body.
            wait: If true, respond only once the plan finished or halted.

        Returns:
            The plan snapshot.
        """
        orchestrator = await self.sessions.get_or_create(
            session_id, user_id=request.user_id, project_id=request.project_id
        )
        plan = await orchestrator.create_plan(request.user_request, request.steps)
        if wait:
            await orchestrator.wait_idle()
            plan = await orchestrator.get_current_plan() or plan
        return plan.snapshot()

    async def get_current_plan(self, session_id: str) -> Optional[dict[str, Any]]:
        plan = await self.sessions.get(session_id).get_current_plan()
        return plan.snapshot() if plan else None

    async def get_history(self, session_id: str) -> list[dict[str, Any]]:
        plans = await self.sessions.get(session_id).get_history()
        return [p.snapshot() for p in plans]

    async def report_step_result(
        self, session_id: str, step_id: str, outcome: StepOutcome
    ) -> dict[str, Any]:
        """Records the outcome of a step that completed outside the orchestrator."""
        orchestrator = self.sessions.get(session_id)
        await orchestrator.report_step_result(step_id, outcome)
        plan = await orchestrator.get_current_plan()
        return plan.snapshot()

    async def cancel_plan(
        self, session_id: str, request: CancelPlanRequest
    ) -> dict[str, Any]:
        plan = await self.sessions.get(session_id).cancel_plan(request.reason)
        return plan.snapshot()

    def metrics(self) -> str:
        return self.sessions.metrics().render_markdown()
