"""HTTP application exposing the plan orchestrator."""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from voice_agent_planner.api.endpoints import (
    CancelPlanRequest,
    CreatePlanRequest,
    PlanEndpoints,
)
from voice_agent_planner.config import OrchestratorConfig, load_config
from voice_agent_planner.errors import (
    InvalidTransitionError,
    NotFoundError,
    PlanInProgressError,
    PlannerError,
    ValidationError,
)
from voice_agent_planner.execution.sessions import SessionManager
from voice_agent_planner.models.plan import StepOutcome
from voice_agent_planner.notifications.sink import (
    CompositeSink,
    LoggingSink,
    NotificationSink,
    WebhookSink,
)
from voice_agent_planner.observability.logging import get_logger, setup_logging
from voice_agent_planner.registry.abstract import ExecutorRegistry
from voice_agent_planner.registry.builtin import build_registry_from_env

logger = get_logger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    PlanInProgressError: 409,
}


def build_sink(config: OrchestratorConfig) -> NotificationSink:
    sinks: list[NotificationSink] = [LoggingSink()]
    if config.webhook_url:
        sinks.append(WebhookSink(config.webhook_url))
    return CompositeSink(sinks)


def create_app(
    registry: Optional[ExecutorRegistry] = None,
    sink: Optional[NotificationSink] = None,
    config: Optional[OrchestratorConfig] = None,
) -> FastAPI:
    """Builds the FastAPI application.

    Args:
        registry: Executor registry. Defaults to the built-in executors for
            whichever collaborators have credentials in the environment.
        sink: Notification sink. Defaults to logging (plus webhook if configured).
        config: Orchestrator configuration. Defaults to load_config().
    """
    config = config or load_config()
    registry = registry or build_registry_from_env(config)
    sessions = SessionManager(registry, sink or build_sink(config), config)
    endpoints = PlanEndpoints(sessions)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await sessions.close_all()

    app = FastAPI(title="Voice Agent Planner", lifespan=lifespan)
    app.state.sessions = sessions
    app.state.config = config

    @app.exception_handler(PlannerError)
    async def planner_error_handler(request: Request, exc: PlannerError):
        status_code = 500
        for error_type, code in ERROR_STATUS.items():
            if isinstance(exc, error_type):
                status_code = code
                break
        return JSONResponse(
            status_code=status_code,
            content={"error": {"code": exc.code, "detail": exc.detail}},
        )

    @app.get("/health")
    async def health():
        return {"status": "healthy", "sessions": len(sessions.list_sessions())}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        return endpoints.metrics()

    @app.post("/sessions/{session_id}/plans", status_code=201)
    async def create_plan(session_id: str, body: CreatePlanRequest, wait: bool = False):
        return await endpoints.create_plan(session_id, body, wait=wait)

    @app.get("/sessions/{session_id}/plans/current")
    async def get_current_plan(session_id: str):
        plan = await endpoints.get_current_plan(session_id)
        if plan is None:
            raise NotFoundError("No active plan")
        return plan

    @app.get("/sessions/{session_id}/plans/history")
    async def get_history(session_id: str):
        return await endpoints.get_history(session_id)

    @app.post("/sessions/{session_id}/plans/current/steps/{step_id}/result")
    async def report_step_result(session_id: str, step_id: str, outcome: StepOutcome):
        return await endpoints.report_step_result(session_id, step_id, outcome)

    @app.post("/sessions/{session_id}/plans/current/cancel")
    async def cancel_plan(
        session_id: str, body: Optional[CancelPlanRequest] = Body(default=None)
    ):
        return await endpoints.cancel_plan(session_id, body or CancelPlanRequest())

    return app


def main() -> None:
    import uvicorn

    setup_logging()
    uvicorn.run(
        create_app(),
        host=os.environ.get("PLANNER_HOST", "127.0.0.1"),
        port=int(os.environ.get("PLANNER_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
