"""Per-session orchestrators.

Each session owns its own plan store and orchestrator, so plans of different
users never share state. The executor registry and notification sink are
shared across sessions.
"""

import asyncio
from typing import Optional

from voice_agent_planner.config import OrchestratorConfig
from voice_agent_planner.errors import NotFoundError
from voice_agent_planner.execution.context import SessionInfo
from voice_agent_planner.execution.orchestrator import PlanOrchestrator
from voice_agent_planner.notifications.sink import NotificationSink
from voice_agent_planner.observability.logging import get_logger, log_fields
from voice_agent_planner.observability.metrics import PlanMetrics
from voice_agent_planner.persistence.in_memory import InMemoryPlanStore
from voice_agent_planner.registry.abstract import ExecutorRegistry

logger = get_logger(__name__)


class SessionManager:
    """Creates and tracks one PlanOrchestrator per session."""

    def __init__(
        self,
        registry: ExecutorRegistry,
        sink: Optional[NotificationSink] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.registry = registry
        self.sink = sink
        self.config = config or OrchestratorConfig()
        self._sessions: dict[str, PlanOrchestrator] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> PlanOrchestrator:
        async with self._lock:
            orchestrator = self._sessions.get(session_id)
            if orchestrator is None:
                orchestrator = PlanOrchestrator(
                    store=InMemoryPlanStore(
                        history_limit=self.config.history_limit,
                        max_steps=self.config.max_steps,
                    ),
                    registry=self.registry,
                    sink=self.sink,
                    config=self.config,
                    session=SessionInfo(
                        session_id=session_id, user_id=user_id, project_id=project_id
                    ),
                )
                self._sessions[session_id] = orchestrator
                logger.info("Session opened", extra=log_fields(session_id=session_id))
            return orchestrator

    def get(self, session_id: str) -> PlanOrchestrator:
        orchestrator = self._sessions.get(session_id)
        if orchestrator is None:
            raise NotFoundError(
                f"Unknown session: {session_id}", code="session.not_found"
            )
        return orchestrator

    def list_sessions(self) -> list[str]:
        return sorted(self._sessions.keys())

    def metrics(self) -> PlanMetrics:
        total = PlanMetrics()
        for orchestrator in self._sessions.values():
            total = total.merge(orchestrator.metrics)
        return total

    async def close(self, session_id: str) -> None:
        async with self._lock:
            orchestrator = self._sessions.pop(session_id, None)
        if orchestrator is None:
            raise NotFoundError(
                f"Unknown session: {session_id}", code="session.not_found"
            )
        await orchestrator.stop()
        logger.info("Session closed", extra=log_fields(session_id=session_id))

    async def close_all(self) -> None:
        async with self._lock:
            sessions, self._sessions = self._sessions, {}
        for orchestrator in sessions.values():
            await orchestrator.stop()
