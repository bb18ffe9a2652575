"""Multi-step plan orchestration for a voice-first agent."""

from voice_agent_planner.config import OrchestratorConfig, load_config
from voice_agent_planner.errors import (
    ExecutorFailure,
    InvalidTransitionError,
    NotFoundError,
    PlanInProgressError,
    PlannerError,
    UnknownStepTypeError,
    ValidationError,
)
from voice_agent_planner.execution.context import SessionInfo, StepContext
from voice_agent_planner.execution.orchestrator import PlanOrchestrator
from voice_agent_planner.execution.sessions import SessionManager
from voice_agent_planner.models.enums import PlanEventKind, PlanPhase, StepStatus
from voice_agent_planner.models.plan import (
    ExecutionPlan,
    PlanStep,
    StepDeferral,
    StepError,
    StepOutcome,
    StepSpec,
)
from voice_agent_planner.persistence.in_memory import InMemoryPlanStore
from voice_agent_planner.registry.builtin import build_default_registry
from voice_agent_planner.registry.in_memory import InMemoryRegistry

__version__ = "0.1.0"
