"""Exception taxonomy of the plan orchestrator.

Every error carries a machine-readable ``code`` and a human-readable
``detail`` so it can be recorded on a failed step as a ``StepError``.
"""

from voice_agent_planner.models.plan import StepError


class PlannerError(Exception):
    code = "planner.error"

    def __init__(self, detail: str, code: str | None = None):
        self.code = code or self.code
        self.detail = detail
        super().__init__(detail)

    def to_step_error(self) -> StepError:
        return StepError(code=self.code, detail=self.detail)


class ValidationError(PlannerError):
    """Malformed plan input; nothing was created."""

    code = "plan.invalid"


class NotFoundError(PlannerError):
    """A referenced plan or step does not exist."""

    code = "plan.not_found"


class InvalidTransitionError(PlannerError):
    """A step status change would regress or re-apply a terminal status."""

    code = "step.invalid_transition"


class UnknownStepTypeError(PlannerError):
    """No executor is registered for a step type."""

    code = "step.unknown_type"

    def __init__(self, step_type: str):
        self.step_type = step_type
        super().__init__(f"No executor registered for step type: {step_type}")


class ExecutorFailure(PlannerError):
    """An executor or the collaborator it called failed."""

    code = "executor.failure"


class PlanInProgressError(PlannerError):
    """A new plan was requested while another is unfinished and replacing is disabled."""

    code = "plan.in_progress"
