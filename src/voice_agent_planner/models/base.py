from pydantic import BaseModel, ConfigDict


class ModelBase(BaseModel):
    """
    Base class for all voice-agent-planner models.

    Enforces strict validation, forbids unknown fields,
    and enables assignment-time validation.
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        frozen=False,
    )


PlanId = str
StepId = str
StepType = str
SessionId = str
