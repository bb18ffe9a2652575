"""Configuration for the plan orchestrator.

Values are resolved from defaults, then an optional YAML file, then
``PLANNER_*`` environment variables.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from voice_agent_planner.errors import ValidationError
from voice_agent_planner.models.enums import SupersedePolicy

ENV_PREFIX = "PLANNER_"

# field name -> environment variable
ENV_VARS = {
    "supersede_policy": "PLANNER_SUPERSEDE_POLICY",
    "step_timeout_seconds": "PLANNER_STEP_TIMEOUT",
    "max_steps": "PLANNER_MAX_STEPS",
    "history_limit": "PLANNER_HISTORY_LIMIT",
    "search_max_results": "PLANNER_SEARCH_MAX_RESULTS",
    "webhook_url": "PLANNER_WEBHOOK_URL",
}


class OrchestratorConfig(BaseModel):
    """
    Static configuration for plan orchestration.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    supersede_policy: SupersedePolicy = Field(
        default=SupersedePolicy.REPLACE,
        description="Whether a new plan replaces an unfinished one or is rejected.",
    )

    step_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-step executor timeout; None disables the timeout.",
    )

    max_steps: int = Field(
        default=20,
        ge=1,
        description="Maximum number of steps allowed in a single plan.",
    )

    history_limit: int = Field(
        default=20,
        ge=0,
        description="How many replaced plans each session retains.",
    )

    search_max_results: int = Field(
        default=5,
        ge=1,
        description="Default number of results requested by search steps.",
    )

    webhook_url: Optional[str] = Field(
        default=None,
        description="If set, plan events are POSTed to this URL.",
    )


def _read_yaml(path: Union[str, Path]) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"Config file not found: {path}", code="config.missing")
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Error parsing YAML: {e}", code="config.invalid") from e
    if not isinstance(data, dict):
        raise ValidationError("Config file must contain a mapping", code="config.invalid")
    # Allow the settings to live under a top-level "planner" key.
    if isinstance(data.get("planner"), dict):
        data = data["planner"]
    return data


def load_config(
    path: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> OrchestratorConfig:
    """Builds the effective configuration.

    Args:
        path: Optional YAML file. Defaults to the PLANNER_CONFIG env var.
        env: Environment mapping. Defaults to os.environ.

    Returns:
        The validated, frozen configuration.

    Raises:
        ValidationError: If the file or a value is invalid.
    """
    env = os.environ if env is None else env
    values: dict[str, Any] = {}

    path = path or env.get(f"{ENV_PREFIX}CONFIG")
    if path:
        values.update(_read_yaml(path))

    for field_name, var in ENV_VARS.items():
        raw = env.get(var)
        if raw is not None and raw != "":
            values[field_name] = raw

    try:
        return OrchestratorConfig.model_validate(values)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(problems, code="config.invalid") from e
