"""CLI tool for running and validating plans."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from typing_extensions import Annotated

from voice_agent_planner.config import OrchestratorConfig, load_config
from voice_agent_planner.errors import PlannerError, ValidationError
from voice_agent_planner.execution.context import SessionInfo
from voice_agent_planner.execution.orchestrator import PlanOrchestrator
from voice_agent_planner.models.events import PlanEvent
from voice_agent_planner.models.plan import ExecutionPlan, StepSpec
from voice_agent_planner.notifications.sink import CallbackSink
from voice_agent_planner.observability.logging import setup_logging
from voice_agent_planner.persistence.in_memory import InMemoryPlanStore
from voice_agent_planner.persistence.repository import (
    validate_step_specs,
    validate_user_request,
)
from voice_agent_planner.registry.builtin import build_registry_from_env


app = typer.Typer(help="Voice Agent Planner CLI")
config_app = typer.Typer(help="Inspect configuration")

app.add_typer(config_app, name="config")


def load_plan_file(path: Path, max_steps: Optional[int] = None) -> tuple[str, list[StepSpec]]:
    """Reads a YAML plan file with ``request`` and ``steps`` keys."""
    if not path.exists():
        raise ValidationError(f"File not found: {path}", code="plan_file.missing")
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(f"Error parsing YAML: {e}", code="plan_file.invalid") from e
    if not isinstance(data, dict):
        raise ValidationError("Plan file must contain a mapping", code="plan_file.invalid")

    request = validate_user_request(data.get("request") or "")
    specs = validate_step_specs(data.get("steps") or [], max_steps)
    return request, specs


def _config_option(config_path: Optional[Path]) -> OrchestratorConfig:
    try:
        return load_config(config_path)
    except PlannerError as e:
        typer.echo(f"Configuration error: {e.detail}", err=True)
        raise typer.Exit(code=2)


async def _execute(
    request: str,
    specs: list[StepSpec],
    config: OrchestratorConfig,
    session_id: str,
) -> ExecutionPlan:
    def echo_event(event: PlanEvent) -> None:
        typer.echo(json.dumps(event.to_dict(), default=str))

    orchestrator = PlanOrchestrator(
        store=InMemoryPlanStore(history_limit=config.history_limit, max_steps=config.max_steps),
        registry=build_registry_from_env(config),
        sink=CallbackSink(echo_event),
        config=config,
        session=SessionInfo(session_id=session_id),
    )
    try:
        await orchestrator.create_plan(request, specs)
        await orchestrator.wait_idle()
        return await orchestrator.get_current_plan()
    finally:
        await orchestrator.stop()


@app.command("run")
def run_plan(
    plan_file: Annotated[Path, typer.Argument(help="Path to a YAML plan file")],
    config_path: Annotated[
        Optional[Path], typer.Option("--config", help="Path to a YAML config file")
    ] = None,
    session_id: Annotated[str, typer.Option(help="Session identifier")] = "cli",
    log_level: Annotated[str, typer.Option(help="Log level")] = "WARNING",
):
    """Executes a plan file and prints every plan event as a JSON line."""
    setup_logging(log_level, stream=sys.stderr)
    config = _config_option(config_path)
    try:
        request, specs = load_plan_file(plan_file, config.max_steps)
    except PlannerError as e:
        typer.echo(f"Error: {e.detail}", err=True)
        raise typer.Exit(code=1)

    plan = asyncio.run(_execute(request, specs, config, session_id))
    failed = plan.failed_step
    if failed is not None:
        typer.echo(
            f"Plan {plan.id} failed at step {failed.id}: {failed.error.detail}", err=True
        )
        raise typer.Exit(code=1)
    if not plan.is_complete:
        waiting = next(s for s in plan.steps if not s.is_terminal)
        typer.echo(
            f"Plan {plan.id} is waiting on step {waiting.id} ({waiting.status.value})",
            err=True,
        )
        raise typer.Exit(code=1)
    typer.echo(f"Plan {plan.id} completed ({len(plan.steps)} steps)", err=True)


@app.command("validate")
def validate_plan(
    plan_file: Annotated[Path, typer.Argument(help="Path to a YAML plan file")],
):
    """Validates a YAML plan file without executing it."""
    try:
        _, specs = load_plan_file(plan_file)
    except PlannerError as e:
        typer.echo(f"Validation Error: {e.detail}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Plan file {plan_file} is valid ({len(specs)} steps).")


@config_app.command("show")
def config_show(
    config_path: Annotated[
        Optional[Path], typer.Option("--config", help="Path to a YAML config file")
    ] = None,
):
    """Prints the effective configuration as JSON."""
    config = _config_option(config_path)
    data: dict[str, Any] = config.model_dump(mode="json")
    typer.echo(json.dumps(data, indent=2, sort_keys=True))


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option(help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port")] = 8000,
    config_path: Annotated[
        Optional[Path], typer.Option("--config", help="Path to a YAML config file")
    ] = None,
):
    """Serves the HTTP API."""
    import uvicorn

    from voice_agent_planner.app import create_app

    setup_logging()
    config = _config_option(config_path)
    uvicorn.run(create_app(config=config), host=host, port=port)


if __name__ == "__main__":
    app()
