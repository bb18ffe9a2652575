"""Notification sinks receiving plan events.

A sink is fire-and-forget from the orchestrator's point of view: it is awaited
so events stay ordered, but any exception it raises is logged and dropped.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

import requests

from voice_agent_planner.models.enums import PlanEventKind
from voice_agent_planner.models.events import PlanEvent
from voice_agent_planner.models.plan import ExecutionPlan
from voice_agent_planner.observability.logging import get_logger, log_fields

logger = get_logger(__name__)


class NotificationSink(ABC):
    """Interface for consumers of plan-created / updated / finished events."""

    @abstractmethod
    async def notify(
        self,
        kind: PlanEventKind,
        plan: ExecutionPlan,
        step_id: Optional[str] = None,
    ) -> None:
        """Delivers one event.

        Args:
            kind: What happened.
            plan: Snapshot of the plan after the transition.
            step_id: The step whose transition caused the event, if any.
        """
        pass  # pragma: no cover


class NullSink(NotificationSink):
    async def notify(self, kind, plan, step_id=None) -> None:
        return None


class LoggingSink(NotificationSink):
    """Writes every event to the log."""

    async def notify(self, kind, plan, step_id=None) -> None:
        logger.info(
            f"Plan event: {PlanEventKind(kind).value}",
            extra=log_fields(
                event=PlanEventKind(kind).value,
                plan_id=plan.id,
                phase=plan.phase.value,
                step_id=step_id,
                progress=plan.progress,
            ),
        )


class RecordingSink(NotificationSink):
    """Keeps every event in memory, in delivery order."""

    def __init__(self):
        self.events: list[PlanEvent] = []

    async def notify(self, kind, plan, step_id=None) -> None:
        self.events.append(
            PlanEvent(kind=kind, plan=plan.model_copy(deep=True), step_id=step_id)
        )

    def kinds(self) -> list[PlanEventKind]:
        return [e.kind for e in self.events]

    def clear(self) -> None:
        self.events.clear()


EventCallback = Callable[[PlanEvent], Union[None, Awaitable[None]]]


class CallbackSink(NotificationSink):
    """Forwards every event to a sync or async callable."""

    def __init__(self, callback: EventCallback):
        self.callback = callback

    async def notify(self, kind, plan, step_id=None) -> None:
        outcome = self.callback(PlanEvent(kind=kind, plan=plan, step_id=step_id))
        if inspect.isawaitable(outcome):
            await outcome


class WebhookSink(NotificationSink):
    """POSTs every event as JSON to a URL."""

    def __init__(self, url: str, timeout: float = 3.0):
        self.url = url
        self.timeout = timeout

    def _post(self, payload: dict) -> None:
        response = requests.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()

    async def notify(self, kind, plan, step_id=None) -> None:
        event = PlanEvent(kind=kind, plan=plan, step_id=step_id)
        await asyncio.to_thread(self._post, event.to_dict())


class CompositeSink(NotificationSink):
    """Fans every event out to several sinks; one failing does not block the rest."""

    def __init__(self, sinks: list[NotificationSink]):
        self.sinks = list(sinks)

    async def notify(self, kind, plan, step_id=None) -> None:
        for sink in self.sinks:
            try:
                await sink.notify(kind, plan, step_id)
            except Exception as e:
                logger.warning(
                    f"Notification sink {type(sink).__name__} failed: {e}",
                    extra=log_fields(plan_id=plan.id, event=PlanEventKind(kind).value),
                )
