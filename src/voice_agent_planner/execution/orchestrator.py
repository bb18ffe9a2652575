"""Plan orchestrator.

Turns a request and an ordered list of step descriptions into a tracked plan,
then executes the pending steps one at a time in the background.

Automatic execution is driven by explicit ``RunNextStep`` messages placed on an
asyncio queue and consumed by a single worker task per orchestrator. Creating a
plan enqueues the first message; every successful step enqueues the next one.
A failed step enqueues nothing, so the plan halts (stalls) on its first failure.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Union

from voice_agent_planner.config import OrchestratorConfig
from voice_agent_planner.errors import (
    InvalidTransitionError,
    NotFoundError,
    PlanInProgressError,
    PlannerError,
)
from voice_agent_planner.execution.context import SessionInfo, StepContext
from voice_agent_planner.models.enums import PlanEventKind, StepStatus, SupersedePolicy
from voice_agent_planner.models.plan import (
    ExecutionPlan,
    PlanStep,
    StepDeferral,
    StepError,
    StepOutcome,
)
from voice_agent_planner.notifications.sink import NotificationSink, NullSink
from voice_agent_planner.observability.logging import get_logger, log_fields
from voice_agent_planner.observability.metrics import PlanMetrics
from voice_agent_planner.persistence.repository import (
    PlanStore,
    validate_step_specs,
    validate_user_request,
)
from voice_agent_planner.registry.abstract import ExecutorRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunNextStep:
    """Queue message asking the worker to advance a plan by one step."""

    plan_id: str


class PlanOrchestrator:
    """
    Drives plan creation and sequential, automatic step execution for one session.
    """

    def __init__(
        self,
        *,
        store: PlanStore,
        registry: ExecutorRegistry,
        sink: Optional[NotificationSink] = None,
        config: Optional[OrchestratorConfig] = None,
        session: Optional[SessionInfo] = None,
        metrics: Optional[PlanMetrics] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.sink = sink or NullSink()
        self.config = config or OrchestratorConfig()
        self.session = session or SessionInfo()
        self.metrics = metrics or PlanMetrics()

        self._queue: asyncio.Queue[RunNextStep] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._create_lock = asyncio.Lock()

        self._inflight: Optional[asyncio.Future] = None
        self._inflight_step_id: Optional[str] = None
        # Steps whose running executor was cancelled on purpose.
        self._abandoned: set[str] = set()
        self._finished_announced: set[str] = set()

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Starts the background worker if it is not running."""
        self._ensure_worker()

    async def stop(self) -> None:
        """Stops the worker and cancels any running executor."""
        # The worker must see its own cancellation, not an abandoned step.
        self._abandoned.clear()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

        # Drop undelivered messages so wait_idle() cannot hang.
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        logger.info("Plan worker stopped", extra=log_fields(session_id=self.session.session_id))

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Waits until every queued RunNextStep message has been processed.

        Returns once the plan is finished, stalled on a failed step, or waiting
        on a deferred step.
        """
        if timeout is None:
            await self._queue.join()
        else:
            await asyncio.wait_for(self._queue.join(), timeout)

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run_worker())
            logger.info(
                "Plan worker started", extra=log_fields(session_id=self.session.session_id)
            )

    def _enqueue(self, plan_id: str) -> None:
        self._ensure_worker()
        self._queue.put_nowait(RunNextStep(plan_id=plan_id))

    async def _run_worker(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._handle(message)
            except Exception as e:
                logger.exception(
                    f"Error while advancing plan: {e}",
                    extra=log_fields(plan_id=message.plan_id),
                )
            finally:
                self._queue.task_done()

    async def _handle(self, message: RunNextStep) -> None:
        current = await self.store.get_current()
        if current is None or current.id != message.plan_id:
            logger.debug(
                "Dropping message for a replaced plan",
                extra=log_fields(plan_id=message.plan_id),
            )
            return
        await self.run_next_step()

    # ------------------------------------------------------------------
    # Caller boundary
    # ------------------------------------------------------------------

    async def create_plan(
        self, user_request: str, step_specs: Any
    ) -> ExecutionPlan:
        """Creates a plan and schedules its automatic execution.

        Args:
            user_request: The original free-text goal.
            step_specs: Ordered ``{type, description}`` step descriptions.

        Returns:
            A snapshot of the new plan, every step pending. Execution starts in
            the background; this call does not wait for it.

        Raises:
            ValidationError: If the input is malformed. Nothing is created.
            PlanInProgressError: If an unfinished plan exists and the
                supersede policy is ``reject``.
        """
        request = validate_user_request(user_request)
        specs = validate_step_specs(step_specs, self.config.max_steps)

        async with self._create_lock:
            current = await self.store.get_current()
            if current is not None and not current.is_complete:
                if self.config.supersede_policy == SupersedePolicy.REJECT:
                    raise PlanInProgressError(
                        f"Plan {current.id} is still running"
                    )
                await self._abort(
                    current,
                    StepError(
                        code="plan.superseded",
                        detail="Plan was replaced by a new request",
                    ),
                )
                self.metrics.inc("plans_superseded")

            plan = await self.store.create(
                request, specs, session_id=self.session.session_id
            )

        self.metrics.inc("plans_created")
        logger.info(
            "Plan created",
            extra=log_fields(plan_id=plan.id, steps=len(plan.steps)),
        )
        await self._notify(PlanEventKind.PLAN_CREATED, plan)
        self._enqueue(plan.id)
        return plan

    async def get_current_plan(self) -> Optional[ExecutionPlan]:
        return await self.store.get_current()

    async def get_history(self) -> list[ExecutionPlan]:
        return await self.store.history()

    async def cancel_plan(self, reason: str = "Plan was cancelled") -> ExecutionPlan:
        """Fails every non-terminal step of the active plan and halts it.

        Raises:
            NotFoundError: If there is no active plan.
        """
        async with self._create_lock:
            plan = await self.store.get_current()
            if plan is None:
                raise NotFoundError("No active plan")
            if plan.is_complete:
                return plan
            await self._abort(plan, StepError(code="plan.cancelled", detail=reason))
            self.metrics.inc("plans_cancelled")
            logger.info("Plan cancelled", extra=log_fields(plan_id=plan.id))
            return await self.store.get_current()

    async def update_step_by_id(
        self,
        step_id: str,
        status: Union[StepStatus, str],
        result: Optional[dict[str, Any]] = None,
        error: Optional[Union[StepError, dict[str, Any]]] = None,
    ) -> PlanStep:
        """Records a step outcome reported from outside the dispatch loop.

        A completed step continues the chain; a failed step halts it.

        Raises:
            NotFoundError: No active plan, or the step is not part of it.
            InvalidTransitionError: The change would regress the step, or the
                step has not been dispatched yet.
            ValidationError: The payload does not match the status.
        """
        status = StepStatus(status)
        if isinstance(error, dict):
            error = StepError.model_validate(error)

        updated = await self.store.update_step(step_id, status, result=result, error=error)

        # An executor still running for this step is now obsolete.
        if updated.is_terminal:
            self._cancel_inflight(step_id)

        plan = await self.store.get_current()
        logger.info(
            "Step result reported",
            extra=log_fields(plan_id=plan.id, step_id=step_id, status=status.value),
        )
        self._count(status)
        await self._notify(PlanEventKind.PLAN_UPDATED, plan, step_id)

        if status == StepStatus.COMPLETED:
            self._enqueue(plan.id)
        elif status == StepStatus.FAILED:
            await self._settle(plan)
        return updated

    async def report_step_result(
        self, step_id: str, outcome: Union[StepOutcome, dict[str, Any]]
    ) -> PlanStep:
        if isinstance(outcome, dict):
            outcome = StepOutcome.model_validate(outcome)
        return await self.update_step_by_id(
            step_id, outcome.status, result=outcome.result, error=outcome.error
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_next_step(self) -> Optional[PlanStep]:
        """Claims and executes the next pending step of the active plan.

        Returns:
            The step after execution, or None if nothing was dispatched.
        """
        claimed = await self.store.claim_next_pending()
        if claimed is None:
            await self._settle()
            return None

        plan = await self.store.get_current()
        if plan is None or plan.get_step(claimed.id) is None:
            logger.info(
                "Plan replaced before the step could start",
                extra=log_fields(step_id=claimed.id),
            )
            return None

        logger.info(
            "Step started",
            extra=log_fields(plan_id=plan.id, step_id=claimed.id, step_type=claimed.type),
        )
        await self._notify(PlanEventKind.PLAN_UPDATED, plan, claimed.id)

        # The step may have been settled while the notification was delivered.
        plan = await self.store.get_current()
        step = plan.get_step(claimed.id) if plan else None
        if step is None or step.status != StepStatus.IN_PROGRESS:
            logger.info(
                "Step settled before dispatch; executor not started",
                extra=log_fields(
                    step_id=claimed.id, status=step.status.value if step else None
                ),
            )
            return step

        context = StepContext.for_step(plan, step, self.session)
        output: Any = None
        error: Optional[StepError] = None
        try:
            output = await self._dispatch(step, context)
        except asyncio.CancelledError:
            if step.id not in self._abandoned:
                raise
        except PlannerError as e:
            error = e.to_step_error()
        except asyncio.TimeoutError:
            error = StepError(
                code="step.timeout",
                detail=f"Step exceeded {self.config.step_timeout_seconds}s",
            )
        except Exception as e:
            logger.exception(
                "Executor raised an unexpected error",
                extra=log_fields(plan_id=plan.id, step_id=step.id),
            )
            error = StepError(
                code="executor.exception", detail=f"{type(e).__name__}: {e}"
            )

        if step.id in self._abandoned:
            self._abandoned.discard(step.id)
            logger.info(
                "Step executor abandoned; outcome discarded",
                extra=log_fields(plan_id=plan.id, step_id=step.id),
            )
            return await self._step_snapshot(step.id)
        if error is not None:
            return await self._record_failure(plan.id, step, error)

        if isinstance(output, StepDeferral):
            logger.info(
                "Step deferred; waiting for an external result",
                extra=log_fields(plan_id=plan.id, step_id=step.id, reason=output.reason),
            )
            return await self._step_snapshot(step.id)

        if output is None:
            output = {}
        elif not isinstance(output, dict):
            output = {"value": output}
        return await self._record_success(plan.id, step, output)

    async def _dispatch(self, step: PlanStep, context: StepContext) -> Any:
        coro = self.registry.execute(step, context)
        if self.config.step_timeout_seconds is not None:
            coro = asyncio.wait_for(coro, self.config.step_timeout_seconds)
        self._inflight = asyncio.ensure_future(coro)
        self._inflight_step_id = step.id
        try:
            return await self._inflight
        finally:
            self._inflight = None
            self._inflight_step_id = None

    def _cancel_inflight(self, step_id: str) -> bool:
        """Cancels the running executor of ``step_id`` and marks its outcome abandoned."""
        inflight = self._inflight
        if inflight is None or inflight.done() or self._inflight_step_id != step_id:
            return False
        self._abandoned.add(step_id)
        if not inflight.cancel():
            self._abandoned.discard(step_id)
            return False
        return True

    async def _record_success(
        self, plan_id: str, step: PlanStep, result: dict[str, Any]
    ) -> Optional[PlanStep]:
        try:
            updated = await self.store.update_step(
                step.id, StepStatus.COMPLETED, result=result
            )
        except (NotFoundError, InvalidTransitionError) as e:
            logger.warning(
                f"Discarding step result: {e.detail}",
                extra=log_fields(plan_id=plan_id, step_id=step.id),
            )
            return None

        self._count(StepStatus.COMPLETED)
        logger.info(
            "Step completed", extra=log_fields(plan_id=plan_id, step_id=step.id)
        )
        await self._notify(
            PlanEventKind.PLAN_UPDATED, await self.store.get_current(), step.id
        )
        self._enqueue(plan_id)
        return updated

    async def _record_failure(
        self, plan_id: str, step: PlanStep, error: StepError
    ) -> Optional[PlanStep]:
        try:
            updated = await self.store.update_step(
                step.id, StepStatus.FAILED, error=error
            )
        except (NotFoundError, InvalidTransitionError) as e:
            logger.warning(
                f"Discarding step failure: {e.detail}",
                extra=log_fields(plan_id=plan_id, step_id=step.id),
            )
            return None

        self._count(StepStatus.FAILED)
        logger.warning(
            f"Step failed: {error.detail}",
            extra=log_fields(plan_id=plan_id, step_id=step.id, error_code=error.code),
        )
        plan = await self.store.get_current()
        await self._notify(PlanEventKind.PLAN_UPDATED, plan, step.id)
        await self._settle(plan)
        return updated

    async def _abort(self, plan: ExecutionPlan, error: StepError) -> None:
        if self._inflight_step_id and plan.get_step(self._inflight_step_id) is not None:
            self._cancel_inflight(self._inflight_step_id)

        changed = await self.store.fail_remaining(error)
        for _ in changed:
            self._count(StepStatus.FAILED)
        snapshot = await self.store.get_current()
        await self._notify(PlanEventKind.PLAN_UPDATED, snapshot)
        await self._settle(snapshot)

    async def _settle(self, plan: Optional[ExecutionPlan] = None) -> None:
        plan = plan or await self.store.get_current()
        if plan is None:
            return
        if plan.is_complete:
            if plan.id in self._finished_announced:
                return
            self._finished_announced.add(plan.id)
            self.metrics.inc("plans_finished")
            logger.info(
                "Plan finished",
                extra=log_fields(plan_id=plan.id, progress=plan.progress),
            )
            await self._notify(PlanEventKind.PLAN_FINISHED, plan)
        elif plan.is_stalled:
            failed = plan.failed_step
            logger.warning(
                "Plan halted on a failed step",
                extra=log_fields(plan_id=plan.id, step_id=failed.id),
            )

    async def _step_snapshot(self, step_id: str) -> Optional[PlanStep]:
        plan = await self.store.get_current()
        return plan.get_step(step_id) if plan else None

    async def _notify(
        self,
        kind: PlanEventKind,
        plan: Optional[ExecutionPlan],
        step_id: Optional[str] = None,
    ) -> None:
        if plan is None:
            return
        try:
            await self.sink.notify(kind, plan, step_id)
        except Exception as e:
            self.metrics.inc("notification_failures")
            logger.warning(
                f"Notification delivery failed: {e}",
                extra=log_fields(plan_id=plan.id, event=kind.value),
            )

    def _count(self, status: StepStatus) -> None:
        if status == StepStatus.COMPLETED:
            self.metrics.inc("steps_completed")
        elif status == StepStatus.FAILED:
            self.metrics.inc("steps_failed")
