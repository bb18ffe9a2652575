"""Enumeration definitions for the plan orchestrator.

This module contains the standard Enum classes used across the package to keep
step statuses, plan phases and notification kinds consistent.
"""

from enum import Enum


class StepStatus(str, Enum):
    """Lifecycle status of a single plan step.

    Attributes:
        PENDING: The step has not been dispatched yet.
        IN_PROGRESS: The step has been claimed and its executor is running.
        COMPLETED: The executor returned a result payload.
        FAILED: The executor (or the orchestrator) recorded an error.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED)


class PlanPhase(str, Enum):
    """Phase of a plan, derived from the statuses of its steps.

    Attributes:
        CREATED: Every step is still pending.
        RUNNING: Some work has started but at least one step is not terminal.
        FINISHED: Every step is terminal.
    """

    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"


class PlanEventKind(str, Enum):
    """Kinds of events reported to a notification sink.

    Attributes:
        PLAN_CREATED: A new plan was registered for the session.
        PLAN_UPDATED: A step of the active plan changed status.
        PLAN_FINISHED: Every step of the plan reached a terminal status.
    """

    PLAN_CREATED = "plan_created"
    PLAN_UPDATED = "plan_updated"
    PLAN_FINISHED = "plan_finished"


class SupersedePolicy(str, Enum):
    """What to do when a plan is requested while another one is unfinished.

    Attributes:
        REPLACE: Cancel the unfinished plan and make the new one active.
        REJECT: Refuse the new plan with PlanInProgressError.
    """

    REPLACE = "replace"
    REJECT = "reject"
