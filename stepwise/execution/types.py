"""Execution layer type definitions.

Shared types used by steps, the step queue and the runner. Defined
separately to avoid circular imports between modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from stepwise.control.motion_helpers import PrimitiveResult


class StepState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def done(self) -> bool:
        return self in (StepState.SUCCEEDED, StepState.FAILED)


class QueueState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class StepResult:
    """Result from executing a single step.

    Attributes:
        name: Step label.
        success: Whether every primitive converged.
        duration_ms: Execution time in milliseconds.
        error_message: Description of failure, if any.
        primitives: Per-primitive results in declaration order.
    """

    name: str
    success: bool
    duration_ms: float
    error_message: str | None = None
    primitives: list[PrimitiveResult] = field(default_factory=list)


@dataclass
class QueueResult:
    """Result from running a step queue to completion or failure.

    Attributes:
        name: Queue label.
        state: Final queue state.
        duration_ms: Wall time from first tick to the end.
        steps: Results of the steps that ran, in order.
        failed_step: Index of the step that halted the queue, if any.
        error_message: Description of failure, if any.
    """

    name: str
    state: QueueState
    duration_ms: float = 0.0
    steps: list[StepResult] = field(default_factory=list)
    failed_step: int | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.state is QueueState.COMPLETE
