"""Step: a group of primitives issued together and awaited jointly.

Primitives are issued in declaration order and then polled every tick.
A primitive whose frame is not yet available is re-issued on later ticks
until its own timeout runs out. The step succeeds when every primitive has
converged. The first primitive that times out or fails fails the whole
step on that tick, and every primitive in the step, converged or not, is
aborted.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from stepwise.control.motion_helpers import FailureKind, PollStatus, PrimitiveState
from stepwise.control.motion_primitives import MotionPrimitive
from stepwise.errors import ConfigError
from stepwise.execution.types import StepResult, StepState

logger = logging.getLogger(__name__)


class Step:
    """Synchronisation group of primitives.

    Args:
        primitives: Primitives in issue order. The step owns them.
        name: Label for logs and results.
        timeout: Optional deadline for the whole step, in seconds.
    """

    def __init__(
        self,
        primitives: Sequence[MotionPrimitive],
        name: str = "",
        timeout: float | None = None,
    ) -> None:
        if not primitives:
            raise ConfigError(f"Step '{name}' has no motions")
        self.primitives = list(primitives)
        self.name = name
        self.timeout = timeout
        self.state = StepState.PENDING
        self.started_at: float | None = None
        self.finished_at: float | None = None
        self.error_message: str | None = None

    # -- lifecycle ----------------------------------------------------------

    def start(self, now: float) -> StepState:
        """Issue every primitive in declaration order."""
        if self.state is not StepState.PENDING:
            raise RuntimeError(f"Step '{self.name}' already started")
        self.state = StepState.ACTIVE
        self.started_at = now
        logger.info("Step '%s': issuing %d primitives", self.name, len(self.primitives))
        for primitive in self.primitives:
            self._issue(primitive, now)
            if self.state is StepState.FAILED:
                break
        return self.state

    def poll(self, now: float) -> StepState:
        """Poll every primitive once and update the step state."""
        if self.state is not StepState.ACTIVE:
            return self.state
        if self.started_at is None:
            raise RuntimeError(f"Step '{self.name}' is active but has no start time")
        step_elapsed = now - self.started_at
        pending = False

        for primitive in self.primitives:
            if primitive.state is PrimitiveState.IDLE:
                # Not issued yet: its frame was unavailable on earlier ticks.
                if step_elapsed >= primitive.timeout:
                    primitive.mark_failed(FailureKind.FRAME_UNAVAILABLE)
                    self._fail(now, f"{primitive.name}: frame unavailable ({primitive.failure_detail})")
                    return self.state
                self._issue(primitive, now)
                if self.state is StepState.FAILED:
                    return self.state
                pending = True
                continue

            issued_at = primitive.issued_at if primitive.issued_at is not None else now
            status = primitive.poll(now - issued_at)
            if status is PollStatus.TIMED_OUT:
                kind = primitive.failure.value if primitive.failure else "failed"
                self._fail(now, f"{primitive.name}: {kind}")
                return self.state
            if status is PollStatus.IN_PROGRESS:
                pending = True

        if not pending:
            self.state = StepState.SUCCEEDED
            self.finished_at = now
            logger.info("Step '%s': complete in %.0fms", self.name, step_elapsed * 1000)
        elif self.timeout is not None and step_elapsed >= self.timeout:
            self._fail(now, f"step timed out after {self.timeout:.1f}s")
        return self.state

    def abort(self, now: float | None = None) -> None:
        """Abort every primitive; an active step is marked failed."""
        for primitive in self.primitives:
            primitive.abort()
        if self.state is StepState.ACTIVE:
            self.state = StepState.FAILED
            self.error_message = "aborted"
            self.finished_at = now

    def reset(self) -> None:
        """Return to PENDING so the step can be issued again."""
        self.state = StepState.PENDING
        self.started_at = None
        self.finished_at = None
        self.error_message = None

    # -- reporting ----------------------------------------------------------

    def result(self) -> StepResult:
        """Summarize the step and its primitives."""
        end = self.finished_at if self.finished_at is not None else self.started_at
        duration = (end - self.started_at) if self.started_at is not None and end is not None else 0.0
        return StepResult(
            name=self.name,
            success=self.state is StepState.SUCCEEDED,
            duration_ms=duration * 1000,
            error_message=self.error_message,
            primitives=[
                p.result(
                    (end - p.issued_at) if p.issued_at is not None and end is not None else 0.0
                )
                for p in self.primitives
            ],
        )

    # -- internals ----------------------------------------------------------

    def _issue(self, primitive: MotionPrimitive, now: float) -> None:
        outcome = primitive.start(now)
        if outcome or outcome.retryable:
            return
        kind = outcome.failure.value if outcome.failure else "failed"
        self._fail(now, f"{primitive.name}: {kind} {outcome.detail}".rstrip())

    def _fail(self, now: float, message: str) -> None:
        self.state = StepState.FAILED
        self.finished_at = now
        self.error_message = message
        logger.warning("Step '%s' failed: %s; aborting %d primitives", self.name, message, len(self.primitives))
        for primitive in self.primitives:
            primitive.abort()
