"""StepQueue: ordered steps driven by a single forward cursor.

The queue owns the :class:`FrameScratch` shared by its primitives and
checks, at construction, that every recorded frame a primitive consumes is
produced by a primitive in a strictly earlier step. A failed step halts the
queue; nothing is retried automatically.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from stepwise.config.models import QueueConfig
from stepwise.control.context import FrameScratch, MotionContext
from stepwise.control.primitives import PrimitiveLibrary
from stepwise.errors import ConfigError
from stepwise.execution.step import Step
from stepwise.execution.types import QueueResult, QueueState, StepResult, StepState

logger = logging.getLogger(__name__)


class StepQueue:
    """Runs steps one after another, advancing only when a step is done.

    Args:
        steps: Steps in execution order.
        name: Label for logs and results.
        timeout: Optional deadline for the whole queue, in seconds.
        scratch: Recorded-frame store shared by the primitives. Must be the
            same object the primitives' context writes to.
        variables: Externally supplied values available to ``$name`` joints.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        name: str = "",
        timeout: float | None = None,
        scratch: FrameScratch | None = None,
        variables: dict[str, float] | None = None,
    ) -> None:
        self._steps = list(steps)
        self.name = name
        self.timeout = timeout
        self.scratch = scratch if scratch is not None else FrameScratch()
        self.tick_hz: float | None = None
        self._cursor = 0
        self._state = QueueState.IDLE
        self._started_at: float | None = None
        self._finished_at: float | None = None
        self._results: list[StepResult] = []
        self._failed_step: int | None = None
        self._error: str | None = None
        self._validate_dependencies(variables)

    @classmethod
    def from_config(
        cls,
        config: QueueConfig | dict[str, Any] | Path,
        context: MotionContext,
        library: PrimitiveLibrary | None = None,
    ) -> StepQueue:
        """Build a queue and all its primitives from configuration.

        Args:
            config: Validated config, a raw dict, or a path to a JSON file.
            context: Backends and scratch handed to every primitive.
            library: Primitive registry; the built-in one if omitted.

        Raises:
            ConfigError: If any record is invalid, a type is unknown, or a
                recorded frame is consumed before it is produced.
        """
        if isinstance(config, Path):
            config = QueueConfig.from_json_file(config)
        elif isinstance(config, dict):
            config = QueueConfig.from_dict(config)
        library = library or PrimitiveLibrary()

        steps: list[Step] = []
        for i, step_cfg in enumerate(config.steps):
            step_name = step_cfg.name or f"step_{i + 1}"
            primitives = [
                library.build(record, context, name=f"{step_name}/{j}:{record.type}")
                for j, record in enumerate(step_cfg.motions)
            ]
            steps.append(Step(primitives, name=step_name, timeout=step_cfg.timeout))

        queue = cls(
            steps,
            name=config.name,
            timeout=config.timeout,
            scratch=context.scratch,
            variables=context.variables,
        )
        queue.tick_hz = config.tick_hz
        logger.info("Built queue '%s' with %d steps", queue.name, queue.size)
        return queue

    def _validate_dependencies(self, variables: dict[str, float] | None) -> None:
        produced: set[str] = set()
        for index, step in enumerate(self._steps):
            for primitive in step.primitives:
                for key in primitive.scratch_reads:
                    if key not in produced:
                        raise ConfigError(
                            f"{primitive.name}: recorded frame '{key}' has no producer "
                            f"in a step before step {index + 1}"
                        )
                if variables is not None:
                    for var in primitive.variables:
                        if var not in variables:
                            raise ConfigError(f"{primitive.name}: variable '{var}' is not set")
            for primitive in step.primitives:
                produced.update(primitive.scratch_writes)

    # -- driving ------------------------------------------------------------

    def tick(self, now: float) -> QueueState:
        """Advance the queue by one control tick.

        A pending step is started on the tick it becomes current and polled
        from the next tick on.
        """
        if self._state in (QueueState.COMPLETE, QueueState.FAILED, QueueState.ABORTED):
            return self._state
        if self._state is QueueState.IDLE:
            self._state = QueueState.RUNNING
            self._started_at = now
            logger.info("Queue '%s': started (%d steps)", self.name, self.size)

        if self._cursor >= self.size:
            self._complete(now)
            return self._state

        started_at = self._started_at if self._started_at is not None else now
        if self.timeout is not None and now - started_at >= self.timeout:
            self.current_step.abort(now)
            self._halt(now, f"queue timed out after {self.timeout:.1f}s")
            return self._state

        step = self.current_step
        if step.state is StepState.PENDING:
            logger.info("Queue '%s': step %d/%d '%s'", self.name, self._cursor + 1, self.size, step.name)
            step.start(now)
        else:
            step.poll(now)

        if step.state is StepState.SUCCEEDED:
            self.advance()
            if self._cursor >= self.size:
                self._complete(now)
        elif step.state is StepState.FAILED:
            self._halt(now, step.error_message or "step failed")
        return self._state

    def advance(self) -> None:
        """Record the current step's result and move the cursor forward.

        Raises:
            RuntimeError: If the current step has not finished.
        """
        step = self.current_step
        if not step.state.done:
            raise RuntimeError(f"Cannot advance past unfinished step '{step.name}'")
        self._results.append(step.result())
        self._cursor += 1

    def abort(self, now: float | None = None) -> None:
        """Abort the active step and stop the queue."""
        if self._state in (QueueState.COMPLETE, QueueState.FAILED, QueueState.ABORTED):
            return
        if self._cursor < self.size:
            step = self.current_step
            step.abort(now)
            if step.state.done and step.started_at is not None:
                self._results.append(step.result())
                self._failed_step = self._cursor
        self._state = QueueState.ABORTED
        self._finished_at = now
        self._error = "aborted"
        logger.warning("Queue '%s': aborted at step %d/%d", self.name, self._cursor + 1, self.size)

    def reset(self) -> None:
        """Rewind to the first step and clear recorded frames."""
        for step in self._steps:
            step.reset()
        self.scratch.clear()
        self._cursor = 0
        self._state = QueueState.IDLE
        self._started_at = None
        self._finished_at = None
        self._results = []
        self._failed_step = None
        self._error = None

    # -- reporting ----------------------------------------------------------

    def result(self) -> QueueResult:
        """Summarize the run so far."""
        duration = 0.0
        if self._started_at is not None and self._finished_at is not None:
            duration = self._finished_at - self._started_at
        return QueueResult(
            name=self.name,
            state=self._state,
            duration_ms=duration * 1000,
            steps=list(self._results),
            failed_step=self._failed_step,
            error_message=self._error,
        )

    @property
    def state(self) -> QueueState:
        return self._state

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def size(self) -> int:
        return len(self._steps)

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def current_step(self) -> Step:
        if self._cursor >= self.size:
            raise IndexError(f"Queue '{self.name}' has no current step")
        return self._steps[self._cursor]

    # -- internals ----------------------------------------------------------

    def _complete(self, now: float) -> None:
        self._state = QueueState.COMPLETE
        self._finished_at = now
        logger.info("Queue '%s': complete", self.name)

    def _halt(self, now: float, message: str) -> None:
        self._results.append(self.current_step.result())
        self._failed_step = self._cursor
        self._state = QueueState.FAILED
        self._finished_at = now
        self._error = message
        logger.error(
            "Queue '%s': halted at step %d/%d '%s': %s",
            self.name,
            self._cursor + 1,
            self.size,
            self.current_step.name,
            message,
        )
