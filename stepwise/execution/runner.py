"""Fixed-tick asyncio control loop for a :class:`StepQueue`."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from stepwise.control.motion_helpers import CONTROL_HZ
from stepwise.execution.step_queue import StepQueue
from stepwise.execution.types import QueueResult, QueueState

logger = logging.getLogger(__name__)


async def run_queue(
    queue: StepQueue,
    tick_hz: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> QueueResult:
    """Tick *queue* at a fixed rate until it completes, fails or is aborted.

    Each iteration ticks once and then sleeps for whatever is left of the
    tick period. If the task is cancelled, or a tick raises, the queue is
    aborted, which stops every backend the active step commanded, and the
    exception is re-raised.

    Args:
        queue: Queue to run. It is driven from its current cursor.
        tick_hz: Loop rate; defaults to the queue's configured rate, then
            :data:`CONTROL_HZ`.
        clock: Monotonic time source in seconds.

    Returns:
        QueueResult describing the run.
    """
    hz = tick_hz or queue.tick_hz or CONTROL_HZ
    if hz <= 0:
        raise ValueError(f"tick_hz must be positive, got {hz}")
    dt = 1.0 / hz
    logger.info("run_queue: '%s' at %.0f Hz", queue.name, hz)

    try:
        while True:
            tick_start = clock()
            state = queue.tick(tick_start)
            if state is not QueueState.RUNNING:
                break
            await asyncio.sleep(max(0.0, dt - (clock() - tick_start)))
    except BaseException:
        logger.error("run_queue: '%s' interrupted, aborting", queue.name)
        queue.abort(clock())
        raise

    result = queue.result()
    logger.info(
        "run_queue: '%s' finished %s in %.0fms",
        queue.name,
        result.state.value,
        result.duration_ms,
    )
    return result
