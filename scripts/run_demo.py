"""Run a step queue configuration against the mock backends.

Usage:
    python scripts/run_demo.py                          # bundled demo queue
    python scripts/run_demo.py configs/my_queue.json    # any queue file
    python scripts/run_demo.py --noise 0.001 -v         # noisy feedback, debug logs

The mock transform buffer knows ``base_link -> link4`` and
``base_link -> camera``; queues referring to other frames will report them
as unavailable.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from stepwise.errors import ConfigError
from stepwise.execution.runner import run_queue
from stepwise.execution.step_queue import StepQueue
from stepwise.hardware.mock import MockMoveGroup, MockTransformBuffer, mock_context

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_QUEUE = PROJECT_ROOT / "configs" / "demo_queue.json"

logger = logging.getLogger("run_demo")


def main() -> int:
    """Load the queue, run it to the end and print a summary."""
    parser = argparse.ArgumentParser(description="Run a step queue against mock hardware")
    parser.add_argument("queue", nargs="?", type=Path, default=DEFAULT_QUEUE, help="Queue JSON file")
    parser.add_argument("--noise", type=float, default=0.0, help="Feedback noise std-dev")
    parser.add_argument("--tick-hz", type=float, default=None, help="Override the control rate")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    transforms = MockTransformBuffer()
    transforms.set_xyz_rpy("base_link", "link4", (0.4, 0.0, 0.3))
    transforms.set_xyz_rpy("base_link", "camera", (0.1, 0.0, 0.5), (0.0, 0.3, 0.0))
    context = mock_context(
        arm=MockMoveGroup(noise=args.noise, seed=0),
        transforms=transforms,
    )

    try:
        queue = StepQueue.from_config(args.queue, context)
    except ConfigError as e:
        logger.error("%s", e)
        return 2

    result = asyncio.run(run_queue(queue, tick_hz=args.tick_hz))

    print(f"\nQueue '{result.name}': {result.state.value} in {result.duration_ms:.0f}ms")
    for step in result.steps:
        mark = "ok" if step.success else "FAILED"
        print(f"  {step.name:<16} {mark:<7} {step.duration_ms:7.0f}ms")
        for p in step.primitives:
            reason = f"  ({p.failure.value}: {p.error_message})" if p.failure else ""
            print(f"    {p.name:<28} {p.state.value}{reason}")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
