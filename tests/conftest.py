"""Shared test fixtures for the stepwise test suite."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from stepwise.control.context import MotionContext
from stepwise.control.primitives import PrimitiveLibrary
from stepwise.execution.step_queue import StepQueue
from stepwise.execution.types import QueueState
from stepwise.hardware.mock import (
    MockChassis,
    MockMoveGroup,
    MockOutput,
    MockTransformBuffer,
    mock_context,
)

TICK = 0.02


def run_ticks(queue: StepQueue, start: float = 0.0, dt: float = TICK, limit: int = 2000) -> float:
    """Tick *queue* with a synthetic clock until it stops running; return the last time."""
    now = start
    for _ in range(limit):
        if queue.tick(now) not in (QueueState.IDLE, QueueState.RUNNING):
            return now
        now += dt
    raise AssertionError(f"queue still running after {limit} ticks")


def _pick_and_drive_queue_data() -> dict:
    """A 3-step queue: record mount while reaching, drive back to it, open gripper."""
    return {
        "name": "pick_and_drive",
        "tick_hz": 50,
        "steps": [
            {
                "name": "reach",
                "motions": [
                    {
                        "type": "joint",
                        "joints": [0.0, "HOLD", 0.5, 0.0, 0.0, 0.0],
                        "hits": 2,
                        "record": {"key": "mount", "parent": "base_link", "child": "link4"},
                    },
                    {"type": "gpio", "pin": 0, "state": True},
                ],
            },
            {
                "name": "drive",
                "motions": [
                    {"type": "chassis_target", "recorded": "mount", "offset": [0.1, 0.2], "hits": 2},
                ],
            },
            {
                "name": "release",
                "motions": [{"type": "hand", "position": 0.0, "delay": 0.05}],
            },
        ],
    }


@pytest.fixture()
def queue_data() -> dict:
    return _pick_and_drive_queue_data()


@pytest.fixture()
def queue_file(tmp_path: Path) -> Path:
    """Write the 3-step queue to tmp_path and return its path."""
    path = tmp_path / "pick_and_drive.json"
    path.write_text(json.dumps(_pick_and_drive_queue_data(), indent=2))
    return path


@pytest.fixture()
def context() -> MotionContext:
    """Context wired to mocks, with the mount frame known."""
    ctx = mock_context()
    ctx.transforms.set_xyz_rpy("base_link", "link4", (0.4, 0.0, 0.3))
    return ctx


@pytest.fixture()
def arm(context: MotionContext) -> MockMoveGroup:
    return context.arm


@pytest.fixture()
def chassis(context: MotionContext) -> MockChassis:
    return context.chassis


@pytest.fixture()
def transforms(context: MotionContext) -> MockTransformBuffer:
    return context.transforms


@pytest.fixture()
def outputs(context: MotionContext) -> dict[str, MockOutput]:
    return context.outputs


@pytest.fixture(name="run_ticks")
def run_ticks_fixture() -> Callable[..., float]:
    """Expose :func:`run_ticks` to tests."""
    return run_ticks


@pytest.fixture()
def library() -> PrimitiveLibrary:
    return PrimitiveLibrary()
