"""Contracts for the external collaborators primitives talk to.

Real deployments adapt their planning stack, chassis controller, transform
buffer and publishers to these protocols; :mod:`stepwise.hardware.mock`
provides in-process implementations for tests and the demo script.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Protocol

from stepwise.control.geometry import Pose, Transform
from stepwise.control.targets import ChassisTarget, OutputMessage, PlanGoal


class PlanCode(IntEnum):
    """Result code returned by planning/execution calls."""

    SUCCESS = 1
    PLANNING_FAILED = -1
    INVALID_GOAL = -2
    CONTROL_FAILED = -4
    TIMED_OUT = -6
    PREEMPTED = -7


class MoveGroup(Protocol):
    """Planning/execution backend for one arm or hand group."""

    @property
    def planning_frame(self) -> str: ...

    def set_velocity_scale(self, factor: float) -> None: ...

    def set_acceleration_scale(self, factor: float) -> None: ...

    def plan_and_execute_async(self, goal: PlanGoal) -> PlanCode:
        """Plan to *goal*; on success start executing and return immediately."""
        ...

    def compute_waypoint_path(self, waypoints: list[Pose]) -> tuple[float, Any]:
        """Return (achieved fraction in [0, 1], trajectory)."""
        ...

    def execute_async(self, trajectory: Any) -> PlanCode: ...

    def get_current_pose(self) -> Pose: ...

    def get_current_joint_values(self) -> list[float]: ...

    def stop(self) -> None: ...


class ChassisBackend(Protocol):
    """Planar motion controller for the mobile base."""

    def set_goal(self, goal: ChassisTarget) -> None: ...

    def error_pos(self) -> float: ...

    def error_yaw(self) -> float: ...

    def stop(self) -> None: ...


class TransformService(Protocol):
    def lookup(self, target_frame: str, source_frame: str, time: float | None = None) -> Transform:
        """Resolve ``source_frame`` into ``target_frame``.

        Raises:
            FrameUnavailable: If no such transform is currently known.
        """
        ...


class OutputChannel(Protocol):
    def publish(self, message: OutputMessage) -> None: ...
