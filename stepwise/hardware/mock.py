"""Mock backends for hardware-free testing.

Provides a move group, chassis, transform buffer and output channel that
satisfy the protocols in :mod:`stepwise.control.interfaces`. The move group
and chassis "obey": once a goal is accepted, the reported state tracks it,
optionally with gaussian noise. Tests can also script result codes or pin
the reported state to exercise failure paths.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import numpy as np

from stepwise.control.context import MotionContext
from stepwise.control.geometry import Pose, Quaternion, Transform, as_vector3
from stepwise.control.interfaces import PlanCode
from stepwise.control.targets import (
    ChassisTarget,
    JointGoal,
    OutputMessage,
    PlanGoal,
    PoseGoal,
    WaypointGoal,
)
from stepwise.errors import FrameUnavailable

logger = logging.getLogger(__name__)

MOCK_JOINT_COUNT = 6

MOCK_OUTPUT_CHANNELS: list[str] = [
    "gripper",
    "gpio",
    "stone_num",
    "gimbal",
    "reversal",
    "joint",
    "extend",
]


class MockMoveGroup:
    """Fake planning backend that reaches every accepted goal.

    Args:
        planning_frame: Frame goals must be expressed in.
        joints: Initial joint values.
        pose: Initial end-effector pose.
        codes: Result codes returned by successive plan/execute calls;
            ``SUCCESS`` once exhausted.
        path_fraction: Fraction reported by :meth:`compute_waypoint_path`.
        follow: If False, accepted goals are recorded but the reported
            state does not move.
        noise: Standard deviation of gaussian noise added to readings.
        seed: Seed for the noise generator.
    """

    def __init__(
        self,
        planning_frame: str = "base_link",
        joints: Iterable[float] | None = None,
        pose: Pose | None = None,
        codes: Iterable[PlanCode] | None = None,
        path_fraction: float = 1.0,
        follow: bool = True,
        noise: float = 0.0,
        seed: int | None = None,
    ) -> None:
        self._planning_frame = planning_frame
        self.joints = list(joints) if joints is not None else [0.0] * MOCK_JOINT_COUNT
        self.pose = pose or Pose()
        self.codes = list(codes or [])
        self.path_fraction = path_fraction
        self.follow = follow
        self.noise = noise
        self._rng = np.random.default_rng(seed)

        self.goals: list[Any] = []
        self.velocity_scales: list[float] = []
        self.acceleration_scales: list[float] = []
        self.stop_calls = 0

    @property
    def planning_frame(self) -> str:
        return self._planning_frame

    def set_velocity_scale(self, factor: float) -> None:
        self.velocity_scales.append(factor)

    def set_acceleration_scale(self, factor: float) -> None:
        self.acceleration_scales.append(factor)

    def plan_and_execute_async(self, goal: PlanGoal) -> PlanCode:
        """Record *goal* and, on success, move the reported state onto it."""
        self.goals.append(goal)
        code = self._next_code()
        if code == PlanCode.SUCCESS and self.follow:
            self._follow(goal)
        logger.debug("MockMoveGroup: %s -> %s", type(goal).__name__, code.name)
        return code

    def compute_waypoint_path(self, waypoints: list[Pose]) -> tuple[float, Any]:
        return self.path_fraction, WaypointGoal(poses=tuple(waypoints))

    def execute_async(self, trajectory: Any) -> PlanCode:
        return self.plan_and_execute_async(trajectory)

    def get_current_pose(self) -> Pose:
        if self.noise <= 0.0:
            return self.pose
        jitter = self._rng.normal(0.0, self.noise, 3)
        return Pose(
            position=as_vector3(np.add(self.pose.position, jitter)),
            orientation=self.pose.orientation,
        )

    def get_current_joint_values(self) -> list[float]:
        if self.noise <= 0.0:
            return list(self.joints)
        return (np.asarray(self.joints) + self._rng.normal(0.0, self.noise, len(self.joints))).tolist()

    def stop(self) -> None:
        self.stop_calls += 1
        logger.debug("MockMoveGroup: stop")

    # -- private ------------------------------------------------------------

    def _next_code(self) -> PlanCode:
        return self.codes.pop(0) if self.codes else PlanCode.SUCCESS

    def _follow(self, goal: PlanGoal) -> None:
        if isinstance(goal, JointGoal):
            self.joints[: len(goal.values)] = list(goal.values)
        elif isinstance(goal, WaypointGoal) and goal.poses:
            self.pose = goal.poses[-1]
        elif isinstance(goal, PoseGoal):
            position = goal.pose.position if goal.constrain_position else self.pose.position
            orientation = goal.pose.orientation if goal.constrain_orientation else self.pose.orientation
            self.pose = Pose(position=position, orientation=orientation)


class MockChassis:
    """Fake chassis controller.

    With ``follow`` set, accepting a goal zeroes the reported errors;
    otherwise they stay at whatever the test assigns to ``pos_error`` and
    ``yaw_error``.
    """

    def __init__(self, follow: bool = True, pos_error: float = 0.0, yaw_error: float = 0.0) -> None:
        self.follow = follow
        self.pos_error = pos_error
        self.yaw_error = yaw_error
        self.goals: list[ChassisTarget] = []
        self.stop_calls = 0

    def set_goal(self, goal: ChassisTarget) -> None:
        self.goals.append(goal)
        if self.follow:
            self.pos_error = 0.0
            self.yaw_error = 0.0
        else:
            self.pos_error = float(np.hypot(goal.x, goal.y))
            self.yaw_error = goal.yaw

    def error_pos(self) -> float:
        return self.pos_error

    def error_yaw(self) -> float:
        return self.yaw_error

    def stop(self) -> None:
        self.stop_calls += 1


class MockTransformBuffer:
    """In-memory transform lookup keyed by ``(target_frame, source_frame)``."""

    def __init__(self, transforms: dict[tuple[str, str], Transform] | None = None) -> None:
        self._transforms: dict[tuple[str, str], Transform] = dict(transforms or {})
        self.lookups: list[tuple[str, str]] = []

    def set(self, target_frame: str, source_frame: str, transform: Transform) -> None:
        self._transforms[(target_frame, source_frame)] = transform

    def set_xyz_rpy(
        self,
        target_frame: str,
        source_frame: str,
        xyz: Iterable[float] = (0.0, 0.0, 0.0),
        rpy: Iterable[float] = (0.0, 0.0, 0.0),
    ) -> None:
        self.set(
            target_frame,
            source_frame,
            Transform(translation=as_vector3(list(xyz)), rotation=Quaternion.from_rpy(*rpy)),
        )

    def remove(self, target_frame: str, source_frame: str) -> None:
        self._transforms.pop((target_frame, source_frame), None)

    def lookup(self, target_frame: str, source_frame: str, time: float | None = None) -> Transform:
        self.lookups.append((target_frame, source_frame))
        if target_frame == source_frame:
            return Transform()
        try:
            return self._transforms[(target_frame, source_frame)]
        except KeyError:
            raise FrameUnavailable(target_frame, source_frame, "not in mock buffer") from None


class MockOutput:
    """Output channel that keeps every published message."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.messages: list[OutputMessage] = []

    def publish(self, message: OutputMessage) -> None:
        self.messages.append(message)
        logger.debug("MockOutput '%s': %s", self.name, message)

    @property
    def last(self) -> OutputMessage | None:
        return self.messages[-1] if self.messages else None


def mock_context(**kwargs: Any) -> MotionContext:
    """Build a :class:`MotionContext` wired entirely to mocks.

    Keyword arguments override individual collaborators (``arm``, ``hand``,
    ``chassis``, ``transforms``, ``outputs``, ``variables``, ``clock``).
    """
    kwargs.setdefault("arm", MockMoveGroup())
    kwargs.setdefault("hand", MockMoveGroup())
    kwargs.setdefault("chassis", MockChassis())
    kwargs.setdefault("transforms", MockTransformBuffer())
    kwargs.setdefault("outputs", {name: MockOutput(name) for name in MOCK_OUTPUT_CHANNELS})
    return MotionContext(**kwargs)
