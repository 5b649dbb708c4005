"""Shared helpers for motion primitives.

Defaults, result types, :class:`Tolerance`, the debounce :class:`HitCounter`
and the convergence predicates used by every primitive implementation.

The result and state types live here (rather than in motion_primitives.py)
so that the chassis and publish primitive modules can use them without
importing the arm primitives.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from stepwise.control.geometry import Pose, angular_errors
from stepwise.errors import ConfigError

# Configuration defaults shared by all primitives
DEFAULT_TIMEOUT: float = 3.0
DEFAULT_SPEED: float = 0.1
DEFAULT_ACCEL: float = 0.1
DEFAULT_HITS: int = 5

DEFAULT_TOLERANCE_POSITION: float = 0.01
DEFAULT_TOLERANCE_ORIENTATION: float = 0.1
DEFAULT_TOLERANCE_JOINT: float = 0.01
DEFAULT_CHASSIS_TOLERANCE_POSITION: float = 0.01
DEFAULT_CHASSIS_TOLERANCE_ANGULAR: float = 0.01

# Control loop rate for the sequencer (Hz)
CONTROL_HZ: int = 50
CONTROL_DT: float = 1.0 / CONTROL_HZ


class PollStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"


class PrimitiveState(str, Enum):
    IDLE = "idle"
    ISSUED = "issued"
    CONVERGING = "converging"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a primitive could not be issued or did not finish."""

    FRAME_UNAVAILABLE = "frame_unavailable"
    PLAN_INFEASIBLE = "plan_infeasible"
    EXECUTION_REJECTED = "execution_rejected"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


@dataclass(frozen=True)
class StartOutcome:
    """Result of :meth:`MotionPrimitive.start`.

    Truthy when the primitive was issued, so callers can write
    ``if not primitive.start(now): ...``.
    """

    issued: bool
    failure: FailureKind | None = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.issued

    @property
    def retryable(self) -> bool:
        """A missing frame may appear on a later tick; nothing else will."""
        return self.failure is FailureKind.FRAME_UNAVAILABLE


ISSUED = StartOutcome(issued=True)


def failed(kind: FailureKind, detail: str = "") -> StartOutcome:
    """Build a falsy :class:`StartOutcome`."""
    return StartOutcome(issued=False, failure=kind, detail=detail)


@dataclass
class PrimitiveResult:
    """Summary of one primitive's run inside a step.

    Attributes:
        name: Primitive label (type and index within the step).
        success: Whether the primitive converged.
        state: Final execution state.
        duration_ms: Time from first start attempt to completion.
        failure: Failure kind, if the primitive did not succeed.
        error_message: Human-readable description of the failure.
    """

    name: str
    success: bool
    state: PrimitiveState = PrimitiveState.IDLE
    duration_ms: float = 0.0
    failure: FailureKind | None = None
    error_message: str | None = None


@dataclass
class Tolerance:
    """Convergence thresholds for a primitive.

    Attributes:
        position: Euclidean end-effector position tolerance (m).
        orientation: Per-axis wrapped angular tolerance (rad).
        joints: Per-joint absolute tolerance (rad or m).
        chassis_position: Chassis position error tolerance (m).
        chassis_angular: Chassis yaw error tolerance (rad).
    """

    position: float = DEFAULT_TOLERANCE_POSITION
    orientation: float = DEFAULT_TOLERANCE_ORIENTATION
    joints: list[float] = field(default_factory=list)
    chassis_position: float = DEFAULT_CHASSIS_TOLERANCE_POSITION
    chassis_angular: float = DEFAULT_CHASSIS_TOLERANCE_ANGULAR

    def __post_init__(self) -> None:
        scalars = {
            "position": self.position,
            "orientation": self.orientation,
            "chassis_position": self.chassis_position,
            "chassis_angular": self.chassis_angular,
        }
        for name, value in scalars.items():
            if value < 0:
                raise ConfigError(f"Tolerance '{name}' must be non-negative, got {value}")
        if any(t < 0 for t in self.joints):
            raise ConfigError(f"Joint tolerances must be non-negative, got {self.joints}")


class HitCounter:
    """Debounce for convergence checks.

    Requires ``required`` consecutive favourable samples; a single miss
    starts the count over from zero.
    """

    def __init__(self, required: int = DEFAULT_HITS) -> None:
        if required < 1:
            raise ConfigError(f"Hit count must be at least 1, got {required}")
        self.required = required
        self.hits = 0

    def reset(self) -> None:
        self.hits = 0

    def update(self, in_tolerance: bool) -> bool:
        """Record one sample and return True once the threshold is reached."""
        if in_tolerance:
            self.hits += 1
        else:
            self.hits = 0
        return self.hits >= self.required

    @property
    def remaining(self) -> int:
        return max(0, self.required - self.hits)


def pose_reached(
    current: Pose,
    goal: Pose,
    tolerance: Tolerance,
    *,
    check_position: bool = True,
    check_orientation: bool = True,
) -> bool:
    """Check a Cartesian pose against position and orientation tolerances.

    Args:
        current: Live end-effector pose in the planning frame.
        goal: Resolved goal pose in the planning frame.
        tolerance: Thresholds to apply.
        check_position: Compare squared distance against ``position**2``.
        check_orientation: Compare each wrapped roll/pitch/yaw error.

    Returns:
        True if every enabled check passes.
    """
    if check_position and current.squared_distance(goal) >= tolerance.position**2:
        return False
    if check_orientation:
        errors = angular_errors(current.orientation, goal.orientation)
        if any(err >= tolerance.orientation for err in errors):
            return False
    return True


def joints_reached(
    current: list[float],
    target: list[float],
    tolerances: list[float],
) -> bool:
    """Check if every joint is within its own tolerance of the target.

    Args:
        current: Current joint positions.
        target: Target joint positions.
        tolerances: Per-joint tolerance, same length as *target*.

    Returns:
        True if every joint is within tolerance.
    """
    if len(current) < len(target):
        return False
    return all(
        abs(c - t) < tol for c, t, tol in zip(current, target, tolerances, strict=False)
    )
