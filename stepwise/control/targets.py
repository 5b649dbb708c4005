"""Goal values issued by primitives, and the messages sent on output channels.

A :data:`Target` is one of a closed set of frozen dataclasses. Frame-relative
targets keep their frame tag; primitives resolve them into a concrete
:class:`~stepwise.control.geometry.Pose` on every attempt and never mutate
the configured value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from stepwise.control.geometry import ORIGIN, Pose, Quaternion, Vector3

# Joint entry meaning "hold whatever the joint reads when the motion starts".
HOLD = "HOLD"

# Accepted spellings for the hold sentinel in configuration.
HOLD_ALIASES = frozenset({"HOLD", "KEEP"})


@dataclass(frozen=True)
class CartesianTarget:
    """End-effector goal in a named frame.

    Either ``position`` or ``orientation`` may be ``None`` (but not both);
    the missing part is left free for the planner.
    """

    frame: str
    position: Vector3 | None = None
    orientation: Quaternion | None = None

    @property
    def pose(self) -> Pose:
        return Pose(
            position=self.position if self.position is not None else ORIGIN,
            orientation=self.orientation if self.orientation is not None else Quaternion(),
        )


@dataclass(frozen=True)
class VariableRef:
    """Reference to an externally supplied joint value."""

    name: str


JointEntry = float | str | VariableRef


@dataclass(frozen=True)
class JointTarget:
    """Joint-space goal; entries may be literals, :data:`HOLD` or variables."""

    values: tuple[JointEntry, ...]

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class ChassisTarget:
    """Planar chassis goal."""

    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0
    frame: str = ""


@dataclass(frozen=True)
class ScalarTarget:
    value: float


class ActuatorMode(str, Enum):
    POSITION = "POSITION"
    VELOCITY = "VELOCITY"


@dataclass(frozen=True)
class VectorActuatorTarget:
    """Six-DOF actuator setpoint (linear xyz, angular xyz)."""

    linear: Vector3 = ORIGIN
    angular: Vector3 = ORIGIN
    mode: ActuatorMode = ActuatorMode.VELOCITY

    def zeroed(self) -> VectorActuatorTarget:
        """The neutral command for the same mode."""
        return VectorActuatorTarget(mode=self.mode)


Target = CartesianTarget | JointTarget | ChassisTarget | ScalarTarget | VectorActuatorTarget


# ---------------------------------------------------------------------------
# Output channel messages
# ---------------------------------------------------------------------------

GPIO_PIN_NAMES: tuple[str, ...] = (
    "main_gripper",
    "silver_gripper1",
    "silver_gripper2",
    "silver_gripper3",
    "gold_gripper",
    "silver_pump",
)
GPIO_UNREGISTERED = "no_registered"


@dataclass(frozen=True)
class GpioCommand:
    """Full GPIO frame; only the addressed pin carries a name."""

    names: tuple[str, ...]
    states: tuple[bool, ...]

    @classmethod
    def for_pin(cls, pin: int, state: bool) -> GpioCommand:
        names = [GPIO_UNREGISTERED] * len(GPIO_PIN_NAMES)
        states = [False] * len(GPIO_PIN_NAMES)
        names[pin] = GPIO_PIN_NAMES[pin]
        states[pin] = state
        return cls(names=tuple(names), states=tuple(states))


@dataclass(frozen=True)
class LabelCommand:
    text: str


@dataclass(frozen=True)
class GimbalCommand:
    """Point the gimbal at ``point`` expressed in ``frame``."""

    frame: str = ""
    point: Vector3 = ORIGIN
    mode: str = "DIRECT"


OutputMessage = ScalarTarget | VectorActuatorTarget | GpioCommand | LabelCommand | GimbalCommand


@dataclass(frozen=True)
class WaypointGoal:
    """Ordered multi-pose request planned in a single call (last pose is the goal)."""

    poses: tuple[Pose, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PoseGoal:
    """A resolved Cartesian goal in the planning frame.

    ``constrain_position`` / ``constrain_orientation`` select a full pose,
    position-only or orientation-only request.
    """

    pose: Pose
    constrain_position: bool = True
    constrain_orientation: bool = True


@dataclass(frozen=True)
class JointGoal:
    values: tuple[float, ...]


PlanGoal = PoseGoal | JointGoal | WaypointGoal
