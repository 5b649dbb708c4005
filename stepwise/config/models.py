"""Configuration records for motions, steps and queues.

Each motion record is a pydantic model selected by its ``type`` field.
Unknown fields are rejected so that typos surface at load time instead of
silently falling back to a default. Validation errors are re-raised as
:class:`~stepwise.errors.ConfigError`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Literal, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from stepwise.control.motion_helpers import (
    CONTROL_HZ,
    DEFAULT_ACCEL,
    DEFAULT_CHASSIS_TOLERANCE_ANGULAR,
    DEFAULT_CHASSIS_TOLERANCE_POSITION,
    DEFAULT_HITS,
    DEFAULT_SPEED,
    DEFAULT_TIMEOUT,
    DEFAULT_TOLERANCE_ORIENTATION,
    DEFAULT_TOLERANCE_POSITION,
)
from stepwise.control.targets import HOLD_ALIASES
from stepwise.errors import ConfigError

logger = logging.getLogger(__name__)

NonNegative = Annotated[float, Field(ge=0.0)]


def _check_length(values: list[float] | None, length: int, name: str) -> list[float] | None:
    if values is not None and len(values) != length:
        raise ValueError(f"'{name}' must have {length} elements, got {len(values)}")
    return values


# ---------------------------------------------------------------------------
# Shared bases
# ---------------------------------------------------------------------------


class MotionRecord(BaseModel):
    """Fields shared by every motion record.

    Attributes:
        type: Primitive type name, used to pick the implementation.
        timeout: Seconds allowed before the primitive is abandoned.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str
    timeout: NonNegative = DEFAULT_TIMEOUT


class FeedbackRecord(MotionRecord):
    """Fields shared by feedback-driven (closed-loop) motions."""

    group: Literal["arm", "hand"] = "arm"
    speed: NonNegative = DEFAULT_SPEED
    accel: NonNegative = DEFAULT_ACCEL
    hits: int = Field(DEFAULT_HITS, ge=1)


class PublishRecord(MotionRecord):
    """Fields shared by open-loop publish motions."""

    channel: str
    delay: NonNegative = 0.0


# ---------------------------------------------------------------------------
# Arm motions
# ---------------------------------------------------------------------------


class EndEffectorRecord(FeedbackRecord):
    type: Literal["end_effector"] = "end_effector"
    frame: str = Field(min_length=1)
    xyz: list[float] | None = None
    rpy: list[float] | None = None
    cartesian: bool = False
    tolerance_position: NonNegative = DEFAULT_TOLERANCE_POSITION
    tolerance_orientation: NonNegative = DEFAULT_TOLERANCE_ORIENTATION

    @field_validator("xyz", "rpy")
    @classmethod
    def _three_elements(cls, v: list[float] | None, info: Any) -> list[float] | None:
        return _check_length(v, 3, info.field_name)

    @model_validator(mode="after")
    def _position_or_orientation(self) -> EndEffectorRecord:
        if self.xyz is None and self.rpy is None:
            raise ValueError("at least one of 'xyz' or 'rpy' is required")
        return self


class SpaceSearchRecord(EndEffectorRecord):
    type: Literal["space_ee"] = "space_ee"  # type: ignore[assignment]
    spatial_shape: Literal["SPHERE", "BOX"] = "SPHERE"
    radius: NonNegative = 0.1
    lengths: list[float] | None = None
    point_resolution: float = Field(0.01, gt=0.0)
    max_planning_times: int = Field(3, ge=1)
    refer_planning_frame: bool = True

    @field_validator("lengths")
    @classmethod
    def _lengths_shape(cls, v: list[float] | None) -> list[float] | None:
        _check_length(v, 3, "lengths")
        if v is not None and any(length < 0 for length in v):
            raise ValueError("'lengths' must be non-negative")
        return v

    @field_validator("refer_planning_frame")
    @classmethod
    def _planning_frame_only(cls, v: bool) -> bool:
        if not v:
            raise ValueError(
                "candidates relative to a non-planning frame are not supported; "
                "set 'refer_planning_frame' to true"
            )
        return v

    @model_validator(mode="after")
    def _box_needs_lengths(self) -> SpaceSearchRecord:
        if self.spatial_shape == "BOX" and self.lengths is None:
            raise ValueError("'lengths' is required for a BOX search shape")
        return self


class FrameCapture(BaseModel):
    """Transform to capture into the shared frame scratch."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str = Field(min_length=1)
    parent: str = "base_link"
    child: str = "link4"


class JointRecord(FeedbackRecord):
    type: Literal["joint"] = "joint"
    joints: list[float | str] = Field(min_length=1)
    tolerance_joints: list[NonNegative] | None = None
    record: FrameCapture | None = None

    @field_validator("joints")
    @classmethod
    def _joint_entries(cls, v: list[float | str]) -> list[float | str]:
        for i, entry in enumerate(v):
            if isinstance(entry, str) and entry not in HOLD_ALIASES and not (
                entry.startswith("$") and len(entry) > 1
            ):
                raise ValueError(
                    f"joint {i}: expected a number, 'HOLD'/'KEEP' or '$variable', got {entry!r}"
                )
        return v

    @model_validator(mode="after")
    def _tolerance_shape(self) -> JointRecord:
        if self.tolerance_joints is not None and len(self.tolerance_joints) != len(self.joints):
            raise ValueError(
                f"'tolerance_joints' has {len(self.tolerance_joints)} entries "
                f"for {len(self.joints)} joints"
            )
        return self


class WaypointSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    frame: str = Field(min_length=1)
    xyz: list[float] | None = None
    rpy: list[float] | None = None

    @field_validator("xyz", "rpy")
    @classmethod
    def _three_elements(cls, v: list[float] | None, info: Any) -> list[float] | None:
        return _check_length(v, 3, info.field_name)


class TwoStagePoints(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    point_mid: WaypointSpec
    point_final: WaypointSpec


class AutoApproach(BaseModel):
    """Straight-line approach along the target frame's x axis."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    frame: str = Field(min_length=1)
    straight_distance: float = 0.2


class TwoStageRecord(FeedbackRecord):
    type: Literal["two_stage"] = "two_stage"
    points: TwoStagePoints | None = None
    auto: AutoApproach | None = None
    tolerance_position: NonNegative = DEFAULT_TOLERANCE_POSITION
    tolerance_orientation: NonNegative = 0.03

    @model_validator(mode="after")
    def _one_source(self) -> TwoStageRecord:
        if (self.points is None) == (self.auto is None):
            raise ValueError("exactly one of 'points' or 'auto' is required")
        return self


# ---------------------------------------------------------------------------
# Chassis motions
# ---------------------------------------------------------------------------


class ChassisBaseRecord(MotionRecord):
    hits: int = Field(DEFAULT_HITS, ge=1)
    frame: str = ""
    chassis_tolerance_position: NonNegative = DEFAULT_CHASSIS_TOLERANCE_POSITION
    chassis_tolerance_angular: NonNegative = DEFAULT_CHASSIS_TOLERANCE_ANGULAR


class ChassisRecord(ChassisBaseRecord):
    type: Literal["chassis"] = "chassis"
    position: list[float] = Field(default_factory=lambda: [0.0, 0.0])
    yaw: float = 0.0

    @field_validator("position")
    @classmethod
    def _two_elements(cls, v: list[float]) -> list[float]:
        _check_length(v, 2, "position")
        return v


class ChassisTargetRecord(ChassisBaseRecord):
    type: Literal["chassis_target"] = "chassis_target"
    offset: list[float]
    yaw_scale: float = 1.0
    target_frame: str | None = None
    recorded: str | None = None
    base_frame: str = "base_link"

    @field_validator("offset")
    @classmethod
    def _two_elements(cls, v: list[float]) -> list[float]:
        _check_length(v, 2, "offset")
        return v

    @model_validator(mode="after")
    def _one_reference(self) -> ChassisTargetRecord:
        if (self.target_frame is None) == (self.recorded is None):
            raise ValueError("exactly one of 'target_frame' or 'recorded' is required")
        return self


# ---------------------------------------------------------------------------
# Publish motions
# ---------------------------------------------------------------------------


class HandRecord(PublishRecord):
    type: Literal["hand"] = "hand"
    channel: str = "gripper"
    position: float
    delay: NonNegative


class GpioRecord(PublishRecord):
    type: Literal["gpio"] = "gpio"
    channel: str = "gpio"
    pin: int = Field(ge=0, le=5)
    state: bool
    delay: NonNegative = 0.01


class LabelRecord(PublishRecord):
    type: Literal["stone_num"] = "stone_num"
    channel: str = "stone_num"
    change: str


class JointPositionRecord(PublishRecord):
    type: Literal["joint_position"] = "joint_position"
    channel: str = "joint"
    original_tf: str = Field(min_length=1)
    reference_tf: str = Field(min_length=1)
    direction: str = ""
    target: float = 0.0


class JointPointRecord(PublishRecord):
    type: Literal["joint_point"] = "joint_point"
    channel: str = "joint"
    target: float


class ExtendRecord(PublishRecord):
    type: Literal["extend"] = "extend"
    channel: str = "extend"
    side: Literal["front", "back"] = "front"
    front: float | None = None
    back: float | None = None

    @model_validator(mode="after")
    def _side_value(self) -> ExtendRecord:
        if getattr(self, self.side) is None:
            raise ValueError(f"'{self.side}' value is required for side={self.side!r}")
        return self

    @property
    def value(self) -> float:
        return float(getattr(self, self.side))


class GimbalRecord(PublishRecord):
    type: Literal["gimbal"] = "gimbal"
    channel: str = "gimbal"
    frame: str = ""
    position: list[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0])

    @field_validator("position")
    @classmethod
    def _three_elements(cls, v: list[float]) -> list[float]:
        _check_length(v, 3, "position")
        return v


class ReversalRecord(PublishRecord):
    type: Literal["reversal"] = "reversal"
    channel: str = "reversal"
    mode: Literal["POSITION", "VELOCITY"] = "VELOCITY"
    values: list[float] = Field(default_factory=lambda: [0.0] * 6)
    pulse: NonNegative = 0.2
    zero_after_pulse: bool | None = None

    @field_validator("values")
    @classmethod
    def _six_elements(cls, v: list[float]) -> list[float]:
        _check_length(v, 6, "values")
        return v

    @property
    def pulses(self) -> bool:
        if self.zero_after_pulse is not None:
            return self.zero_after_pulse
        return self.mode == "VELOCITY"


MotionConfig = Annotated[
    EndEffectorRecord
    | SpaceSearchRecord
    | JointRecord
    | TwoStageRecord
    | ChassisRecord
    | ChassisTargetRecord
    | HandRecord
    | GpioRecord
    | LabelRecord
    | JointPositionRecord
    | JointPointRecord
    | ExtendRecord
    | GimbalRecord
    | ReversalRecord,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Steps and queues
# ---------------------------------------------------------------------------


class StepConfig(BaseModel):
    """A group of motions issued together.

    Attributes:
        name: Label used in logs and results.
        timeout: Optional step-level deadline in seconds.
        motions: Motion records, issued in declaration order.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    timeout: NonNegative | None = None
    motions: list[MotionConfig] = Field(min_length=1)


class QueueConfig(BaseModel):
    """A full sequence of steps.

    Attributes:
        name: Label used in logs and results.
        tick_hz: Control loop rate for :func:`~stepwise.execution.runner.run_queue`.
        timeout: Optional deadline for the whole queue in seconds.
        steps: Steps in execution order.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    tick_hz: float = Field(CONTROL_HZ, gt=0.0)
    timeout: NonNegative | None = None
    steps: list[StepConfig] = Field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueConfig:
        """Validate a queue configuration.

        Raises:
            ConfigError: If any record is missing fields or malformed.
        """
        return validate_record(cls, data)

    @classmethod
    def from_json_file(cls, path: Path) -> QueueConfig:
        """Load and validate a queue configuration from a JSON file.

        Raises:
            ConfigError: If the file cannot be read or parsed, or fails validation.
        """
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot load queue config {path}: {e}") from e
        config = cls.from_dict(data)
        logger.info("Loaded queue '%s' with %d steps from %s", config.name, len(config.steps), path)
        return config


M = TypeVar("M", bound=BaseModel)


def validate_record(model: type[M], data: Any) -> M:
    """Validate *data* against *model*, converting errors to ConfigError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid {model.__name__}: {e}") from e
