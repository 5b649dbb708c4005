"""Rigid-body geometry used for target resolution and convergence checks.

Poses and transforms are small frozen dataclasses with numpy doing the
vector math. Quaternions follow the (x, y, z, w) ordering and the fixed-axis
roll/pitch/yaw convention of the transform service (``R = Rz(yaw) Ry(pitch)
Rx(roll)``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

Vector3 = tuple[float, float, float]

ORIGIN: Vector3 = (0.0, 0.0, 0.0)


def normalize_angle(angle: float) -> float:
    """Wrap an angle into the half-open interval (-pi, pi]."""
    wrapped = math.fmod(angle + math.pi, 2.0 * math.pi)
    if wrapped <= 0.0:
        wrapped += 2.0 * math.pi
    return wrapped - math.pi


def shortest_angular_distance(from_angle: float, to_angle: float) -> float:
    """Signed shortest rotation taking *from_angle* to *to_angle*."""
    return normalize_angle(to_angle - from_angle)


def as_vector3(values: list[float] | tuple[float, ...] | np.ndarray) -> Vector3:
    """Coerce a 3-element sequence to a plain float tuple."""
    x, y, z = (float(v) for v in values)
    return (x, y, z)


@dataclass(frozen=True)
class Quaternion:
    """Unit quaternion in (x, y, z, w) order."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0

    @classmethod
    def from_rpy(cls, roll: float, pitch: float, yaw: float) -> Quaternion:
        """Build a quaternion from fixed-axis roll, pitch and yaw."""
        cr, sr = math.cos(roll / 2), math.sin(roll / 2)
        cp, sp = math.cos(pitch / 2), math.sin(pitch / 2)
        cy, sy = math.cos(yaw / 2), math.sin(yaw / 2)
        return cls(
            x=sr * cp * cy - cr * sp * sy,
            y=cr * sp * cy + sr * cp * sy,
            z=cr * cp * sy - sr * sp * cy,
            w=cr * cp * cy + sr * sp * sy,
        )

    def to_rpy(self) -> Vector3:
        """Return (roll, pitch, yaw) in radians."""
        x, y, z, w = self.x, self.y, self.z, self.w
        roll = math.atan2(2.0 * (w * x + y * z), 1.0 - 2.0 * (x * x + y * y))
        pitch = math.asin(float(np.clip(2.0 * (w * y - z * x), -1.0, 1.0)))
        yaw = math.atan2(2.0 * (w * z + x * y), 1.0 - 2.0 * (y * y + z * z))
        return (roll, pitch, yaw)

    @property
    def yaw(self) -> float:
        return self.to_rpy()[2]

    def __mul__(self, other: Quaternion) -> Quaternion:
        ax, ay, az, aw = self.x, self.y, self.z, self.w
        bx, by, bz, bw = other.x, other.y, other.z, other.w
        return Quaternion(
            x=aw * bx + ax * bw + ay * bz - az * by,
            y=aw * by - ax * bz + ay * bw + az * bx,
            z=aw * bz + ax * by - ay * bx + az * bw,
            w=aw * bw - ax * bx - ay * by - az * bz,
        )

    def normalized(self) -> Quaternion:
        """Return a unit-length copy (identity for a zero quaternion)."""
        arr = np.array([self.x, self.y, self.z, self.w], dtype=np.float64)
        norm = float(np.linalg.norm(arr))
        if norm == 0.0:
            return Quaternion()
        arr /= norm
        return Quaternion(*(float(v) for v in arr))

    def rotate(self, vector: Vector3) -> Vector3:
        """Rotate a 3-vector by this quaternion."""
        u = np.array([self.x, self.y, self.z], dtype=np.float64)
        v = np.asarray(vector, dtype=np.float64)
        t = 2.0 * np.cross(u, v)
        return as_vector3(v + self.w * t + np.cross(u, t))


@dataclass(frozen=True)
class Pose:
    """Position and orientation expressed in some frame."""

    position: Vector3 = ORIGIN
    orientation: Quaternion = field(default_factory=Quaternion)

    @classmethod
    def from_xyz_rpy(cls, xyz: Vector3 = ORIGIN, rpy: Vector3 = ORIGIN) -> Pose:
        return cls(position=as_vector3(xyz), orientation=Quaternion.from_rpy(*rpy))

    def squared_distance(self, other: Pose) -> float:
        """Squared Euclidean distance between the two positions."""
        delta = np.subtract(self.position, other.position)
        return float(np.dot(delta, delta))


@dataclass(frozen=True)
class Transform:
    """Rigid transform mapping points from a source frame into a target frame."""

    translation: Vector3 = ORIGIN
    rotation: Quaternion = field(default_factory=Quaternion)

    def apply(self, pose: Pose) -> Pose:
        """Express *pose* (given in the source frame) in the target frame."""
        rotated = np.add(self.rotation.rotate(pose.position), self.translation)
        return Pose(
            position=as_vector3(rotated),
            orientation=(self.rotation * pose.orientation).normalized(),
        )

    @property
    def yaw(self) -> float:
        return self.rotation.yaw


def angular_errors(current: Quaternion, goal: Quaternion) -> Vector3:
    """Absolute wrapped roll/pitch/yaw errors between two orientations."""
    cur = current.to_rpy()
    tgt = goal.to_rpy()
    return as_vector3([abs(shortest_angular_distance(c, g)) for c, g in zip(cur, tgt, strict=True)])
