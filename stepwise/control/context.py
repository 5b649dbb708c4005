"""Collaborators and shared state handed to every primitive.

:class:`FrameScratch` replaces a process-wide "recorded frame" global: the
queue owns one scratch, a producer primitive writes a named key, and a
later consumer reads it. Steps run strictly in sequence, so a write always
happens-before the reads that follow it and no locking is needed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from stepwise.control.geometry import Transform
from stepwise.control.interfaces import ChassisBackend, MoveGroup, OutputChannel, TransformService
from stepwise.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedFrame:
    """Snapshot of ``lookup(parent, child)`` taken by a producer primitive."""

    transform: Transform
    parent: str
    child: str
    stamp: float


class FrameScratch:
    """Named transform snapshots shared between primitives of one queue."""

    def __init__(self) -> None:
        self._frames: dict[str, RecordedFrame] = {}

    def record(self, key: str, transform: Transform, parent: str, child: str, stamp: float) -> None:
        self._frames[key] = RecordedFrame(transform, parent, child, stamp)
        logger.info(
            "Recorded frame '%s' (%s -> %s): xyz=(%.3f, %.3f, %.3f)",
            key,
            parent,
            child,
            *transform.translation,
        )

    def get(self, key: str) -> RecordedFrame | None:
        return self._frames.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._frames

    def clear(self) -> None:
        self._frames.clear()

    @property
    def keys(self) -> list[str]:
        return list(self._frames)


@dataclass
class MotionContext:
    """Everything a primitive may talk to.

    Attributes:
        arm: Planning backend for the arm group.
        hand: Planning backend for the hand group.
        chassis: Planar chassis backend.
        transforms: Transform service for frame resolution.
        outputs: Publish channels keyed by name (``gripper``, ``gpio``, ...).
        scratch: Recorded frames shared along the queue.
        variables: Externally supplied joint values referenced as ``$name``.
        clock: Monotonic time source in seconds.
    """

    arm: MoveGroup | None = None
    hand: MoveGroup | None = None
    chassis: ChassisBackend | None = None
    transforms: TransformService | None = None
    outputs: dict[str, OutputChannel] = field(default_factory=dict)
    scratch: FrameScratch = field(default_factory=FrameScratch)
    variables: dict[str, float] = field(default_factory=dict)
    clock: Callable[[], float] = time.monotonic

    def move_group(self, group: str) -> MoveGroup:
        backend = self.arm if group == "arm" else self.hand if group == "hand" else None
        if backend is None:
            raise ConfigError(f"No '{group}' move group configured")
        return backend

    def require_chassis(self) -> ChassisBackend:
        if self.chassis is None:
            raise ConfigError("No chassis backend configured")
        return self.chassis

    def require_transforms(self) -> TransformService:
        if self.transforms is None:
            raise ConfigError("No transform service configured")
        return self.transforms

    def output(self, name: str) -> OutputChannel:
        try:
            return self.outputs[name]
        except KeyError:
            raise ConfigError(f"No output channel named '{name}'") from None
