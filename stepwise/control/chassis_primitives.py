"""Chassis primitives: fixed planar goals and goals computed from frames."""

from __future__ import annotations

import logging
from typing import ClassVar

from stepwise.config.models import ChassisBaseRecord, ChassisRecord, ChassisTargetRecord, MotionRecord
from stepwise.control.interfaces import ChassisBackend
from stepwise.control.motion_helpers import (
    ISSUED,
    FailureKind,
    HitCounter,
    StartOutcome,
    Tolerance,
    failed,
)
from stepwise.control.motion_primitives import MotionPrimitive
from stepwise.control.targets import ChassisTarget
from stepwise.errors import FrameUnavailable

logger = logging.getLogger(__name__)


class ChassisPrimitiveBase(MotionPrimitive):
    """Shared convergence and stop handling for chassis goals.

    Convergence needs both the position and the yaw error reported by the
    chassis controller under their own tolerances, debounced like the arm
    primitives.
    """

    record_model: ClassVar[type[MotionRecord]] = ChassisBaseRecord

    chassis: ChassisBackend

    def _configure(self, record: ChassisBaseRecord) -> None:
        self.chassis = self.context.require_chassis()
        self.frame = record.frame
        self.counter = HitCounter(record.hits)
        self.tolerance = Tolerance(
            chassis_position=record.chassis_tolerance_position,
            chassis_angular=record.chassis_tolerance_angular,
        )
        self.goal: ChassisTarget | None = None

    def start(self, now: float | None = None) -> StartOutcome:
        if self.record is not None:
            self.counter.reset()
        return super().start(now)

    def _send(self, goal: ChassisTarget) -> StartOutcome:
        self.goal = goal
        self.chassis.set_goal(goal)
        logger.info("%s: goal x=%.3f y=%.3f yaw=%.3f", self.name, goal.x, goal.y, goal.yaw)
        return ISSUED

    def _check(self, elapsed: float) -> bool:
        in_tolerance = (
            abs(self.chassis.error_pos()) < self.tolerance.chassis_position
            and abs(self.chassis.error_yaw()) < self.tolerance.chassis_angular
        )
        return self.counter.update(in_tolerance)

    def _halt(self) -> None:
        self.chassis.stop()


class ChassisMotion(ChassisPrimitiveBase):
    type_name = "chassis"
    record_model = ChassisRecord

    def _configure(self, record: ChassisRecord) -> None:
        super()._configure(record)
        x, y = record.position
        self.target = ChassisTarget(x=x, y=y, yaw=record.yaw, frame=record.frame)

    def _issue(self) -> StartOutcome:
        return self._send(self.target)


class ChassisTargetMotion(ChassisPrimitiveBase):
    """Chassis goal computed at issue time.

    Two modes:

    - ``recorded``: move the base so the mount recorded earlier under the
      scratch key comes back to where it was, plus ``offset``. The live
      mount transform is looked up between the same frames that were
      recorded. Yaw is zero.
    - ``target_frame``: move to the live position of a frame relative to
      ``base_frame`` plus ``offset``, turning by the frame's yaw times
      ``yaw_scale``.
    """

    type_name = "chassis_target"
    record_model = ChassisTargetRecord

    def _configure(self, record: ChassisTargetRecord) -> None:
        super()._configure(record)
        self.offset = (record.offset[0], record.offset[1])
        self.yaw_scale = record.yaw_scale
        self.target_frame = record.target_frame
        self.recorded = record.recorded
        self.base_frame = record.base_frame
        self.transforms = self.context.require_transforms()

    @property
    def scratch_reads(self) -> list[str]:
        return [self.recorded] if self.recorded is not None else []

    def _issue(self) -> StartOutcome:
        dx, dy = self.offset
        if self.recorded is not None:
            snapshot = self.context.scratch.get(self.recorded)
            if snapshot is None:
                return failed(FailureKind.FRAME_UNAVAILABLE, f"nothing recorded under '{self.recorded}'")
            try:
                live = self.transforms.lookup(snapshot.parent, snapshot.child)
            except FrameUnavailable as e:
                return failed(FailureKind.FRAME_UNAVAILABLE, str(e))
            goal = ChassisTarget(
                x=snapshot.transform.translation[0] - live.translation[0] + dx,
                y=snapshot.transform.translation[1] - live.translation[1] + dy,
                yaw=0.0,
                frame=self.frame or snapshot.parent,
            )
            return self._send(goal)

        if self.target_frame is None:
            raise RuntimeError(f"{self.name}: neither a recorded key nor a target frame is set")
        try:
            base_to_target = self.transforms.lookup(self.base_frame, self.target_frame)
        except FrameUnavailable as e:
            return failed(FailureKind.FRAME_UNAVAILABLE, str(e))
        logger.debug(
            "%s: %s in %s at (%.3f, %.3f)",
            self.name,
            self.target_frame,
            self.base_frame,
            base_to_target.translation[0],
            base_to_target.translation[1],
        )
        goal = ChassisTarget(
            x=base_to_target.translation[0] + dx,
            y=base_to_target.translation[1] + dy,
            yaw=base_to_target.yaw * self.yaw_scale,
            frame=self.frame or self.base_frame,
        )
        return self._send(goal)
