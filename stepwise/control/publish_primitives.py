"""Open-loop publish primitives.

These have no feedback: each builds one message at issue time, publishes it
on its output channel and reports completion once ``delay`` seconds have
passed. :class:`ReversalMotion` adds a pulse-then-stop phase driven by the
same poll clock instead of a blocking sleep.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from enum import Enum
from typing import ClassVar

from stepwise.config.models import (
    ExtendRecord,
    GimbalRecord,
    GpioRecord,
    HandRecord,
    JointPointRecord,
    JointPositionRecord,
    LabelRecord,
    MotionRecord,
    PublishRecord,
    ReversalRecord,
)
from stepwise.control.geometry import as_vector3
from stepwise.control.interfaces import OutputChannel
from stepwise.control.motion_helpers import ISSUED, FailureKind, StartOutcome, failed
from stepwise.control.motion_primitives import MotionPrimitive
from stepwise.control.targets import (
    ActuatorMode,
    GimbalCommand,
    GpioCommand,
    LabelCommand,
    OutputMessage,
    ScalarTarget,
    VectorActuatorTarget,
)
from stepwise.errors import FrameUnavailable

logger = logging.getLogger(__name__)


class PublishMotion(MotionPrimitive):
    """Publish one message and finish after ``delay`` seconds."""

    record_model: ClassVar[type[MotionRecord]] = PublishRecord

    output: OutputChannel

    def _configure(self, record: PublishRecord) -> None:
        self.output = self.context.output(record.channel)
        self.channel = record.channel
        self.delay = record.delay
        self.message: OutputMessage | None = None

    @abstractmethod
    def _message(self) -> OutputMessage:
        """Build the message to publish.

        Raises:
            FrameUnavailable: If the message depends on an unknown transform.
        """

    def _issue(self) -> StartOutcome:
        try:
            message = self._message()
        except FrameUnavailable as e:
            return failed(FailureKind.FRAME_UNAVAILABLE, str(e))
        self.message = message
        self.output.publish(message)
        logger.debug("%s: published %s on '%s'", self.name, message, self.channel)
        return ISSUED

    def _check(self, elapsed: float) -> bool:
        return elapsed > self.delay


class HandMotion(PublishMotion):
    type_name = "hand"
    record_model = HandRecord

    def _configure(self, record: HandRecord) -> None:
        super()._configure(record)
        self.position = record.position

    def _message(self) -> OutputMessage:
        return ScalarTarget(self.position)


class GpioMotion(PublishMotion):
    type_name = "gpio"
    record_model = GpioRecord

    def _configure(self, record: GpioRecord) -> None:
        super()._configure(record)
        self.pin = record.pin
        self.pin_state = record.state

    def _message(self) -> OutputMessage:
        return GpioCommand.for_pin(self.pin, self.pin_state)


class LabelMotion(PublishMotion):
    type_name = "stone_num"
    record_model = LabelRecord

    def _configure(self, record: LabelRecord) -> None:
        super()._configure(record)
        self.text = record.change

    def _message(self) -> OutputMessage:
        return LabelCommand(self.text)


class JointPositionMotion(PublishMotion):
    """Publish one rotation component of a live transform as a setpoint."""

    type_name = "joint_position"
    record_model = JointPositionRecord

    _AXES = {"roll": 0, "pitch": 1, "yaw": 2}

    def _configure(self, record: JointPositionRecord) -> None:
        super()._configure(record)
        self.original_tf = record.original_tf
        self.reference_tf = record.reference_tf
        self.axis = self._AXES.get(record.direction)
        self.fallback = record.target
        self.transforms = self.context.require_transforms()

    def _message(self) -> OutputMessage:
        if self.axis is None:
            return ScalarTarget(self.fallback)
        transform = self.transforms.lookup(self.original_tf, self.reference_tf)
        return ScalarTarget(transform.rotation.to_rpy()[self.axis])


class JointPointMotion(PublishMotion):
    type_name = "joint_point"
    record_model = JointPointRecord

    def _configure(self, record: JointPointRecord) -> None:
        super()._configure(record)
        self.target = record.target

    def _message(self) -> OutputMessage:
        return ScalarTarget(self.target)


class ExtendMotion(PublishMotion):
    type_name = "extend"
    record_model = ExtendRecord

    def _configure(self, record: ExtendRecord) -> None:
        super()._configure(record)
        self.target = record.value

    def _message(self) -> OutputMessage:
        return ScalarTarget(self.target)


class GimbalMotion(PublishMotion):
    type_name = "gimbal"
    record_model = GimbalRecord

    def _configure(self, record: GimbalRecord) -> None:
        super()._configure(record)
        self.command = GimbalCommand(frame=record.frame, point=as_vector3(record.position))

    def _message(self) -> OutputMessage:
        return self.command


class ReversalPhase(str, Enum):
    IDLE = "idle"
    PULSING = "pulsing"
    STOPPING = "stopping"
    DONE = "done"


class ReversalMotion(PublishMotion):
    """Multi-DOF actuator command with optional pulse-then-stop.

    When pulsing, the command is followed ``pulse`` seconds later by a zero
    command in the same mode so that no residual actuation remains. The
    phases advance on :meth:`poll`: ``PULSING -> STOPPING -> DONE``.
    """

    type_name = "reversal"
    record_model = ReversalRecord

    def _configure(self, record: ReversalRecord) -> None:
        super()._configure(record)
        values = record.values
        self.command = VectorActuatorTarget(
            linear=as_vector3(values[:3]),
            angular=as_vector3(values[3:]),
            mode=ActuatorMode(record.mode),
        )
        self.pulse = record.pulse
        self.pulses = record.pulses
        self.phase = ReversalPhase.IDLE
        self.zero_sent = False

    def _message(self) -> OutputMessage:
        return self.command

    def _issue(self) -> StartOutcome:
        self.zero_sent = False
        outcome = super()._issue()
        if outcome:
            self.phase = ReversalPhase.PULSING if self.pulses else ReversalPhase.STOPPING
        return outcome

    def _send_zero(self) -> None:
        self.output.publish(self.command.zeroed())
        self.zero_sent = True
        logger.debug("%s: zero command published", self.name)

    def _check(self, elapsed: float) -> bool:
        if self.phase is ReversalPhase.PULSING:
            if elapsed < self.pulse:
                return False
            self._send_zero()
            self.phase = ReversalPhase.STOPPING
        if self.phase is ReversalPhase.STOPPING and elapsed > self.delay:
            self.phase = ReversalPhase.DONE
        return self.phase is ReversalPhase.DONE

    def _halt(self) -> None:
        # A zero position command would move the actuator; only velocity is zeroed.
        velocity = self.command.mode is ActuatorMode.VELOCITY
        if velocity and self.message is not None and not self.zero_sent:
            self._send_zero()
        self.phase = ReversalPhase.DONE
