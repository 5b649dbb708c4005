"""Motion primitive base class and arm (move group) primitives.

Every primitive follows the same contract:

- ``configure(record)`` validates a configuration record and builds the
  target, tolerance and timeout. It raises :class:`ConfigError` and never
  leaves a half-configured primitive behind.
- ``start(now)`` resolves frames and issues the target. It returns a
  :class:`StartOutcome` instead of raising on expected failures.
- ``poll(elapsed)`` is cheap: it reads live feedback and reports
  :class:`PollStatus`. ``elapsed`` is measured from the moment of issue.
- ``abort()`` stops whatever the primitive commanded. It is idempotent.

Feedback-driven arm primitives debounce convergence with a
:class:`HitCounter`: a run of consecutive in-tolerance samples is needed
before the primitive reports ``CONVERGED``.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from stepwise.config.models import (
    EndEffectorRecord,
    FeedbackRecord,
    JointRecord,
    MotionRecord,
    SpaceSearchRecord,
    TwoStageRecord,
    WaypointSpec,
    validate_record,
)
from stepwise.control.context import MotionContext
from stepwise.control.geometry import ORIGIN, Pose, Quaternion, Transform, as_vector3
from stepwise.control.interfaces import MoveGroup, PlanCode
from stepwise.control.motion_helpers import (
    DEFAULT_TOLERANCE_JOINT,
    ISSUED,
    FailureKind,
    HitCounter,
    PollStatus,
    PrimitiveResult,
    PrimitiveState,
    StartOutcome,
    Tolerance,
    failed,
    joints_reached,
    pose_reached,
)
from stepwise.control.points import generate_candidates
from stepwise.control.targets import (
    HOLD,
    HOLD_ALIASES,
    CartesianTarget,
    JointGoal,
    JointTarget,
    PoseGoal,
    VariableRef,
    WaypointGoal,
)
from stepwise.errors import ConfigError, FrameUnavailable

logger = logging.getLogger(__name__)

_INFEASIBLE_CODES = frozenset({PlanCode.PLANNING_FAILED, PlanCode.INVALID_GOAL})


def outcome_for_code(code: PlanCode | int) -> StartOutcome:
    """Map a backend result code to a :class:`StartOutcome`."""
    if code == PlanCode.SUCCESS:
        return ISSUED
    if code in _INFEASIBLE_CODES:
        return failed(FailureKind.PLAN_INFEASIBLE, f"planning failed (code {int(code)})")
    return failed(FailureKind.EXECUTION_REJECTED, f"execution rejected (code {int(code)})")


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class MotionPrimitive(ABC):
    """A single, independently convergable motion command.

    Args:
        context: Backends, output channels and shared scratch.
        record: Configuration record (dict or validated model). If given,
            :meth:`configure` is called immediately.
        name: Label used in logs; defaults to the type name.
    """

    type_name: ClassVar[str] = ""
    record_model: ClassVar[type[MotionRecord]] = MotionRecord

    def __init__(
        self,
        context: MotionContext,
        record: dict[str, Any] | MotionRecord | None = None,
        name: str | None = None,
    ) -> None:
        self.context = context
        self.name = name or self.type_name
        self.record: MotionRecord | None = None
        self.timeout = 0.0
        self.tolerance = Tolerance()
        self.state = PrimitiveState.IDLE
        self.failure: FailureKind | None = None
        self.failure_detail = ""
        self.issued_at: float | None = None
        self._attempted = False
        self._aborted = False
        if record is not None:
            self.configure(record)

    # -- contract -----------------------------------------------------------

    def configure(self, record: dict[str, Any] | MotionRecord) -> None:
        """Validate *record* and build target, tolerance and timeout.

        Raises:
            ConfigError: If required fields are missing or malformed.
        """
        rec = validate_record(self.record_model, record)
        self._configure(rec)
        self.timeout = rec.timeout
        self.record = rec

    def start(self, now: float | None = None) -> StartOutcome:
        """Resolve and issue the target.

        Args:
            now: Issue time; defaults to the context clock.

        Returns:
            Truthy outcome when issued; otherwise carries the failure kind.
        """
        if self.record is None:
            raise ConfigError(f"{self.name}: start() called before configure()")
        now = self.context.clock() if now is None else now
        self._attempted = True
        self._aborted = False
        self.failure = None
        self.failure_detail = ""
        self.issued_at = None

        outcome = self._issue()
        if outcome:
            self.state = PrimitiveState.ISSUED
            self.issued_at = now
            logger.info("%s: issued", self.name)
            return outcome

        self.failure_detail = outcome.detail
        if outcome.retryable:
            self.state = PrimitiveState.IDLE
            logger.warning("%s: not issued, %s", self.name, outcome.detail)
        else:
            self.state = PrimitiveState.FAILED
            self.failure = outcome.failure
            logger.warning("%s: failed to issue (%s) %s", self.name, outcome.failure, outcome.detail)
        return outcome

    def poll(self, elapsed: float) -> PollStatus:
        """Evaluate convergence.

        Args:
            elapsed: Seconds since the primitive was issued.

        Returns:
            CONVERGED, IN_PROGRESS, or TIMED_OUT once ``elapsed >= timeout``.
        """
        if self.state is PrimitiveState.SUCCEEDED:
            return PollStatus.CONVERGED
        if self.state is PrimitiveState.FAILED:
            return PollStatus.TIMED_OUT
        if self.state is PrimitiveState.IDLE:
            return PollStatus.IN_PROGRESS

        if self._check(elapsed):
            self.state = PrimitiveState.SUCCEEDED
            logger.info("%s: converged in %.0fms", self.name, elapsed * 1000)
            return PollStatus.CONVERGED
        if elapsed >= self.timeout:
            self.state = PrimitiveState.FAILED
            self.failure = FailureKind.TIMEOUT
            self.failure_detail = f"not converged within {self.timeout:.1f}s"
            logger.warning("%s: timed out after %.0fms", self.name, elapsed * 1000)
            return PollStatus.TIMED_OUT
        return PollStatus.IN_PROGRESS

    def abort(self) -> None:
        """Stop the commanded motion. Safe to call repeatedly."""
        if not self._attempted or self._aborted:
            return
        self._aborted = True
        self._halt()
        if self.state in (PrimitiveState.ISSUED, PrimitiveState.CONVERGING, PrimitiveState.IDLE):
            self.state = PrimitiveState.FAILED
            self.failure = self.failure or FailureKind.ABORTED
        logger.info("%s: aborted", self.name)

    def mark_failed(self, kind: FailureKind, detail: str = "") -> None:
        """Record a failure decided by the owner (e.g. retries exhausted)."""
        self.state = PrimitiveState.FAILED
        self.failure = kind
        self.failure_detail = detail or self.failure_detail

    def result(self, duration_s: float = 0.0) -> PrimitiveResult:
        """Summarize the current state as a :class:`PrimitiveResult`."""
        success = self.state is PrimitiveState.SUCCEEDED
        return PrimitiveResult(
            name=self.name,
            success=success,
            state=self.state,
            duration_ms=duration_s * 1000,
            failure=None if success else self.failure,
            error_message=None if success else (self.failure_detail or None),
        )

    # -- declared dependencies ----------------------------------------------

    @property
    def scratch_writes(self) -> list[str]:
        """Scratch keys this primitive records."""
        return []

    @property
    def scratch_reads(self) -> list[str]:
        """Scratch keys this primitive consumes."""
        return []

    @property
    def variables(self) -> list[str]:
        """External variables this primitive needs."""
        return []

    # -- hooks --------------------------------------------------------------

    @abstractmethod
    def _configure(self, record: Any) -> None:
        """Build target and tolerance from a validated record."""

    @abstractmethod
    def _issue(self) -> StartOutcome:
        """Resolve and send the target."""

    @abstractmethod
    def _check(self, elapsed: float) -> bool:
        """Return True once the primitive has converged."""

    def _halt(self) -> None:
        """Stop backend motion (default: nothing to stop)."""


# ---------------------------------------------------------------------------
# Move group primitives
# ---------------------------------------------------------------------------


class MoveGroupPrimitive(MotionPrimitive):
    """Base for primitives executed by a planning backend."""

    record_model: ClassVar[type[MotionRecord]] = FeedbackRecord

    backend: MoveGroup

    def _configure(self, record: Any) -> None:
        self.backend = self.context.move_group(record.group)
        self.speed = record.speed
        self.accel = record.accel
        self.counter = HitCounter(record.hits)

    def start(self, now: float | None = None) -> StartOutcome:
        if self.record is not None:
            self.backend.set_velocity_scale(self.speed)
            self.backend.set_acceleration_scale(self.accel)
            self.counter.reset()
        return super().start(now)

    def _check(self, elapsed: float) -> bool:
        reached = self.counter.update(self._reached())
        if self.counter.hits > 0 and not reached:
            self.state = PrimitiveState.CONVERGING
        elif self.counter.hits == 0:
            self.state = PrimitiveState.ISSUED
        return reached

    def _halt(self) -> None:
        self.backend.set_velocity_scale(0.0)
        self.backend.set_acceleration_scale(0.0)
        self.backend.stop()

    @abstractmethod
    def _reached(self) -> bool:
        """Single-sample convergence predicate."""

    @property
    def hits(self) -> int:
        return self.counter.hits

    def _to_planning_frame(self, frame: str) -> Transform:
        """Transform from *frame* into the backend planning frame.

        Raises:
            FrameUnavailable: If the transform service cannot resolve it.
        """
        planning = self.backend.planning_frame
        if not frame or frame == planning:
            return Transform()
        return self.context.require_transforms().lookup(planning, frame)


def _cartesian_target(frame: str, xyz: list[float] | None, rpy: list[float] | None) -> CartesianTarget:
    return CartesianTarget(
        frame=frame,
        position=as_vector3(xyz) if xyz is not None else None,
        orientation=Quaternion.from_rpy(*rpy) if rpy is not None else None,
    )


class EndEffectorMotion(MoveGroupPrimitive):
    """Move the end effector to a pose given in any known frame.

    With ``cartesian: true`` the target is requested as a single-waypoint
    straight-line path; otherwise a pose, position-only or orientation-only
    goal is planned depending on which of ``xyz``/``rpy`` were configured.
    """

    type_name = "end_effector"
    record_model = EndEffectorRecord

    def _configure(self, record: EndEffectorRecord) -> None:
        super()._configure(record)
        self.target = _cartesian_target(record.frame, record.xyz, record.rpy)
        self.has_position = record.xyz is not None
        self.has_orientation = record.rpy is not None
        self.cartesian = record.cartesian
        self.tolerance = Tolerance(
            position=record.tolerance_position,
            orientation=record.tolerance_orientation,
        )
        self.goal: Pose | None = None

    def _issue(self) -> StartOutcome:
        try:
            goal = self._to_planning_frame(self.target.frame).apply(self.target.pose)
        except FrameUnavailable as e:
            return failed(FailureKind.FRAME_UNAVAILABLE, str(e))
        self.goal = goal

        if self.cartesian:
            fraction, trajectory = self.backend.compute_waypoint_path([goal])
            if fraction < 1.0:
                return failed(
                    FailureKind.PLAN_INFEASIBLE,
                    f"only {fraction:.0%} of the cartesian path is feasible",
                )
            return outcome_for_code(self.backend.execute_async(trajectory))

        request = PoseGoal(
            pose=goal,
            constrain_position=self.has_position,
            constrain_orientation=self.has_orientation,
        )
        return outcome_for_code(self.backend.plan_and_execute_async(request))

    def _reached(self) -> bool:
        if self.goal is None:
            return False
        return pose_reached(
            self.backend.get_current_pose(),
            self.goal,
            self.tolerance,
            check_position=self.has_position,
            check_orientation=self.has_orientation,
        )


class SpaceSearchMotion(EndEffectorMotion):
    """Try candidate poses around a nominal target until one can be planned.

    Candidates are offsets in the planning frame's axes, anchored at the
    live origin of the configured frame. At most ``max_planning_times``
    candidates are tried per start, in generation order; the first feasible
    one is executed.
    """

    type_name = "space_ee"
    record_model = SpaceSearchRecord

    def _configure(self, record: SpaceSearchRecord) -> None:
        super()._configure(record)
        self.candidates = generate_candidates(
            self.target.position if self.target.position is not None else ORIGIN,
            record.spatial_shape,
            record.point_resolution,
            radius=record.radius,
            lengths=as_vector3(record.lengths) if record.lengths is not None else None,
        )
        self.max_attempts = record.max_planning_times
        self.attempted: list[int] = []
        self.selected: int | None = None

    def _issue(self) -> StartOutcome:
        self.attempted = []
        self.selected = None
        orientation = self.target.orientation or Quaternion()
        budget = min(len(self.candidates), self.max_attempts)
        last: StartOutcome = failed(FailureKind.PLAN_INFEASIBLE, "no candidates")

        for i in range(budget):
            try:
                anchor = self._to_planning_frame(self.target.frame)
            except FrameUnavailable as e:
                logger.warning("%s: candidate %d skipped, %s", self.name, i, e)
                last = failed(FailureKind.FRAME_UNAVAILABLE, str(e))
                continue
            candidate = self.candidates[i]
            goal = Pose(
                position=as_vector3([a + c for a, c in zip(anchor.translation, candidate, strict=True)]),
                orientation=(anchor.rotation * orientation).normalized(),
            )
            self.attempted.append(i)
            outcome = outcome_for_code(self.backend.plan_and_execute_async(PoseGoal(pose=goal)))
            if outcome:
                self.goal = goal
                self.selected = i
                logger.info("%s: candidate %d/%d feasible at %s", self.name, i + 1, budget, goal.position)
                return outcome
            if outcome.failure is not FailureKind.PLAN_INFEASIBLE:
                return outcome
            logger.debug("%s: candidate %d infeasible", self.name, i)
            last = outcome

        if self.attempted:
            return failed(
                FailureKind.PLAN_INFEASIBLE,
                f"no feasible candidate in {len(self.attempted)} attempts",
            )
        return last

    def _reached(self) -> bool:
        if self.goal is None:
            return False
        return pose_reached(self.backend.get_current_pose(), self.goal, self.tolerance)


class JointMotion(MoveGroupPrimitive):
    """Move to a joint vector, optionally recording a frame first.

    Entries configured as ``HOLD``/``KEEP`` take the live joint value at
    issue time; ``$name`` entries read ``context.variables[name]``.
    """

    type_name = "joint"
    record_model = JointRecord

    def _configure(self, record: JointRecord) -> None:
        super()._configure(record)
        values: list[float | str | VariableRef] = []
        for entry in record.joints:
            if isinstance(entry, str):
                values.append(HOLD if entry in HOLD_ALIASES else VariableRef(entry[1:]))
            else:
                values.append(float(entry))
        self.target = JointTarget(values=tuple(values))
        self.tolerance = Tolerance(
            joints=list(record.tolerance_joints)
            if record.tolerance_joints is not None
            else [DEFAULT_TOLERANCE_JOINT] * len(values)
        )
        self.capture = record.record
        self.final_target: list[float] = []

    @property
    def scratch_writes(self) -> list[str]:
        return [self.capture.key] if self.capture is not None else []

    @property
    def variables(self) -> list[str]:
        return [v.name for v in self.target.values if isinstance(v, VariableRef)]

    def _issue(self) -> StartOutcome:
        current = self.backend.get_current_joint_values()
        if len(current) < len(self.target):
            return failed(
                FailureKind.PLAN_INFEASIBLE,
                f"target has {len(self.target)} joints, group reports {len(current)}",
            )
        final: list[float] = []
        for i, entry in enumerate(self.target.values):
            if entry == HOLD:
                final.append(current[i])
            elif isinstance(entry, VariableRef):
                if entry.name not in self.context.variables:
                    return failed(
                        FailureKind.EXECUTION_REJECTED,
                        f"variable '{entry.name}' is not set",
                    )
                final.append(float(self.context.variables[entry.name]))
            else:
                final.append(float(entry))

        if self.capture is not None:
            try:
                snapshot = self.context.require_transforms().lookup(
                    self.capture.parent, self.capture.child
                )
            except FrameUnavailable as e:
                return failed(FailureKind.FRAME_UNAVAILABLE, str(e))
            self.context.scratch.record(
                self.capture.key,
                snapshot,
                self.capture.parent,
                self.capture.child,
                self.context.clock(),
            )

        self.final_target = final
        return outcome_for_code(self.backend.plan_and_execute_async(JointGoal(values=tuple(final))))

    def _reached(self) -> bool:
        if not self.final_target:
            return False
        return joints_reached(
            self.backend.get_current_joint_values(),
            self.final_target,
            self.tolerance.joints,
        )


class TwoStageMotion(MoveGroupPrimitive):
    """Plan through an intermediate pose to a final pose in one request.

    Only the final pose is checked for convergence; the mid pose shapes the
    path. Both frames must resolve before anything is sent.
    """

    type_name = "two_stage"
    record_model = TwoStageRecord

    # Tool pointing down the approach axis.
    AUTO_TOOL_RPY = (0.0, math.pi, 0.0)

    def _configure(self, record: TwoStageRecord) -> None:
        super()._configure(record)
        if record.points is not None:
            self.mid = self._waypoint(record.points.point_mid)
            self.final = self._waypoint(record.points.point_final)
        else:
            if record.auto is None:
                raise ConfigError(f"{self.name}: either 'points' or 'auto' is required")
            frame = record.auto.frame
            self.mid = _cartesian_target(frame, [record.auto.straight_distance, 0.0, 0.0], list(self.AUTO_TOOL_RPY))
            self.final = _cartesian_target(frame, [0.0, 0.0, 0.0], list(self.AUTO_TOOL_RPY))
        self.tolerance = Tolerance(
            position=record.tolerance_position,
            orientation=record.tolerance_orientation,
        )
        self.goal: Pose | None = None
        self.mid_goal: Pose | None = None

    @staticmethod
    def _waypoint(spec: WaypointSpec) -> CartesianTarget:
        return _cartesian_target(spec.frame, spec.xyz or [0.0, 0.0, 0.0], spec.rpy or [0.0, 0.0, 0.0])

    def _issue(self) -> StartOutcome:
        try:
            mid = self._to_planning_frame(self.mid.frame).apply(self.mid.pose)
            final = self._to_planning_frame(self.final.frame).apply(self.final.pose)
        except FrameUnavailable as e:
            return failed(FailureKind.FRAME_UNAVAILABLE, str(e))
        self.mid_goal, self.goal = mid, final
        return outcome_for_code(self.backend.plan_and_execute_async(WaypointGoal(poses=(mid, final))))

    def _reached(self) -> bool:
        if self.goal is None:
            return False
        return pose_reached(self.backend.get_current_pose(), self.goal, self.tolerance)
