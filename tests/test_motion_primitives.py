"""Unit tests for the arm primitives and the primitive library.

Primitives are driven directly with synthetic times against the mock move
group, which reaches every accepted goal unless ``follow`` is turned off.
"""

from __future__ import annotations

import math

import pytest

from stepwise.control.context import MotionContext
from stepwise.control.geometry import Pose, Quaternion, Transform
from stepwise.control.interfaces import PlanCode
from stepwise.control.motion_helpers import FailureKind, PollStatus, PrimitiveState
from stepwise.control.motion_primitives import (
    EndEffectorMotion,
    JointMotion,
    MotionPrimitive,
    SpaceSearchMotion,
    TwoStageMotion,
)
from stepwise.control.primitives import PrimitiveLibrary
from stepwise.control.targets import JointGoal, PoseGoal, WaypointGoal
from stepwise.errors import ConfigError, FrameUnavailable
from stepwise.hardware.mock import MockMoveGroup, MockTransformBuffer, mock_context

EE_RECORD = {"type": "end_effector", "frame": "base_link", "xyz": [0.3, 0.0, 0.2], "rpy": [0.0, 0.0, 0.0]}


def _poll_n(primitive: MotionPrimitive, n: int, start: float = 0.02, dt: float = 0.02) -> list[PollStatus]:
    return [primitive.poll(start + i * dt) for i in range(n)]


# ------------------------------------------------------------------
# End-effector motion
# ------------------------------------------------------------------


def test_end_effector_converges_after_required_hits(context: MotionContext, arm: MockMoveGroup) -> None:
    """Five consecutive in-tolerance samples are needed by default."""
    motion = EndEffectorMotion(context, EE_RECORD)
    assert motion.start(now=0.0)
    assert motion.state == PrimitiveState.ISSUED

    statuses = _poll_n(motion, 5)
    assert statuses[:4] == [PollStatus.IN_PROGRESS] * 4
    assert statuses[4] == PollStatus.CONVERGED
    assert motion.state == PrimitiveState.SUCCEEDED

    goal = arm.goals[-1]
    assert isinstance(goal, PoseGoal)
    assert goal.pose.position == pytest.approx((0.3, 0.0, 0.2))


def test_end_effector_applies_speed_and_accel(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = EndEffectorMotion(context, {**EE_RECORD, "speed": 0.3, "accel": 0.2})
    motion.start(now=0.0)
    assert arm.velocity_scales == [0.3]
    assert arm.acceleration_scales == [0.2]


def test_end_effector_out_of_tolerance_times_out(context: MotionContext, arm: MockMoveGroup) -> None:
    """A pose outside the position tolerance never converges."""
    arm.follow = False
    arm.pose = Pose(position=(0.32, 0.0, 0.2))
    motion = EndEffectorMotion(context, EE_RECORD)
    motion.start(now=0.0)

    assert motion.poll(2.98) == PollStatus.IN_PROGRESS
    assert motion.poll(3.0) == PollStatus.TIMED_OUT
    assert motion.state == PrimitiveState.FAILED
    assert motion.failure == FailureKind.TIMEOUT


def test_end_effector_orientation_error_blocks_convergence(
    context: MotionContext, arm: MockMoveGroup
) -> None:
    arm.follow = False
    arm.pose = Pose(position=(0.3, 0.0, 0.2), orientation=Quaternion.from_rpy(0.0, 0.2, 0.0))
    motion = EndEffectorMotion(context, {**EE_RECORD, "hits": 1})
    motion.start(now=0.0)
    assert _poll_n(motion, 3) == [PollStatus.IN_PROGRESS] * 3


def test_end_effector_yaw_error_wraps_around_pi(context: MotionContext, arm: MockMoveGroup) -> None:
    """Yaw 3.1 vs -3.1 is 0.083 rad apart, inside the 0.1 rad tolerance."""
    arm.follow = False
    arm.pose = Pose(position=(0.3, 0.0, 0.2), orientation=Quaternion.from_rpy(0.0, 0.0, -3.1))
    motion = EndEffectorMotion(context, {**EE_RECORD, "rpy": [0.0, 0.0, 3.1], "hits": 1})
    motion.start(now=0.0)
    assert motion.poll(0.02) == PollStatus.CONVERGED


def test_end_effector_single_miss_resets_hits(context: MotionContext, arm: MockMoveGroup) -> None:
    """One out-of-tolerance sample after several hits starts the count over."""
    arm.follow = False
    motion = EndEffectorMotion(context, EE_RECORD)
    motion.start(now=0.0)
    assert motion.goal is not None

    arm.pose = motion.goal
    assert _poll_n(motion, 3) == [PollStatus.IN_PROGRESS] * 3
    assert motion.hits == 3
    assert motion.state == PrimitiveState.CONVERGING

    arm.pose = Pose(position=(0.0, 0.0, 0.0))
    assert motion.poll(0.1) == PollStatus.IN_PROGRESS
    assert motion.hits == 0
    assert motion.state == PrimitiveState.ISSUED

    arm.pose = motion.goal
    statuses = _poll_n(motion, 5, start=0.12)
    assert statuses[:4] == [PollStatus.IN_PROGRESS] * 4
    assert statuses[4] == PollStatus.CONVERGED


def test_end_effector_resolves_target_frame(
    context: MotionContext, arm: MockMoveGroup, transforms: MockTransformBuffer
) -> None:
    transforms.set_xyz_rpy("base_link", "camera", (1.0, 0.0, 0.5), (0.0, 0.0, math.pi / 2))
    motion = EndEffectorMotion(context, {**EE_RECORD, "frame": "camera", "xyz": [0.1, 0.0, 0.0]})
    assert motion.start(now=0.0)
    assert motion.goal is not None
    assert motion.goal.position == pytest.approx((1.0, 0.1, 0.5))
    assert motion.goal.orientation.yaw == pytest.approx(math.pi / 2)


def test_end_effector_unknown_frame_is_retryable(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = EndEffectorMotion(context, {**EE_RECORD, "frame": "camera"})
    outcome = motion.start(now=0.0)
    assert not outcome
    assert outcome.failure == FailureKind.FRAME_UNAVAILABLE
    assert outcome.retryable
    assert motion.state == PrimitiveState.IDLE
    assert arm.goals == []


def test_end_effector_position_only_goal(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = EndEffectorMotion(context, {"type": "end_effector", "frame": "base_link", "xyz": [0.3, 0.0, 0.2]})
    motion.start(now=0.0)
    goal = arm.goals[-1]
    assert goal.constrain_position
    assert not goal.constrain_orientation


def test_cartesian_path_partial_fraction_is_infeasible(context: MotionContext, arm: MockMoveGroup) -> None:
    arm.path_fraction = 0.5
    motion = EndEffectorMotion(context, {**EE_RECORD, "cartesian": True})
    outcome = motion.start(now=0.0)
    assert outcome.failure == FailureKind.PLAN_INFEASIBLE
    assert not outcome.retryable
    assert motion.state == PrimitiveState.FAILED


def test_cartesian_path_executes_full_path(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = EndEffectorMotion(context, {**EE_RECORD, "cartesian": True, "hits": 1})
    assert motion.start(now=0.0)
    assert isinstance(arm.goals[-1], WaypointGoal)
    assert motion.poll(0.02) == PollStatus.CONVERGED


@pytest.mark.parametrize(
    ("code", "kind"),
    [
        (PlanCode.PLANNING_FAILED, FailureKind.PLAN_INFEASIBLE),
        (PlanCode.INVALID_GOAL, FailureKind.PLAN_INFEASIBLE),
        (PlanCode.CONTROL_FAILED, FailureKind.EXECUTION_REJECTED),
        (PlanCode.PREEMPTED, FailureKind.EXECUTION_REJECTED),
    ],
)
def test_backend_codes_map_to_failure_kinds(
    context: MotionContext, arm: MockMoveGroup, code: PlanCode, kind: FailureKind
) -> None:
    arm.codes = [code]
    motion = EndEffectorMotion(context, EE_RECORD)
    outcome = motion.start(now=0.0)
    assert outcome.failure == kind
    assert motion.result().failure == kind


def test_abort_zeroes_scales_and_stops_once(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = EndEffectorMotion(context, EE_RECORD)
    motion.abort()
    assert arm.stop_calls == 0

    motion.start(now=0.0)
    motion.abort()
    motion.abort()
    assert arm.stop_calls == 1
    assert arm.velocity_scales[-1] == 0.0
    assert arm.acceleration_scales[-1] == 0.0
    assert motion.failure == FailureKind.ABORTED


def test_start_before_configure_raises(context: MotionContext) -> None:
    with pytest.raises(ConfigError):
        EndEffectorMotion(context).start(now=0.0)


# ------------------------------------------------------------------
# Spatial search
# ------------------------------------------------------------------

SEARCH_RECORD = {
    "type": "space_ee",
    "frame": "base_link",
    "xyz": [0.3, 0.0, 0.2],
    "rpy": [0.0, 0.0, 0.0],
    "spatial_shape": "SPHERE",
    "radius": 0.02,
    "point_resolution": 0.01,
    "max_planning_times": 3,
    "hits": 1,
}


def test_search_stops_at_first_feasible_candidate(context: MotionContext, arm: MockMoveGroup) -> None:
    """Candidates 1 and 2 are infeasible, candidate 3 is used and nothing else is tried."""
    arm.codes = [PlanCode.PLANNING_FAILED, PlanCode.PLANNING_FAILED, PlanCode.SUCCESS]
    motion = SpaceSearchMotion(context, SEARCH_RECORD)
    assert len(motion.candidates) > motion.max_attempts

    assert motion.start(now=0.0)
    assert motion.selected == 2
    assert motion.attempted == [0, 1, 2]
    assert len(arm.goals) == 3
    assert arm.goals[0].pose.position == pytest.approx((0.3, 0.0, 0.2))

    assert motion.poll(0.02) == PollStatus.CONVERGED
    assert len(arm.goals) == 3


def test_search_exhausts_budget(context: MotionContext, arm: MockMoveGroup) -> None:
    arm.codes = [PlanCode.PLANNING_FAILED] * 10
    motion = SpaceSearchMotion(context, SEARCH_RECORD)
    outcome = motion.start(now=0.0)
    assert outcome.failure == FailureKind.PLAN_INFEASIBLE
    assert len(arm.goals) == 3


def test_search_execution_rejection_stops_search(context: MotionContext, arm: MockMoveGroup) -> None:
    arm.codes = [PlanCode.CONTROL_FAILED]
    motion = SpaceSearchMotion(context, SEARCH_RECORD)
    outcome = motion.start(now=0.0)
    assert outcome.failure == FailureKind.EXECUTION_REJECTED
    assert len(arm.goals) == 1


def test_search_stops_at_end_of_short_candidate_list(context: MotionContext, arm: MockMoveGroup) -> None:
    """A zero radius yields one candidate, so a budget of 5 issues a single goal."""
    arm.codes = [PlanCode.PLANNING_FAILED] * 10
    motion = SpaceSearchMotion(context, {**SEARCH_RECORD, "radius": 0.0, "max_planning_times": 5})
    assert len(motion.candidates) == 1

    outcome = motion.start(now=0.0)
    assert outcome.failure == FailureKind.PLAN_INFEASIBLE
    assert not outcome.retryable
    assert motion.attempted == [0]
    assert len(arm.goals) == 1
    assert motion.state == PrimitiveState.FAILED


def test_search_with_unknown_frame_can_retry(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = SpaceSearchMotion(context, {**SEARCH_RECORD, "frame": "no_such_frame"})
    outcome = motion.start(now=0.0)

    assert outcome.failure == FailureKind.FRAME_UNAVAILABLE
    assert outcome.retryable
    assert motion.state == PrimitiveState.IDLE
    assert motion.attempted == []
    assert arm.goals == []


class LateFrameBuffer(MockTransformBuffer):
    """Transform buffer that misses the first ``misses`` lookups."""

    def __init__(self, misses: int) -> None:
        super().__init__()
        self.misses = misses

    def lookup(self, target_frame: str, source_frame: str, time: float | None = None) -> Transform:
        if self.misses > 0:
            self.misses -= 1
            self.lookups.append((target_frame, source_frame))
            raise FrameUnavailable(target_frame, source_frame, "not published yet")
        return super().lookup(target_frame, source_frame, time)


def test_search_infeasible_once_a_candidate_reached_the_planner() -> None:
    """A skipped candidate followed by infeasible ones is a plan failure, not a retry."""
    transforms = LateFrameBuffer(misses=1)
    transforms.set_xyz_rpy("base_link", "camera", (0.1, 0.0, 0.5))
    arm = MockMoveGroup(codes=[PlanCode.PLANNING_FAILED] * 10)
    context = mock_context(arm=arm, transforms=transforms)

    motion = SpaceSearchMotion(context, {**SEARCH_RECORD, "frame": "camera"})
    outcome = motion.start(now=0.0)

    assert outcome.failure == FailureKind.PLAN_INFEASIBLE
    assert not outcome.retryable
    assert motion.attempted == [1, 2]
    assert len(arm.goals) == 2
    assert len(transforms.lookups) == 3
    assert motion.state == PrimitiveState.FAILED


def test_search_rejects_non_planning_reference(context: MotionContext) -> None:
    with pytest.raises(ConfigError):
        SpaceSearchMotion(context, {**SEARCH_RECORD, "refer_planning_frame": False})


def test_search_box_requires_lengths(context: MotionContext) -> None:
    with pytest.raises(ConfigError):
        SpaceSearchMotion(context, {**SEARCH_RECORD, "spatial_shape": "BOX"})


# ------------------------------------------------------------------
# Joint motion
# ------------------------------------------------------------------


def test_joint_hold_uses_live_values(context: MotionContext, arm: MockMoveGroup) -> None:
    arm.joints = [0.1, 0.2, 0.3, 0.4, 0.5, 0.6]
    motion = JointMotion(context, {"type": "joint", "joints": [1.0, "HOLD", 0.0, "KEEP", 0.0, 0.0]})
    assert motion.start(now=0.0)
    assert motion.final_target == [1.0, 0.2, 0.0, 0.4, 0.0, 0.0]
    assert arm.goals[-1] == JointGoal(values=(1.0, 0.2, 0.0, 0.4, 0.0, 0.0))
    assert motion.tolerance.joints == [0.01] * 6


def test_joint_variables_come_from_context(context: MotionContext, arm: MockMoveGroup) -> None:
    context.variables["lift"] = 0.25
    motion = JointMotion(context, {"type": "joint", "joints": ["$lift", 0.0, 0.0, 0.0, 0.0, 0.0]})
    assert motion.variables == ["lift"]
    motion.start(now=0.0)
    assert motion.final_target[0] == 0.25


def test_joint_unset_variable_fails_without_issuing(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = JointMotion(
        context,
        {
            "type": "joint",
            "joints": ["$lift", 0.0, 0.0, 0.0, 0.0, 0.0],
            "record": {"key": "mount", "parent": "base_link", "child": "link4"},
        },
    )
    outcome = motion.start(now=0.0)

    assert not outcome
    assert not outcome.retryable
    assert outcome.failure == FailureKind.EXECUTION_REJECTED
    assert motion.state == PrimitiveState.FAILED
    assert arm.goals == []
    assert context.scratch.get("mount") is None


def test_joint_converges_within_tolerance(context: MotionContext, arm: MockMoveGroup) -> None:
    arm.follow = False
    motion = JointMotion(
        context,
        {"type": "joint", "joints": [0.5, 0.0], "tolerance_joints": [0.05, 0.05], "hits": 2},
    )
    motion.start(now=0.0)
    arm.joints = [0.47, 0.0, 0.0, 0.0, 0.0, 0.0]
    assert _poll_n(motion, 2) == [PollStatus.IN_PROGRESS, PollStatus.CONVERGED]


def test_joint_records_frame_before_moving(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = JointMotion(
        context,
        {"type": "joint", "joints": [0.0] * 6, "record": {"key": "mount"}},
    )
    assert motion.scratch_writes == ["mount"]
    motion.start(now=0.0)
    snapshot = context.scratch.get("mount")
    assert snapshot is not None
    assert snapshot.parent == "base_link"
    assert snapshot.child == "link4"
    assert snapshot.transform.translation == pytest.approx((0.4, 0.0, 0.3))


@pytest.mark.parametrize(
    "record",
    [
        {"type": "joint", "joints": [0.0, 0.0], "tolerance_joints": [0.01]},
        {"type": "joint", "joints": [0.0, "somewhere"]},
        {"type": "joint", "joints": []},
        {"type": "joint", "joints": [0.0], "hits": 0},
    ],
)
def test_joint_rejects_malformed_records(context: MotionContext, record: dict) -> None:
    with pytest.raises(ConfigError):
        JointMotion(context, record)


# ------------------------------------------------------------------
# Two-stage motion
# ------------------------------------------------------------------


def test_two_stage_sends_mid_then_final(context: MotionContext, arm: MockMoveGroup) -> None:
    motion = TwoStageMotion(
        context,
        {
            "type": "two_stage",
            "points": {
                "point_mid": {"frame": "base_link", "xyz": [0.2, 0.0, 0.3]},
                "point_final": {"frame": "base_link", "xyz": [0.3, 0.0, 0.3]},
            },
        },
    )
    assert motion.tolerance.orientation == 0.03
    assert motion.start(now=0.0)

    goal = arm.goals[-1]
    assert isinstance(goal, WaypointGoal)
    mid, final = goal.poses
    assert mid.position == pytest.approx((0.2, 0.0, 0.3))
    assert final.position == pytest.approx((0.3, 0.0, 0.3))
    assert arm.pose.position == pytest.approx((0.3, 0.0, 0.3))


def test_two_stage_auto_approach(
    context: MotionContext, arm: MockMoveGroup, transforms: MockTransformBuffer
) -> None:
    transforms.set_xyz_rpy("base_link", "slot", (0.5, 0.0, 0.2))
    motion = TwoStageMotion(context, {"type": "two_stage", "auto": {"frame": "slot"}, "hits": 1})
    motion.start(now=0.0)
    assert motion.mid_goal is not None and motion.goal is not None
    assert motion.mid_goal.position == pytest.approx((0.7, 0.0, 0.2))
    assert motion.goal.position == pytest.approx((0.5, 0.0, 0.2))
    assert motion.poll(0.02) == PollStatus.CONVERGED


def test_two_stage_needs_both_frames(
    context: MotionContext, arm: MockMoveGroup, transforms: MockTransformBuffer
) -> None:
    transforms.set_xyz_rpy("base_link", "a", (0.1, 0.0, 0.0))
    motion = TwoStageMotion(
        context,
        {
            "type": "two_stage",
            "points": {"point_mid": {"frame": "a"}, "point_final": {"frame": "b"}},
        },
    )
    outcome = motion.start(now=0.0)
    assert outcome.failure == FailureKind.FRAME_UNAVAILABLE
    assert arm.goals == []


def test_two_stage_requires_exactly_one_source(context: MotionContext) -> None:
    with pytest.raises(ConfigError):
        TwoStageMotion(context, {"type": "two_stage"})
    with pytest.raises(ConfigError):
        TwoStageMotion(
            context,
            {
                "type": "two_stage",
                "auto": {"frame": "slot"},
                "points": {"point_mid": {"frame": "a"}, "point_final": {"frame": "b"}},
            },
        )


# ------------------------------------------------------------------
# Primitive library
# ------------------------------------------------------------------


def test_library_registers_all_types(library: PrimitiveLibrary) -> None:
    assert set(library.available) == {
        "end_effector",
        "space_ee",
        "joint",
        "two_stage",
        "chassis",
        "chassis_target",
        "hand",
        "gpio",
        "stone_num",
        "joint_position",
        "joint_point",
        "extend",
        "gimbal",
        "reversal",
    }


def test_library_builds_by_type(library: PrimitiveLibrary, context: MotionContext) -> None:
    primitive = library.build(EE_RECORD, context, name="reach")
    assert isinstance(primitive, EndEffectorMotion)
    assert primitive.name == "reach"
    assert primitive.timeout == 3.0


def test_library_unknown_type(library: PrimitiveLibrary, context: MotionContext) -> None:
    with pytest.raises(ConfigError, match="Unknown primitive type"):
        library.build({"type": "teleport"}, context)


def test_missing_backend_is_config_error() -> None:
    with pytest.raises(ConfigError, match="move group"):
        EndEffectorMotion(MotionContext(), EE_RECORD)
