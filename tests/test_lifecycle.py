"""
Tests for the piece lifecycle state machine.

Test Groups:
- L1-L5: observe() transitions (detection, drag, release, jitter, moves)
- L6-L7: validation outcomes (streaks, bindings)
- L8-L10: hysteresis, mirror moves and invariants
- L11-L12: undragged drift measured from the rest pose
"""

import math

import pytest

from tangram_engine.config import ValidationConfig
from tangram_engine.lifecycle.state import PieceLifecycle
from tangram_engine.models import FailureKind, PieceShape, PieceState, Pose2D, ValidationFailure


@pytest.fixture
def config():
    return ValidationConfig()


@pytest.fixture
def piece():
    return PieceLifecycle("sq", PieceShape.SQUARE)


def _validated(piece, config, pose=Pose2D(0.0, 0.0)):
    """Drive a piece to VALIDATED at pose"""
    piece.observe(pose, True, 0.0, config)
    piece.observe(pose, False, 0.1, config)
    piece.begin_validation()
    piece.mark_valid("t-square")
    return piece


# ========== L: Observation Transitions ==========

def test_L1_first_observation_detects(piece, config):
    """L1: First observation enters DETECTED and records the baseline"""
    entered = piece.observe(Pose2D(10.0, 20.0), False, 1.0, config)
    assert entered == [PieceState.DETECTED]
    assert piece.baseline_pose == Pose2D(10.0, 20.0)
    assert piece.detected_at == 1.0
    assert not piece.can_validate


def test_L2_drag_then_release(piece, config):
    """L2: Dragged on first sight -> MOVED, release -> PLACED"""
    assert piece.observe(Pose2D(0.0, 0.0), True, 0.0, config) == [PieceState.DETECTED, PieceState.MOVED]
    assert piece.observe(Pose2D(80.0, 0.0), True, 0.1, config) == []
    assert piece.observe(Pose2D(90.0, 0.0), False, 0.2, config) == [PieceState.PLACED]
    assert piece.baseline_pose == Pose2D(90.0, 0.0)
    assert piece.can_validate


def test_L3_detected_at_rest_is_placed(piece, config):
    """L3: A piece seen twice at rest is PLACED; a jump counts as a move"""
    piece.observe(Pose2D(0.0, 0.0), False, 0.0, config)
    assert piece.observe(Pose2D(1.0, 0.0), False, 0.1, config) == [PieceState.PLACED]

    other = PieceLifecycle("sq2", PieceShape.SQUARE)
    other.observe(Pose2D(0.0, 0.0), False, 0.0, config)
    assert other.observe(Pose2D(50.0, 0.0), False, 0.1, config) == [PieceState.MOVED, PieceState.PLACED]


def test_L4_jitter_keeps_state(piece, config):
    """L4: Sub-threshold noise never changes the state"""
    piece.observe(Pose2D(0.0, 0.0), True, 0.0, config)
    piece.observe(Pose2D(0.0, 0.0), False, 0.1, config)
    entered = piece.observe(Pose2D(2.0, 1.0, math.radians(1.0)), False, 0.2, config)
    assert entered == []
    assert piece.state is PieceState.PLACED
    # Neither the in-place release nor the noise counts as motion
    assert piece.last_motion_at == 0.0


def test_L5_validated_piece_leaves_band(piece, config):
    """L5: Undragged, a VALIDATED piece only leaves once outside the hysteresis band"""
    _validated(piece, config)
    assert piece.observe(Pose2D(30.0, 0.0), False, 1.0, config) == []
    assert piece.is_validated
    assert piece.pose == Pose2D(30.0, 0.0)

    entered = piece.observe(Pose2D(70.0, 0.0), False, 1.1, config)
    assert entered == [PieceState.MOVED, PieceState.PLACED]
    assert piece.bound_target_id == "t-square"
    assert piece.last_valid_pose == Pose2D(0.0, 0.0)
    assert piece.baseline_pose == Pose2D(70.0, 0.0)
    assert piece.connections == frozenset()


def test_L5b_validated_piece_turned_or_dragged(config):
    """L5b: Rotation beyond 1.5x tolerance or any drag leaves VALIDATED"""
    turned = _validated(PieceLifecycle("a", PieceShape.SQUARE), config)
    assert turned.observe(Pose2D(0.0, 0.0, math.radians(20.0)), False, 1.0, config) == []
    assert turned.observe(Pose2D(0.0, 0.0, math.radians(30.0)), False, 1.1, config) == [
        PieceState.MOVED, PieceState.PLACED]

    lifted = _validated(PieceLifecycle("b", PieceShape.SQUARE), config)
    assert lifted.observe(Pose2D(1.0, 0.0), True, 1.0, config) == [PieceState.MOVED]
    assert lifted.bound_target_id == "t-square"


# ========== L: Validation Outcomes ==========

def test_L6_invalid_after_streak(piece, config):
    """L6: The piece stays VALIDATING until the streak reaches the threshold"""
    piece.observe(Pose2D(0.0, 0.0), True, 0.0, config)
    piece.observe(Pose2D(0.0, 0.0), False, 0.1, config)
    assert piece.begin_validation() == [PieceState.VALIDATING]
    assert piece.begin_validation() == []

    failure = ValidationFailure.wrong_position(80.0)
    for _ in range(config.invalid_streak_threshold - 1):
        assert piece.mark_failed(failure, config.invalid_streak_threshold) == []
        assert piece.state is PieceState.VALIDATING
    assert piece.mark_failed(failure, config.invalid_streak_threshold) == [PieceState.INVALID]
    assert piece.mark_failed(failure, config.invalid_streak_threshold) == []
    assert piece.invalid_streak == config.invalid_streak_threshold + 1
    assert piece.last_failure.kind is FailureKind.WRONG_POSITION
    assert piece.can_validate


def test_L7_success_resets_streak(piece, config):
    """L7: mark_valid binds, resets the streak; hysteresis matches keep last_valid_pose"""
    _validated(piece, config)
    piece.observe(Pose2D(30.0, 0.0), True, 1.0, config)
    piece.observe(Pose2D(30.0, 0.0), False, 1.1, config)
    piece.begin_validation()
    piece.mark_failed(ValidationFailure.wrong_position(30.0), 5)

    piece.mark_valid("t-square", fresh=False)
    assert piece.invalid_streak == 0
    assert piece.last_failure is None
    assert piece.last_valid_pose == Pose2D(0.0, 0.0)

    released = piece.release_binding()
    assert released == "t-square"
    assert piece.bound_target_id is None
    assert piece.last_valid_pose is None


# ========== L: Hysteresis, Mirror, Invariants ==========

def test_L8_hysteresis_window(piece, config):
    """L8: 1.5x tolerances around the last valid pose (60 units, 27 deg)"""
    _validated(piece, config)
    piece.pose = Pose2D(59.0, 0.0)
    assert piece.within_hysteresis(config)
    piece.pose = Pose2D(61.0, 0.0)
    assert not piece.within_hysteresis(config)
    piece.pose = Pose2D(0.0, 0.0, math.radians(26.0))
    assert piece.within_hysteresis(config)
    piece.pose = Pose2D(0.0, 0.0, math.radians(28.0))
    assert not piece.within_hysteresis(config)
    piece.pose = Pose2D(0.0, 0.0, 0.0, True)
    assert not piece.within_hysteresis(config)

    piece.pose = Pose2D(10.0, 0.0)
    piece.release_binding()
    assert not piece.within_hysteresis(config)


def test_L9_parallelogram_flip_is_a_move(config):
    """L9: Flipping the parallelogram in place is always significant"""
    piece = PieceLifecycle("para", PieceShape.PARALLELOGRAM)
    piece.observe(Pose2D(0.0, 0.0), False, 0.0, config)
    piece.observe(Pose2D(0.0, 0.0), False, 0.1, config)
    assert piece.displacement(Pose2D(0.0, 0.0, 0.0, True))[1] == math.inf
    assert piece.observe(Pose2D(0.0, 0.0, 0.0, True), False, 0.2, config) == [
        PieceState.MOVED, PieceState.PLACED]


def test_L10_invariants_and_tokens(piece, config):
    """L10: Invariant check and debounce token generation"""
    piece.validate_invariants()
    assert piece.next_debounce_token() == 1
    assert piece.next_debounce_token() == 2

    _validated(piece, config)
    piece.validate_invariants()
    piece.bound_target_id = None
    with pytest.raises(AssertionError):
        piece.validate_invariants()


# ========== L: Undragged Drift ==========

def test_L11_creep_adds_up_from_rest_pose(piece, config):
    """L11: Sub-threshold steps count from the last rest pose, not the last frame"""
    piece.observe(Pose2D(0.0, 0.0), True, 0.0, config)
    piece.observe(Pose2D(0.0, 0.0), False, 0.1, config)
    piece.begin_validation()

    assert piece.observe(Pose2D(15.0, 0.0), False, 0.2, config) == []
    assert piece.state is PieceState.VALIDATING
    assert piece.observe(Pose2D(30.0, 0.0), False, 0.3, config) == [
        PieceState.MOVED, PieceState.PLACED]
    assert piece.baseline_pose == Pose2D(30.0, 0.0)


def test_L12_validated_creep_leaves_band(piece, config):
    """L12: A VALIDATED piece creeping in 19-unit steps leaves once past 60 units"""
    _validated(piece, config)
    for x in (19.0, 38.0, 57.0):
        assert piece.observe(Pose2D(x, 0.0), False, x, config) == []
        assert piece.is_validated
    assert piece.observe(Pose2D(76.0, 0.0), False, 76.0, config) == [
        PieceState.MOVED, PieceState.PLACED]
    assert piece.last_valid_pose == Pose2D(0.0, 0.0)
