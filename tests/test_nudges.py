"""
Tests for nudge escalation and hint texts.

Test Groups:
- N1-N2: level selection (score thresholds, forced SPECIFIC)
- N3: progressive cooldown
- N4: orientation acknowledgement de-duplication
- N5-N6: settle buffering, DIRECTED / SOLUTION payloads
- N7-N8: messages
"""

import math

import pytest

from tangram_engine.config import ValidationConfig
from tangram_engine.models import (
    FailureKind,
    NudgeLevel,
    PieceShape,
    Pose2D,
    ValidationFailure,
    ValidationResult,
)
from tangram_engine.nudges import NudgeEscalator, failure_message, orientation_signature, specific_message
from tangram_engine.nudges.messages import ORIENTATION_ACK
from tangram_engine.validation import Tolerances, validate_piece

TARGET = Pose2D(100.0, 100.0, 0.0)


@pytest.fixture
def config():
    return ValidationConfig()


@pytest.fixture
def escalator(config):
    return NudgeEscalator(config)


def failed_result(pose, config, target=TARGET, shape=PieceShape.SQUARE):
    """ValidationResult for pose checked against target"""
    check = validate_piece(pose, target, shape, Tolerances.from_config(config))
    assert not check.is_valid
    return ValidationResult("p", check=check, failure=check.failure, nearest_target_id="t")


# Far away and turned 30 deg: position failure without the "looks right" ack
FAR_TURNED = Pose2D(400.0, 100.0, math.radians(30.0))


# ========== N: Level Selection ==========

@pytest.mark.parametrize("attempts,confidence,expected", [
    (0, 1.0, NudgeLevel.NONE),
    (1, 0.0, NudgeLevel.VISUAL),
    (2, 0.5, NudgeLevel.GENTLE),
    (3, 0.5, NudgeLevel.SPECIFIC),
    (4, 0.5, NudgeLevel.DIRECTED),
    (5, 1.0, NudgeLevel.SOLUTION),
])
def test_N1_level_from_score(escalator, attempts, confidence, expected):
    """N1: attempts x (0.5 + confidence) against (0.5, 1.5, 2.5, 4.0, 6.0)"""
    assert escalator.level_for(attempts, confidence) is expected


def test_N1b_level_is_monotonic(escalator):
    """N1b: More attempts or more confidence never lowers the level"""
    for confidence in (0.0, 0.3, 0.7, 1.0):
        levels = [escalator.level_for(a, confidence) for a in range(10)]
        assert levels == sorted(levels)
    for attempts in range(6):
        levels = [escalator.level_for(attempts, c / 10) for c in range(11)]
        assert levels == sorted(levels)


def test_N2_rotation_and_flip_force_specific(escalator):
    """N2: Orientation failures start at SPECIFIC"""
    assert escalator.level_for(1, 0.0, FailureKind.WRONG_ROTATION) is NudgeLevel.SPECIFIC
    assert escalator.level_for(1, 0.0, FailureKind.NEEDS_FLIP) is NudgeLevel.SPECIFIC
    assert escalator.level_for(1, 0.0, FailureKind.WRONG_POSITION) is NudgeLevel.VISUAL
    assert escalator.level_for(5, 1.0, FailureKind.WRONG_ROTATION) is NudgeLevel.SOLUTION


# ========== N: Cooldown ==========

def test_N3_progressive_cooldown(escalator, config):
    """N3: 1.2 s after the first nudge, 1.8 s after the second"""
    result = failed_result(FAR_TURNED, config)

    def nudge(now):
        return escalator.evaluate("p", PieceShape.SQUARE, FAR_TURNED, result, 1, 0.0, now, TARGET)

    first = nudge(0.0)
    assert first.level is NudgeLevel.VISUAL
    assert first.message == ""
    assert nudge(0.5) is None
    assert nudge(1.3) is not None
    assert escalator.cooldown_for("p") == pytest.approx(1.8)
    assert nudge(2.5) is None
    assert nudge(3.2) is not None
    assert escalator.stats.shown == 3
    assert escalator.stats.suppressed_by_cooldown == 2

    # Capped at max_cooldown_multiplier x base
    for k in range(20):
        escalator._shown(escalator._state("p"), first, 100.0 + k)
    assert escalator.cooldown_for("p") == pytest.approx(config.nudge_cooldown * config.max_cooldown_multiplier)


# ========== N: Orientation Acknowledgement ==========

def test_N4_orientation_ack_once_per_orientation(escalator, config):
    """N4: Right orientation, wrong place -> acknowledged once per orientation"""
    pose = Pose2D(400.0, 100.0, 0.0)
    result = failed_result(pose, config)

    first = escalator.evaluate("p", PieceShape.SQUARE, pose, result, 1, 0.0, 0.0, TARGET)
    assert first.message == ORIENTATION_ACK

    second = escalator.evaluate("p", PieceShape.SQUARE, pose, result, 1, 0.0, 5.0, TARGET)
    assert second.message != ORIENTATION_ACK

    turned = Pose2D(400.0, 100.0, math.radians(3.0))
    third = escalator.evaluate("p", PieceShape.SQUARE, turned, failed_result(turned, config),
                               1, 0.0, 10.0, TARGET)
    assert third.message == ORIENTATION_ACK
    assert escalator.stats.acknowledgements == 2


def test_N4b_orientation_signature():
    """N4b: Signature is whole degrees mod 360 plus flip"""
    assert orientation_signature(Pose2D(0.0, 0.0, math.radians(359.6))) == (0, False)
    assert orientation_signature(Pose2D(0.0, 0.0, math.radians(90.2), True)) == (90, True)


# ========== N: Buffering & Payloads ==========

def test_N5_directed_waits_until_settled(escalator, config):
    """N5: DIRECTED nudges are buffered while the piece still moves"""
    result = failed_result(FAR_TURNED, config)
    escalator.note_motion("p", 0.0)

    assert escalator.evaluate("p", PieceShape.SQUARE, FAR_TURNED, result, 5, 0.6, 0.5, TARGET) is None
    assert escalator.has_buffered("p")
    assert escalator.settle_remaining("p", 0.5) == pytest.approx(0.1)
    assert escalator.flush(0.55) == []

    released = escalator.flush(0.7)
    assert len(released) == 1
    piece_id, nudge = released[0]
    assert piece_id == "p"
    assert nudge.level is NudgeLevel.DIRECTED
    assert nudge.payload.direction == pytest.approx((-1.0, 0.0))
    assert nudge.payload.distance == pytest.approx(300.0)
    assert not escalator.has_buffered("p")


def test_N5b_motion_discards_buffer(escalator, config):
    """N5b: Moving again makes a buffered directional hint stale"""
    result = failed_result(FAR_TURNED, config)
    escalator.note_motion("p", 0.0)
    escalator.evaluate("p", PieceShape.SQUARE, FAR_TURNED, result, 5, 0.6, 0.1, TARGET)
    escalator.note_motion("p", 0.2)
    assert not escalator.has_buffered("p")
    assert escalator.flush(5.0) == []


def test_N6_solution_shows_ghost(escalator, config):
    """N6: SOLUTION carries the exact target pose as a ghost"""
    result = failed_result(FAR_TURNED, config)
    nudge = escalator.evaluate("p", PieceShape.SQUARE, FAR_TURNED, result, 6, 1.0, 10.0, TARGET)
    assert nudge.level is NudgeLevel.SOLUTION
    assert nudge.payload.ghost_pose == TARGET
    assert nudge.duration == 6.0

    # Without a target pose there is nothing to point at
    escalator.reset("p")
    capped = escalator.evaluate("p", PieceShape.SQUARE, FAR_TURNED, result, 6, 1.0, 20.0, None)
    assert capped.level is NudgeLevel.SPECIFIC


# ========== N: Messages ==========

def test_N7_failure_messages():
    """N7: Short texts scale with the size of the error"""
    assert failure_message(ValidationFailure.wrong_position(80.0)) == "Try moving closer"
    assert failure_message(ValidationFailure.wrong_position(30.0)) == "Almost there!"
    assert failure_message(ValidationFailure.wrong_rotation(60.0)) == "Try rotating"
    assert failure_message(ValidationFailure.wrong_rotation(20.0)) == "Slight rotation needed"
    assert failure_message(ValidationFailure.needs_flip()) == "Try flipping the piece"
    assert failure_message(ValidationFailure.wrong_piece()) == "Try a different piece"
    assert failure_message(None) == "Keep going!"


def test_N8_specific_rotation_direction():
    """N8: SPECIFIC rotation text names amount and direction"""
    failure = ValidationFailure.wrong_rotation(30.0)
    assert specific_message(failure, 29.6) == "Rotate it about 30° counterclockwise"
    assert specific_message(failure, -30.0) == "Rotate it about 30° clockwise"
    assert specific_message(ValidationFailure.needs_flip()) == "Flip the piece over"
