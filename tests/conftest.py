"""
Shared fixtures for the tangram engine tests.

Layout used by the cluster tests (world units, piece_scale = 50):
- Large triangle target centered at (100, 100), rotation 0
  vertices (66.67, 66.67), (166.67, 66.67), (66.67, 166.67)
- Square target centered at (41.67, 91.67), rotation 0
  spans x in [16.67, 66.67], y in [66.67, 116.67]
The square shares part of the triangle's vertical leg (gap 0).
"""

import math

import numpy as np
import pytest

from tangram_engine import (
    EngineListener,
    ManualScheduler,
    PieceShape,
    Pose2D,
    TargetSlot,
    ValidationConfig,
    ValidationEngine,
)
from tangram_engine.geometry.transform import RigidTransform2D


class RecordingListener(EngineListener):
    """Collects every engine event in order."""

    def __init__(self):
        self.events = []
        self.validation_changes = []
        self.state_changes = []
        self.nudges = []
        self.completions = 0

    def on_validation_changed(self, target_id, is_valid):
        self.events.append(("validation", target_id, is_valid))
        self.validation_changes.append((target_id, is_valid))

    def on_piece_state_changed(self, piece_id, state):
        self.events.append(("state", piece_id, state))
        self.state_changes.append((piece_id, state))

    def on_nudge(self, piece_id, nudge):
        self.events.append(("nudge", piece_id, nudge))
        self.nudges.append((piece_id, nudge))

    def on_puzzle_completed(self):
        self.events.append(("completed",))
        self.completions += 1

    def states_of(self, piece_id):
        return [state for pid, state in self.state_changes if pid == piece_id]


# ========== Layout Helpers ==========

LARGE_CENTER = (100.0, 100.0)
SQUARE_CENTER = (100.0 - 100.0 / 3 - 25.0, 100.0 - 100.0 / 3 + 25.0)


def cluster_targets():
    """Large triangle + square sharing an edge (see module docstring)."""
    return [
        TargetSlot("large", PieceShape.LARGE_TRIANGLE, Pose2D(*LARGE_CENTER, 0.0)),
        TargetSlot("square", PieceShape.SQUARE, Pose2D(*SQUARE_CENTER, 0.0)),
    ]


def moved_rigidly(pose: Pose2D, angle_deg: float, shift: tuple[float, float]) -> Pose2D:
    """Rotate a pose about the origin, then shift it (whole-assembly motion)."""
    transform = RigidTransform2D(shift[0], shift[1], math.radians(angle_deg))
    return transform.apply_pose(pose)


def full_set_targets(spacing: float = 250.0):
    """Seven well separated targets, one per piece of the canonical set."""
    layout = [
        ("small-1", PieceShape.SMALL_TRIANGLE, False),
        ("small-2", PieceShape.SMALL_TRIANGLE, False),
        ("medium", PieceShape.MEDIUM_TRIANGLE, False),
        ("large-1", PieceShape.LARGE_TRIANGLE, False),
        ("large-2", PieceShape.LARGE_TRIANGLE, False),
        ("square", PieceShape.SQUARE, False),
        ("parallelogram", PieceShape.PARALLELOGRAM, True),
    ]
    return [
        TargetSlot(tid, shape, Pose2D(spacing * i, 100.0, 0.3 * i, flip))
        for i, (tid, shape, flip) in enumerate(layout)
    ]


# ========== Fixtures ==========

@pytest.fixture
def config():
    return ValidationConfig()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def engine(config, listener, scheduler):
    return ValidationEngine(config, listener, scheduler)


@pytest.fixture
def place(engine, scheduler):
    """Pick up, release and (optionally) wait out the debounce."""
    def _place(piece_id, shape, pose, settle=True):
        engine.observe_piece(piece_id, shape, (pose.x, pose.y), pose.theta, pose.flip, dragging=True)
        engine.observe_piece(piece_id, shape, (pose.x, pose.y), pose.theta, pose.flip)
        if settle:
            scheduler.advance(engine.config.placement_delay)
    return _place


@pytest.fixture
def rng():
    return np.random.default_rng(7)
