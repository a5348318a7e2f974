"""
Tangram Engine Data Models.

This module defines the plain data records exchanged by the engine:
- PieceShape: Congruence class of a tan (5 classes, 7 pieces per set)
- Pose2D: Immutable 2D pose (position + rotation + mirror flip)
- TargetSlot: Destination pose for one piece inside a puzzle
- PieceState: Lifecycle state of an observed piece
- ValidationFailure: Tagged failure reason (wrong position/rotation, flip, piece)
- PlacementCheck: Raw outcome of one validator call
- ValidationResult: Outcome of validating one piece in context
- ConstructionGroup: Transient cluster of connected pieces
- AnchorMapping: Relative transform from a construction group to puzzle space
- NudgeLevel / HintPayload / NudgeContent: Graduated hint records

All positions in world units (one normalized tan unit = config.piece_scale).
Angles in radians, counterclockwise positive, unless a name ends in _deg.

NOTE: PieceLifecycle (the mutable per-piece record) is NOT defined here.
      It lives in lifecycle/state.py next to its transitions.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional
import math

import numpy as np


class PieceShape(Enum):
    """
    Congruence class of a tangram piece.

    Values:
        SMALL_TRIANGLE: Right isosceles triangle, legs 1 (two per set)
        MEDIUM_TRIANGLE: Right isosceles triangle, legs sqrt(2)
        LARGE_TRIANGLE: Right isosceles triangle, legs 2 (two per set)
        SQUARE: Unit square
        PARALLELOGRAM: Sides 1 and sqrt(2), only chiral piece

    Notes:
        - Duplicate pieces (two small, two large triangles) share one class;
          instances are told apart by piece id, slots by target id
        - Geometry (vertices, symmetry period, feature offset) lives in
          geometry/shapes.py
    """
    SMALL_TRIANGLE = "small_triangle"
    MEDIUM_TRIANGLE = "medium_triangle"
    LARGE_TRIANGLE = "large_triangle"
    SQUARE = "square"
    PARALLELOGRAM = "parallelogram"

    @classmethod
    def coerce(cls, value: PieceShape | str) -> PieceShape:
        """Accept an enum member, its value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text.lower() in (member.value, member.name.lower()):
                return member
        # camelCase names used by puzzle editors ("smallTriangle1")
        compact = text.lower().rstrip("0123456789").replace("_", "")
        for member in cls:
            if compact == member.value.replace("_", ""):
                return member
        raise ValueError(f"Unknown piece shape: {value!r}")

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()

    @property
    def is_triangle(self) -> bool:
        return self in (PieceShape.SMALL_TRIANGLE, PieceShape.MEDIUM_TRIANGLE, PieceShape.LARGE_TRIANGLE)

    @property
    def flip_sensitive(self) -> bool:
        """Only the parallelogram changes appearance when mirrored."""
        return self is PieceShape.PARALLELOGRAM

    @property
    def importance(self) -> int:
        """Anchor ranking: large > medium/square/parallelogram > small."""
        return _IMPORTANCE[self]

    @property
    def hint_difficulty(self) -> int:
        """How hard the piece is to place (0 = easiest)."""
        return _HINT_DIFFICULTY[self]


_IMPORTANCE = {
    PieceShape.LARGE_TRIANGLE: 3,
    PieceShape.MEDIUM_TRIANGLE: 2,
    PieceShape.SQUARE: 2,
    PieceShape.PARALLELOGRAM: 2,
    PieceShape.SMALL_TRIANGLE: 1,
}

_HINT_DIFFICULTY = {
    PieceShape.SMALL_TRIANGLE: 0,
    PieceShape.MEDIUM_TRIANGLE: 1,
    PieceShape.SQUARE: 1,
    PieceShape.LARGE_TRIANGLE: 2,
    PieceShape.PARALLELOGRAM: 3,
}

# Canonical seven-piece set
TANGRAM_SET: tuple[PieceShape, ...] = (
    PieceShape.SMALL_TRIANGLE,
    PieceShape.SMALL_TRIANGLE,
    PieceShape.MEDIUM_TRIANGLE,
    PieceShape.LARGE_TRIANGLE,
    PieceShape.LARGE_TRIANGLE,
    PieceShape.SQUARE,
    PieceShape.PARALLELOGRAM,
)


@dataclass(frozen=True)
class Pose2D:
    """
    2D pose of a piece: centroid position, rotation and mirror state.

    Attributes:
        x: Centroid x position (world units)
        y: Centroid y position (world units)
        theta: Rotation in radians, ccw positive
        flip: Mirror state (local y axis negated before rotation)

    Notes:
        - Immutable value: every observation and every target is a Pose2D
        - theta is not normalized here, see utils.conversion.normalize_angle
    """
    x: float
    y: float
    theta: float = 0.0
    flip: bool = False

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=float)

    def distance_to(self, other: Pose2D) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def moved(self, dx: float = 0.0, dy: float = 0.0, dtheta: float = 0.0) -> Pose2D:
        return Pose2D(self.x + dx, self.y + dy, self.theta + dtheta, self.flip)


@dataclass(frozen=True)
class TargetSlot:
    """
    Destination of one piece in a puzzle.

    Attributes:
        target_id: Unique id, distinct even for same-shape duplicates
        shape: Required piece shape
        pose: Canonical pose in puzzle space

    Notes:
        - Read-only once a puzzle is loaded
        - Consumption (bound to one piece) is tracked by the mapping service
    """
    target_id: str
    shape: PieceShape
    pose: Pose2D


class PieceState(Enum):
    """
    Lifecycle state of an observed piece.

    Values:
        UNOBSERVED: Never reported by the input collaborator
        DETECTED: Seen once, baseline pose recorded
        MOVED: Picked up or dragged
        PLACED: Released, placement debounce pending
        VALIDATING: Debounce elapsed, matching in progress or retrying
        VALIDATED: Bound to a target and currently valid
        INVALID: Failed validation streak reached the threshold
    """
    UNOBSERVED = "unobserved"
    DETECTED = "detected"
    MOVED = "moved"
    PLACED = "placed"
    VALIDATING = "validating"
    VALIDATED = "validated"
    INVALID = "invalid"


class FailureKind(Enum):
    """Why a placement failed, in check priority order."""
    WRONG_PIECE = "wrong_piece"
    WRONG_POSITION = "wrong_position"
    WRONG_ROTATION = "wrong_rotation"
    NEEDS_FLIP = "needs_flip"


@dataclass(frozen=True)
class ValidationFailure:
    """
    Tagged failure reason.

    Attributes:
        kind: FailureKind tag
        offset: Centroid offset in world units (WRONG_POSITION only)
        degrees_off: Unsigned rotation error in degrees (WRONG_ROTATION only)
    """
    kind: FailureKind
    offset: Optional[float] = None
    degrees_off: Optional[float] = None

    @classmethod
    def wrong_position(cls, offset: float) -> ValidationFailure:
        return cls(FailureKind.WRONG_POSITION, offset=float(offset))

    @classmethod
    def wrong_rotation(cls, degrees_off: float) -> ValidationFailure:
        return cls(FailureKind.WRONG_ROTATION, degrees_off=float(degrees_off))

    @classmethod
    def needs_flip(cls) -> ValidationFailure:
        return cls(FailureKind.NEEDS_FLIP)

    @classmethod
    def wrong_piece(cls) -> ValidationFailure:
        return cls(FailureKind.WRONG_PIECE)


class MatchSource(Enum):
    """How a successful match was obtained."""
    DIRECT = "direct"
    MAPPED = "mapped"
    ANCHOR = "anchor"
    HYSTERESIS = "hysteresis"


class MappingSignal(Enum):
    """Internal mapping outcomes that trigger a fallback (never raised)."""
    NO_ANCHOR_AVAILABLE = "no_anchor_available"
    NO_MAPPING_YET = "no_mapping_yet"
    BINDING_CONFLICT = "binding_conflict"


@dataclass(frozen=True)
class PlacementCheck:
    """
    Raw result of comparing one pose with one target.

    Attributes:
        position_valid: Centroid or outline within tolerance
        rotation_valid: Feature-angle difference within tolerance
        flip_valid: Mirror state acceptable for the shape
        distance: Centroid distance (world units)
        outline_deviation: Symmetric outline distance (world units), None when
            the centroid check already passed
        rotation_error_deg: Unsigned shortest-arc error in feature space
        rotation_delta_deg: Signed rotation (ccw positive) that would fix it
        failure: First failing check, None if valid
    """
    position_valid: bool
    rotation_valid: bool
    flip_valid: bool
    distance: float
    outline_deviation: Optional[float]
    rotation_error_deg: float
    rotation_delta_deg: float
    failure: Optional[ValidationFailure] = None

    @property
    def is_valid(self) -> bool:
        return self.position_valid and self.rotation_valid and self.flip_valid


@dataclass
class ValidationResult:
    """
    Outcome of validating one piece against the loaded puzzle.

    Attributes:
        piece_id: Validated piece
        target_id: Matched target, None if invalid
        check: Validator output for the matched (or nearest) target
        source: How the match was obtained (None if invalid)
        failure: Failure reason if invalid
        nearest_target_id: Closest candidate target (hint destination)

    Notes:
        - position_valid / rotation_valid / flip_valid mirror check
        - A result without check (no candidate target at all) is WRONG_PIECE
    """
    piece_id: str
    target_id: Optional[str] = None
    check: Optional[PlacementCheck] = None
    source: Optional[MatchSource] = None
    failure: Optional[ValidationFailure] = None
    nearest_target_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.target_id is not None

    @property
    def position_valid(self) -> bool:
        return self.check is not None and self.check.position_valid

    @property
    def rotation_valid(self) -> bool:
        return self.check is not None and self.check.rotation_valid

    @property
    def flip_valid(self) -> bool:
        return self.check is not None and self.check.flip_valid


@dataclass
class ConstructionGroup:
    """
    Spatially connected cluster of placed pieces.

    Attributes:
        group_id: Id stable across passes while the cluster persists
        member_ids: Piece ids in the cluster
        centroid: Mean member position, shape (2,)
        bounding_radius: Max distance from centroid to any member vertex
        confidence: Stability score in [0, 1]
        attempts: Retry counters of the members (piece_id -> count)

    Notes:
        - Recomputed on every validation pass, never persisted
        - confidence gates nudges and anchor promotion only
    """
    group_id: int
    member_ids: frozenset[str]
    centroid: np.ndarray
    bounding_radius: float = 0.0
    confidence: float = 0.0
    attempts: dict[str, int] = field(default_factory=dict)

    def __contains__(self, piece_id: str) -> bool:
        return piece_id in self.member_ids

    def __len__(self) -> int:
        return len(self.member_ids)


@dataclass
class AnchorMapping:
    """
    Rigid mapping from a construction group to puzzle space.

    Attributes:
        group_id: Owning construction group
        anchor_piece_id: Reference piece
        anchor_target_id: Target the anchor was matched to
        rotation: Rotation delta theta (radians)
        translation: Offset t, shape (2,), so that mapped = R(theta) p + t
        flip_parity: XOR applied to observed flips
        pairs: (piece_id, target_id) pairs used for refinement

    Invariants:
        - pairs never repeat a piece id or a target id
        - pairs[0] is the anchor pair
    """
    group_id: int
    anchor_piece_id: str
    anchor_target_id: str
    rotation: float
    translation: np.ndarray
    flip_parity: bool = False
    pairs: list[tuple[str, str]] = field(default_factory=list)

    def add_pair(self, piece_id: str, target_id: str) -> bool:
        """Append a pair unless the piece or target is already paired."""
        for paired_piece, paired_target in self.pairs:
            if paired_piece == piece_id or paired_target == target_id:
                return False
        self.pairs.append((piece_id, target_id))
        return True


class NudgeLevel(IntEnum):
    """Hint intensity, ordered."""
    NONE = 0
    VISUAL = 1
    GENTLE = 2
    SPECIFIC = 3
    DIRECTED = 4
    SOLUTION = 5


@dataclass(frozen=True)
class HintPayload:
    """
    Optional spatial part of a nudge.

    Attributes:
        direction: Unit vector from the piece toward its target (DIRECTED)
        distance: Remaining distance to the target (DIRECTED)
        ghost_pose: Exact target pose in the player's frame (SOLUTION)
    """
    direction: Optional[tuple[float, float]] = None
    distance: Optional[float] = None
    ghost_pose: Optional[Pose2D] = None


@dataclass(frozen=True)
class NudgeContent:
    """
    Hint to display for one piece.

    Attributes:
        level: NudgeLevel
        message: Text shown to the player ("" for purely visual pulses)
        payload: Optional arrow / ghost payload
        duration: Display duration in seconds
    """
    level: NudgeLevel
    message: str
    payload: Optional[HintPayload] = None
    duration: float = 0.0
