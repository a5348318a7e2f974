"""
Input Sanitizing and Puzzle Conversion Utilities.

This module normalizes data crossing the engine boundary:
- normalize_angle(): wrap radians into [0, 2pi)
- sanitize_observation(): turn a raw pose report into a finite Pose2D
- validate_targets(): reject malformed target sets before a puzzle loads
- targets_from_dicts(): build TargetSlots from plain puzzle definitions

ASSUMPTIONS:
- Puzzle definitions use world units (same as observations)
- An affine "transform" entry [a, b, c, d, tx, ty] maps editor vertices
  (vertex (0, 0) at origin, scaled by piece_scale) to world space:
  x' = a x + c y + tx, y' = b x + d y + ty; det < 0 means mirrored
"""

from __future__ import annotations
from typing import Any, Iterable, Mapping, Optional, Sequence
import logging
import math

import numpy as np

from tangram_engine.config import ConfigurationError
from tangram_engine.models import PieceShape, Pose2D, TargetSlot
from tangram_engine.geometry.shapes import raw_centroid

logger = logging.getLogger(__name__)

TWO_PI = 2 * math.pi


def normalize_angle(theta: float) -> float:
    """Wrap an angle in radians into [0, 2pi)."""
    wrapped = math.fmod(theta, TWO_PI)
    if wrapped < 0:
        wrapped += TWO_PI
    # fmod of values just below 0 can round up to exactly 2pi
    return 0.0 if wrapped >= TWO_PI else wrapped


def _finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def sanitize_observation(position: Sequence[float], rotation: float, flip: bool,
                         previous: Optional[Pose2D] = None,
                         limit: float = 1.0e6) -> Optional[Pose2D]:
    """
    Normalize a raw pose report.

    Args:
        position: (x, y), possibly containing NaN/inf or garbage
        rotation: Rotation in radians, unbounded
        flip: Mirror state (any truthy value)
        previous: Last known pose of the piece (fills non-finite fields)
        limit: Coordinates are clamped to [-limit, limit]

    Returns:
        Pose2D with finite, clamped coordinates and rotation in [0, 2pi),
        or None if no usable position exists (unknown piece, NaN position)

    Example:
        >>> sanitize_observation((float("nan"), 5.0), 7.0, False, previous=Pose2D(1.0, 2.0))
        Pose2D(x=1.0, y=5.0, theta=0.7168..., flip=False)
    """
    try:
        raw_x, raw_y = position
    except (TypeError, ValueError):
        raw_x = raw_y = None

    x = _finite(raw_x)
    y = _finite(raw_y)
    if x is None:
        x = previous.x if previous is not None else None
    if y is None:
        y = previous.y if previous is not None else None
    if x is None or y is None:
        return None

    theta = _finite(rotation)
    if theta is None:
        theta = previous.theta if previous is not None else 0.0

    x = min(max(x, -limit), limit)
    y = min(max(y, -limit), limit)
    return Pose2D(x, y, normalize_angle(theta), bool(flip))


def validate_targets(targets: Iterable[TargetSlot]) -> list[TargetSlot]:
    """
    Check a target set before it replaces the current puzzle.

    Returns:
        Targets as a list (load order preserved)

    Raises:
        ConfigurationError: Empty set, duplicate ids, wrong types or
            non-finite poses
    """
    if targets is None:
        raise ConfigurationError("Target set must not be None")
    try:
        slots = list(targets)
    except TypeError as exc:
        raise ConfigurationError(f"Target set is not iterable: {exc}") from exc
    if not slots:
        raise ConfigurationError("Target set is empty")

    seen: set[str] = set()
    for slot in slots:
        if not isinstance(slot, TargetSlot):
            raise ConfigurationError(f"Expected TargetSlot, got {type(slot).__name__}")
        if not isinstance(slot.shape, PieceShape):
            raise ConfigurationError(f"Target {slot.target_id!r} has invalid shape {slot.shape!r}")
        if slot.target_id in seen:
            raise ConfigurationError(f"Duplicate target id {slot.target_id!r}")
        seen.add(slot.target_id)
        pose = slot.pose
        if not isinstance(pose, Pose2D) or not all(
                _finite(v) is not None for v in (pose.x, pose.y, pose.theta)):
            raise ConfigurationError(f"Target {slot.target_id!r} has a non-finite pose")
    return slots


def _pose_from_transform(shape: PieceShape, transform: Sequence[float], scale: float) -> Pose2D:
    values = [_finite(v) for v in transform]
    if len(values) != 6 or any(v is None for v in values):
        raise ConfigurationError(f"transform must hold 6 finite numbers, got {transform!r}")
    a, b, c, d, tx, ty = values
    det = a * d - b * c
    if abs(det) < 1e-9:
        raise ConfigurationError("transform is degenerate (determinant 0)")
    linear = np.array([[a, c], [b, d]], dtype=float)
    centroid = linear @ (raw_centroid(shape) * scale) + np.array([tx, ty])
    theta = math.atan2(b, a)
    return Pose2D(float(centroid[0]), float(centroid[1]), normalize_angle(theta), det < 0)


def targets_from_dicts(items: Iterable[Mapping[str, Any]], scale: float = 50.0) -> list[TargetSlot]:
    """
    Convert plain puzzle definitions to TargetSlots.

    Args:
        items: Dicts with "id" (or "target_id"), "shape" (or "type") and either
            - "x", "y", optional "rotation" (radians) / "rotation_deg", "flip"
            - "transform": [a, b, c, d, tx, ty] (editor affine, see module doc)
        scale: World units per normalized tan unit (transform form only)

    Returns:
        Validated list of TargetSlots

    Raises:
        ConfigurationError: Missing keys, unknown shapes, bad numbers

    Example:
        >>> targets_from_dicts([{"id": "sq", "shape": "square", "x": 10, "y": 20}])
        [TargetSlot(target_id='sq', shape=<PieceShape.SQUARE: 'square'>, ...)]
    """
    slots = []
    for index, item in enumerate(items):
        target_id = item.get("id", item.get("target_id"))
        if target_id is None:
            raise ConfigurationError(f"Target #{index} has no id")
        try:
            shape = PieceShape.coerce(item.get("shape", item.get("type")))
        except ValueError as exc:
            raise ConfigurationError(f"Target {target_id!r}: {exc}") from exc

        if "transform" in item:
            pose = _pose_from_transform(shape, item["transform"], scale)
        else:
            x = _finite(item.get("x"))
            y = _finite(item.get("y"))
            if x is None or y is None:
                raise ConfigurationError(f"Target {target_id!r} needs finite x and y")
            if "rotation_deg" in item:
                theta = _finite(item["rotation_deg"])
                theta = math.radians(theta) if theta is not None else None
            else:
                theta = _finite(item.get("rotation", 0.0))
            if theta is None:
                raise ConfigurationError(f"Target {target_id!r} has a non-finite rotation")
            pose = Pose2D(x, y, normalize_angle(theta), bool(item.get("flip", False)))
        slots.append(TargetSlot(str(target_id), shape, pose))

    logger.debug("Converted %d target definitions", len(slots))
    return validate_targets(slots)
