"""
Canonical Tan Geometry.

Normalized vertex sets, symmetry periods and feature-angle offsets per
PieceShape.

Conventions:
- Normalized units: small triangle legs = 1 (scaled by config.piece_scale)
- Vertices centered on the piece centroid, CCW
- Flip mirrors the local y axis before rotation
- Feature angle = rotation + offset(shape, flip), reduced modulo the
  symmetry period, so visually equivalent orientations compare equal
"""

from __future__ import annotations
import math

import numpy as np

from tangram_engine.models import PieceShape

SQRT2 = math.sqrt(2.0)

_RAW_VERTICES: dict[PieceShape, list[tuple[float, float]]] = {
    PieceShape.SMALL_TRIANGLE: [(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)],
    PieceShape.MEDIUM_TRIANGLE: [(0.0, 0.0), (SQRT2, 0.0), (0.0, SQRT2)],
    PieceShape.LARGE_TRIANGLE: [(0.0, 0.0), (2.0, 0.0), (0.0, 2.0)],
    PieceShape.SQUARE: [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)],
    PieceShape.PARALLELOGRAM: [
        (0.0, 0.0), (SQRT2, 0.0), (SQRT2 / 2, SQRT2 / 2), (-SQRT2 / 2, SQRT2 / 2)
    ],
}

# Triangles, square and parallelogram: centroid == vertex mean
_CENTERED_VERTICES: dict[PieceShape, np.ndarray] = {
    shape: np.array(raw, dtype=float) - np.mean(np.array(raw, dtype=float), axis=0)
    for shape, raw in _RAW_VERTICES.items()
}

_SYMMETRY_PERIOD: dict[PieceShape, float] = {
    PieceShape.SMALL_TRIANGLE: math.pi,
    PieceShape.MEDIUM_TRIANGLE: math.pi,
    PieceShape.LARGE_TRIANGLE: math.pi,
    PieceShape.SQUARE: math.pi / 2,
    PieceShape.PARALLELOGRAM: math.pi,
}


def normalized_vertices(shape: PieceShape) -> np.ndarray:
    """
    Centered unit-scale vertices of a shape.

    Args:
        shape: PieceShape

    Returns:
        (N, 2) array, CCW, centroid at origin (copy, safe to mutate)
    """
    return _CENTERED_VERTICES[shape].copy()


def raw_centroid(shape: PieceShape) -> np.ndarray:
    """Centroid of the uncentered editor vertices (vertex (0, 0) at origin)."""
    return np.mean(np.array(_RAW_VERTICES[shape], dtype=float), axis=0)


def local_vertices(shape: PieceShape, scale: float, flip: bool = False) -> np.ndarray:
    """Centered vertices scaled to world units, mirrored if flip."""
    verts = _CENTERED_VERTICES[shape] * float(scale)
    if flip:
        verts = verts * np.array([1.0, -1.0])
    return verts


def shape_area(shape: PieceShape, scale: float = 1.0) -> float:
    verts = _CENTERED_VERTICES[shape]
    x, y = verts[:, 0], verts[:, 1]
    return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))) * scale * scale


def symmetry_period(shape: PieceShape) -> float:
    """Rotation (radians) after which the shape compares equal to itself."""
    return _SYMMETRY_PERIOD[shape]


def feature_offset(shape: PieceShape, flip: bool = False) -> float:
    """
    Canonical feature-angle offset.

    Notes:
        - Triangles: pi/4 (axis of the right angle), 3pi/4 when mirrored,
          since a mirrored right isosceles triangle equals the unmirrored one
          rotated by -pi/2
        - Square and parallelogram: 0 (the parallelogram's mirror state is
          compared separately by the flip check)
    """
    if shape.is_triangle:
        return 3 * math.pi / 4 if flip else math.pi / 4
    return 0.0


def feature_angle(shape: PieceShape, theta: float, flip: bool = False) -> float:
    """Feature angle in [0, period)."""
    period = _SYMMETRY_PERIOD[shape]
    return (theta + feature_offset(shape, flip)) % period


def angle_difference(a: float, b: float, period: float = 2 * math.pi) -> float:
    """
    Signed shortest arc from b to a modulo period.

    Returns:
        Value in [-period/2, period/2)
    """
    half = period / 2
    return (a - b + half) % period - half


def feature_difference(shape: PieceShape, theta_a: float, flip_a: bool,
                       theta_b: float, flip_b: bool) -> float:
    """Signed feature-angle difference (a minus b) in radians."""
    period = _SYMMETRY_PERIOD[shape]
    return angle_difference(
        feature_angle(shape, theta_a, flip_a),
        feature_angle(shape, theta_b, flip_b),
        period,
    )


def symmetry_variants(shape: PieceShape, theta: float) -> list[float]:
    """All rotations equivalent to theta under the shape's symmetry."""
    period = _SYMMETRY_PERIOD[shape]
    count = int(round(2 * math.pi / period))
    return [theta + k * period for k in range(count)]
