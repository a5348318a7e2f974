"""
Piece Polygons and Contact Metrics.

Places tan polygons in world space and measures how two polygons relate:
- polygon_gap(): minimum boundary distance (0 when touching or overlapping)
- outline_deviation(): symmetric Hausdorff distance between outlines

Distances are computed with shapely; placement with numpy.
All measurements in world units.
"""

from __future__ import annotations
import numpy as np
from shapely.geometry import Polygon

from tangram_engine.models import PieceShape, Pose2D
from tangram_engine.geometry.shapes import local_vertices


# ========== Helper Functions ==========

def _ensure_ccw(poly: np.ndarray) -> np.ndarray:
    """
    Ensure polygon is CCW (counter-clockwise) via signed area.

    Notes:
        - Mirrored pieces come out CW and are reversed here
    """
    x = poly[:, 0]
    y = poly[:, 1]
    signed_area = 0.5 * np.sum(x[:-1] * y[1:] - x[1:] * y[:-1])
    signed_area += 0.5 * (x[-1] * y[0] - x[0] * y[-1])

    if signed_area < 0:
        return np.flipud(poly)
    return poly


def _transform_polygon(poly: np.ndarray, pose: Pose2D) -> np.ndarray:
    """
    Transform polygon from local to world coordinates.

    Args:
        poly: Polygon points in local coords (N, 2), already mirrored if flipped
        pose: Pose2D (x, y, theta in radians)

    Returns:
        Transformed polygon in world coords (N, 2)
    """
    c = np.cos(pose.theta)
    s = np.sin(pose.theta)
    rot = np.array([[c, -s], [s, c]])
    return poly @ rot.T + np.array([pose.x, pose.y])


# ========== Public API ==========

def piece_polygon(shape: PieceShape, pose: Pose2D, scale: float) -> np.ndarray:
    """
    World-space vertices of a piece.

    Args:
        shape: PieceShape
        pose: Centroid pose (flip mirrors the local y axis)
        scale: World units per normalized unit

    Returns:
        (N, 2) CCW polygon
    """
    local = local_vertices(shape, scale, flip=pose.flip)
    return _ensure_ccw(_transform_polygon(local, pose))


def to_shapely(poly: np.ndarray) -> Polygon:
    return Polygon([(float(x), float(y)) for x, y in poly])


def polygon_gap(poly_a: np.ndarray | Polygon, poly_b: np.ndarray | Polygon) -> float:
    """
    Minimum distance between two polygons.

    Returns:
        0.0 when the polygons touch or overlap, else the boundary gap
    """
    a = poly_a if isinstance(poly_a, Polygon) else to_shapely(poly_a)
    b = poly_b if isinstance(poly_b, Polygon) else to_shapely(poly_b)
    return float(a.distance(b))


def outline_deviation(poly_a: np.ndarray | Polygon, poly_b: np.ndarray | Polygon) -> float:
    """
    Symmetric Hausdorff distance between the two outlines.

    Notes:
        - 0.0 only for coinciding outlines
        - For convex pieces that differ by a pure translation v this equals |v|,
          so it never validates a pose that the centroid check rejects
          by translation alone
    """
    a = poly_a if isinstance(poly_a, Polygon) else to_shapely(poly_a)
    b = poly_b if isinstance(poly_b, Polygon) else to_shapely(poly_b)
    return float(a.exterior.hausdorff_distance(b.exterior))


def bounding_radius(center: np.ndarray, polygons: list[np.ndarray]) -> float:
    """Max distance from center to any vertex of the given polygons."""
    if not polygons:
        return 0.0
    pts = np.vstack(polygons)
    return float(np.max(np.linalg.norm(pts - np.asarray(center, dtype=float), axis=1)))
