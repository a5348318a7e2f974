"""
Tests for tan geometry, rigid transforms and contact metrics.

Test Groups:
- G1-G6: geometry/shapes.py (vertices, areas, feature angles)
- T1-T5: geometry/transform.py (RigidTransform2D, fit_rigid)
- C1-C5: geometry/contact.py (piece polygons, gap, outline deviation)
"""

import math

import numpy as np
import pytest

from tangram_engine.models import PieceShape, Pose2D, TANGRAM_SET
from tangram_engine.geometry.shapes import (
    angle_difference,
    feature_angle,
    feature_difference,
    normalized_vertices,
    shape_area,
    symmetry_period,
    symmetry_variants,
)
from tangram_engine.geometry.transform import RigidTransform2D, fit_rigid
from tangram_engine.geometry.contact import (
    bounding_radius,
    outline_deviation,
    piece_polygon,
    polygon_gap,
)

EPS = 1e-9
SCALE = 50.0


def _same_vertex_set(a, b, tol=1e-6):
    """Order-independent vertex comparison"""
    if len(a) != len(b):
        return False
    return all(np.min(np.linalg.norm(b - p, axis=1)) < tol for p in a)


# ========== G: Shapes ==========

@pytest.mark.parametrize("shape", list(PieceShape))
def test_G1_vertices_centered(shape):
    """G1: Normalized vertices are centered on the centroid"""
    verts = normalized_vertices(shape)
    assert np.allclose(verts.mean(axis=0), [0.0, 0.0], atol=EPS)


def test_G2_areas_sum_to_full_square():
    """G2: Seven tans cover a 2x2 square (area 8 in small-leg units)"""
    assert shape_area(PieceShape.SMALL_TRIANGLE) == pytest.approx(0.5)
    assert shape_area(PieceShape.MEDIUM_TRIANGLE) == pytest.approx(1.0)
    assert shape_area(PieceShape.LARGE_TRIANGLE) == pytest.approx(2.0)
    assert shape_area(PieceShape.SQUARE) == pytest.approx(1.0)
    assert shape_area(PieceShape.PARALLELOGRAM) == pytest.approx(1.0)
    assert sum(shape_area(s) for s in TANGRAM_SET) == pytest.approx(8.0)


def test_G3_symmetry_periods():
    """G3: Triangles and parallelogram repeat after pi, square after pi/2"""
    assert symmetry_period(PieceShape.SQUARE) == pytest.approx(math.pi / 2)
    for shape in (PieceShape.SMALL_TRIANGLE, PieceShape.LARGE_TRIANGLE, PieceShape.PARALLELOGRAM):
        assert symmetry_period(shape) == pytest.approx(math.pi)
    assert len(symmetry_variants(PieceShape.SQUARE, 0.1)) == 4
    assert len(symmetry_variants(PieceShape.MEDIUM_TRIANGLE, 0.1)) == 2


def test_G4_triangle_feature_angle_period():
    """G4: Triangle rotated by pi has the same feature angle"""
    a = feature_angle(PieceShape.SMALL_TRIANGLE, 0.0)
    b = feature_angle(PieceShape.SMALL_TRIANGLE, math.pi)
    assert a == pytest.approx(math.pi / 4)
    assert b == pytest.approx(math.pi / 4)


def test_G5_mirrored_triangle_equals_rotated_triangle():
    """G5: A mirrored right isosceles triangle is the unmirrored one rotated by -pi/2"""
    theta = 0.7
    mirrored = piece_polygon(PieceShape.LARGE_TRIANGLE, Pose2D(10.0, 20.0, theta, True), SCALE)
    rotated = piece_polygon(PieceShape.LARGE_TRIANGLE, Pose2D(10.0, 20.0, theta - math.pi / 2), SCALE)
    assert _same_vertex_set(mirrored, rotated)

    diff = feature_difference(PieceShape.LARGE_TRIANGLE, theta, True, theta - math.pi / 2, False)
    assert diff == pytest.approx(0.0, abs=1e-9)


def test_G6_angle_difference_wraps():
    """G6: Shortest signed arc across the 0/2pi seam"""
    assert angle_difference(0.1, 2 * math.pi - 0.1) == pytest.approx(0.2)
    assert angle_difference(2 * math.pi - 0.1, 0.1) == pytest.approx(-0.2)
    # Modulo a quarter turn, 80 deg is 10 deg short of 90 deg == 0 deg
    assert math.degrees(angle_difference(math.radians(80), 0.0, math.pi / 2)) == pytest.approx(-10.0)


# ========== T: Rigid Transforms ==========

def test_T1_rotation_convention():
    """T1: theta = pi/2 maps (1, 0) to (0, 1)"""
    t = RigidTransform2D(0.0, 0.0, math.pi / 2)
    assert np.allclose(t.apply(np.array([1.0, 0.0])), [0.0, 1.0], atol=EPS)


def test_T2_inverse_compose_identity():
    """T2: T o T^-1 is the identity"""
    t = RigidTransform2D(12.0, -4.0, 0.8)
    ident = t.compose(t.inverse())
    assert ident.x == pytest.approx(0.0, abs=1e-9)
    assert ident.y == pytest.approx(0.0, abs=1e-9)
    assert ident.theta == pytest.approx(0.0, abs=1e-9)


def test_T3_apply_rejects_bad_shape():
    """T3: apply() accepts (2,) and (N, 2) only"""
    t = RigidTransform2D(1.0, 2.0, 0.0)
    assert t.apply(np.zeros((3, 2))).shape == (3, 2)
    with pytest.raises(ValueError):
        t.apply(np.zeros((2, 3)))


def test_T4_apply_pose_xors_flip():
    """T4: apply_pose offsets rotation and XORs the flip parity"""
    t = RigidTransform2D(5.0, 0.0, 0.5)
    mapped = t.apply_pose(Pose2D(0.0, 0.0, 0.25, True), flip_parity=True)
    assert mapped.x == pytest.approx(5.0)
    assert mapped.theta == pytest.approx(0.75)
    assert mapped.flip is False


def test_T5_fit_rigid_recovers_transform(rng):
    """T5: Kabsch fit recovers a known rigid transform from noisy points"""
    truth = RigidTransform2D(120.0, -35.0, math.radians(-63.0))
    src = rng.uniform(-200, 200, size=(6, 2))
    dst = truth.apply(src) + rng.normal(0.0, 0.01, size=(6, 2))

    fit = fit_rigid(src, dst)
    assert math.degrees(fit.theta) == pytest.approx(-63.0, abs=0.05)
    assert fit.x == pytest.approx(120.0, abs=0.1)
    assert fit.y == pytest.approx(-35.0, abs=0.1)

    # Single point: pure translation
    single = fit_rigid(np.array([[1.0, 1.0]]), np.array([[4.0, 5.0]]))
    assert single.theta == 0.0
    assert (single.x, single.y) == pytest.approx((3.0, 4.0))

    with pytest.raises(ValueError):
        fit_rigid(np.zeros((2, 2)), np.zeros((3, 2)))


# ========== C: Contact Metrics ==========

def test_C1_polygons_are_ccw_when_mirrored():
    """C1: Mirrored pieces come back CCW (positive signed area)"""
    poly = piece_polygon(PieceShape.PARALLELOGRAM, Pose2D(0.0, 0.0, 0.3, True), SCALE)
    x, y = poly[:, 0], poly[:, 1]
    signed = 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))
    assert signed > 0
    assert signed == pytest.approx(shape_area(PieceShape.PARALLELOGRAM, SCALE))


def test_C2_gap_touching_and_separated():
    """C2: Adjacent squares touch (gap 0), shifted squares keep their gap"""
    a = piece_polygon(PieceShape.SQUARE, Pose2D(0.0, 0.0), SCALE)
    touching = piece_polygon(PieceShape.SQUARE, Pose2D(50.0, 0.0), SCALE)
    separated = piece_polygon(PieceShape.SQUARE, Pose2D(60.0, 0.0), SCALE)
    assert polygon_gap(a, touching) == pytest.approx(0.0, abs=1e-9)
    assert polygon_gap(a, separated) == pytest.approx(10.0)


def test_C3_gap_overlapping_is_zero():
    """C3: Overlapping pieces have gap 0"""
    a = piece_polygon(PieceShape.LARGE_TRIANGLE, Pose2D(0.0, 0.0), SCALE)
    b = piece_polygon(PieceShape.SMALL_TRIANGLE, Pose2D(5.0, 5.0), SCALE)
    assert polygon_gap(a, b) == 0.0


@pytest.mark.parametrize("shape", list(PieceShape))
def test_C4_outline_deviation_of_translation(shape):
    """C4: Outline deviation of a pure translation equals the shift length"""
    a = piece_polygon(shape, Pose2D(100.0, 100.0, 0.4), SCALE)
    b = piece_polygon(shape, Pose2D(103.0, 104.0, 0.4), SCALE)
    assert outline_deviation(a, b) == pytest.approx(5.0, abs=1e-6)
    assert outline_deviation(a, a) == pytest.approx(0.0, abs=1e-9)


def test_C5_bounding_radius():
    """C5: Bounding radius reaches the farthest vertex"""
    square = piece_polygon(PieceShape.SQUARE, Pose2D(0.0, 0.0), SCALE)
    assert bounding_radius(np.zeros(2), [square]) == pytest.approx(25.0 * math.sqrt(2))
    assert bounding_radius(np.zeros(2), []) == 0.0
