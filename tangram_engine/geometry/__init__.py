"""Geometry kernel: tan shapes, rigid transforms, polygon contact."""
from .shapes import (
    normalized_vertices,
    symmetry_period,
    feature_angle,
    feature_difference,
    angle_difference,
    symmetry_variants,
)
from .transform import RigidTransform2D, fit_rigid
from .contact import piece_polygon, polygon_gap, outline_deviation

__all__ = [
    "normalized_vertices",
    "symmetry_period",
    "feature_angle",
    "feature_difference",
    "angle_difference",
    "symmetry_variants",
    "RigidTransform2D",
    "fit_rigid",
    "piece_polygon",
    "polygon_gap",
    "outline_deviation",
]
