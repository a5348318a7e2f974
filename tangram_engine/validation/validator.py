"""
Piece Validator.

Pure placement check: (observed pose, target pose, shape, tolerances)
-> PlacementCheck with position / rotation / flip validity and the first
failing reason.

Check order (failure priority):
1. Position: centroid distance <= position_tolerance, OR outline deviation
   <= edge_contact_tolerance
2. Rotation: shortest arc in feature-angle space <= rotation_tolerance_deg
3. Flip: mirror states agree (parallelogram only)

WRONG_PIECE (shape mismatch) is decided by callers before a check is made.
"""

from __future__ import annotations
from dataclasses import dataclass
import math

from tangram_engine.config import ValidationConfig
from tangram_engine.models import PieceShape, Pose2D, PlacementCheck, ValidationFailure
from tangram_engine.geometry.shapes import feature_difference
from tangram_engine.geometry.contact import piece_polygon, outline_deviation


@dataclass(frozen=True)
class Tolerances:
    """
    Tolerance triple used by validate_piece().

    Attributes:
        position: Max centroid distance (world units)
        rotation_deg: Max feature-angle difference (degrees)
        edge_contact: Max outline deviation (world units)
        scale: World units per normalized tan unit
    """
    position: float
    rotation_deg: float
    edge_contact: float
    scale: float = 50.0

    @classmethod
    def from_config(cls, config: ValidationConfig, factor: float = 1.0) -> Tolerances:
        """Tolerances from config, optionally widened by factor (hysteresis, anchor)."""
        return cls(
            position=config.position_tolerance * factor,
            rotation_deg=config.rotation_tolerance_deg * factor,
            edge_contact=config.edge_contact_tolerance * factor,
            scale=config.piece_scale,
        )

    def widened(self, factor: float) -> Tolerances:
        return Tolerances(self.position * factor, self.rotation_deg * factor,
                          self.edge_contact * factor, self.scale)


def validate_piece(observed: Pose2D, target: Pose2D, shape: PieceShape,
                   tolerances: Tolerances) -> PlacementCheck:
    """
    Validate one observed pose against one target pose.

    Args:
        observed: Observed pose (flip = observed mirror state)
        target: Target pose (flip = required mirror state)
        shape: Shape shared by piece and target
        tolerances: Tolerances to apply

    Returns:
        PlacementCheck (failure is None iff all three checks pass)

    Notes:
        - Pure and deterministic, safe to call at any rate
        - Outline deviation is only computed when the centroid check fails
        - Rotation is compared modulo the shape's symmetry period, so a
          triangle rotated by pi validates like the unrotated one
    """
    distance = observed.distance_to(target)
    deviation = None
    position_valid = distance <= tolerances.position
    if not position_valid:
        deviation = outline_deviation(
            piece_polygon(shape, observed, tolerances.scale),
            piece_polygon(shape, target, tolerances.scale),
        )
        position_valid = deviation <= tolerances.edge_contact

    # Signed correction: rotate observed by delta to reach the target
    delta = -feature_difference(shape, observed.theta, observed.flip, target.theta, target.flip)
    rotation_error_deg = abs(math.degrees(delta))
    rotation_valid = rotation_error_deg <= tolerances.rotation_deg

    flip_valid = True
    if shape.flip_sensitive:
        flip_valid = bool(observed.flip) == bool(target.flip)

    failure = None
    if not position_valid:
        failure = ValidationFailure.wrong_position(distance)
    elif not rotation_valid:
        failure = ValidationFailure.wrong_rotation(rotation_error_deg)
    elif not flip_valid:
        failure = ValidationFailure.needs_flip()

    return PlacementCheck(
        position_valid=position_valid,
        rotation_valid=rotation_valid,
        flip_valid=flip_valid,
        distance=distance,
        outline_deviation=deviation,
        rotation_error_deg=rotation_error_deg,
        rotation_delta_deg=math.degrees(delta),
        failure=failure,
    )


def orientation_matches(observed: Pose2D, target: Pose2D, shape: PieceShape,
                        tolerance_deg: float) -> bool:
    """True if rotation and mirror state already match, ignoring position."""
    delta = feature_difference(shape, observed.theta, observed.flip, target.theta, target.flip)
    if abs(math.degrees(delta)) > tolerance_deg:
        return False
    return not shape.flip_sensitive or bool(observed.flip) == bool(target.flip)
