"""
Anchor Selection and Mapping Derivation.

Pure helpers used by RelativeMappingService:
- rank_anchors(): order group members by anchor suitability
- anchor_precondition(): contact / proximity / confidence gate
- derive_mappings(): all symmetry branches of the mapping that puts an
  anchor exactly onto a target
- map_pose() / unmap_pose(): apply a mapping (or its inverse) to a pose

Mapping convention:
    mapped_position = R(theta) p + t,  t = target_pos - R(theta) anchor_pos
    mapped_rotation = rotation + theta
    mapped_flip     = flip XOR flip_parity
which equals anchor_target + R(theta)(p - anchor_pos) for the anchor pair.
"""

from __future__ import annotations
from typing import Sequence
import math

import numpy as np

from tangram_engine.config import ValidationConfig
from tangram_engine.models import AnchorMapping, ConstructionGroup, Pose2D, TargetSlot
from tangram_engine.lifecycle.state import PieceLifecycle
from tangram_engine.geometry.shapes import feature_offset, symmetry_variants
from tangram_engine.geometry.transform import RigidTransform2D, rotation_matrix
from tangram_engine.geometry.contact import piece_polygon, polygon_gap


def mapping_transform(mapping: AnchorMapping) -> RigidTransform2D:
    return RigidTransform2D.from_rotation_translation(mapping.rotation, mapping.translation)


def map_pose(mapping: AnchorMapping, pose: Pose2D) -> Pose2D:
    """Table frame -> puzzle space."""
    return mapping_transform(mapping).apply_pose(pose, mapping.flip_parity)


def unmap_pose(mapping: AnchorMapping, pose: Pose2D) -> Pose2D:
    """Puzzle space -> table frame (inverse of map_pose)."""
    return mapping_transform(mapping).inverse().apply_pose(pose, mapping.flip_parity)


def rank_anchors(group: ConstructionGroup,
                 members: Sequence[PieceLifecycle]) -> list[PieceLifecycle]:
    """
    Order members by anchor suitability.

    Ranking:
        1. Already validated members first
        2. Shape importance (large > medium/square/parallelogram > small)
        3. Proximity to the group centroid
        4. Piece id (deterministic tie break)
    """
    centroid = np.asarray(group.centroid, dtype=float)

    def key(piece: PieceLifecycle):
        distance = float(np.linalg.norm(piece.pose.position - centroid))
        return (0 if piece.is_validated else 1, -piece.shape.importance, distance, piece.piece_id)

    return sorted((m for m in members if m.pose is not None), key=key)


def anchor_precondition(anchor: PieceLifecycle, members: Sequence[PieceLifecycle],
                        group: ConstructionGroup, config: ValidationConfig) -> bool:
    """
    Guard against anchoring an isolated, freely moving piece.

    Returns:
        True if the anchor touches another member (gap <= edge_contact_tolerance),
        or a member centroid lies within connection_threshold, or the group
        confidence reached anchor_confidence_threshold
    """
    scale = config.piece_scale
    anchor_poly = piece_polygon(anchor.shape, anchor.pose, scale)
    for other in members:
        if other.piece_id == anchor.piece_id or other.pose is None:
            continue
        if anchor.pose.distance_to(other.pose) < config.connection_threshold:
            return True
        other_poly = piece_polygon(other.shape, other.pose, scale)
        if polygon_gap(anchor_poly, other_poly) <= config.edge_contact_tolerance:
            return True
    return group.confidence >= config.anchor_confidence_threshold


def derive_mappings(group_id: int, anchor: PieceLifecycle,
                    target: TargetSlot) -> list[AnchorMapping]:
    """
    All mappings that place the anchor exactly on the target.

    Args:
        group_id: Owning group
        anchor: Anchor piece (shape must equal target.shape)
        target: Candidate target

    Returns:
        One AnchorMapping per symmetry branch of the rotation delta

    Notes:
        - theta is derived in feature-angle space, so the anchor's mirror
          offset is accounted for; the branches differ by the symmetry
          period and are told apart by the other members (consensus)
        - flip_parity is only defined for flip-sensitive anchors
    """
    shape = anchor.shape
    pose = anchor.pose
    parity = bool(pose.flip) ^ bool(target.pose.flip) if shape.flip_sensitive else False
    mapped_flip = bool(pose.flip) ^ parity
    base = (target.pose.theta + feature_offset(shape, target.pose.flip)) \
        - (pose.theta + feature_offset(shape, mapped_flip))

    mappings = []
    for theta in symmetry_variants(shape, base):
        theta = math.remainder(theta, 2 * math.pi)
        translation = target.pose.position - rotation_matrix(theta) @ pose.position
        mappings.append(AnchorMapping(
            group_id=group_id,
            anchor_piece_id=anchor.piece_id,
            anchor_target_id=target.target_id,
            rotation=theta,
            translation=translation,
            flip_parity=parity,
            pairs=[(anchor.piece_id, target.target_id)],
        ))
    return mappings
