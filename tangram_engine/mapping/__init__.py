"""Relative mapping: anchors, rigid group mappings, bindings"""
from .anchor import map_pose, unmap_pose, derive_mappings, rank_anchors, anchor_precondition
from .service import RelativeMappingService, Resolution

__all__ = [
    "RelativeMappingService",
    "Resolution",
    "map_pose",
    "unmap_pose",
    "derive_mappings",
    "rank_anchors",
    "anchor_precondition",
]
