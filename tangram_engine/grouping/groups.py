"""
Construction Group Manager.

Clusters settled pieces into spatially connected construction groups.

Algorithm:
1. Place every settled piece's polygon in world space
2. Connect two pieces when their polygon gap <= group_contact_tolerance
3. Connected components via union-find
4. Keep group ids stable: a new cluster inherits the id of the previous
   group it shares most members with (greedy, largest overlap first)
5. Update confidence: +confidence_step while membership and poses are
   stable, x confidence_decay on member movement, 0 for new groups

Confidence gates nudges and anchor promotion only, never correctness.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional
import itertools
import logging

import numpy as np

from tangram_engine.config import ValidationConfig
from tangram_engine.models import ConstructionGroup, Pose2D
from tangram_engine.lifecycle.state import PieceLifecycle
from tangram_engine.geometry.contact import piece_polygon, to_shapely, polygon_gap, bounding_radius

logger = logging.getLogger(__name__)


class _UnionFind:
    """Disjoint sets over piece ids (path halving, union by size)."""

    def __init__(self, items: Iterable[str]):
        self.parent = {item: item for item in items}
        self.size = {item: 1 for item in self.parent}

    def find(self, item: str) -> str:
        while self.parent[item] != item:
            self.parent[item] = self.parent[self.parent[item]]
            item = self.parent[item]
        return item

    def union(self, a: str, b: str) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self.size[ra] < self.size[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        self.size[ra] += self.size[rb]

    def components(self) -> list[list[str]]:
        comps: dict[str, list[str]] = {}
        for item in self.parent:
            comps.setdefault(self.find(item), []).append(item)
        return [sorted(members) for members in comps.values()]


@dataclass
class _GroupMemory:
    members: frozenset[str]
    poses: dict[str, Pose2D]
    confidence: float


class ConstructionGroupManager:
    """
    Maintains construction groups across validation passes.

    Attributes:
        config: ValidationConfig (contact tolerance, confidence step/decay)

    Example:
        >>> manager = ConstructionGroupManager(config)
        >>> groups = manager.update_groups(pieces.values())
        >>> manager.record_attempt("piece-1", groups[0].group_id)
    """

    def __init__(self, config: ValidationConfig):
        self.config = config
        self._ids = itertools.count(1)
        self._memory: dict[int, _GroupMemory] = {}
        self._groups: dict[int, ConstructionGroup] = {}
        self._group_of: dict[str, int] = {}
        self._attempts: dict[str, int] = {}

    # ========== Grouping ==========

    def update_groups(self, pieces: Iterable[PieceLifecycle]) -> list[ConstructionGroup]:
        """
        Recompute construction groups.

        Args:
            pieces: All pieces (unsettled ones are ignored)

        Returns:
            Groups sorted by group id (singletons included)
        """
        settled = {p.piece_id: p for p in pieces if p.is_settled and p.pose is not None}
        scale = self.config.piece_scale
        polygons = {pid: piece_polygon(p.shape, p.pose, scale) for pid, p in settled.items()}
        shapes = {pid: to_shapely(poly) for pid, poly in polygons.items()}

        uf = _UnionFind(settled)
        ids = sorted(settled)
        for a, b in itertools.combinations(ids, 2):
            # Cheap reject on centroid distance before the exact gap
            reach = 2 * scale * 2.0 + self.config.group_contact_tolerance
            if settled[a].pose.distance_to(settled[b].pose) > reach:
                continue
            if polygon_gap(shapes[a], shapes[b]) <= self.config.group_contact_tolerance:
                uf.union(a, b)

        clusters = uf.components()
        assigned = self._assign_ids(clusters)

        groups: dict[int, ConstructionGroup] = {}
        memory: dict[int, _GroupMemory] = {}
        for group_id, members in assigned.items():
            member_set = frozenset(members)
            poses = {pid: settled[pid].pose for pid in members}
            confidence = self._next_confidence(group_id, member_set, poses, settled)
            centroid = np.mean([settled[pid].pose.position for pid in members], axis=0)
            groups[group_id] = ConstructionGroup(
                group_id=group_id,
                member_ids=member_set,
                centroid=centroid,
                bounding_radius=bounding_radius(centroid, [polygons[pid] for pid in members]),
                confidence=confidence,
                attempts={pid: self._attempts.get(pid, 0) for pid in members},
            )
            memory[group_id] = _GroupMemory(member_set, poses, confidence)

        self._groups = groups
        self._memory = memory
        self._group_of = {pid: gid for gid, g in groups.items() for pid in g.member_ids}
        return [groups[gid] for gid in sorted(groups)]

    def _assign_ids(self, clusters: list[list[str]]) -> dict[int, list[str]]:
        overlaps = []
        for index, members in enumerate(clusters):
            member_set = set(members)
            for group_id, mem in self._memory.items():
                shared = len(member_set & mem.members)
                if shared:
                    overlaps.append((-shared, group_id, index))
        overlaps.sort()

        assigned: dict[int, list[str]] = {}
        taken_clusters: set[int] = set()
        for _, group_id, index in overlaps:
            if group_id in assigned or index in taken_clusters:
                continue
            assigned[group_id] = clusters[index]
            taken_clusters.add(index)

        for index, members in enumerate(clusters):
            if index not in taken_clusters:
                assigned[next(self._ids)] = members
        return assigned

    def _next_confidence(self, group_id: int, members: frozenset[str],
                         poses: dict[str, Pose2D], settled: dict[str, PieceLifecycle]) -> float:
        previous = self._memory.get(group_id)
        if previous is None:
            return 0.0
        moved = any(
            not settled[pid].is_jitter(previous.poses[pid], self.config)
            for pid in members if pid in previous.poses
        )
        if moved:
            return previous.confidence * self.config.confidence_decay
        if members != previous.members:
            # Membership changed without movement: keep, do not grow
            return previous.confidence
        return min(1.0, previous.confidence + self.config.confidence_step)

    # ========== Lookup ==========

    @property
    def groups(self) -> list[ConstructionGroup]:
        return [self._groups[gid] for gid in sorted(self._groups)]

    def group_of(self, piece_id: str) -> Optional[ConstructionGroup]:
        group_id = self._group_of.get(piece_id)
        return self._groups.get(group_id) if group_id is not None else None

    # ========== Attempts ==========

    def record_attempt(self, piece_id: str, group_id: Optional[int] = None) -> int:
        """
        Increment the retry counter of a piece.

        Args:
            piece_id: Piece that failed a placement
            group_id: Group the attempt happened in (None for loose pieces)

        Returns:
            Updated attempt count
        """
        count = self._attempts.get(piece_id, 0) + 1
        self._attempts[piece_id] = count
        group = self._groups.get(group_id) if group_id is not None else None
        if group is not None and piece_id in group.member_ids:
            group.attempts[piece_id] = count
        logger.debug("Attempt %d recorded for %s (group %s)", count, piece_id, group_id)
        return count

    def attempts(self, piece_id: str) -> int:
        return self._attempts.get(piece_id, 0)

    def reset_attempts(self, piece_id: str) -> None:
        self._attempts.pop(piece_id, None)
        for group in self._groups.values():
            group.attempts.pop(piece_id, None)

    def clear(self) -> None:
        self._memory.clear()
        self._groups.clear()
        self._group_of.clear()
        self._attempts.clear()
