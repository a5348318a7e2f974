"""
Relative Mapping Service.

Lets a correctly assembled construction group validate even when it is not
placed at the canonical absolute location, and owns instance binding and
target consumption.

Match precedence for one piece (first success wins):
1. Hysteresis: bound piece still close to its last-known-valid pose
2. Bound target: direct check, then mapped check (bound pieces never
   switch targets)
3. Direct: closest valid unconsumed target of the same shape
4. Mapped: group mapping applied, closest valid unconsumed target
5. Anchor: establish a new group mapping, then retry the mapped check

Mapping-internal outcomes (MappingSignal) only cause fallbacks; they are
logged at debug level and reported on the Resolution, never raised.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence
import logging
import math

import numpy as np

from tangram_engine.config import ValidationConfig
from tangram_engine.models import (
    AnchorMapping,
    ConstructionGroup,
    MappingSignal,
    MatchSource,
    PieceShape,
    PlacementCheck,
    Pose2D,
    TargetSlot,
    ValidationFailure,
    ValidationResult,
)
from tangram_engine.lifecycle.state import PieceLifecycle
from tangram_engine.validation.validator import Tolerances, validate_piece
from tangram_engine.geometry.shapes import feature_difference
from tangram_engine.geometry.transform import fit_rigid
from tangram_engine.mapping.anchor import (
    anchor_precondition,
    derive_mappings,
    map_pose,
    rank_anchors,
)

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """
    Outcome of RelativeMappingService.resolve().

    Attributes:
        result: ValidationResult of the resolved piece
        anchored_piece_id: Other piece bound as anchor while resolving (if any)
        mapping_updated: True if a pair was added to the group mapping
            (triggers a refinement sweep)
        signals: Fallback signals raised along the way
    """
    result: ValidationResult
    anchored_piece_id: Optional[str] = None
    mapping_updated: bool = False
    signals: list[MappingSignal] = field(default_factory=list)


class RelativeMappingService:
    """
    Per-puzzle bookkeeping of targets, bindings and group mappings.

    Attributes:
        config: ValidationConfig (tolerances, anchor thresholds)

    Invariants:
        - A target is consumed by at most one piece
        - A consumed target's shape equals the consuming piece's shape
        - Mapping pair lists never repeat a piece id or a target id
    """

    def __init__(self, config: ValidationConfig):
        self.config = config
        self._targets: dict[str, TargetSlot] = {}
        self._consumed: dict[str, tuple[str, Optional[int]]] = {}
        self._mappings: dict[int, AnchorMapping] = {}

    # ========== Puzzle & Config ==========

    def load(self, targets: Sequence[TargetSlot]) -> None:
        self._targets = {t.target_id: t for t in targets}
        self._consumed.clear()
        self._mappings.clear()

    def configure(self, config: ValidationConfig) -> None:
        self.config = config

    @property
    def targets(self) -> list[TargetSlot]:
        return list(self._targets.values())

    def target(self, target_id: str) -> TargetSlot:
        return self._targets[target_id]

    @property
    def tolerances(self) -> Tolerances:
        return Tolerances.from_config(self.config)

    # ========== Consumption & Binding ==========

    def is_consumed(self, target_id: str) -> bool:
        return target_id in self._consumed

    def consumer_of(self, target_id: str) -> Optional[str]:
        holder = self._consumed.get(target_id)
        return holder[0] if holder else None

    def consumed_by_group(self, group_id: int) -> set[str]:
        return {tid for tid, (_, gid) in self._consumed.items() if gid == group_id}

    def unconsumed(self, shape: Optional[PieceShape] = None) -> list[TargetSlot]:
        return [
            t for t in self._targets.values()
            if t.target_id not in self._consumed and (shape is None or t.shape is shape)
        ]

    def bind(self, piece: PieceLifecycle, target_id: str, group_id: Optional[int] = None) -> bool:
        """
        Bind piece <-> target and mark the target consumed.

        Returns:
            False on BINDING_CONFLICT (target held by another piece) or shape
            mismatch; nothing is changed in that case
        """
        target = self._targets.get(target_id)
        if target is None or target.shape is not piece.shape:
            logger.debug("Refusing to bind %s to %s (unknown target or shape mismatch)",
                         piece.piece_id, target_id)
            return False
        holder = self._consumed.get(target_id)
        if holder is not None and holder[0] != piece.piece_id:
            logger.debug("%s: %s already consumed by %s",
                         MappingSignal.BINDING_CONFLICT.value, target_id, holder[0])
            return False
        if piece.bound_target_id is not None and piece.bound_target_id != target_id:
            self.release(piece)
        self._consumed[target_id] = (piece.piece_id, group_id)
        piece.bound_target_id = target_id
        return True

    def release(self, piece: PieceLifecycle) -> Optional[str]:
        """
        Release the piece's binding so its target can be reclaimed.

        Returns:
            Released target id (None if the piece was unbound)
        """
        target_id = piece.release_binding()
        if target_id is None:
            return None
        holder = self._consumed.get(target_id)
        if holder is not None and holder[0] == piece.piece_id:
            del self._consumed[target_id]
        for mapping in self._mappings.values():
            mapping.pairs = [(p, t) for p, t in mapping.pairs if p != piece.piece_id]
        logger.debug("Released %s from %s", target_id, piece.piece_id)
        return target_id

    # ========== Mappings ==========

    def mapping_for(self, group_id: Optional[int]) -> Optional[AnchorMapping]:
        if group_id is None:
            return None
        return self._mappings.get(group_id)

    @property
    def mappings(self) -> dict[int, AnchorMapping]:
        return dict(self._mappings)

    def sync(self, groups: Iterable[ConstructionGroup], pieces: dict[str, PieceLifecycle]) -> None:
        """
        Reconcile mappings and consumption with freshly computed groups.

        Notes:
            - A mapping is dropped when its anchor left the group or is no
              longer validated on the anchor target (re-derived lazily)
            - Pairs are kept only for validated members still bound to the
              paired target; remaining pairs are refit
        """
        groups = list(groups)
        group_of = {pid: g.group_id for g in groups for pid in g.member_ids}
        kept: dict[int, AnchorMapping] = {}
        for group in groups:
            mapping = self._mappings.get(group.group_id)
            if mapping is None:
                continue
            anchor = pieces.get(mapping.anchor_piece_id)
            if (anchor is None or anchor.piece_id not in group.member_ids
                    or not anchor.is_validated
                    or anchor.bound_target_id != mapping.anchor_target_id):
                logger.debug("Dropping mapping of group %s: anchor %s changed",
                             group.group_id, mapping.anchor_piece_id)
                continue
            mapping.pairs = [
                (pid, tid) for pid, tid in mapping.pairs
                if pid in group.member_ids and pid in pieces
                and pieces[pid].is_validated and pieces[pid].bound_target_id == tid
            ]
            self.refine(mapping, pieces)
            kept[group.group_id] = mapping
        self._mappings = kept

        for target_id, (piece_id, _) in list(self._consumed.items()):
            self._consumed[target_id] = (piece_id, group_of.get(piece_id))

    def refine(self, mapping: AnchorMapping, pieces: dict[str, PieceLifecycle]) -> None:
        """
        Least-squares refit of the mapping over all pairs (>= 2 pairs).

        Notes:
            - Rotation and translation from fit_rigid() on centroids
            - Flip parity re-read from a flip-sensitive pair if one exists
        """
        pairs = [(pieces[p], self._targets[t]) for p, t in mapping.pairs
                 if p in pieces and t in self._targets and pieces[p].pose is not None]
        if len(pairs) < 2:
            return
        src = np.array([piece.pose.position for piece, _ in pairs])
        dst = np.array([target.pose.position for _, target in pairs])
        fit = fit_rigid(src, dst)
        mapping.rotation = fit.theta
        mapping.translation = fit.translation
        for piece, target in pairs:
            if piece.shape.flip_sensitive:
                mapping.flip_parity = bool(piece.pose.flip) ^ bool(target.pose.flip)
                break
        logger.debug("Refined mapping of group %s over %d pairs: theta=%.1f deg",
                     mapping.group_id, len(pairs), math.degrees(mapping.rotation))

    # ========== Resolution ==========

    def resolve(self, piece: PieceLifecycle, group: Optional[ConstructionGroup],
                pieces: dict[str, PieceLifecycle]) -> Resolution:
        """
        Validate one piece against the puzzle, binding on success.

        Args:
            piece: Piece to validate (pose must be set)
            group: Its construction group (None for unsettled pieces)
            pieces: All pieces by id (for anchors and refinement)

        Returns:
            Resolution (see module docstring for precedence)
        """
        tol = self.tolerances
        group_id = group.group_id if group is not None else None
        signals: list[MappingSignal] = []
        mapping = self.mapping_for(group_id)

        # 1. Hysteresis
        if piece.bound_target_id is not None and piece.within_hysteresis(self.config):
            check = validate_piece(piece.pose, piece.last_valid_pose, piece.shape,
                                   tol.widened(self.config.hysteresis_factor))
            return Resolution(self._success(piece, piece.bound_target_id, check,
                                            MatchSource.HYSTERESIS))

        # 2. Bound target only
        if piece.bound_target_id is not None:
            target = self._targets[piece.bound_target_id]
            check = validate_piece(piece.pose, target.pose, piece.shape, tol)
            if check.is_valid:
                return Resolution(self._success(piece, target.target_id, check, MatchSource.DIRECT))
            if mapping is not None:
                mapped_check = validate_piece(map_pose(mapping, piece.pose), target.pose,
                                              piece.shape, tol)
                if mapped_check.is_valid:
                    updated = self._add_pair(mapping, piece, target.target_id, pieces)
                    return Resolution(
                        self._success(piece, target.target_id, mapped_check, MatchSource.MAPPED),
                        mapping_updated=updated,
                    )
                check = mapped_check
            return Resolution(self._failure(piece, target.target_id, check))

        # 3. Direct
        candidates = self.unconsumed(piece.shape)
        if not candidates:
            return Resolution(ValidationResult(piece.piece_id,
                                               failure=ValidationFailure.wrong_piece()))
        direct = self._best_match(piece.pose, candidates, piece.shape, tol)
        if direct is not None:
            target, check = direct
            if self.bind(piece, target.target_id, group_id):
                return Resolution(self._success(piece, target.target_id, check, MatchSource.DIRECT))
            signals.append(MappingSignal.BINDING_CONFLICT)

        # 4. Existing group mapping / 5. anchor establishment
        anchored_piece_id = None
        if mapping is None:
            signals.append(MappingSignal.NO_MAPPING_YET)
            if group is not None and len(group) >= 2:
                mapping = self._establish(group, pieces, signals)
                if mapping is not None:
                    if mapping.anchor_piece_id == piece.piece_id:
                        target = self._targets[mapping.anchor_target_id]
                        check = validate_piece(map_pose(mapping, piece.pose), target.pose,
                                               piece.shape, tol)
                        return Resolution(
                            self._success(piece, target.target_id, check, MatchSource.ANCHOR),
                            mapping_updated=True, signals=signals,
                        )
                    anchored_piece_id = mapping.anchor_piece_id
                    candidates = self.unconsumed(piece.shape)

        if mapping is not None and candidates:
            mapped_pose = map_pose(mapping, piece.pose)
            mapped = self._best_match(mapped_pose, candidates, piece.shape, tol)
            if mapped is not None:
                target, check = mapped
                if self.bind(piece, target.target_id, group_id):
                    self._add_pair(mapping, piece, target.target_id, pieces)
                    return Resolution(
                        self._success(piece, target.target_id, check, MatchSource.MAPPED),
                        anchored_piece_id=anchored_piece_id, mapping_updated=True,
                        signals=signals,
                    )
                signals.append(MappingSignal.BINDING_CONFLICT)

        # Failure: report against the nearest candidate in the best frame
        if not candidates:
            result = ValidationResult(piece.piece_id, failure=ValidationFailure.wrong_piece())
        else:
            hint_pose = map_pose(mapping, piece.pose) if mapping is not None else piece.pose
            target, check = self._closest(hint_pose, candidates, piece.shape, tol)
            result = self._failure(piece, target.target_id, check)
        for signal in signals:
            logger.debug("%s while resolving %s", signal.value, piece.piece_id)
        return Resolution(result, anchored_piece_id=anchored_piece_id,
                          mapping_updated=anchored_piece_id is not None, signals=signals)

    def _establish(self, group: ConstructionGroup, pieces: dict[str, PieceLifecycle],
                   signals: list[MappingSignal]) -> Optional[AnchorMapping]:
        """
        Pick an anchor, match it to a target and install the group mapping.

        Notes:
            - Every ranked member is tried in order until one yields a
              hypothesis under which at least one other member validates
            - The anchor target is consumed only then
        """
        members = [pieces[pid] for pid in sorted(group.member_ids)
                   if pid in pieces and pieces[pid].pose is not None]
        if len(members) < 2:
            signals.append(MappingSignal.NO_ANCHOR_AVAILABLE)
            return None

        for anchor in rank_anchors(group, members):
            if not anchor_precondition(anchor, members, group, self.config):
                continue
            mapping = self._best_hypothesis(group, anchor, members)
            if mapping is None:
                continue
            if not self.bind(anchor, mapping.anchor_target_id, group.group_id):
                signals.append(MappingSignal.BINDING_CONFLICT)
                continue
            self._mappings[group.group_id] = mapping
            logger.debug("Group %s anchored on %s -> %s (theta=%.1f deg)", group.group_id,
                         anchor.piece_id, mapping.anchor_target_id, math.degrees(mapping.rotation))
            return mapping

        signals.append(MappingSignal.NO_ANCHOR_AVAILABLE)
        return None

    def _best_hypothesis(self, group: ConstructionGroup, anchor: PieceLifecycle,
                         members: Sequence[PieceLifecycle]) -> Optional[AnchorMapping]:
        """
        Score every (target, symmetry branch) hypothesis for an anchor.

        Ranking:
            1. Most other members validating under the hypothesis
            2. Feature-angle agreement within the relaxed tolerance
            3. Anchor-to-target distance
        """
        tol = self.tolerances
        relaxed_deg = self.config.rotation_tolerance_deg * self.config.relaxed_rotation_factor
        if anchor.bound_target_id is not None:
            anchor_targets = [self._targets[anchor.bound_target_id]]
        else:
            anchor_targets = self.unconsumed(anchor.shape)

        best = None
        best_key = None
        for target in anchor_targets:
            turn = abs(math.degrees(feature_difference(
                anchor.shape, anchor.pose.theta, anchor.pose.flip,
                target.pose.theta, target.pose.flip)))
            agrees = turn <= relaxed_deg
            distance = anchor.pose.distance_to(target.pose)
            for branch, mapping in enumerate(derive_mappings(group.group_id, anchor, target)):
                consensus = self._consensus(mapping, anchor, members, tol)
                if consensus == 0:
                    continue
                key = (-consensus, 0 if agrees else 1, distance, target.target_id, branch)
                if best_key is None or key < best_key:
                    best, best_key = mapping, key
        return best

    def _consensus(self, mapping: AnchorMapping, anchor: PieceLifecycle,
                   members: Sequence[PieceLifecycle], tol: Tolerances) -> int:
        count = 0
        for member in members:
            if member.piece_id == anchor.piece_id:
                continue
            if member.bound_target_id is not None:
                if member.bound_target_id == mapping.anchor_target_id:
                    continue
                candidates = [self._targets[member.bound_target_id]]
            else:
                candidates = [t for t in self.unconsumed(member.shape)
                              if t.target_id != mapping.anchor_target_id]
            if self._best_match(map_pose(mapping, member.pose), candidates, member.shape, tol):
                count += 1
        return count

    def _add_pair(self, mapping: AnchorMapping, piece: PieceLifecycle, target_id: str,
                  pieces: dict[str, PieceLifecycle]) -> bool:
        added = mapping.add_pair(piece.piece_id, target_id)
        if added:
            self.refine(mapping, pieces)
        return added

    # ========== Helpers ==========

    @staticmethod
    def _best_match(pose: Pose2D, candidates: Sequence[TargetSlot], shape: PieceShape,
                    tol: Tolerances) -> Optional[tuple[TargetSlot, PlacementCheck]]:
        """Closest valid candidate, None if none validates."""
        best = None
        for target in candidates:
            check = validate_piece(pose, target.pose, shape, tol)
            if check.is_valid and (best is None or check.distance < best[1].distance):
                best = (target, check)
        return best

    @staticmethod
    def _closest(pose: Pose2D, candidates: Sequence[TargetSlot], shape: PieceShape,
                 tol: Tolerances) -> tuple[TargetSlot, PlacementCheck]:
        target = min(candidates, key=lambda t: pose.distance_to(t.pose))
        return target, validate_piece(pose, target.pose, shape, tol)

    @staticmethod
    def _success(piece: PieceLifecycle, target_id: str, check: PlacementCheck,
                 source: MatchSource) -> ValidationResult:
        return ValidationResult(piece.piece_id, target_id=target_id, check=check,
                                source=source, nearest_target_id=target_id)

    @staticmethod
    def _failure(piece: PieceLifecycle, target_id: str, check: PlacementCheck) -> ValidationResult:
        return ValidationResult(piece.piece_id, check=check, failure=check.failure,
                                nearest_target_id=target_id)

    # ========== Suggestions ==========

    def suggest_next_target(self) -> Optional[TargetSlot]:
        """
        Easiest unconsumed target for a stuck player.

        Notes:
            - Ranked by PieceShape.hint_difficulty, then puzzle order
        """
        remaining = self.unconsumed()
        if not remaining:
            return None
        order = {tid: i for i, tid in enumerate(self._targets)}
        return min(remaining, key=lambda t: (t.shape.hint_difficulty, order[t.target_id]))
