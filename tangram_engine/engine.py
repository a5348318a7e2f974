"""
Validation Engine (facade).

Owns all mutable state (pieces, groups, mappings, consumption) and wires
the components together:

    observe_piece() -> PieceLifecycle -> (debounce) -> groups refresh
        -> RelativeMappingService.resolve() -> lifecycle / target validity
        -> NudgeEscalator on failure -> listener events

Threading:
- Every public entry point and every timer callback runs under one RLock
- Listener callbacks are dispatched after the lock is released, in the
  order the events were produced
- One pending debounce timer per piece; a stale timer (old token) is dropped
"""

from __future__ import annotations
from typing import Iterable, Optional, Sequence
import logging
import threading

from tangram_engine.config import ValidationConfig
from tangram_engine.models import (
    AnchorMapping,
    ConstructionGroup,
    MatchSource,
    NudgeContent,
    PieceShape,
    PieceState,
    Pose2D,
    TargetSlot,
    ValidationResult,
)
from tangram_engine.lifecycle.state import PieceLifecycle
from tangram_engine.grouping.groups import ConstructionGroupManager
from tangram_engine.mapping.anchor import unmap_pose
from tangram_engine.mapping.service import RelativeMappingService
from tangram_engine.nudges.escalation import NudgeEscalator, NudgeStats
from tangram_engine.scheduling import ThreadingTimerScheduler, TimerHandle
from tangram_engine.utils.conversion import sanitize_observation, validate_targets

logger = logging.getLogger(__name__)

# Margin added to settle-flush timers so the settle window has fully elapsed
_FLUSH_MARGIN = 1e-3

_RETRY_STATES = (PieceState.VALIDATING, PieceState.INVALID)


class EngineListener:
    """
    Receiver of engine events. Override the methods you need.

    All methods are called outside the engine lock, so they may call back
    into the engine.
    """

    def on_validation_changed(self, target_id: str, is_valid: bool) -> None:
        pass

    def on_piece_state_changed(self, piece_id: str, state: PieceState) -> None:
        pass

    def on_nudge(self, piece_id: str, nudge: NudgeContent) -> None:
        pass

    def on_puzzle_completed(self) -> None:
        pass


class ValidationEngine:
    """
    Tangram placement validation engine.

    Args:
        config: ValidationConfig (defaults to the NORMAL preset)
        listener: EngineListener receiving events (defaults to a no-op)
        scheduler: Timer scheduler (defaults to ThreadingTimerScheduler);
            its time() is the engine clock

    Example:
        >>> engine = ValidationEngine(listener=my_listener)
        >>> engine.load_puzzle(targets)
        >>> engine.observe_piece("sq", "square", (120.0, 80.0), 0.0, dragging=True)
        >>> engine.observe_piece("sq", "square", (120.0, 80.0), 0.0)
        >>> # ... placement_delay later the piece validates
    """

    def __init__(self, config: Optional[ValidationConfig] = None,
                 listener: Optional[EngineListener] = None, scheduler=None):
        config = config if config is not None else ValidationConfig()
        config.validate()
        self._config = config
        self._listener = listener if listener is not None else EngineListener()
        self._scheduler = scheduler if scheduler is not None else ThreadingTimerScheduler()
        self._lock = threading.RLock()

        self._pieces: dict[str, PieceLifecycle] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._flush_timers: list[TimerHandle] = []
        self._groups = ConstructionGroupManager(config)
        self._mapping = RelativeMappingService(config)
        self._nudges = NudgeEscalator(config)
        self._valid_targets: set[str] = set()
        self._last_results: dict[str, ValidationResult] = {}
        self._loaded = False
        self._completed = False
        self._events: list[tuple[str, tuple]] = []

    # ========== Inbound ==========

    def load_puzzle(self, targets: Iterable[TargetSlot],
                    config: Optional[ValidationConfig] = None) -> None:
        """
        Install a new target set and reset all mutable state.

        Args:
            targets: Target slots of the new puzzle
            config: Optional configuration to apply with the puzzle

        Raises:
            ConfigurationError: Malformed target set or configuration; the
                engine keeps its previous puzzle and state
        """
        slots = validate_targets(targets)
        if config is not None:
            config.validate()

        with self._lock:
            for handle in self._timers.values():
                handle.cancel()
            for handle in self._flush_timers:
                handle.cancel()
            self._timers.clear()
            self._flush_timers.clear()
            if config is not None:
                self._apply_config(config)
            self._pieces.clear()
            self._groups.clear()
            self._mapping.load(slots)
            self._nudges.clear()
            self._valid_targets.clear()
            self._last_results.clear()
            self._events.clear()
            self._loaded = True
            self._completed = False
            logger.info("Loaded puzzle with %d targets", len(slots))

    def configure(self, config: ValidationConfig) -> None:
        """
        Swap the configuration (e.g. difficulty preset) keeping piece state.

        Raises:
            ConfigurationError: If config is invalid (previous config kept)
        """
        config.validate()
        with self._lock:
            self._apply_config(config)
            logger.info("Configuration updated (position_tolerance=%.1f, rotation=%.1f deg)",
                        config.position_tolerance, config.rotation_tolerance_deg)

    def observe_piece(self, piece_id: str, shape: PieceShape | str, position: Sequence[float],
                      rotation: float, flip: bool = False, timestamp: Optional[float] = None,
                      dragging: bool = False) -> None:
        """
        Report a piece pose.

        Args:
            piece_id: Stable id of the physical / virtual piece
            shape: PieceShape or its name
            position: (x, y) centroid in world units
            rotation: Rotation in radians (any range)
            flip: Mirror state
            timestamp: Observation time stored on the piece record
                (default: scheduler time)
            dragging: True while the piece is held

        Notes:
            - Malformed values are sanitized; an observation without a usable
              position for an unknown piece is dropped with a warning
            - A piece reported with a different shape restarts its lifecycle
            - Debounce, nudge cooldown and settle windows always run on the
              scheduler clock, whatever clock timestamp comes from
        """
        with self._lock:
            now = self._now(timestamp)
            try:
                shape = PieceShape.coerce(shape)
            except ValueError:
                logger.warning("Dropping observation of %s: unknown shape %r", piece_id, shape)
                return

            piece = self._pieces.get(piece_id)
            if piece is not None and piece.shape is not shape:
                logger.warning("Piece %s changed shape %s -> %s, restarting its lifecycle",
                               piece_id, piece.shape.display_name, shape.display_name)
                self._forget(piece)
                piece = None

            pose = sanitize_observation(position, rotation, flip,
                                        previous=piece.pose if piece is not None else None,
                                        limit=self._config.coordinate_limit)
            if pose is None:
                logger.warning("Dropping observation of %s: no usable position in %r",
                               piece_id, position)
                return

            if piece is None:
                piece = PieceLifecycle(piece_id, shape)
                self._pieces[piece_id] = piece

            was_valid = piece.is_validated
            if dragging or piece.pose is None or not piece.is_jitter(pose, self._config):
                self._nudges.note_motion(piece_id, self._scheduler.time())

            entered = piece.observe(pose, dragging, now, self._config)
            for state in entered:
                self._emit("on_piece_state_changed", piece_id, state)
            if PieceState.MOVED in entered:
                self._cancel_debounce(piece)
            if was_valid and not piece.is_validated:
                self._set_validity(piece.bound_target_id, False)
            if entered and entered[-1] is PieceState.PLACED:
                self._start_debounce(piece)
        self._dispatch()

    def request_validation_pass(self, timestamp: Optional[float] = None) -> dict[str, ValidationResult]:
        """
        Re-validate every retrying piece now (CV-frame or periodic driver).

        Returns:
            Results of the pieces validated in this pass, by piece id

        Notes:
            - Each piece is validated at most once per pass
            - PLACED pieces keep waiting for their debounce
            - Buffered nudges of settled pieces are released (settling is
              judged on the scheduler clock)
        """
        results: dict[str, ValidationResult] = {}
        with self._lock:
            now = self._now(timestamp)
            if self._loaded:
                self._refresh_groups()
                visited: set[str] = set()
                for piece_id in sorted(self._pieces):
                    piece = self._pieces[piece_id]
                    if piece_id in visited or piece.state not in _RETRY_STATES:
                        continue
                    self._validate(piece, now, placement=False, visited=visited)
                results = {pid: self._last_results[pid] for pid in visited
                           if pid in self._last_results}
            for piece_id, nudge in self._nudges.flush(self._scheduler.time()):
                self._emit("on_nudge", piece_id, nudge)
        self._dispatch()
        return results

    # ========== Pull API ==========

    def get_validated_targets(self) -> set[str]:
        with self._lock:
            return set(self._valid_targets)

    def get_piece_state(self, piece_id: str) -> PieceState:
        with self._lock:
            piece = self._pieces.get(piece_id)
            return piece.state if piece is not None else PieceState.UNOBSERVED

    def get_piece(self, piece_id: str) -> Optional[PieceLifecycle]:
        with self._lock:
            return self._pieces.get(piece_id)

    def get_last_result(self, piece_id: str) -> Optional[ValidationResult]:
        with self._lock:
            return self._last_results.get(piece_id)

    def get_groups(self) -> list[ConstructionGroup]:
        with self._lock:
            return self._groups.groups

    def get_mapping(self, group_id: int) -> Optional[AnchorMapping]:
        with self._lock:
            return self._mapping.mapping_for(group_id)

    def get_progress(self) -> float:
        """Fraction of targets currently validated, in [0, 1]."""
        with self._lock:
            total = len(self._mapping.targets)
            return len(self._valid_targets) / total if total else 0.0

    def suggest_next_target(self) -> Optional[TargetSlot]:
        """Easiest target not yet claimed by any piece."""
        with self._lock:
            return self._mapping.suggest_next_target()

    @property
    def config(self) -> ValidationConfig:
        return self._config

    @property
    def nudge_stats(self) -> NudgeStats:
        return self._nudges.stats

    @property
    def is_completed(self) -> bool:
        return self._completed

    # ========== Validation ==========

    def _validate(self, piece: PieceLifecycle, now: float, placement: bool,
                  visited: set[str], allow_sweep: bool = True) -> ValidationResult:
        visited.add(piece.piece_id)
        for state in piece.begin_validation():
            self._emit("on_piece_state_changed", piece.piece_id, state)

        group = self._groups.group_of(piece.piece_id)
        resolution = self._mapping.resolve(piece, group, self._pieces)
        result = resolution.result
        self._last_results[piece.piece_id] = result

        anchor_id = resolution.anchored_piece_id
        if anchor_id is not None and anchor_id != piece.piece_id:
            anchor = self._pieces[anchor_id]
            visited.add(anchor_id)
            self._accept(anchor, anchor.bound_target_id, fresh=True)

        if result.is_valid:
            self._accept(piece, result.target_id, fresh=result.source is not MatchSource.HYSTERESIS)
        else:
            self._reject(piece, result, group, now, placement)

        if resolution.mapping_updated and allow_sweep and group is not None:
            self._sweep(group, piece.piece_id, visited, now)
        return result

    def _sweep(self, group: ConstructionGroup, exclude: str, visited: set[str], now: float) -> None:
        """Single non-recursive re-validation of unvalidated group members."""
        for member_id in sorted(group.member_ids):
            if member_id == exclude or member_id in visited:
                continue
            member = self._pieces.get(member_id)
            if member is None or member.state not in _RETRY_STATES:
                continue
            self._validate(member, now, placement=False, visited=visited, allow_sweep=False)

    def _accept(self, piece: PieceLifecycle, target_id: str, fresh: bool) -> None:
        if piece.piece_id in self._timers:
            self._cancel_debounce(piece)
        for state in piece.begin_validation():
            self._emit("on_piece_state_changed", piece.piece_id, state)

        group = self._groups.group_of(piece.piece_id)
        peers = set()
        if group is not None:
            peers = {pid for pid in group.member_ids
                     if pid != piece.piece_id and pid in self._pieces and self._pieces[pid].is_validated}
        for state in piece.mark_valid(target_id, frozenset(peers), fresh=fresh):
            self._emit("on_piece_state_changed", piece.piece_id, state)
        for pid in peers:
            peer = self._pieces[pid]
            peer.connections = peer.connections | {piece.piece_id}

        self._groups.reset_attempts(piece.piece_id)
        self._nudges.reset(piece.piece_id)
        self._set_validity(target_id, True)
        self._check_completion()

    def _reject(self, piece: PieceLifecycle, result: ValidationResult,
                group: Optional[ConstructionGroup], now: float, placement: bool) -> None:
        entered = piece.mark_failed(result.failure, self._config.invalid_streak_threshold)
        if PieceState.INVALID in entered:
            released = self._mapping.release(piece)
            if released is not None:
                self._set_validity(released, False)
                logger.debug("%s invalid after %d failures, released %s",
                             piece.piece_id, piece.invalid_streak, released)
        for state in entered:
            self._emit("on_piece_state_changed", piece.piece_id, state)

        if not placement:
            return
        group_id = group.group_id if group is not None else None
        attempts = self._groups.record_attempt(piece.piece_id, group_id)
        confidence = group.confidence if group is not None else 0.0
        nudge = self._nudges.evaluate(piece.piece_id, piece.shape, piece.pose, result,
                                      attempts, confidence, now,
                                      target_pose=self._table_target_pose(result, group_id))
        if nudge is not None:
            self._emit("on_nudge", piece.piece_id, nudge)
        elif self._nudges.has_buffered(piece.piece_id):
            self._schedule_flush(self._nudges.settle_remaining(piece.piece_id, now))

    def _table_target_pose(self, result: ValidationResult, group_id: Optional[int]) -> Optional[Pose2D]:
        """Nearest target expressed in the player's (table) frame."""
        if result.nearest_target_id is None:
            return None
        target = self._mapping.target(result.nearest_target_id)
        mapping = self._mapping.mapping_for(group_id)
        return unmap_pose(mapping, target.pose) if mapping is not None else target.pose

    def _refresh_groups(self) -> None:
        groups = self._groups.update_groups(self._pieces.values())
        self._mapping.sync(groups, self._pieces)

    def _set_validity(self, target_id: Optional[str], valid: bool) -> None:
        if target_id is None:
            return
        if valid and target_id not in self._valid_targets:
            self._valid_targets.add(target_id)
            self._emit("on_validation_changed", target_id, True)
        elif not valid and target_id in self._valid_targets:
            self._valid_targets.discard(target_id)
            self._emit("on_validation_changed", target_id, False)

    def _check_completion(self) -> None:
        if self._completed or not self._loaded:
            return
        target_ids = {t.target_id for t in self._mapping.targets}
        if target_ids and target_ids <= self._valid_targets:
            self._completed = True
            logger.info("Puzzle completed (%d targets)", len(target_ids))
            self._emit("on_puzzle_completed")

    # ========== Timers ==========

    def _start_debounce(self, piece: PieceLifecycle) -> None:
        self._cancel_debounce(piece)
        token = piece.next_debounce_token()
        piece_id = piece.piece_id
        self._timers[piece_id] = self._scheduler.schedule(
            self._config.placement_delay, lambda: self._on_debounce(piece_id, token))

    def _cancel_debounce(self, piece: PieceLifecycle) -> None:
        handle = self._timers.pop(piece.piece_id, None)
        if handle is not None:
            handle.cancel()
        piece.next_debounce_token()

    def _on_debounce(self, piece_id: str, token: int) -> None:
        with self._lock:
            piece = self._pieces.get(piece_id)
            if piece is None or piece.debounce_token != token:
                return
            self._timers.pop(piece_id, None)
            if not piece.can_validate or not self._loaded:
                logger.debug("Dropping scheduled validation of %s (state %s)",
                             piece_id, piece.state.value)
                return
            self._refresh_groups()
            self._validate(piece, self._scheduler.time(), placement=True, visited=set())
        self._dispatch()

    def _schedule_flush(self, delay: float) -> None:
        self._flush_timers = [h for h in self._flush_timers if not h.cancelled]
        self._flush_timers.append(
            self._scheduler.schedule(delay + _FLUSH_MARGIN, self._on_flush))

    def _on_flush(self) -> None:
        with self._lock:
            for piece_id, nudge in self._nudges.flush(self._scheduler.time()):
                self._emit("on_nudge", piece_id, nudge)
        self._dispatch()

    # ========== Internal ==========

    def _apply_config(self, config: ValidationConfig) -> None:
        self._config = config
        self._groups.config = config
        self._mapping.configure(config)
        self._nudges.configure(config)

    def _forget(self, piece: PieceLifecycle) -> None:
        self._cancel_debounce(piece)
        if piece.is_validated:
            self._set_validity(piece.bound_target_id, False)
        self._mapping.release(piece)
        self._groups.reset_attempts(piece.piece_id)
        self._nudges.reset(piece.piece_id)
        self._last_results.pop(piece.piece_id, None)
        del self._pieces[piece.piece_id]

    def _now(self, timestamp: Optional[float]) -> float:
        return float(timestamp) if timestamp is not None else self._scheduler.time()

    def _emit(self, name: str, *args) -> None:
        self._events.append((name, args))

    def _dispatch(self) -> None:
        with self._lock:
            events, self._events = self._events, []
        for name, args in events:
            getattr(self._listener, name)(*args)
