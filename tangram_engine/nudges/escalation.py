"""
Nudge / Hint Escalation.

Maps a failed ValidationResult, the group confidence and the piece's retry
count to a leveled hint:

    NONE -> VISUAL -> GENTLE -> SPECIFIC -> DIRECTED -> SOLUTION

Rules:
- score = attempts x (0.5 + confidence), compared with
  config.nudge_level_thresholds (monotonic in both inputs)
- Rotation and flip failures are raised to at least SPECIFIC
- Per-piece cooldown, growing with every nudge shown (capped)
- An orientation signature (rounded degrees + flip) makes the
  "looks right" acknowledgement appear once per orientation
- DIRECTED and SOLUTION nudges wait in a buffer until the piece has not
  moved for config.settle_window
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional
import logging
import math

from tangram_engine.config import ValidationConfig
from tangram_engine.models import (
    FailureKind,
    HintPayload,
    NudgeContent,
    NudgeLevel,
    PieceShape,
    Pose2D,
    ValidationResult,
)
from tangram_engine.validation.validator import orientation_matches
from tangram_engine.nudges.messages import (
    DIRECTED_TEXT,
    LEVEL_DURATIONS,
    ORIENTATION_ACK,
    SOLUTION_TEXT,
    failure_message,
    specific_message,
)

logger = logging.getLogger(__name__)


@dataclass
class NudgeStats:
    """Counters for diagnostics (not used for decisions)."""
    shown: int = 0
    suppressed_by_cooldown: int = 0
    buffered: int = 0
    acknowledgements: int = 0
    by_level: dict[NudgeLevel, int] = field(default_factory=dict)


@dataclass
class _PieceNudgeState:
    last_shown_at: Optional[float] = None
    shown_count: int = 0
    last_motion_at: Optional[float] = None
    ack_signature: Optional[tuple[int, bool]] = None
    buffered: Optional[NudgeContent] = None


def orientation_signature(pose: Pose2D) -> tuple[int, bool]:
    return int(round(math.degrees(pose.theta))) % 360, bool(pose.flip)


class NudgeEscalator:
    """
    Per-piece hint selection with cooldowns, de-duplication and buffering.

    Example:
        >>> escalator = NudgeEscalator(config)
        >>> nudge = escalator.evaluate("p1", shape, pose, result, attempts=2,
        ...                            confidence=0.4, now=3.0, target_pose=target)
    """

    def __init__(self, config: ValidationConfig):
        self.config = config
        self.stats = NudgeStats()
        self._states: dict[str, _PieceNudgeState] = {}

    def configure(self, config: ValidationConfig) -> None:
        self.config = config

    def _state(self, piece_id: str) -> _PieceNudgeState:
        return self._states.setdefault(piece_id, _PieceNudgeState())

    # ========== Level selection ==========

    def level_for(self, attempts: int, confidence: float,
                  failure_kind: Optional[FailureKind] = None) -> NudgeLevel:
        score = max(0, attempts) * (0.5 + min(1.0, max(0.0, confidence)))
        level = NudgeLevel.NONE
        for index, threshold in enumerate(self.config.nudge_level_thresholds, start=1):
            if score >= threshold:
                level = NudgeLevel(index)
        if failure_kind in (FailureKind.WRONG_ROTATION, FailureKind.NEEDS_FLIP):
            level = max(level, NudgeLevel.SPECIFIC)
        return level

    def cooldown_for(self, piece_id: str) -> float:
        """Base cooldown x (1 + growth x nudges already shown), capped."""
        shown = self._state(piece_id).shown_count
        multiplier = 1.0 + self.config.cooldown_growth * max(0, shown - 1)
        return self.config.nudge_cooldown * min(multiplier, self.config.max_cooldown_multiplier)

    # ========== Motion & settling ==========

    def note_motion(self, piece_id: str, now: float) -> None:
        """Record piece motion; a buffered directional hint becomes stale."""
        state = self._state(piece_id)
        state.last_motion_at = now
        state.buffered = None

    def is_settled(self, piece_id: str, now: float) -> bool:
        last = self._state(piece_id).last_motion_at
        return last is None or now - last >= self.config.settle_window

    def settle_remaining(self, piece_id: str, now: float) -> float:
        last = self._state(piece_id).last_motion_at
        if last is None:
            return 0.0
        return max(0.0, self.config.settle_window - (now - last))

    def has_buffered(self, piece_id: str) -> bool:
        state = self._states.get(piece_id)
        return state is not None and state.buffered is not None

    # ========== Evaluation ==========

    def evaluate(self, piece_id: str, shape: PieceShape, pose: Pose2D,
                 result: ValidationResult, attempts: int, confidence: float, now: float,
                 target_pose: Optional[Pose2D] = None) -> Optional[NudgeContent]:
        """
        Decide the nudge for a failed validation.

        Args:
            piece_id: Piece that failed
            shape: Its shape
            pose: Current observed pose (table frame)
            result: Failed ValidationResult
            attempts: Retry count of the piece
            confidence: Confidence of the piece's group (0 if loose)
            now: Current time (seconds)
            target_pose: Nearest target expressed in the table frame

        Returns:
            NudgeContent to show now, or None (valid, suppressed or buffered)
        """
        if result.is_valid:
            return None
        state = self._state(piece_id)
        if state.last_shown_at is not None and now - state.last_shown_at < self.cooldown_for(piece_id):
            self.stats.suppressed_by_cooldown += 1
            return None

        failure = result.failure
        kind = failure.kind if failure is not None else None

        if kind is FailureKind.WRONG_POSITION and target_pose is not None:
            tolerance = self.config.orientation_ack_tolerance_deg
            if orientation_matches(pose, target_pose, shape, tolerance):
                signature = orientation_signature(pose)
                if state.ack_signature != signature:
                    state.ack_signature = signature
                    self.stats.acknowledgements += 1
                    content = NudgeContent(NudgeLevel.GENTLE, ORIENTATION_ACK,
                                           duration=LEVEL_DURATIONS[NudgeLevel.GENTLE])
                    return self._shown(state, content, now)

        level = self.level_for(attempts, confidence, kind)
        if level is NudgeLevel.NONE:
            return None
        content = self._build(level, result, pose, target_pose)

        if content.level >= NudgeLevel.DIRECTED and not self.is_settled(piece_id, now):
            state.buffered = content
            self.stats.buffered += 1
            logger.debug("Buffered %s nudge for %s until settled", content.level.name, piece_id)
            return None
        return self._shown(state, content, now)

    def flush(self, now: float) -> list[tuple[str, NudgeContent]]:
        """Release buffered nudges of settled pieces (cooldown still applies)."""
        released = []
        for piece_id, state in sorted(self._states.items()):
            if state.buffered is None or not self.is_settled(piece_id, now):
                continue
            if state.last_shown_at is not None and now - state.last_shown_at < self.cooldown_for(piece_id):
                continue
            content = state.buffered
            state.buffered = None
            released.append((piece_id, self._shown(state, content, now)))
        return released

    def _build(self, level: NudgeLevel, result: ValidationResult, pose: Pose2D,
               target_pose: Optional[Pose2D]) -> NudgeContent:
        failure = result.failure
        delta = result.check.rotation_delta_deg if result.check is not None else 0.0
        if level >= NudgeLevel.DIRECTED and target_pose is None:
            level = NudgeLevel.SPECIFIC

        if level is NudgeLevel.VISUAL:
            message, payload = "", None
        elif level is NudgeLevel.GENTLE:
            message, payload = failure_message(failure), None
        elif level is NudgeLevel.SPECIFIC:
            message, payload = specific_message(failure, delta), None
        elif level is NudgeLevel.DIRECTED:
            dx, dy = target_pose.x - pose.x, target_pose.y - pose.y
            distance = math.hypot(dx, dy)
            direction = (dx / distance, dy / distance) if distance > 1e-9 else (0.0, 0.0)
            message, payload = DIRECTED_TEXT, HintPayload(direction=direction, distance=distance)
        else:
            message, payload = SOLUTION_TEXT, HintPayload(ghost_pose=target_pose)
        return NudgeContent(level, message, payload, LEVEL_DURATIONS[level])

    def _shown(self, state: _PieceNudgeState, content: NudgeContent, now: float) -> NudgeContent:
        state.last_shown_at = now
        state.shown_count += 1
        self.stats.shown += 1
        self.stats.by_level[content.level] = self.stats.by_level.get(content.level, 0) + 1
        return content

    # ========== Reset ==========

    def reset(self, piece_id: str) -> None:
        """Forget hint history of a piece (after it validated)."""
        self._states.pop(piece_id, None)

    def clear(self) -> None:
        self._states.clear()
        self.stats = NudgeStats()
