"""
Piece Lifecycle State Machine.

This module defines PieceLifecycle - the mutable per-piece record owned by
the engine.

IMPORTANT: PieceLifecycle is defined ONLY here.
           The engine mutates it exclusively through the methods below.

Transitions:
- UNOBSERVED -> DETECTED: first observation (baseline pose recorded)
- DETECTED -> MOVED: pick-up, drag or displacement beyond the movement threshold
- DETECTED -> PLACED: observed at rest where it was detected
- MOVED -> PLACED: release (starts the placement debounce)
- PLACED -> VALIDATING: debounce elapsed and no newer move superseded it
- VALIDATING / INVALID -> VALIDATED: successful match
- VALIDATING -> INVALID: invalid streak reached the threshold
- PLACED / VALIDATING / INVALID -> MOVED (-> PLACED): drag, or displacement
  beyond the movement threshold from the last rest pose
- VALIDATED -> MOVED (-> PLACED): drag, or leaving the hysteresis band
  around the last valid pose

Design Decisions:
- D1: Displacement below the movement threshold from the last rest pose is
      noise and never changes the state
- D2: The debounce token increments on every (re)start and cancel, so a
      timer carrying an old token is dropped
- D3: last_valid_pose is only updated on fresh matches, never on
      hysteresis matches, so drift cannot accumulate
- D4: Undragged re-detections of a VALIDATED piece inside the hysteresis
      band only refresh its pose
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional
import math

from tangram_engine.config import ValidationConfig
from tangram_engine.models import PieceShape, PieceState, Pose2D, ValidationFailure
from tangram_engine.geometry.shapes import feature_difference

# can_validate holds in these states
VALIDATABLE_STATES = frozenset({PieceState.PLACED, PieceState.VALIDATING, PieceState.INVALID})

# States whose pieces take part in construction groups
SETTLED_STATES = frozenset({
    PieceState.PLACED, PieceState.VALIDATING, PieceState.VALIDATED, PieceState.INVALID
})


@dataclass
class PieceLifecycle:
    """
    Observed piece with its lifecycle state.

    Attributes:
        piece_id: Unique piece identifier
        shape: PieceShape
        pose: Last observed (sanitized) pose
        state: Current PieceState
        baseline_pose: Pose at detection / at the last release
        detected_at: Timestamp of the first observation
        last_motion_at: Timestamp of the last observation that moved the piece
        bound_target_id: Target bound by the mapping service (None if unbound)
        last_valid_pose: Pose of the last fresh successful match (hysteresis)
        invalid_streak: Consecutive failed validations
        connections: Validated peers in the same construction group (VALIDATED)
        last_failure: Most recent failure reason (INVALID / VALIDATING)
        debounce_token: Generation counter for the placement debounce

    Invariants (validated by validate_invariants()):
        - I1: state VALIDATED => bound_target_id is set
        - I2: invalid_streak >= 0
        - I3: state UNOBSERVED => pose is None
    """
    piece_id: str
    shape: PieceShape
    pose: Optional[Pose2D] = None
    state: PieceState = PieceState.UNOBSERVED
    baseline_pose: Optional[Pose2D] = None
    detected_at: Optional[float] = None
    last_motion_at: Optional[float] = None
    bound_target_id: Optional[str] = None
    last_valid_pose: Optional[Pose2D] = None
    invalid_streak: int = 0
    connections: frozenset[str] = field(default_factory=frozenset)
    last_failure: Optional[ValidationFailure] = None
    debounce_token: int = 0

    # ========== Queries ==========

    @property
    def can_validate(self) -> bool:
        return self.state in VALIDATABLE_STATES

    @property
    def is_settled(self) -> bool:
        return self.state in SETTLED_STATES

    @property
    def is_validated(self) -> bool:
        return self.state is PieceState.VALIDATED

    def displacement(self, pose: Pose2D, reference: Optional[Pose2D] = None) -> tuple[float, float]:
        """(distance, rotation degrees) between reference (default: current pose) and pose."""
        if reference is None:
            reference = self.pose
        if reference is None:
            return math.inf, math.inf
        distance = reference.distance_to(pose)
        turn = abs(math.degrees(feature_difference(
            self.shape, reference.theta, reference.flip, pose.theta, pose.flip)))
        if pose.flip != reference.flip and self.shape.flip_sensitive:
            turn = math.inf
        return distance, turn

    def is_significant_move(self, pose: Pose2D, config: ValidationConfig,
                            reference: Optional[Pose2D] = None) -> bool:
        distance, turn = self.displacement(pose, reference)
        return distance > config.movement_threshold or turn > config.movement_rotation_threshold_deg

    def is_jitter(self, pose: Pose2D, config: ValidationConfig) -> bool:
        distance, turn = self.displacement(pose)
        return distance <= config.jitter_threshold and turn <= config.jitter_rotation_threshold_deg

    def within_hysteresis(self, config: ValidationConfig) -> bool:
        """
        Check whether the current pose is still close to the last valid pose.

        Returns:
            True if distance <= factor x position_tolerance, rotation
            <= factor x rotation_tolerance_deg and the mirror state is
            unchanged

        Notes:
            - Only meaningful for a piece that still holds its binding
        """
        if self.last_valid_pose is None or self.pose is None or self.bound_target_id is None:
            return False
        if self.pose.flip != self.last_valid_pose.flip:
            return False
        factor = config.hysteresis_factor
        if self.pose.distance_to(self.last_valid_pose) > config.position_tolerance * factor:
            return False
        turn = abs(math.degrees(feature_difference(
            self.shape, self.pose.theta, self.pose.flip,
            self.last_valid_pose.theta, self.last_valid_pose.flip)))
        return turn <= config.rotation_tolerance_deg * factor

    # ========== Transitions ==========

    def observe(self, pose: Pose2D, dragging: bool, now: float,
                config: ValidationConfig) -> list[PieceState]:
        """
        Apply one observation.

        Args:
            pose: Sanitized observed pose
            dragging: True while the piece is held / dragged
            now: Observation timestamp (seconds)
            config: Movement thresholds

        Returns:
            States entered, in order (empty if the state did not change)

        Notes:
            - A returned PLACED means the caller must (re)start the debounce
            - A returned MOVED means any pending debounce is obsolete
        """
        entered: list[PieceState] = []

        if self.state is PieceState.UNOBSERVED:
            self.pose = pose
            self.baseline_pose = pose
            self.detected_at = now
            self.last_motion_at = now
            entered.append(self._enter(PieceState.DETECTED))
            if dragging:
                entered.append(self._enter(PieceState.MOVED))
            return entered

        # Measured from the last rest pose so sub-threshold steps cannot add up
        significant = self.is_significant_move(pose, config, reference=self.baseline_pose)
        if dragging or not self.is_jitter(pose, config):
            self.last_motion_at = now

        if self.state is PieceState.DETECTED:
            self.pose = pose
            if dragging or significant:
                entered.append(self._enter(PieceState.MOVED))
                if not dragging:
                    entered.append(self._release(pose))
            else:
                entered.append(self._release(pose))
            return entered

        if self.state is PieceState.MOVED:
            self.pose = pose
            if not dragging:
                entered.append(self._release(pose))
            return entered

        # PLACED, VALIDATING, VALIDATED, INVALID
        self.pose = pose
        if dragging:
            entered.append(self._enter(PieceState.MOVED))
        elif self.state is PieceState.VALIDATED:
            if not self.within_hysteresis(config):
                entered.append(self._enter(PieceState.MOVED))
                entered.append(self._release(pose))
        elif significant:
            entered.append(self._enter(PieceState.MOVED))
            entered.append(self._release(pose))
        return entered

    def begin_validation(self) -> list[PieceState]:
        """PLACED -> VALIDATING (no-op for VALIDATING / INVALID retries)."""
        if self.state is PieceState.PLACED:
            return [self._enter(PieceState.VALIDATING)]
        return []

    def mark_valid(self, target_id: str, connections: frozenset[str] = frozenset(),
                   fresh: bool = True) -> list[PieceState]:
        """
        Record a successful match.

        Args:
            target_id: Bound target
            connections: Validated peers in the piece's group
            fresh: False for hysteresis matches (last_valid_pose kept)
        """
        self.bound_target_id = target_id
        self.invalid_streak = 0
        self.last_failure = None
        self.connections = frozenset(connections)
        if fresh or self.last_valid_pose is None:
            self.last_valid_pose = self.pose
        if self.state is PieceState.VALIDATED:
            return []
        return [self._enter(PieceState.VALIDATED)]

    def mark_failed(self, failure: Optional[ValidationFailure], threshold: int) -> list[PieceState]:
        """
        Record a failed validation.

        Returns:
            [INVALID] when the streak just reached the threshold, else []

        Notes:
            - Below the threshold the piece stays VALIDATING (not penalized)
            - The caller releases the binding when INVALID is entered
        """
        self.invalid_streak += 1
        self.last_failure = failure
        if self.invalid_streak >= threshold and self.state is not PieceState.INVALID:
            return [self._enter(PieceState.INVALID)]
        return []

    def release_binding(self) -> Optional[str]:
        """Clear binding and hysteresis memory; returns the released target id."""
        target_id = self.bound_target_id
        self.bound_target_id = None
        self.last_valid_pose = None
        self.connections = frozenset()
        return target_id

    def next_debounce_token(self) -> int:
        self.debounce_token += 1
        return self.debounce_token

    def validate_invariants(self) -> None:
        """
        Raises:
            AssertionError: If an invariant is violated
        """
        if self.state is PieceState.VALIDATED:
            assert self.bound_target_id is not None, \
                f"I1 violated: {self.piece_id} VALIDATED without bound target"
        assert self.invalid_streak >= 0, f"I2 violated: negative streak {self.invalid_streak}"
        if self.state is PieceState.UNOBSERVED:
            assert self.pose is None, f"I3 violated: {self.piece_id} UNOBSERVED with pose"

    # ========== Internal ==========

    def _enter(self, state: PieceState) -> PieceState:
        if state is not PieceState.VALIDATED:
            self.connections = frozenset()
        self.state = state
        return state

    def _release(self, pose: Pose2D) -> PieceState:
        self.baseline_pose = pose
        return self._enter(PieceState.PLACED)
