"""
Tangram Engine Configuration.

This module defines the configuration structures for the validation engine:
- ConfigurationError: Raised for rejected configuration or puzzle definitions
- Difficulty: Preset selector (easy / normal / hard)
- ValidationConfig: All engine parameters (6 groups)

All distances in world units (one normalized tan unit = piece_scale).
Angles in degrees where the field name ends in _deg, durations in seconds.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from enum import Enum
import math


class ConfigurationError(ValueError):
    """
    Raised when a configuration or puzzle definition is rejected.

    The engine keeps its previous state when this is raised from
    load_puzzle() or configure().
    """
    pass


class Difficulty(Enum):
    """Tolerance preset selector."""
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"


@dataclass
class ValidationConfig:
    """
    Complete engine configuration (all parameters).

    Organized in 6 groups:
    1. Tolerances: Validator and hysteresis tolerances
    2. Grouping: Construction group contact and confidence
    3. Mapping: Anchor promotion thresholds
    4. Lifecycle: Debounce, streaks and movement detection
    5. Nudges: Hint escalation, cooldowns and settling
    6. World: Scale and input sanitizing limits

    Notes:
        - Defaults equal the NORMAL preset
        - Use ValidationConfig.for_difficulty() for presets
        - Swappable at runtime via ValidationEngine.configure()
    """

    # ========== 1. Tolerances ==========
    position_tolerance: float = 40.0
    """Max centroid distance for a valid position (world units)"""

    rotation_tolerance_deg: float = 18.0
    """Max feature-angle difference for a valid rotation (degrees)"""

    edge_contact_tolerance: float = 14.0
    """Max outline deviation that rescues an offset centroid (world units).
    Must be smaller than position_tolerance."""

    hysteresis_factor: float = 1.5
    """A validated piece stays valid within this multiple of the tolerances
    around its last-known-valid pose."""

    # ========== 2. Grouping ==========
    group_contact_tolerance: float = 18.0
    """Max polygon gap for two pieces to share a construction group.
    Must exceed edge_contact_tolerance."""

    confidence_step: float = 0.2
    """Confidence gained per stable validation pass"""

    confidence_decay: float = 0.5
    """Multiplier applied to confidence when a member moves"""

    # ========== 3. Mapping ==========
    connection_threshold: float = 130.0
    """Centroid distance below which two members count as connected for
    anchor promotion (world units)"""

    anchor_confidence_threshold: float = 0.6
    """Group confidence that allows anchoring without contact"""

    relaxed_rotation_factor: float = 2.0
    """Multiplier on rotation_tolerance_deg for anchor feature agreement"""

    # ========== 4. Lifecycle ==========
    placement_delay: float = 0.5
    """Debounce between release and validation (seconds)"""

    invalid_streak_threshold: int = 5
    """Consecutive failed validations before a piece becomes INVALID"""

    movement_threshold: float = 20.0
    """Displacement that counts as a move (world units)"""

    movement_rotation_threshold_deg: float = 5.0
    """Rotation that counts as a move (degrees)"""

    jitter_threshold: float = 3.0
    """Displacement below which a pose change is detection noise"""

    jitter_rotation_threshold_deg: float = 2.0
    """Rotation below which a pose change is detection noise (degrees)"""

    # ========== 5. Nudges ==========
    nudge_cooldown: float = 1.2
    """Minimum time between two nudges for one piece (seconds)"""

    cooldown_growth: float = 0.5
    """Cooldown multiplier added per nudge already shown"""

    max_cooldown_multiplier: float = 5.0
    """Upper bound for the progressive cooldown multiplier"""

    settle_window: float = 0.6
    """Time without motion before buffered DIRECTED/SOLUTION nudges surface"""

    orientation_ack_tolerance_deg: float = 5.0
    """Rotation error under which the orientation is acknowledged as right"""

    nudge_level_thresholds: tuple[float, float, float, float, float] = (0.5, 1.5, 2.5, 4.0, 6.0)
    """Escalation scores (attempts x (0.5 + confidence)) that reach
    VISUAL, GENTLE, SPECIFIC, DIRECTED and SOLUTION."""

    # ========== 6. World ==========
    piece_scale: float = 50.0
    """World units per normalized tan unit"""

    coordinate_limit: float = 1.0e6
    """Observed coordinates are clamped to [-limit, limit]"""

    def validate(self) -> None:
        """
        Check parameter consistency.

        Raises:
            ConfigurationError: On non-positive tolerances or inconsistent
                thresholds
        """
        positive = (
            "position_tolerance", "rotation_tolerance_deg", "edge_contact_tolerance",
            "group_contact_tolerance", "connection_threshold", "piece_scale",
            "coordinate_limit", "movement_threshold", "movement_rotation_threshold_deg",
        )
        for name in positive:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive number, got {value!r}")

        non_negative = ("placement_delay", "nudge_cooldown", "settle_window",
                        "jitter_threshold", "jitter_rotation_threshold_deg", "cooldown_growth")
        for name in non_negative:
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value!r}")

        if self.rotation_tolerance_deg >= 180.0:
            raise ConfigurationError("rotation_tolerance_deg must be below 180")
        if self.edge_contact_tolerance > self.position_tolerance:
            raise ConfigurationError(
                "edge_contact_tolerance must not exceed position_tolerance "
                f"({self.edge_contact_tolerance} > {self.position_tolerance})"
            )
        if self.group_contact_tolerance < self.edge_contact_tolerance:
            raise ConfigurationError("group_contact_tolerance must be >= edge_contact_tolerance")
        if self.hysteresis_factor < 1.0:
            raise ConfigurationError("hysteresis_factor must be >= 1.0")
        if self.relaxed_rotation_factor < 1.0:
            raise ConfigurationError("relaxed_rotation_factor must be >= 1.0")
        if int(self.invalid_streak_threshold) < 1:
            raise ConfigurationError("invalid_streak_threshold must be >= 1")
        if not 0.0 <= self.anchor_confidence_threshold <= 1.0:
            raise ConfigurationError("anchor_confidence_threshold must lie in [0, 1]")
        if not 0.0 < self.confidence_step <= 1.0 or not 0.0 <= self.confidence_decay <= 1.0:
            raise ConfigurationError("confidence_step must lie in (0, 1], confidence_decay in [0, 1]")
        if self.max_cooldown_multiplier < 1.0:
            raise ConfigurationError("max_cooldown_multiplier must be >= 1.0")

        thresholds = tuple(self.nudge_level_thresholds)
        if len(thresholds) != 5 or any(b < a for a, b in zip(thresholds, thresholds[1:])):
            raise ConfigurationError("nudge_level_thresholds must be 5 non-decreasing values")

    @classmethod
    def for_difficulty(cls, difficulty: Difficulty | str, **overrides) -> ValidationConfig:
        """
        Build a preset configuration.

        Args:
            difficulty: Difficulty member or its value ("easy", "normal", "hard")
            **overrides: Field overrides applied on top of the preset

        Returns:
            ValidationConfig (not yet validated)

        Example:
            >>> cfg = ValidationConfig.for_difficulty("hard", placement_delay=0.0)
            >>> cfg.position_tolerance
            28.0
        """
        difficulty = Difficulty(difficulty) if not isinstance(difficulty, Difficulty) else difficulty
        preset = dict(_PRESETS[difficulty])
        preset.update(overrides)
        return cls(**preset)

    def with_overrides(self, **overrides) -> ValidationConfig:
        unknown = set(overrides) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        return replace(self, **overrides)


_PRESETS = {
    Difficulty.EASY: dict(
        position_tolerance=55.0,
        rotation_tolerance_deg=24.0,
        edge_contact_tolerance=16.0,
        connection_threshold=170.0,
        group_contact_tolerance=20.0,
    ),
    Difficulty.NORMAL: dict(
        position_tolerance=40.0,
        rotation_tolerance_deg=18.0,
        edge_contact_tolerance=14.0,
        connection_threshold=130.0,
        group_contact_tolerance=18.0,
    ),
    Difficulty.HARD: dict(
        position_tolerance=28.0,
        rotation_tolerance_deg=12.0,
        edge_contact_tolerance=10.0,
        connection_threshold=90.0,
        group_contact_tolerance=13.0,
    ),
}
