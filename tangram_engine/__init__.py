"""
Tangram Engine: placement validation and relative mapping for tangram puzzles.

Consumes a stream of piece poses (position, rotation, flip), decides which
pieces satisfy which target slots, validates correctly assembled clusters
anywhere on the table via anchor-based relative mapping, and drives a
graduated hint system.

Main API:
    engine = ValidationEngine(config, listener, scheduler)
    engine.load_puzzle(targets)
    engine.observe_piece(piece_id, shape, position, rotation, flip)
    engine.request_validation_pass()

Pure helpers:
    validate_piece(observed, target, shape, tolerances) -> PlacementCheck
"""

from .config import ConfigurationError, Difficulty, ValidationConfig
from .models import (
    PieceShape,
    TANGRAM_SET,
    Pose2D,
    TargetSlot,
    PieceState,
    FailureKind,
    ValidationFailure,
    MatchSource,
    MappingSignal,
    PlacementCheck,
    ValidationResult,
    ConstructionGroup,
    AnchorMapping,
    NudgeLevel,
    HintPayload,
    NudgeContent,
)
from .validation import Tolerances, validate_piece
from .engine import EngineListener, ValidationEngine
from .scheduling import ManualScheduler, ThreadingTimerScheduler
from .utils import targets_from_dicts


__all__ = [
    # Main API
    "ValidationEngine",
    "EngineListener",
    "validate_piece",
    "Tolerances",
    "targets_from_dicts",
    # Config
    "ConfigurationError",
    "Difficulty",
    "ValidationConfig",
    # Scheduling
    "ManualScheduler",
    "ThreadingTimerScheduler",
    # Models
    "PieceShape",
    "TANGRAM_SET",
    "Pose2D",
    "TargetSlot",
    "PieceState",
    "FailureKind",
    "ValidationFailure",
    "MatchSource",
    "MappingSignal",
    "PlacementCheck",
    "ValidationResult",
    "ConstructionGroup",
    "AnchorMapping",
    "NudgeLevel",
    "HintPayload",
    "NudgeContent",
]
