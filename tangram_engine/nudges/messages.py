"""Player-facing nudge texts per failure kind and level."""

from __future__ import annotations
from typing import Optional

from tangram_engine.models import FailureKind, NudgeLevel, ValidationFailure

# Display duration per level (seconds)
LEVEL_DURATIONS = {
    NudgeLevel.NONE: 0.0,
    NudgeLevel.VISUAL: 2.0,
    NudgeLevel.GENTLE: 3.0,
    NudgeLevel.SPECIFIC: 4.0,
    NudgeLevel.DIRECTED: 5.0,
    NudgeLevel.SOLUTION: 6.0,
}

ORIENTATION_ACK = "Good job! Now slide it into place"
DIRECTED_TEXT = "Move it in the direction of the arrow"
SOLUTION_TEXT = "Here is where it goes"


def failure_message(failure: Optional[ValidationFailure]) -> str:
    """Short text for a failure (GENTLE level)."""
    if failure is None:
        return "Keep going!"
    if failure.kind is FailureKind.WRONG_POSITION:
        return "Try moving closer" if (failure.offset or 0.0) > 50 else "Almost there!"
    if failure.kind is FailureKind.WRONG_ROTATION:
        return "Try rotating" if (failure.degrees_off or 0.0) > 45 else "Slight rotation needed"
    if failure.kind is FailureKind.NEEDS_FLIP:
        return "Try flipping the piece"
    return "Try a different piece"


def specific_message(failure: Optional[ValidationFailure], rotation_delta_deg: float = 0.0) -> str:
    """Orientation-specific text (SPECIFIC level)."""
    if failure is None:
        return "Keep going!"
    if failure.kind is FailureKind.WRONG_ROTATION:
        direction = "counterclockwise" if rotation_delta_deg > 0 else "clockwise"
        return f"Rotate it about {int(round(abs(rotation_delta_deg)))}° {direction}"
    if failure.kind is FailureKind.NEEDS_FLIP:
        return "Flip the piece over"
    if failure.kind is FailureKind.WRONG_POSITION:
        return "The shape is right, find its spot in the outline"
    return "This piece does not fit here, try a different piece"
