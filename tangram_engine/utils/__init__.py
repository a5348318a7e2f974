"""Input sanitizing and puzzle conversion helpers"""
from .conversion import normalize_angle, sanitize_observation, targets_from_dicts, validate_targets

__all__ = ["normalize_angle", "sanitize_observation", "targets_from_dicts", "validate_targets"]
