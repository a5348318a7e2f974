"""
Tests for ValidationConfig (defaults, presets, consistency checks).
"""

import pytest

from tangram_engine.config import ConfigurationError, Difficulty, ValidationConfig


def test_defaults_are_valid_normal_preset():
    """Defaults pass validation and equal the NORMAL preset"""
    config = ValidationConfig()
    config.validate()
    assert config == ValidationConfig.for_difficulty(Difficulty.NORMAL)
    assert config.edge_contact_tolerance < config.position_tolerance < config.connection_threshold


@pytest.mark.parametrize("difficulty,position,rotation", [
    ("easy", 55.0, 24.0),
    ("normal", 40.0, 18.0),
    (Difficulty.HARD, 28.0, 12.0),
])
def test_presets(difficulty, position, rotation):
    config = ValidationConfig.for_difficulty(difficulty)
    config.validate()
    assert config.position_tolerance == position
    assert config.rotation_tolerance_deg == rotation


def test_preset_overrides():
    config = ValidationConfig.for_difficulty("hard", placement_delay=0.0)
    assert config.placement_delay == 0.0
    assert config.position_tolerance == 28.0
    config.validate()


@pytest.mark.parametrize("overrides", [
    {"position_tolerance": 0.0},
    {"rotation_tolerance_deg": -1.0},
    {"rotation_tolerance_deg": 180.0},
    {"piece_scale": float("nan")},
    {"edge_contact_tolerance": 50.0},
    {"group_contact_tolerance": 5.0},
    {"hysteresis_factor": 0.9},
    {"invalid_streak_threshold": 0},
    {"placement_delay": -0.1},
    {"anchor_confidence_threshold": 1.5},
    {"nudge_level_thresholds": (0.5, 1.5, 1.0, 4.0, 6.0)},
    {"nudge_level_thresholds": (0.5, 1.5, 2.5)},
])
def test_inconsistent_configs_rejected(overrides):
    """Every inconsistent parameter set raises ConfigurationError"""
    config = ValidationConfig().with_overrides(**overrides)
    with pytest.raises(ConfigurationError):
        config.validate()


def test_with_overrides_rejects_unknown_fields():
    with pytest.raises(ConfigurationError):
        ValidationConfig().with_overrides(position_tol=3.0)
    # ConfigurationError is a ValueError
    with pytest.raises(ValueError):
        ValidationConfig().with_overrides(bogus=1)
