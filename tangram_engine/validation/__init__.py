"""Piece Validator (pure placement checks)"""
from .validator import Tolerances, validate_piece, orientation_matches

__all__ = ["Tolerances", "validate_piece", "orientation_matches"]
