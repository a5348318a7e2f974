"""Piece lifecycle state machine"""
from .state import PieceLifecycle, VALIDATABLE_STATES, SETTLED_STATES

__all__ = ["PieceLifecycle", "VALIDATABLE_STATES", "SETTLED_STATES"]
