"""Nudge / hint escalation"""
from .escalation import NudgeEscalator, NudgeStats, orientation_signature
from .messages import failure_message, specific_message

__all__ = [
    "NudgeEscalator",
    "NudgeStats",
    "orientation_signature",
    "failure_message",
    "specific_message",
]
