"""Construction group clustering"""
from .groups import ConstructionGroupManager

__all__ = ["ConstructionGroupManager"]
