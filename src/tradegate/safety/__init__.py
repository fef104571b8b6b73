"""
Runtime safety checks.
"""

from .guard import ImmutabilityGuard, find_mutable_nodes

__all__ = ['ImmutabilityGuard', 'find_mutable_nodes']
