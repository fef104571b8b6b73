"""
Per-symbol decision context: fragment models and the accumulator.
"""

from .accumulator import ContextAccumulator, ContextStore
from .models import (
    AlignmentFragment,
    ContextMeta,
    DecisionContext,
    ExpertFragment,
    Instrument,
    RegimeFragment,
    StructureFragment,
)

__all__ = [
    'ContextAccumulator',
    'ContextStore',
    'DecisionContext',
    'ContextMeta',
    'Instrument',
    'RegimeFragment',
    'AlignmentFragment',
    'ExpertFragment',
    'StructureFragment',
]
