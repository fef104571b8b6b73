"""
Decision layer.

Gate pipeline, confidence and sizing, and the pure DecisionEngine that turns
a context snapshot plus market data into an immutable DecisionPacket.

Components:
- GatePipeline: ordered, non-short-circuit risk gates
- ConfidenceCalculator / SizeCalculator: weighted scoring and sizing
- DecisionEngine: pure gate+score step
- DecisionPacket: audited output
"""

from .engine import DecisionEngine
from .models import DecisionCause, DecisionPacket
from .pipeline import GatePipeline, PipelineResult
from .scoring import (
    Action,
    ConfidenceBreakdown,
    ConfidenceCalculator,
    SizeCalculator,
    action_for,
    provider_penalty,
)

__all__ = [
    'DecisionEngine',
    'DecisionPacket',
    'DecisionCause',
    'GatePipeline',
    'PipelineResult',
    'Action',
    'ConfidenceBreakdown',
    'ConfidenceCalculator',
    'SizeCalculator',
    'action_for',
    'provider_penalty',
]
