from .base import Gate, GateResult, MissingDataPolicy
from .context_gates import RegimeGate, SessionGate, StructuralGate
from .market_gates import DepthGate, GammaGate, SpreadGate, VolatilityGate

# Canonical evaluation order
DEFAULT_GATES = (
    RegimeGate,
    StructuralGate,
    SpreadGate,
    VolatilityGate,
    DepthGate,
    GammaGate,
    SessionGate,
)

__all__ = [
    'Gate',
    'GateResult',
    'MissingDataPolicy',
    'RegimeGate',
    'StructuralGate',
    'SpreadGate',
    'VolatilityGate',
    'DepthGate',
    'GammaGate',
    'SessionGate',
    'DEFAULT_GATES',
]
