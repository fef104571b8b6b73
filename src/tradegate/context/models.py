"""
Decision context value types.

Fragments are frozen dataclasses. A DecisionContext is an immutable snapshot
built by the accumulator; it round-trips through plain JSON dicts so the audit
store can persist it and the replay engine can rebuild it.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class Bias(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"


class Volatility(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class Quality(str, Enum):
    EXTREME = "EXTREME"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


class TrendState(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


def to_plain(value: Any) -> Any:
    """Convert frozen value types into JSON-compatible structures."""
    if is_dataclass(value):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (tuple, list)):
        return [to_plain(v) for v in value]
    return value


def freeze_mapping(data: Optional[Mapping] = None) -> Mapping:
    return MappingProxyType(dict(data or {}))


# ============================================================================
# Fragments
# ============================================================================

@dataclass(frozen=True)
class Instrument:
    symbol: str
    exchange: str = ""
    price: float = 0.0

    def merge(self, other: "Instrument") -> "Instrument":
        """Overlay non-empty values of another instrument fragment."""
        return Instrument(
            symbol=other.symbol or self.symbol,
            exchange=other.exchange or self.exchange,
            price=other.price if other.price else self.price,
        )


@dataclass(frozen=True)
class RegimeFragment:
    """Market phase from the SATY phase oscillator."""
    phase: int
    phase_name: str
    volatility: str = Volatility.NORMAL.value
    confidence: float = 0.0
    bias: str = Bias.NEUTRAL.value


@dataclass(frozen=True)
class AlignmentFragment:
    """Multi-timeframe trend alignment."""
    tf_states: Mapping[str, str] = field(default_factory=freeze_mapping)
    bullish_pct: float = 0.0
    bearish_pct: float = 0.0

    def pct_for(self, direction: str) -> float:
        return self.bullish_pct if direction == Direction.LONG.value else self.bearish_pct


@dataclass(frozen=True)
class ExpertFragment:
    """Directional expert signal with AI score."""
    direction: str
    ai_score: float
    quality: str = Quality.MEDIUM.value
    components: Tuple[str, ...] = ()
    rr1: float = 0.0
    rr2: float = 0.0


@dataclass(frozen=True)
class StructureFragment:
    """Trade setup validity from the execution strategy."""
    valid_setup: bool
    liquidity_ok: bool
    execution_quality: str = "C"


FRAGMENT_TYPES = {
    "regime": RegimeFragment,
    "alignment": AlignmentFragment,
    "expert": ExpertFragment,
    "structure": StructureFragment,
}


def fragment_from_dict(kind: str, data: Optional[Dict[str, Any]]):
    if data is None:
        return None
    if kind == "alignment":
        return AlignmentFragment(
            tf_states=freeze_mapping(data.get("tf_states")),
            bullish_pct=data.get("bullish_pct", 0.0),
            bearish_pct=data.get("bearish_pct", 0.0),
        )
    if kind == "expert":
        data = dict(data)
        data["components"] = tuple(data.get("components") or ())
        return ExpertFragment(**data)
    return FRAGMENT_TYPES[kind](**data)


# ============================================================================
# Snapshot
# ============================================================================

@dataclass(frozen=True)
class ContextMeta:
    engine_version: str
    received_at: int
    completeness: float


@dataclass(frozen=True)
class DecisionContext:
    """
    Immutable snapshot of everything known about one instrument.

    Stale fragments are never included; `last_updated` still reports the
    receive time of every fragment kind ever seen.
    """

    meta: ContextMeta
    instrument: Instrument
    regime: Optional[RegimeFragment] = None
    alignment: Optional[AlignmentFragment] = None
    expert: Optional[ExpertFragment] = None
    structure: Optional[StructureFragment] = None
    last_updated: Mapping[str, int] = field(default_factory=freeze_mapping)

    @property
    def symbol(self) -> str:
        return self.instrument.symbol

    @property
    def direction(self) -> Optional[str]:
        return self.expert.direction if self.expert else None

    def fragment(self, kind: str):
        return getattr(self, kind)

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionContext":
        return cls(
            meta=ContextMeta(**data["meta"]),
            instrument=Instrument(**data["instrument"]),
            regime=fragment_from_dict("regime", data.get("regime")),
            alignment=fragment_from_dict("alignment", data.get("alignment")),
            expert=fragment_from_dict("expert", data.get("expert")),
            structure=fragment_from_dict("structure", data.get("structure")),
            last_updated=freeze_mapping(data.get("last_updated")),
        )
