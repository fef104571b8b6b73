"""
Market context value types and provider fallbacks.

A MarketContext is built per decision and never cached across requests.
Each of its three sub-objects is either live provider data or the
conservative fallback documented in FALLBACKS.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..context.models import to_plain


@dataclass(frozen=True)
class OptionsFlow:
    put_call_ratio: float
    iv_percentile: float
    gamma_bias: str
    option_volume: float
    max_pain: float


@dataclass(frozen=True)
class VolatilityStats:
    atr14: float
    rv20: float
    trend_slope: float
    rsi: float
    volume: float
    volume_ratio: float


@dataclass(frozen=True)
class Liquidity:
    spread_bps: float
    depth_score: float
    trade_velocity: str
    bid_size: float = 0.0
    ask_size: float = 0.0


@dataclass(frozen=True)
class ProviderFailure:
    """One failed provider in a market context build."""
    provider: str
    kind: str
    message: str
    attempts: int = 1


PROVIDERS = ("tradier", "twelvedata", "alpaca")

# Provider -> MarketContext attribute
PROVIDER_FIELDS = {
    "tradier": "options",
    "twelvedata": "stats",
    "alpaca": "liquidity",
}

# Conservative values that pass every gate. Degradation is priced by the
# per-provider confidence penalty, and fallback liquidity earns no market score.
FALLBACKS = {
    "tradier": OptionsFlow(
        put_call_ratio=0.8,
        iv_percentile=50.0,
        gamma_bias="NEUTRAL",
        option_volume=0.0,
        max_pain=0.0,
    ),
    "twelvedata": VolatilityStats(
        atr14=2.0,
        rv20=20.0,
        trend_slope=0.0,
        rsi=50.0,
        volume=0.0,
        volume_ratio=1.0,
    ),
    "alpaca": Liquidity(
        spread_bps=5.0,
        depth_score=70.0,
        trade_velocity="NORMAL",
    ),
}


@dataclass(frozen=True)
class MarketContext:
    options: Optional[OptionsFlow]
    stats: Optional[VolatilityStats]
    liquidity: Optional[Liquidity]
    fetch_time_ms: float
    completeness: float
    errors: Tuple[ProviderFailure, ...] = ()
    fallbacks: Tuple[str, ...] = ()

    @property
    def failed_provider_count(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketContext":
        return cls(
            options=OptionsFlow(**data["options"]) if data.get("options") else None,
            stats=VolatilityStats(**data["stats"]) if data.get("stats") else None,
            liquidity=Liquidity(**data["liquidity"]) if data.get("liquidity") else None,
            fetch_time_ms=data.get("fetch_time_ms", 0.0),
            completeness=data.get("completeness", 0.0),
            errors=tuple(ProviderFailure(**e) for e in data.get("errors", ())),
            fallbacks=tuple(data.get("fallbacks", ())),
        )
