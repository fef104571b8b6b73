"""
Typed webhook payload models.

One pydantic model per webhook source. Unknown fields are ignored; known
fields are validated. PAYLOAD_MODELS is the tag -> model table the normalizer
dispatches on, so every source is parsed by exactly one schema.
"""

from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookSource(str, Enum):
    """Webhook producers recognized by the engine."""
    SATY_PHASE = "SATY_PHASE"
    MTF_DOTS = "MTF_DOTS"
    ULTIMATE_OPTIONS = "ULTIMATE_OPTIONS"
    STRAT_EXEC = "STRAT_EXEC"
    TRADINGVIEW_SIGNAL = "TRADINGVIEW_SIGNAL"

    @property
    def slug(self) -> str:
        return self.value.lower().replace("_", "-")

    @classmethod
    def from_slug(cls, slug: str) -> "WebhookSource":
        """Resolve an endpoint path segment (saty-phase) or enum name."""
        normalized = slug.strip().upper().replace("-", "_")
        return cls(normalized)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ============================================================================
# SATY phase oscillator
# ============================================================================

class SatyMeta(_Payload):
    engine: Optional[str] = None
    engine_version: Optional[str] = None
    event_id: Optional[str] = None


class SatyInstrument(_Payload):
    symbol: str = ""
    exchange: str = ""


class SatyEvent(_Payload):
    name: str = ""


class SatyRegimeContext(_Payload):
    local_bias: Optional[str] = None
    volatility: Optional[str] = None


class SatyConfidence(_Payload):
    confidence_score: Optional[float] = Field(default=None, ge=0, le=100)


class SatyData(_Payload):
    phase: Optional[Union[int, str]] = None
    bias: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=100)
    symbol: Optional[str] = None


class SatyPhasePayload(_Payload):
    meta: Optional[SatyMeta] = None
    data: Optional[SatyData] = None
    instrument: Optional[SatyInstrument] = None
    event: Optional[SatyEvent] = None
    regime_context: Optional[SatyRegimeContext] = None
    confidence: Optional[SatyConfidence] = None


# ============================================================================
# MTF dots (multi-timeframe trend)
# ============================================================================

class TimeframeState(_Payload):
    direction: str = "neutral"
    open: Optional[float] = None
    close: Optional[float] = None


class MtfDotsPayload(_Payload):
    ticker: str
    exchange: str = ""
    price: float = 0.0
    timestamp: Optional[str] = None
    timeframes: Dict[str, TimeframeState]

    @field_validator("timeframes")
    @classmethod
    def require_timeframes(cls, v):
        if not v:
            raise ValueError("at least one timeframe is required")
        return v


# ============================================================================
# Expert signals (Ultimate Options / TradingView)
# ============================================================================

class ExpertSignal(_Payload):
    type: str
    ai_score: float = Field(ge=0, le=10.5)
    quality: str = "MEDIUM"
    components: List[str] = Field(default_factory=list)
    timeframe: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        v = v.upper()
        if v not in ("LONG", "SHORT"):
            raise ValueError(f"signal type must be LONG or SHORT, got {v}")
        return v

    @field_validator("quality")
    @classmethod
    def validate_quality(cls, v):
        v = v.upper()
        if v not in ("EXTREME", "HIGH", "MEDIUM"):
            raise ValueError(f"quality must be EXTREME, HIGH or MEDIUM, got {v}")
        return v


class ExpertInstrument(_Payload):
    ticker: str
    exchange: str = ""
    current_price: float = 0.0


class ExpertRisk(_Payload):
    rr_ratio_t1: float = 0.0
    rr_ratio_t2: float = 0.0


class UltimateOptionsPayload(_Payload):
    signal: ExpertSignal
    instrument: ExpertInstrument
    components: List[str] = Field(default_factory=list)
    risk: Optional[ExpertRisk] = None


class TradingViewSignalPayload(UltimateOptionsPayload):
    @field_validator("signal")
    @classmethod
    def require_timeframe(cls, v):
        if not v.timeframe:
            raise ValueError("signal.timeframe is required")
        return v


# ============================================================================
# STRAT execution
# ============================================================================

class StratExecPayload(_Payload):
    setup_valid: bool
    liquidity_ok: bool
    quality: str = "C"
    symbol: str
    exchange: str = ""
    price: float = 0.0

    @field_validator("quality")
    @classmethod
    def validate_quality(cls, v):
        v = v.upper()
        if v not in ("A", "B", "C"):
            raise ValueError(f"quality must be A, B or C, got {v}")
        return v


PAYLOAD_MODELS = {
    WebhookSource.SATY_PHASE: SatyPhasePayload,
    WebhookSource.MTF_DOTS: MtfDotsPayload,
    WebhookSource.ULTIMATE_OPTIONS: UltimateOptionsPayload,
    WebhookSource.STRAT_EXEC: StratExecPayload,
    WebhookSource.TRADINGVIEW_SIGNAL: TradingViewSignalPayload,
}
