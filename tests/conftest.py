"""
Shared fixtures: rule registry, fixed clock, webhook payload factories and
scripted market feeds (no network).
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from tradegate.audit.store import InMemoryAuditStore
from tradegate.config.rules import RuleRegistry
from tradegate.config.settings import FeedConfig
from tradegate.context.accumulator import ContextAccumulator
from tradegate.context.models import (
    AlignmentFragment,
    ContextMeta,
    DecisionContext,
    ExpertFragment,
    Instrument,
    RegimeFragment,
    StructureFragment,
    freeze_mapping,
)
from tradegate.decision.engine import DecisionEngine
from tradegate.market_data.builder import MarketContextBuilder
from tradegate.market_data.feeds.base import MarketFeed
from tradegate.market_data.models import (
    FALLBACKS,
    Liquidity,
    MarketContext,
    OptionsFlow,
    VolatilityStats,
)
from tradegate.orchestrator import DecisionOrchestrator
from tradegate.utils.metrics import EngineMetrics
from tradegate.utils.time_utils import new_york_ms

# Tuesday 2024-03-12 10:30 New York (regular session)
REGULAR_SESSION_MS = new_york_ms(2024, 3, 12, 10, 30)


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Callable epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = REGULAR_SESSION_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return RuleRegistry.from_config()


# ============================================================================
# Webhook payloads
# ============================================================================

class PayloadFactory:
    """Realistic payloads for the five webhook sources."""

    def saty_phase(self, symbol="SPY", phase=2, bias="bullish", confidence=90, volatility="normal"):
        return {
            "meta": {"engine": "SATY_PO", "engine_version": "1.0", "event_id": "evt-1"},
            "instrument": {"symbol": symbol, "exchange": "NASDAQ"},
            "event": {"name": "ENTER_MARKUP"},
            "data": {"phase": phase, "bias": bias, "confidence": confidence},
            "regime_context": {"local_bias": bias, "volatility": volatility},
        }

    def mtf_dots(self, symbol="SPY", direction="bullish"):
        return {
            "ticker": symbol,
            "exchange": "NASDAQ",
            "price": 512.3,
            "timeframes": {
                tf: {"direction": direction}
                for tf in ("tf3min", "tf5min", "tf15min", "tf30min", "tf60min", "tf240min")
            },
        }

    def ultimate_options(self, symbol="SPY", signal_type="LONG", ai_score=9.5, quality="EXTREME"):
        return {
            "signal": {
                "type": signal_type,
                "ai_score": ai_score,
                "quality": quality,
                "components": ["momentum", "flow"],
            },
            "instrument": {"ticker": symbol, "exchange": "NASDAQ", "current_price": 512.5},
            "risk": {"rr_ratio_t1": 2.0, "rr_ratio_t2": 3.5},
        }

    def tradingview_signal(self, symbol="SPY", signal_type="LONG", ai_score=9.5, quality="EXTREME"):
        payload = self.ultimate_options(symbol, signal_type, ai_score, quality)
        payload["signal"]["timeframe"] = "15"
        return payload

    def strat_exec(self, symbol="SPY", setup_valid=True, liquidity_ok=True, quality="A"):
        return {
            "setup_valid": setup_valid,
            "liquidity_ok": liquidity_ok,
            "quality": quality,
            "symbol": symbol,
            "exchange": "NASDAQ",
            "price": 512.4,
        }


@pytest.fixture
def payloads():
    return PayloadFactory()


# ============================================================================
# Context and market values
# ============================================================================

@pytest.fixture
def make_context():
    """Factory for DecisionContext snapshots; defaults describe a strong LONG."""

    def _make(
        regime: Optional[RegimeFragment] = RegimeFragment(2, "MARKUP", "NORMAL", 90.0, "LONG"),
        expert: Optional[ExpertFragment] = ExpertFragment("LONG", 9.5, "EXTREME"),
        alignment: Optional[AlignmentFragment] = AlignmentFragment(
            freeze_mapping({"tf3min": "BULLISH", "tf5min": "BULLISH"}), 100.0, 0.0
        ),
        structure: Optional[StructureFragment] = StructureFragment(True, True, "A"),
        received_at: int = REGULAR_SESSION_MS,
        symbol: str = "SPY",
    ) -> DecisionContext:
        present = [f for f in (regime, expert, alignment, structure) if f is not None]
        return DecisionContext(
            meta=ContextMeta("2.5.0", received_at, len(present) / 4),
            instrument=Instrument(symbol, "NASDAQ", 512.5),
            regime=regime,
            expert=expert,
            alignment=alignment,
            structure=structure,
        )

    return _make


@pytest.fixture
def live_market():
    """Market context with live data (values equal to the fallbacks, no errors)."""
    return MarketContext(
        options=FALLBACKS["tradier"],
        stats=FALLBACKS["twelvedata"],
        liquidity=FALLBACKS["alpaca"],
        fetch_time_ms=12.0,
        completeness=1.0,
    )


# Live provider values that differ from every fallback and pass every gate
# for a LONG. Liquidity scores 96.5 for the market component.
LIVE_VALUES = {
    "tradier": OptionsFlow(
        put_call_ratio=0.6,
        iv_percentile=35.0,
        gamma_bias="POSITIVE",
        option_volume=12000.0,
        max_pain=510.0,
    ),
    "twelvedata": VolatilityStats(
        atr14=1.5,
        rv20=25.0,
        trend_slope=0.4,
        rsi=58.0,
        volume=1_200_000.0,
        volume_ratio=1.3,
    ),
    "alpaca": Liquidity(spread_bps=2.0, depth_score=95.0, trade_velocity="FAST"),
}


# ============================================================================
# Feeds
# ============================================================================

class FakeFeed(MarketFeed):
    """
    Scripted provider feed.

    Each fetch consumes the next outcome; the last one repeats. An outcome is
    either a value to return or an exception instance to raise.
    """

    def __init__(
        self,
        provider: str,
        outcomes: List[Any],
        delay_s: float = 0.0,
        timeout_ms: int = 600,
        max_retries: int = 2,
        enabled: bool = True
    ):
        self.provider = provider
        super().__init__(FeedConfig(
            enabled=enabled,
            base_url="http://fake.invalid",
            api_key_env="TRADEGATE_FAKE_KEY",
            timeout_ms=timeout_ms,
            max_retries=max_retries,
            backoff_ms=1,
        ))
        self.outcomes = list(outcomes)
        self.delay_s = delay_s
        self.calls = 0

    async def _fetch(self, symbol: str):
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def healthy_feeds():
    return {provider: FakeFeed(provider, [value]) for provider, value in FALLBACKS.items()}


@pytest.fixture
def live_values():
    return dict(LIVE_VALUES)


@pytest.fixture
def make_orchestrator(registry, clock):
    """Factory wiring an orchestrator around scripted feeds."""

    def _make(
        feeds: Optional[Dict[str, MarketFeed]] = None,
        engine: Optional[DecisionEngine] = None,
        request_budget_ms: int = 1000,
        audit_store=None,
    ) -> DecisionOrchestrator:
        feeds = feeds or {p: FakeFeed(p, [v]) for p, v in FALLBACKS.items()}
        metrics = EngineMetrics()
        return DecisionOrchestrator(
            accumulator=ContextAccumulator(registry, clock=clock),
            builder=MarketContextBuilder(feeds, metrics=metrics),
            engine=engine or DecisionEngine(registry),
            audit_store=audit_store or InMemoryAuditStore(),
            request_budget_ms=request_budget_ms,
            clock=clock,
            metrics=metrics,
        )

    return _make


@pytest.fixture
def fake_feed():
    """The FakeFeed class, for tests that script their own providers."""
    return FakeFeed
