"""
Unit tests for the MarketContextBuilder, provider feeds and calculations.

Tests:
- Healthy build (completeness 1.0, no errors)
- Timeout, auth (no retry), transient (retry then success) failures
- Degradation is monotonic in the number of failed providers
- Provider response parsing
"""

import asyncio
import math

import pytest
from aiohttp import web

from tradegate.config.settings import FeedConfig
from tradegate.core.errors import (
    FeedAuthError,
    FeedMalformedResponse,
    FeedRateLimited,
    FeedRequestError,
    FeedServerError,
)
from tradegate.decision.scoring import ConfidenceCalculator
from tradegate.market_data import calculations
from tradegate.market_data.builder import MarketContextBuilder
from tradegate.market_data.feeds import (
    AlpacaLiquidityFeed,
    TradierOptionsFeed,
    TwelveDataStatsFeed,
    classify_status,
)
from tradegate.market_data.feeds.base import MarketFeed
from tradegate.market_data.models import FALLBACKS, Liquidity
from tradegate.utils.metrics import EngineMetrics


def feeds_with(fake_feed, **overrides):
    feeds = {provider: fake_feed(provider, [value]) for provider, value in FALLBACKS.items()}
    feeds.update(overrides)
    return feeds


# ============================================================================
# Builder
# ============================================================================

@pytest.mark.asyncio
async def test_healthy_build(healthy_feeds):
    market = await MarketContextBuilder(healthy_feeds).build("SPY")

    assert market.completeness == 1.0
    assert market.errors == ()
    assert market.fallbacks == ()
    assert market.liquidity == FALLBACKS["alpaca"]


@pytest.mark.asyncio
async def test_timeout_substitutes_fallback(fake_feed):
    slow = fake_feed("twelvedata", [FALLBACKS["twelvedata"]], delay_s=0.5, timeout_ms=30)
    metrics = EngineMetrics()

    market = await MarketContextBuilder(feeds_with(fake_feed, twelvedata=slow), metrics=metrics).build("SPY")

    assert market.stats == FALLBACKS["twelvedata"]
    assert market.errors[0].kind == "TIMEOUT"
    assert market.completeness == pytest.approx(2 / 3, abs=1e-3)
    assert metrics.collector.counter("providers.failed", {"provider": "twelvedata", "kind": "TIMEOUT"}) == 1


@pytest.mark.asyncio
async def test_auth_error_is_not_retried(fake_feed):
    feed = fake_feed("tradier", [FeedAuthError("tradier", "HTTP 401", 401)])

    market = await MarketContextBuilder(feeds_with(fake_feed, tradier=feed)).build("SPY")

    assert feed.calls == 1
    assert market.errors[0].kind == "AUTH_ERROR"
    assert market.errors[0].attempts == 1


@pytest.mark.asyncio
async def test_server_error_is_retried_then_succeeds(fake_feed):
    live = FALLBACKS["alpaca"]
    feed = fake_feed("alpaca", [FeedServerError("alpaca", "HTTP 503", 503), live])

    market = await MarketContextBuilder(feeds_with(fake_feed, alpaca=feed)).build("SPY")

    assert feed.calls == 2
    assert market.errors == ()
    assert market.liquidity == live


@pytest.mark.asyncio
async def test_retries_are_bounded(fake_feed):
    feed = fake_feed("alpaca", [FeedServerError("alpaca", "HTTP 500", 500)], max_retries=2)

    market = await MarketContextBuilder(feeds_with(fake_feed, alpaca=feed)).build("SPY")

    assert feed.calls == 3
    assert market.errors[0].kind == "SERVER_ERROR"
    assert market.errors[0].attempts == 3


@pytest.mark.asyncio
async def test_disabled_feed_falls_back(fake_feed):
    feed = fake_feed("tradier", [FALLBACKS["tradier"]], enabled=False)

    market = await MarketContextBuilder(feeds_with(fake_feed, tradier=feed)).build("SPY")

    assert feed.calls == 0
    assert market.errors[0].kind == "DISABLED"


@pytest.mark.asyncio
async def test_unexpected_shape_is_malformed(fake_feed):
    feed = fake_feed("tradier", [KeyError("options")])

    market = await MarketContextBuilder(feeds_with(fake_feed, tradier=feed)).build("SPY")

    assert market.errors[0].kind == "MALFORMED_RESPONSE"


@pytest.mark.asyncio
async def test_degradation_is_monotonic(fake_feed, registry, make_context):
    calculator = ConfidenceCalculator(registry)
    context = make_context()
    confidences = []

    for failed in range(4):
        overrides = {
            provider: fake_feed(provider, [FeedAuthError(provider, "HTTP 401", 401)])
            for provider in list(FALLBACKS)[:failed]
        }
        market = await MarketContextBuilder(feeds_with(fake_feed, **overrides)).build("SPY")
        assert len(market.errors) == failed
        confidences.append(calculator.calculate(context, market).confidence)

    assert confidences == sorted(confidences, reverse=True)
    # the third failure is alpaca, which also drops the market component
    assert confidences == [92.0, 82.0, 72.0, 49.6]


@pytest.mark.asyncio
async def test_per_provider_fetches(fake_feed):
    feed = fake_feed("tradier", [FeedAuthError("tradier", "HTTP 401", 401)])
    builder = MarketContextBuilder(feeds_with(fake_feed, tradier=feed))

    flow, failure = await builder.fetch_options_flow("SPY")
    liquidity, ok = await builder.fetch_liquidity("SPY")

    assert flow == FALLBACKS["tradier"]
    assert failure.provider == "tradier"
    assert failure.kind == "AUTH_ERROR"
    assert liquidity == FALLBACKS["alpaca"]
    assert ok is None


class QuoteFeed(MarketFeed):
    """Alpaca stand-in that reads liquidity from a local HTTP server."""

    provider = "alpaca"

    async def _fetch(self, symbol):
        return Liquidity(**await self.get_json(f"/quote/{symbol}"))


@pytest.mark.asyncio
async def test_slow_http_attempt_is_retried(fake_feed):
    calls = []

    async def quote(request):
        calls.append(request.match_info["symbol"])
        if len(calls) == 1:
            await asyncio.sleep(0.5)
        return web.json_response({"spread_bps": 2.0, "depth_score": 95.0, "trade_velocity": "FAST"})

    app = web.Application()
    app.router.add_get("/quote/{symbol}", quote)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()

    host, port = runner.addresses[0][:2]
    config = FeedConfig(
        base_url=f"http://{host}:{port}", api_key_env="TRADEGATE_FAKE_KEY", timeout_ms=600, backoff_ms=10
    )
    feed = QuoteFeed(config)
    try:
        # (600ms - 10ms - 20ms backoff) / 3 attempts
        assert feed.attempt_timeout_s == pytest.approx(0.19)

        market = await MarketContextBuilder(feeds_with(fake_feed, alpaca=feed)).build("SPY")
    finally:
        await feed.close()
        await runner.cleanup()

    assert calls == ["SPY", "SPY"]
    assert market.errors == ()
    assert market.liquidity == Liquidity(2.0, 95.0, "FAST")


def test_builder_requires_every_provider(healthy_feeds):
    del healthy_feeds["alpaca"]
    with pytest.raises(ValueError):
        MarketContextBuilder(healthy_feeds)


# ============================================================================
# Status classification
# ============================================================================

@pytest.mark.parametrize("status,expected", [
    (401, FeedAuthError),
    (403, FeedAuthError),
    (429, FeedRateLimited),
    (404, FeedRequestError),
    (502, FeedServerError),
])
def test_classify_status(status, expected):
    error = classify_status("tradier", status, "body")
    assert isinstance(error, expected)
    assert error.retryable == (expected is FeedServerError)


def test_classify_success():
    assert classify_status("tradier", 200) is None


# ============================================================================
# Parsing
# ============================================================================

def feed_config(**kwargs):
    return FeedConfig(base_url="http://fake.invalid", api_key_env="TRADEGATE_FAKE_KEY", **kwargs)


def test_tradier_chain_parsing():
    chain = {"options": {"option": [
        {"option_type": "call", "strike": 100, "volume": 300, "open_interest": 1000, "greeks": {"mid_iv": 0.25}},
        {"option_type": "call", "strike": 105, "volume": 200, "open_interest": 500, "greeks": {"mid_iv": 0.35}},
        {"option_type": "put", "strike": 95, "volume": 100, "open_interest": 800, "greeks": {"mid_iv": 0.30}},
    ]}}

    flow = TradierOptionsFeed(feed_config()).parse_chain(chain)

    assert flow.put_call_ratio == pytest.approx(0.2)
    assert flow.gamma_bias == "POSITIVE"
    assert flow.iv_percentile == pytest.approx(30.0)
    assert flow.option_volume == 600
    assert flow.max_pain in (95.0, 100.0, 105.0)


def test_tradier_empty_chain_is_malformed():
    with pytest.raises(FeedMalformedResponse):
        TradierOptionsFeed(feed_config()).parse_chain({"options": None})


def test_twelvedata_parsing():
    series = {"values": [{"close": str(100 + i), "volume": "1000"} for i in range(21)]}
    stats = TwelveDataStatsFeed(feed_config()).parse(
        {"values": [{"atr": "2.5"}]}, {"values": [{"rsi": "61.2"}]}, series
    )

    assert stats.atr14 == 2.5
    assert stats.rsi == 61.2
    assert stats.volume_ratio == 1.0
    assert stats.rv20 > 0
    # newest close is the lowest, so the market has been falling
    assert stats.trend_slope < 0


def test_twelvedata_in_band_error():
    feed = TwelveDataStatsFeed(feed_config())
    error = {"status": "error", "code": 429, "message": "API credits exhausted"}

    with pytest.raises(FeedRateLimited):
        feed.parse(error, {"values": [{"rsi": "50"}]}, {"values": [{"close": "1"}]})


def test_alpaca_parsing():
    quote = {"quote": {"bp": 99.95, "ap": 100.05, "bs": 40, "as": 60}}
    trade = {"trade": {"s": 3}}

    liquidity = AlpacaLiquidityFeed(feed_config()).parse(quote, trade)

    assert liquidity.spread_bps == pytest.approx(10.0)
    assert liquidity.depth_score == 100.0
    assert liquidity.trade_velocity == "SLOW"


def test_alpaca_crossed_or_empty_quote():
    with pytest.raises(FeedMalformedResponse):
        AlpacaLiquidityFeed(feed_config()).parse({"quote": {"bp": 0, "ap": 0}}, {})


def test_calculations_edge_cases():
    assert calculations.put_call_ratio([]) == 1.0
    assert calculations.gamma_bias(1.5) == "NEGATIVE"
    assert calculations.max_pain([]) == 0.0
    assert calculations.realized_volatility([100.0]) == 0.0
    assert calculations.trend_slope([101.0, 100.0]) > 0
    assert calculations.spread_bps(0, 10) is None


def test_calculations_reference_values():
    # newest first: returns are -log(1.1) and +log(1.1)
    assert calculations.realized_volatility([100.0, 110.0, 100.0]) == pytest.approx(
        math.log(1.1) * math.sqrt(252) * 100
    )
    # chronological 100..104 rises one point per session
    assert calculations.trend_slope([104.0, 103.0, 102.0, 101.0, 100.0]) == pytest.approx(0.1)
    # falling 15 points per session clamps at -1
    assert calculations.trend_slope([float(p) for p in range(5, 300, 15)]) == -1.0
    # unparseable volumes count as zero and are left out of the history
    volumes = [{"volume": "300"}, {"volume": "100"}, {"volume": "200"}, {"volume": "n/a"}]
    assert calculations.volume_ratio(volumes) == 2.0
    assert calculations.volume_ratio([]) is None
