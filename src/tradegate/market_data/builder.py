"""
Market Context Builder.

Fetches options flow, volatility statistics and liquidity concurrently. Each
provider call is bounded by its own timeout, which covers every retry, so the
joint wait is bounded by the slowest provider timeout. A failed provider is
replaced by its fallback and recorded in `errors`; the build itself never
raises.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple

from ..core.errors import ProviderDegradation, ProviderError
from ..utils.logger import get_decision_logger
from ..utils.metrics import EngineMetrics
from .feeds.base import MarketFeed
from .models import (
    FALLBACKS,
    PROVIDER_FIELDS,
    PROVIDERS,
    Liquidity,
    MarketContext,
    OptionsFlow,
    ProviderFailure,
    VolatilityStats,
)

logger = logging.getLogger(__name__)


class MarketContextBuilder:
    """
    Builds a MarketContext per decision with graceful degradation.

    Args:
        feeds: Provider name -> feed (tradier, twelvedata, alpaca)
        metrics: Optional engine metrics
    """

    def __init__(self, feeds: Dict[str, MarketFeed], metrics: Optional[EngineMetrics] = None,
                 name: str = "MarketContextBuilder"):
        missing = set(PROVIDERS) - set(feeds)
        if missing:
            raise ValueError(f"Missing feeds for providers: {sorted(missing)}")

        self.feeds = feeds
        self.metrics = metrics
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{self.name}")
        self.decision_logger = get_decision_logger(f"{__name__}.{self.name}")

    async def build(self, symbol: str) -> MarketContext:
        """
        Build the market context for one symbol.

        Returns:
            MarketContext; completeness is the fraction of providers that
            returned live data
        """
        start = time.perf_counter()

        results = await asyncio.gather(
            self.fetch_options_flow(symbol),
            self.fetch_volatility_stats(symbol),
            self.fetch_liquidity(symbol),
        )

        values = {}
        errors = []
        for provider, (value, failure) in zip(PROVIDERS, results):
            values[PROVIDER_FIELDS[provider]] = value
            if failure is None:
                continue

            errors.append(failure)
            self.decision_logger.provider_degraded(
                symbol, provider, failure.kind, failure.message, attempts=failure.attempts
            )
            if self.metrics:
                self.metrics.provider_failed(provider, failure.kind)

        if errors:
            degradation = ProviderDegradation([e.provider for e in errors])
            self.logger.warning(f"⚠️ {degradation}", extra={'symbol': symbol})

        fetch_time_ms = (time.perf_counter() - start) * 1000
        completeness = (len(PROVIDERS) - len(errors)) / len(PROVIDERS)

        if self.metrics:
            self.metrics.market_fetch(fetch_time_ms, completeness)

        self.logger.debug(
            f"Market context for {symbol}: completeness={completeness:.2f} in {fetch_time_ms:.1f}ms",
            extra={'symbol': symbol, 'execution_time': fetch_time_ms}
        )

        return MarketContext(
            fetch_time_ms=round(fetch_time_ms, 3),
            completeness=round(completeness, 4),
            errors=tuple(errors),
            fallbacks=tuple(e.provider for e in errors),
            **values
        )

    # ------------------------------------------------------------------
    # Per-provider fetches; each returns live data or the fallback
    # ------------------------------------------------------------------

    async def fetch_options_flow(self, symbol: str) -> Tuple[OptionsFlow, Optional[ProviderFailure]]:
        return await self._fetch_or_fallback("tradier", symbol)

    async def fetch_volatility_stats(self, symbol: str) -> Tuple[VolatilityStats, Optional[ProviderFailure]]:
        return await self._fetch_or_fallback("twelvedata", symbol)

    async def fetch_liquidity(self, symbol: str) -> Tuple[Liquidity, Optional[ProviderFailure]]:
        return await self._fetch_or_fallback("alpaca", symbol)

    async def _fetch_or_fallback(self, provider: str, symbol: str):
        value, failure = await self._fetch_provider(provider, symbol)
        if failure is not None:
            return FALLBACKS[provider], failure
        return value, None

    async def _fetch_provider(self, provider: str, symbol: str) -> Tuple[object, Optional[ProviderFailure]]:
        feed = self.feeds[provider]
        attempts = 0

        async def attempt_with_retries():
            nonlocal attempts
            while True:
                attempts += 1
                try:
                    return await feed.fetch(symbol)
                except ProviderError as e:
                    if not e.retryable or attempts > feed.max_retries:
                        raise
                    delay = feed.backoff_delay(attempts)
                    self.logger.debug(
                        f"{provider} {e.kind}, retrying in {delay * 1000:.0f}ms "
                        f"(attempt {attempts}/{feed.max_retries + 1})",
                        extra={'symbol': symbol, 'provider': provider}
                    )
                    await asyncio.sleep(delay)

        try:
            value = await asyncio.wait_for(attempt_with_retries(), timeout=feed.timeout_s)
            return value, None
        except asyncio.TimeoutError:
            message = f"No response within {feed.timeout_s * 1000:.0f}ms"
            return None, ProviderFailure(provider, "TIMEOUT", message, attempts)
        except ProviderError as e:
            return None, ProviderFailure(provider, e.kind, e.message, attempts)
        except (KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Unexpected {provider} response shape: {e}", exc_info=True)
            return None, ProviderFailure(provider, "MALFORMED_RESPONSE", str(e), attempts)

    async def close(self) -> None:
        await asyncio.gather(*(feed.close() for feed in self.feeds.values()))
