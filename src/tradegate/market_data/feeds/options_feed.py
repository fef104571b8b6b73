"""
Tradier options feed.

Put/call ratio, gamma bias and max pain come from the nearest-expiration
options chain.
"""

import statistics
from typing import Any, Dict, List

from ...core.errors import FeedMalformedResponse
from .. import calculations
from ..models import OptionsFlow
from .base import MarketFeed


def _as_list(value: Any) -> List:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class TradierOptionsFeed(MarketFeed):
    provider = "tradier"

    def headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_key()}",
        }

    async def _fetch(self, symbol: str) -> OptionsFlow:
        expirations = await self.get_json(
            "/v1/markets/options/expirations", {"symbol": symbol}
        )
        dates = self._expiration_dates(expirations)
        if not dates:
            raise FeedMalformedResponse(self.provider, f"No option expirations for {symbol}")

        chain = await self.get_json(
            "/v1/markets/options/chains",
            {"symbol": symbol, "expiration": dates[0], "greeks": "true"},
        )
        return self.parse_chain(chain)

    def _expiration_dates(self, payload: Any) -> List[str]:
        if not isinstance(payload, dict):
            raise FeedMalformedResponse(self.provider, "Expirations response is not an object")
        expirations = payload.get("expirations") or {}
        if not isinstance(expirations, dict):
            return []
        return sorted(_as_list(expirations.get("date")))

    def parse_chain(self, payload: Any) -> OptionsFlow:
        """Build OptionsFlow from a Tradier chains response."""
        if not isinstance(payload, dict) or not isinstance(payload.get("options"), dict):
            raise FeedMalformedResponse(self.provider, "Chain response missing 'options'")

        options = [o for o in _as_list(payload["options"].get("option")) if isinstance(o, dict)]
        if not options:
            raise FeedMalformedResponse(self.provider, "Empty options chain")

        ratio = calculations.put_call_ratio(options)

        # Chain-average implied volatility (percent) stands in for IV percentile
        ivs = [
            float(o["greeks"]["mid_iv"])
            for o in options
            if isinstance(o.get("greeks"), dict) and o["greeks"].get("mid_iv")
        ]
        iv_percentile = min(100.0, statistics.mean(ivs) * 100) if ivs else 50.0

        return OptionsFlow(
            put_call_ratio=round(ratio, 4),
            iv_percentile=round(iv_percentile, 2),
            gamma_bias=calculations.gamma_bias(ratio),
            option_volume=float(sum(o.get("volume") or 0 for o in options)),
            max_pain=calculations.max_pain(options),
        )
