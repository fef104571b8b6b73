"""
Twelve Data volatility statistics feed.

ATR(14), RSI(14) and a 21-session daily series are requested concurrently;
realized volatility, trend slope and volume ratio are derived from the series.
"""

import asyncio
from typing import Any, Dict, Optional

from ...core.errors import FeedMalformedResponse
from .. import calculations
from ..models import VolatilityStats
from .base import MarketFeed, classify_status


class TwelveDataStatsFeed(MarketFeed):
    provider = "twelvedata"

    def _params(self, symbol: str, **extra) -> Dict[str, Any]:
        return {"symbol": symbol, "interval": "1day", "apikey": self.api_key(), **extra}

    async def _fetch(self, symbol: str) -> VolatilityStats:
        atr, rsi, series = await asyncio.gather(
            self.get_json("/atr", self._params(symbol, time_period=14, outputsize=1)),
            self.get_json("/rsi", self._params(symbol, time_period=14, outputsize=1)),
            self.get_json("/time_series", self._params(symbol, outputsize=21)),
        )
        return self.parse(atr, rsi, series)

    def _values(self, payload: Any, name: str) -> list:
        if not isinstance(payload, dict):
            raise FeedMalformedResponse(self.provider, f"{name} response is not an object")

        # Twelve Data reports errors in-band with HTTP 200
        if payload.get("status") == "error":
            error = classify_status(self.provider, int(payload.get("code") or 500), payload.get("message", ""))
            raise error

        values = payload.get("values")
        if not isinstance(values, list) or not values:
            raise FeedMalformedResponse(self.provider, f"{name} response has no values")
        return values

    def _latest_float(self, values: list, key: str) -> Optional[float]:
        try:
            return float(values[0][key])
        except (KeyError, TypeError, ValueError):
            return None

    def parse(self, atr_payload: Any, rsi_payload: Any, series_payload: Any) -> VolatilityStats:
        """Build VolatilityStats from the three Twelve Data responses."""
        atr_values = self._values(atr_payload, "atr")
        rsi_values = self._values(rsi_payload, "rsi")
        series = self._values(series_payload, "time_series")

        atr14 = self._latest_float(atr_values, "atr")
        if atr14 is None:
            raise FeedMalformedResponse(self.provider, "atr value missing")

        rsi = self._latest_float(rsi_values, "rsi")
        prices = calculations.closes(series)
        ratio = calculations.volume_ratio(series)

        return VolatilityStats(
            atr14=atr14,
            rv20=round(calculations.realized_volatility(prices), 4),
            trend_slope=round(calculations.trend_slope(prices), 4),
            rsi=rsi if rsi is not None else 50.0,
            volume=self._latest_float(series, "volume") or 0.0,
            volume_ratio=round(ratio, 4) if ratio is not None else 1.0,
        )
