"""
Alpaca liquidity feed.

Spread and depth come from the latest NBBO quote; trade velocity compares the
latest trade size to resting top-of-book size.
"""

import asyncio
from typing import Any, Dict

from ...core.errors import FeedMalformedResponse
from .. import calculations
from ..models import Liquidity
from .base import MarketFeed


def _pick(data: Dict[str, Any], *keys: str) -> float:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return float(value)
    return 0.0


class AlpacaLiquidityFeed(MarketFeed):
    provider = "alpaca"

    def headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "APCA-API-KEY-ID": self.api_key(),
            "APCA-API-SECRET-KEY": self.api_secret(),
        }

    async def _fetch(self, symbol: str) -> Liquidity:
        quote, trade = await asyncio.gather(
            self.get_json(f"/v2/stocks/{symbol}/quotes/latest"),
            self.get_json(f"/v2/stocks/{symbol}/trades/latest"),
        )
        return self.parse(quote, trade)

    def parse(self, quote_payload: Any, trade_payload: Any) -> Liquidity:
        """Build Liquidity from Alpaca latest quote and trade responses."""
        if not isinstance(quote_payload, dict) or not isinstance(quote_payload.get("quote"), dict):
            raise FeedMalformedResponse(self.provider, "Quote response missing 'quote'")

        quote = quote_payload["quote"]
        bid = _pick(quote, "bp", "bid_price")
        ask = _pick(quote, "ap", "ask_price")
        bid_size = _pick(quote, "bs", "bid_size")
        ask_size = _pick(quote, "as", "ask_size")

        spread = calculations.spread_bps(bid, ask)
        if spread is None:
            raise FeedMalformedResponse(self.provider, f"Unusable quote bid={bid} ask={ask}")

        trade = trade_payload.get("trade") if isinstance(trade_payload, dict) else None
        trade_size = _pick(trade, "s", "size") if isinstance(trade, dict) else 0.0

        return Liquidity(
            spread_bps=round(spread, 2),
            depth_score=round(calculations.depth_score(bid_size, ask_size), 2),
            trade_velocity=calculations.trade_velocity(trade_size, bid_size, ask_size),
            bid_size=bid_size,
            ask_size=ask_size,
        )
