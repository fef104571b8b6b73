from .base import MarketFeed, classify_status
from .liquidity_feed import AlpacaLiquidityFeed
from .options_feed import TradierOptionsFeed
from .stats_feed import TwelveDataStatsFeed

__all__ = [
    'MarketFeed',
    'classify_status',
    'TradierOptionsFeed',
    'TwelveDataStatsFeed',
    'AlpacaLiquidityFeed',
]
