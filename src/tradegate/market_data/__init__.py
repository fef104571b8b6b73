"""
Market data layer.

Provider feeds (Tradier, Twelve Data, Alpaca) and the MarketContextBuilder
that combines them with per-provider fallbacks.
"""

from .builder import MarketContextBuilder
from .models import (
    FALLBACKS,
    Liquidity,
    MarketContext,
    OptionsFlow,
    ProviderFailure,
    VolatilityStats,
)

__all__ = [
    'MarketContextBuilder',
    'MarketContext',
    'OptionsFlow',
    'VolatilityStats',
    'Liquidity',
    'ProviderFailure',
    'FALLBACKS',
]
