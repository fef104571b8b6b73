"""
Pure calculations over raw provider responses.
"""

import math
from typing import Dict, List, Optional, Sequence

import numpy as np


def put_call_ratio(options: Sequence[Dict]) -> float:
    """Put volume over call volume; 1.0 when there is no call volume."""
    put_volume = sum(o.get("volume") or 0 for o in options if o.get("option_type") == "put")
    call_volume = sum(o.get("volume") or 0 for o in options if o.get("option_type") == "call")
    return put_volume / call_volume if call_volume > 0 else 1.0


def gamma_bias(ratio: float) -> str:
    if ratio > 1.2:
        return "NEGATIVE"
    if ratio < 0.8:
        return "POSITIVE"
    return "NEUTRAL"


def max_pain(options: Sequence[Dict]) -> float:
    """
    Strike at which option holders lose the most (writers pay the least).

    Uses open interest when present, volume otherwise.
    """
    chain = [o for o in options if o.get("strike") is not None]
    if not chain:
        return 0.0

    strikes = np.array([float(o["strike"]) for o in chain])
    weights = np.array([float(o.get("open_interest") or o.get("volume") or 0) for o in chain])
    calls = np.array([o.get("option_type") == "call" for o in chain])
    puts = np.array([o.get("option_type") == "put" for o in chain])

    # rows: candidate settlement price, columns: contracts
    settles = np.unique(strikes)
    moneyness = settles[:, None] - strikes[None, :]
    payout = (
        (np.maximum(moneyness, 0.0) * weights * calls).sum(axis=1)
        + (np.maximum(-moneyness, 0.0) * weights * puts).sum(axis=1)
    )
    return float(settles[np.argmin(payout)])


def closes(values: Sequence[Dict]) -> List[float]:
    """Close prices, newest first, skipping non-positive entries."""
    result = []
    for v in values:
        try:
            price = float(v.get("close"))
        except (TypeError, ValueError):
            continue
        if price > 0:
            result.append(price)
    return result


def realized_volatility(prices: Sequence[float], window: int = 20) -> float:
    """Annualized (252 days) volatility of log returns, in percent."""
    prices_array = np.array(prices[:window + 1], dtype=float)
    prices_array = prices_array[prices_array > 0]
    if len(prices_array) < 2:
        return 0.0

    # newest first, so returns are the negated differences of log prices
    returns = -np.diff(np.log(prices_array))
    return float(np.std(returns) * math.sqrt(252) * 100)


def trend_slope(prices: Sequence[float], window: int = 20) -> float:
    """Least-squares slope over the window, scaled by 1/10 and clamped to [-1, 1]."""
    # closes arrive newest first; fit in chronological order
    prices_array = np.array(prices[:window], dtype=float)[::-1]
    if len(prices_array) < 2:
        return 0.0

    slope = np.polyfit(np.arange(len(prices_array)), prices_array, 1)[0]
    return float(np.clip(slope / 10, -1.0, 1.0))


def _volume(value: Dict) -> float:
    try:
        return float(value.get("volume"))
    except (TypeError, ValueError):
        return 0.0


def volume_ratio(values: Sequence[Dict]) -> Optional[float]:
    """Latest volume over the mean of the previous (up to 20) sessions."""
    volumes = np.array([_volume(v) for v in values[:21]], dtype=float)
    if len(volumes) == 0:
        return None

    history = volumes[1:][volumes[1:] > 0]
    if len(history) == 0:
        return 1.0
    return float(volumes[0] / np.mean(history))


def spread_bps(bid: float, ask: float) -> Optional[float]:
    mid = (bid + ask) / 2
    if bid <= 0 or ask <= 0 or mid <= 0:
        return None
    return (ask - bid) / mid * 10_000


def depth_score(bid_size: float, ask_size: float) -> float:
    """0-100 score from top-of-book size."""
    return min(100.0, math.sqrt(max(0.0, bid_size + ask_size)) * 10)


def trade_velocity(trade_size: float, bid_size: float, ask_size: float) -> str:
    """Classify the latest trade against resting top-of-book size."""
    book = bid_size + ask_size
    if book <= 0 or trade_size <= 0:
        return "NORMAL"
    ratio = trade_size / book
    if ratio >= 1.0:
        return "FAST"
    if ratio < 0.05:
        return "SLOW"
    return "NORMAL"
