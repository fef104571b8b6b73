"""
Time utilities.

Market session detection for US equities and epoch-millisecond helpers.
"""

import time as time_module
from datetime import datetime, time, timezone
from enum import Enum
from typing import Callable

import pytz

NEW_YORK = pytz.timezone('America/New_York')

# Injectable clock signature: returns epoch milliseconds
Clock = Callable[[], int]


class MarketSession(str, Enum):
    """US equity market sessions (America/New_York)."""
    PREMARKET = "PREMARKET"
    REGULAR = "REGULAR"
    AFTERHOURS = "AFTERHOURS"
    CLOSED = "CLOSED"
    WEEKEND = "WEEKEND"


SESSION_BOUNDARIES = (
    (time(4, 0), time(9, 30), MarketSession.PREMARKET),
    (time(9, 30), time(16, 0), MarketSession.REGULAR),
    (time(16, 0), time(20, 0), MarketSession.AFTERHOURS),
)


def now_ms() -> int:
    """Current wall clock in epoch milliseconds."""
    return int(time_module.time() * 1000)


def to_datetime(epoch_ms: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc)


def to_iso(epoch_ms: int) -> str:
    return to_datetime(epoch_ms).isoformat()


def market_session(epoch_ms: int) -> MarketSession:
    """
    Classify an instant into a US equity market session.

    Args:
        epoch_ms: Instant in epoch milliseconds

    Returns:
        WEEKEND on Saturday/Sunday, otherwise the session containing the
        New York local time, CLOSED outside 04:00-20:00
    """
    local = to_datetime(epoch_ms).astimezone(NEW_YORK)

    if local.weekday() >= 5:
        return MarketSession.WEEKEND

    clock = local.time()
    for start, end, session in SESSION_BOUNDARIES:
        if start <= clock < end:
            return session

    return MarketSession.CLOSED


def new_york_ms(year: int, month: int, day: int, hour: int, minute: int = 0) -> int:
    """Epoch milliseconds for a New York wall-clock time."""
    local = NEW_YORK.localize(datetime(year, month, day, hour, minute))
    return int(local.timestamp() * 1000)
