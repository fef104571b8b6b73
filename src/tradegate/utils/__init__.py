"""
Utility modules: logging, metrics and market-time helpers.
"""

from .logger import DecisionLogger, JSONFormatter, LogBuffer, get_decision_logger, setup_logging
from .metrics import EngineMetrics, MetricsCollector
from .time_utils import MarketSession, market_session, now_ms

__all__ = [
    'setup_logging',
    'get_decision_logger',
    'DecisionLogger',
    'JSONFormatter',
    'LogBuffer',
    'MetricsCollector',
    'EngineMetrics',
    'MarketSession',
    'market_session',
    'now_ms',
]
