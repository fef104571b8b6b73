"""
Tradegate: webhook-driven market signal decision engine.

Accumulates indicator webhooks into per-symbol context, enriches it with
live market data, runs risk gates and confidence scoring, and records an
auditable, replayable decision packet.
"""

__version__ = "2.5.0"
