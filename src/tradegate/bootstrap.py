"""
Service wiring.

build_container() registers every long-lived component once per process:

    config, rules, metrics, log_buffer, accumulator, feeds, market_builder,
    engine, replay_engine, audit_store, orchestrator, guard

Components are created lazily on first resolution. Tests register their own
singletons (fake feeds, fixed clock) before resolving.
"""

import logging
from typing import Optional

from .audit.replay import ReplayEngine
from .audit.store import DuckDBAuditStore, InMemoryAuditStore
from .config.loader import get_app_config
from .config.rules import RuleRegistry
from .config.settings import AppConfig, AuditBackend
from .context.accumulator import ContextAccumulator
from .core.container import ServiceContainer
from .decision.engine import DecisionEngine
from .market_data.builder import MarketContextBuilder
from .market_data.feeds import AlpacaLiquidityFeed, TradierOptionsFeed, TwelveDataStatsFeed
from .orchestrator import DecisionOrchestrator
from .safety.guard import ImmutabilityGuard
from .utils.logger import LogBuffer
from .utils.metrics import EngineMetrics
from .utils.time_utils import now_ms

logger = logging.getLogger(__name__)


def _build_feeds(container: ServiceContainer) -> dict:
    feeds = container.resolve("config").feeds
    return {
        "tradier": TradierOptionsFeed(feeds.tradier),
        "twelvedata": TwelveDataStatsFeed(feeds.twelvedata),
        "alpaca": AlpacaLiquidityFeed(feeds.alpaca),
    }


def _build_audit_store(container: ServiceContainer):
    audit = container.resolve("config").audit
    if audit.backend == AuditBackend.DUCKDB:
        return DuckDBAuditStore(audit.path)
    return InMemoryAuditStore(limit=audit.memory_limit)


def _build_orchestrator(container: ServiceContainer) -> DecisionOrchestrator:
    config = container.resolve("config").orchestrator
    return DecisionOrchestrator(
        accumulator=container.resolve("accumulator"),
        builder=container.resolve("market_builder"),
        engine=container.resolve("engine"),
        audit_store=container.resolve("audit_store"),
        request_budget_ms=config.request_budget_ms,
        decision_budget_ms=config.decision_budget_ms,
        clock=container.resolve("clock"),
        metrics=container.resolve("metrics"),
    )


def _build_guard(container: ServiceContainer) -> ImmutabilityGuard:
    config = container.resolve("config")
    return ImmutabilityGuard(
        container.resolve("rules"),
        production=config.system.is_production,
        interval_s=config.guard.check_interval_s,
        metrics=container.resolve("metrics"),
    )


def build_container(config: Optional[AppConfig] = None) -> ServiceContainer:
    """
    Create the service container for one process.

    Args:
        config: Validated application config (loaded from config/ when None)

    Returns:
        ServiceContainer with every engine component registered
    """
    container = ServiceContainer()
    container.register_singleton("config", config or get_app_config())
    container.register_singleton("clock", now_ms)

    container.register_factory("rules", lambda c: RuleRegistry.from_config(c.resolve("config").rules))
    container.register_factory("metrics", lambda c: EngineMetrics())
    container.register_factory("log_buffer", lambda c: LogBuffer(max_size=1000))
    container.register_factory(
        "accumulator", lambda c: ContextAccumulator(c.resolve("rules"), clock=c.resolve("clock"))
    )
    container.register_factory("feeds", _build_feeds)
    container.register_factory(
        "market_builder", lambda c: MarketContextBuilder(c.resolve("feeds"), metrics=c.resolve("metrics"))
    )
    container.register_factory("engine", lambda c: DecisionEngine(c.resolve("rules")))
    container.register_factory("replay_engine", lambda c: ReplayEngine(c.resolve("engine")))
    container.register_factory("audit_store", _build_audit_store)
    container.register_factory("orchestrator", _build_orchestrator)
    container.register_factory("guard", _build_guard)

    logger.debug(f"Service container built: {container.services()}")
    return container
