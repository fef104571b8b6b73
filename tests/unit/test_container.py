"""
Unit tests for the ServiceContainer and service wiring.

Tests:
- Singleton and factory registration
- Lazy, cached and transient resolution
- Circular dependency detection
- build_container() wires every engine component
"""

import pytest

from tradegate.audit.store import DuckDBAuditStore, InMemoryAuditStore
from tradegate.bootstrap import build_container
from tradegate.config.settings import AppConfig, AuditConfig
from tradegate.core.container import (
    CircularDependencyError,
    DependencyResolutionError,
    ServiceContainer,
)
from tradegate.orchestrator import DecisionOrchestrator
from tradegate.safety.guard import ImmutabilityGuard


@pytest.fixture
def container():
    """Create a fresh container for each test."""
    return ServiceContainer()


# ============================================================================
# Registration and resolution
# ============================================================================

def test_register_singleton(container):
    instance = object()
    container.register_singleton("thing", instance)

    assert container.resolve("thing") is instance
    assert container.has_service("thing")


def test_factory_is_lazy_and_cached(container):
    calls = []

    def factory(c):
        calls.append(1)
        return object()

    container.register_factory("thing", factory)
    assert calls == []

    first = container.resolve("thing")
    second = container.resolve("thing")

    assert first is second
    assert len(calls) == 1


def test_transient_factory(container):
    container.register_factory("thing", lambda c: object(), transient=True)
    assert container.resolve("thing") is not container.resolve("thing")


def test_factory_receives_container(container):
    container.register_singleton("limit", 3)
    container.register_factory("store", lambda c: InMemoryAuditStore(limit=c.resolve("limit")))

    assert container.resolve("store").limit == 3


def test_unknown_service(container):
    with pytest.raises(DependencyResolutionError):
        container.resolve("missing")
    assert container.resolve_optional("missing") is None


def test_circular_dependency(container):
    container.register_factory("a", lambda c: c.resolve("b"))
    container.register_factory("b", lambda c: c.resolve("a"))

    with pytest.raises(CircularDependencyError) as exc:
        container.resolve("a")
    assert "a -> b -> a" in str(exc.value)


def test_clear(container):
    container.register_singleton("thing", 1)
    container.clear()
    assert container.services() == []


# ============================================================================
# Engine wiring
# ============================================================================

def test_build_container_wires_components():
    container = build_container(AppConfig())

    orchestrator = container.resolve("orchestrator")
    guard = container.resolve("guard")

    assert isinstance(orchestrator, DecisionOrchestrator)
    assert isinstance(orchestrator.audit_store, InMemoryAuditStore)
    assert orchestrator.engine is container.resolve("engine")
    assert container.resolve("replay_engine").engine is orchestrator.engine
    assert isinstance(guard, ImmutabilityGuard)
    assert guard.rules is container.resolve("rules")
    assert guard.production is False
    assert set(container.resolve("feeds")) == {"tradier", "twelvedata", "alpaca"}


def test_build_container_duckdb_backend(tmp_path):
    config = AppConfig(audit=AuditConfig(backend="duckdb", path=str(tmp_path / "audit.duckdb")))
    store = build_container(config).resolve("audit_store")
    try:
        assert isinstance(store, DuckDBAuditStore)
    finally:
        store.close()
