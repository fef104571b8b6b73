"""
Unit tests for the ReplayEngine and the audit report.

Tests:
- Recorded decisions replay as MATCH
- Changed rules surface field-level mismatches
- Version and forced-packet records are not recomputed
- Batch summary and report text
"""

from dataclasses import replace

import pytest

from tradegate.audit.replay import (
    ReplayEngine,
    ReplayStatus,
    diff_packets,
    generate_audit_report,
)
from tradegate.audit.store import InMemoryAuditStore
from tradegate.config.rules import RuleRegistry
from tradegate.config.settings import GatesConfig, RulesConfig
from tradegate.context.models import freeze_mapping
from tradegate.decision.engine import DecisionEngine
from tradegate.decision.models import DecisionCause


@pytest.fixture
def engine(registry):
    return DecisionEngine(registry)


@pytest.fixture
def record(engine, make_context, live_market, clock):
    store = InMemoryAuditStore()
    packet = engine.decide(make_context(), live_market, clock())
    return store.get_by_id(store.append(packet))


def engine_with(**rules):
    return DecisionEngine(RuleRegistry.from_config(RulesConfig(**rules)))


# ============================================================================
# Single replay
# ============================================================================

def test_replay_matches(engine, record):
    result = ReplayEngine(engine).replay(record)

    assert result.status == ReplayStatus.MATCH
    assert result.record_id == record.id
    assert result.replayed_action == "EXECUTE"
    assert result.replayed_confidence == result.original_confidence == 92.0
    assert result.mismatches == ()
    assert result.duration_ms >= 0


def test_replay_accepts_bare_packet(engine, record):
    result = ReplayEngine(engine).replay(record.packet)
    assert result.status == ReplayStatus.MATCH
    assert result.record_id == record.id


def test_changed_rules_are_mismatch(record):
    stricter = engine_with(gates=GatesConfig(max_spread_bps=4))

    result = ReplayEngine(stricter).replay(record)

    assert result.status == ReplayStatus.MISMATCH
    assert result.replayed_action == "SKIP"
    fields = {m.field for m in result.mismatches}
    assert {"action", "gates_passed", "gates_failed", "reasons", "rules_fingerprint"} <= fields
    # the spread score also depends on the threshold
    assert "confidence" in fields


def test_version_mismatch_is_not_recomputed(record):
    result = ReplayEngine(engine_with(engine_version="2.6.0")).replay(record)

    assert result.status == ReplayStatus.VERSION_MISMATCH
    assert result.replayed_action is None
    assert "2.5.0" in result.error and "2.6.0" in result.error


def test_forced_packet_is_error(engine, make_context, clock):
    packet = engine.forced_skip(make_context(), None, clock(), DecisionCause.ENGINE_FAULT, "boom")

    result = ReplayEngine(engine).replay(packet)

    assert result.status == ReplayStatus.ERROR
    assert "ENGINE_FAULT" in result.error


def test_missing_market_snapshot_is_error(engine, record):
    packet = replace(record.packet, market_context=None)
    result = ReplayEngine(engine).replay(packet)

    assert result.status == ReplayStatus.ERROR
    assert "market context" in result.error


def test_small_numeric_drift_is_tolerated(engine, record):
    drifted = replace(record.packet, confidence=record.packet.confidence + 0.0005)
    assert diff_packets(drifted, record.packet) == []

    drifted = replace(record.packet, confidence=record.packet.confidence + 0.01)
    assert [m.field for m in diff_packets(drifted, record.packet)] == ["confidence"]


def test_component_drift_with_same_total_is_mismatch(engine, record):
    breakdown = record.packet.to_dict()["confidence_breakdown"]
    breakdown["scores"]["regime"] += 0.5
    breakdown["scores"]["alignment"] -= 0.75
    packet = replace(record.packet, confidence_breakdown=freeze_mapping(breakdown))

    result = ReplayEngine(engine).replay(packet)

    assert result.status == ReplayStatus.MISMATCH
    assert result.replayed_confidence == result.original_confidence
    assert [m.field for m in result.mismatches] == ["confidence_breakdown"]


def test_gate_observation_drift_is_mismatch(engine, record):
    gates = tuple(
        replace(g, observed_value=g.observed_value + 0.5) if g.gate_name == "SPREAD_GATE" else g
        for g in record.packet.gate_results
    )
    packet = replace(record.packet, gate_results=gates)

    assert [m.field for m in diff_packets(packet, record.packet)] == ["gate_results"]


def test_verify_determinism(engine, record):
    assert ReplayEngine(engine).verify_determinism(record, iterations=5)


# ============================================================================
# Batch and report
# ============================================================================

def test_batch_summary_and_report(engine, record, make_context, clock):
    forced = engine.forced_skip(make_context(), None, clock(), DecisionCause.TIMEOUT, "slow")
    stale = replace(record.packet, engine_version="2.4.0")
    drifted = replace(record.packet, confidence=50.0)

    batch = ReplayEngine(engine).replay_batch([record, forced, stale, drifted])
    summary = batch.summary()

    assert summary["total"] == 4
    assert summary["matches"] == 1
    assert summary["mismatches"] == 1
    assert summary["version_mismatches"] == 1
    assert summary["errors"] == 1
    assert summary["match_rate"] == 0.25

    report = generate_audit_report(batch)

    assert report.startswith("=== Decision Replay Audit Report ===")
    assert "Matches: 1 (25.0%)" in report
    assert "=== Mismatches ===" in report
    assert "  - confidence: 50.0 -> 92.0" in report
    assert "=== Errors ===" in report
    assert "Avg Replay Duration:" in report


def test_empty_batch(engine):
    batch = ReplayEngine(engine).replay_batch([])

    assert batch.match_rate == 0.0
    assert "Total Entries: 0" in generate_audit_report(batch)
    assert "=== Mismatches ===" not in generate_audit_report(batch)
