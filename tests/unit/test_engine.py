"""
Unit tests for the DecisionEngine.

Tests:
- Same inputs produce identical packets
- Failed gates dominate confidence
- Reasons record failed gates and provider fallbacks
- Forced SKIP packets
"""

from dataclasses import replace

import pytest

from tradegate.context.models import AlignmentFragment, RegimeFragment
from tradegate.decision.engine import DecisionEngine
from tradegate.decision.models import DecisionCause, DecisionPacket
from tradegate.market_data.models import FALLBACKS, ProviderFailure


@pytest.fixture
def engine(registry):
    return DecisionEngine(registry)


def test_strong_long_executes(engine, make_context, live_market, clock):
    packet = engine.decide(make_context(), live_market, clock())

    assert packet.action == "EXECUTE"
    assert packet.direction == "LONG"
    assert packet.confidence == 92.0
    assert packet.size_multiplier == 3.0
    assert len(packet.gates_passed) == 7
    assert packet.gates_failed == ()
    assert packet.engine_version == "2.5.0"
    assert packet.rules_fingerprint == engine.rules.fingerprint()
    assert packet.reasons[-1].startswith("Confidence 92.0 -> EXECUTE")


def test_decide_is_deterministic(engine, make_context, live_market, clock):
    first = engine.decide(make_context(), live_market, clock())
    second = engine.decide(make_context(), live_market, clock())

    assert first == second
    assert first.packet_id() == second.packet_id()


def test_failed_gate_dominates_confidence(engine, make_context, live_market, clock):
    context = make_context(regime=RegimeFragment(4, "MARKDOWN", "NORMAL", 95.0, "NEUTRAL"))

    packet = engine.decide(context, live_market, clock())

    assert packet.action == "SKIP"
    assert packet.gates_failed == ("REGIME_GATE",)
    assert packet.confidence > 80
    assert packet.reasons[0].startswith("REGIME_GATE: LONG not allowed in phase 4")


def test_provider_fallbacks_are_reasons(engine, make_context, live_market, clock):
    market = replace(
        live_market,
        errors=(ProviderFailure("tradier", "TIMEOUT", "timed out"),),
        fallbacks=("tradier",),
    )

    packet = engine.decide(make_context(), market, clock())

    assert "PROVIDER_FALLBACK: tradier TIMEOUT" in packet.reasons
    assert packet.confidence == 82.0
    assert packet.action == "EXECUTE"


def test_wait_band(engine, make_context, live_market, clock):
    market = replace(
        live_market,
        errors=tuple(ProviderFailure(p, "TIMEOUT", "timed out") for p in FALLBACKS),
    )

    packet = engine.decide(make_context(), market, clock())

    assert packet.confidence == 62.0
    assert packet.action == "SKIP"

    market = replace(market, errors=market.errors[:2])
    assert engine.decide(make_context(), market, clock()).action == "WAIT"


def test_breakdown_travels_with_packet(engine, make_context, live_market, clock):
    packet = engine.decide(make_context(structure=None), live_market, clock())

    assert packet.confidence_breakdown["gate_penalty"] == 5
    assert packet.confidence_breakdown["scores"]["structural"] == 50
    assert len(packet.gate_results) == 7


def test_packet_round_trips_through_dict(engine, make_context, live_market, clock):
    packet = engine.decide(make_context(), live_market, clock())

    restored = DecisionPacket.from_dict(packet.to_dict())

    assert restored.packet_id() == packet.packet_id()
    assert restored.input_context == packet.input_context
    assert restored.market_context == packet.market_context


def test_forced_skip(engine, make_context, clock):
    packet = engine.forced_skip(make_context(), None, clock(), DecisionCause.TIMEOUT, "over budget")

    assert packet.action == "SKIP"
    assert packet.is_forced
    assert packet.confidence == 0.0
    assert packet.size_multiplier == 0.5
    assert packet.reasons == ("TIMEOUT: over budget",)
    assert packet.market_context is None
    assert dict(packet.confidence_breakdown) == {}
    assert packet.gate_results == ()


def test_mapping_fields_default_to_empty(make_context):
    assert dict(AlignmentFragment().tf_states) == {}
    assert dict(make_context().last_updated) == {}
