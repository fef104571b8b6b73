"""
Unit tests for source detection and payload normalization.
"""

import pytest

from tradegate.core.errors import UnrecognizedSource, ValidationError
from tradegate.webhooks.normalizer import detect_source, normalize
from tradegate.webhooks.payloads import WebhookSource


# ============================================================================
# Detection
# ============================================================================

def test_detects_every_source(payloads):
    assert detect_source(payloads.saty_phase()) == WebhookSource.SATY_PHASE
    assert detect_source(payloads.mtf_dots()) == WebhookSource.MTF_DOTS
    assert detect_source(payloads.ultimate_options()) == WebhookSource.ULTIMATE_OPTIONS
    assert detect_source(payloads.tradingview_signal()) == WebhookSource.TRADINGVIEW_SIGNAL
    assert detect_source(payloads.strat_exec()) == WebhookSource.STRAT_EXEC


def test_timeframe_distinguishes_tradingview_from_ultimate(payloads):
    payload = payloads.ultimate_options()
    assert detect_source(payload) == WebhookSource.ULTIMATE_OPTIONS

    payload["signal"]["timeframe"] = "5"
    assert detect_source(payload) == WebhookSource.TRADINGVIEW_SIGNAL


def test_unrecognized_payload():
    with pytest.raises(UnrecognizedSource):
        detect_source({"ticker": "SPY"})

    with pytest.raises(UnrecognizedSource):
        detect_source(["not", "an", "object"])


def test_slug_round_trip():
    for source in WebhookSource:
        assert WebhookSource.from_slug(source.slug) == source

    with pytest.raises(ValueError):
        WebhookSource.from_slug("unknown-kind")


# ============================================================================
# Mapping
# ============================================================================

def test_saty_phase_maps_to_regime(payloads):
    result = normalize(payloads.saty_phase("spy", phase=4, bias="bearish", confidence=72, volatility="high"))

    assert result.symbol == "SPY"
    assert result.kind == "regime"
    assert result.fragment.phase == 4
    assert result.fragment.phase_name == "MARKDOWN"
    assert result.fragment.bias == "SHORT"
    assert result.fragment.volatility == "HIGH"
    assert result.fragment.confidence == 72.0
    assert result.instrument.exchange == "NASDAQ"


def test_saty_phase_name_and_event_fallback(payloads):
    payload = payloads.saty_phase(phase="distribution")
    assert normalize(payload).fragment.phase == 3

    payload = payloads.saty_phase()
    del payload["data"]["phase"]
    payload["event"]["name"] = "ENTER_ACCUMULATION"
    assert normalize(payload).fragment.phase_name == "ACCUMULATION"


def test_saty_phase_out_of_range(payloads):
    with pytest.raises(ValidationError):
        normalize(payloads.saty_phase(phase=9))


def test_mtf_dots_alignment_percentages(payloads):
    payload = payloads.mtf_dots()
    payload["timeframes"]["tf60min"] = {"direction": "bearish"}
    payload["timeframes"]["tf240min"] = {"direction": "neutral"}

    fragment = normalize(payload).fragment

    assert fragment.bullish_pct == pytest.approx(66.67)
    assert fragment.bearish_pct == pytest.approx(16.67)
    assert fragment.tf_states["tf60min"] == "BEARISH"
    assert fragment.pct_for("SHORT") == fragment.bearish_pct


def test_expert_sources_share_fragment_kind(payloads):
    ultimate = normalize(payloads.ultimate_options(signal_type="short", quality="high"))
    tradingview = normalize(payloads.tradingview_signal())

    assert ultimate.kind == tradingview.kind == "expert"
    assert ultimate.fragment.direction == "SHORT"
    assert ultimate.fragment.quality == "HIGH"
    assert ultimate.fragment.components == ("momentum", "flow")
    assert ultimate.fragment.rr1 == 2.0
    assert tradingview.source == WebhookSource.TRADINGVIEW_SIGNAL


def test_strat_exec_maps_to_structure(payloads):
    result = normalize(payloads.strat_exec(setup_valid=False, quality="b"))

    assert result.kind == "structure"
    assert result.fragment.valid_setup is False
    assert result.fragment.execution_quality == "B"


# ============================================================================
# Validation
# ============================================================================

def test_declared_source_validates_against_its_schema(payloads):
    with pytest.raises(ValidationError) as exc:
        normalize(payloads.strat_exec(), WebhookSource.MTF_DOTS)

    assert exc.value.source == "MTF_DOTS"
    assert exc.value.details


def test_tradingview_requires_timeframe(payloads):
    with pytest.raises(ValidationError):
        normalize(payloads.ultimate_options(), "tradingview-signal")


@pytest.mark.parametrize("field,value", [
    ("type", "SIDEWAYS"),
    ("ai_score", 11),
    ("quality", "LOW"),
])
def test_invalid_expert_signal_fields(payloads, field, value):
    payload = payloads.ultimate_options()
    payload["signal"][field] = value

    with pytest.raises(ValidationError):
        normalize(payload)


def test_empty_symbol_rejected(payloads):
    with pytest.raises(ValidationError):
        normalize(payloads.strat_exec(symbol="  "))


def test_unknown_declared_source(payloads):
    with pytest.raises(UnrecognizedSource):
        normalize(payloads.strat_exec(), "no-such-source")
