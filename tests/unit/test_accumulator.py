"""
Unit tests for the ContextAccumulator.

Tests:
- Fragment merge and instrument overlay
- Completeness and freshness window
- Snapshots exclude stale fragments
- Per-symbol isolation under concurrent writes
"""

import asyncio

import pytest

from tradegate.context.accumulator import ContextAccumulator
from tradegate.context.models import ExpertFragment, Instrument, RegimeFragment, StructureFragment

FIVE_MINUTES = 5 * 60 * 1000

REGIME = RegimeFragment(2, "MARKUP", "NORMAL", 80.0, "LONG")
EXPERT = ExpertFragment("LONG", 8.0, "HIGH")


@pytest.fixture
def accumulator(registry, clock):
    return ContextAccumulator(registry, clock=clock)


@pytest.mark.asyncio
async def test_unknown_symbol(accumulator):
    assert accumulator.build("SPY") is None
    assert not accumulator.is_complete("SPY")
    assert accumulator.completeness("SPY") == 0.0


@pytest.mark.asyncio
async def test_complete_after_required_fragments(accumulator, clock):
    await accumulator.update("SPY", "expert", EXPERT, "ULTIMATE_OPTIONS", clock())
    assert accumulator.missing_required("SPY") == ["regime"]
    assert not accumulator.is_complete("SPY")

    await accumulator.update("SPY", "regime", REGIME, "SATY_PHASE", clock())
    assert accumulator.is_complete("SPY")
    assert accumulator.completeness("SPY") == 0.5


@pytest.mark.asyncio
async def test_later_fragment_replaces_earlier(accumulator, clock):
    await accumulator.update("SPY", "expert", EXPERT, "ULTIMATE_OPTIONS", clock())
    newer = ExpertFragment("SHORT", 9.0, "EXTREME")
    await accumulator.update("SPY", "expert", newer, "TRADINGVIEW_SIGNAL", clock())

    await accumulator.update("SPY", "regime", REGIME, "SATY_PHASE", clock())
    assert accumulator.build("SPY").expert == newer


@pytest.mark.asyncio
async def test_instrument_merges_non_empty_fields(accumulator, clock):
    await accumulator.update(
        "SPY", "regime", REGIME, "SATY_PHASE", clock(), instrument=Instrument("SPY", "NASDAQ")
    )
    await accumulator.update(
        "SPY", "expert", EXPERT, "ULTIMATE_OPTIONS", clock(), instrument=Instrument("SPY", "", 512.5)
    )

    instrument = accumulator.build("SPY").instrument
    assert instrument.exchange == "NASDAQ"
    assert instrument.price == 512.5


@pytest.mark.asyncio
async def test_stale_fragments_are_excluded(accumulator, clock):
    await accumulator.update("SPY", "regime", REGIME, "SATY_PHASE", clock())
    clock.advance(FIVE_MINUTES)
    await accumulator.update("SPY", "expert", EXPERT, "ULTIMATE_OPTIONS", clock())

    # exactly at the boundary the regime is still fresh
    assert accumulator.is_complete("SPY")

    clock.advance(1)
    snapshot = accumulator.build("SPY")
    assert snapshot.regime is None
    assert snapshot.expert == EXPERT
    assert "regime" in snapshot.last_updated
    assert not accumulator.is_complete("SPY")


@pytest.mark.asyncio
async def test_snapshot_is_isolated_from_later_updates(accumulator, clock):
    await accumulator.update("SPY", "regime", REGIME, "SATY_PHASE", clock())
    await accumulator.update("SPY", "expert", EXPERT, "ULTIMATE_OPTIONS", clock())
    snapshot = accumulator.build("SPY")

    await accumulator.update("SPY", "structure", StructureFragment(True, True, "A"), "STRAT_EXEC", clock())

    assert snapshot.structure is None
    assert snapshot.meta.completeness == 0.5
    assert snapshot.meta.received_at == clock()


@pytest.mark.asyncio
async def test_unknown_fragment_kind(accumulator, clock):
    with pytest.raises(ValueError):
        await accumulator.update("SPY", "sentiment", object(), "X", clock())


@pytest.mark.asyncio
async def test_concurrent_symbols_do_not_interfere(accumulator, clock):
    symbols = [f"SYM{i}" for i in range(20)]

    await asyncio.gather(*(
        accumulator.update(s, "regime", RegimeFragment(1 + i % 4, "X", "NORMAL", float(i), "NEUTRAL"), "SATY_PHASE", clock())
        for i, s in enumerate(symbols)
    ))

    for i, s in enumerate(symbols):
        assert accumulator.build(s).regime.confidence == float(i)
    assert accumulator.symbols() == sorted(symbols)


@pytest.mark.asyncio
async def test_completeness_stats(accumulator, clock):
    await accumulator.update("SPY", "regime", REGIME, "SATY_PHASE", clock())
    clock.advance(1000)

    stats = accumulator.completeness_stats("SPY")

    assert stats["known"] is True
    assert stats["missing_required"] == ["expert"]
    assert stats["fragments"]["regime"]["age_ms"] == 1000
    assert stats["fragments"]["regime"]["fresh"] is True
    assert stats["fragments"]["alignment"]["available"] is False
    assert stats["sources"] == {"SATY_PHASE": clock() - 1000}
