"""
Source Normalizer.

Maps the five heterogeneous webhook payloads onto context fragments:

    SATY_PHASE          -> regime
    MTF_DOTS            -> alignment
    ULTIMATE_OPTIONS    -> expert
    TRADINGVIEW_SIGNAL  -> expert
    STRAT_EXEC          -> structure

Every source also yields an instrument fragment. The normalizer is pure: it
never touches the context store, so a rejected payload cannot mutate state.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..context.models import (
    AlignmentFragment,
    Bias,
    ExpertFragment,
    Instrument,
    RegimeFragment,
    StructureFragment,
    TrendState,
    Volatility,
    freeze_mapping,
)
from ..core.errors import UnrecognizedSource, ValidationError
from .payloads import (
    PAYLOAD_MODELS,
    MtfDotsPayload,
    SatyPhasePayload,
    StratExecPayload,
    UltimateOptionsPayload,
    WebhookSource,
)

logger = logging.getLogger(__name__)

PHASE_NAMES = {1: "ACCUMULATION", 2: "MARKUP", 3: "DISTRIBUTION", 4: "MARKDOWN"}
PHASE_NUMBERS = {name: number for number, name in PHASE_NAMES.items()}

ALIGNMENT_TIMEFRAMES = ("tf3min", "tf5min", "tf15min", "tf30min", "tf60min", "tf240min")

FRAGMENT_KIND = {
    WebhookSource.SATY_PHASE: "regime",
    WebhookSource.MTF_DOTS: "alignment",
    WebhookSource.ULTIMATE_OPTIONS: "expert",
    WebhookSource.TRADINGVIEW_SIGNAL: "expert",
    WebhookSource.STRAT_EXEC: "structure",
}


@dataclass(frozen=True)
class NormalizedFragment:
    """Result of normalizing one webhook."""
    source: WebhookSource
    symbol: str
    kind: str
    fragment: Any
    instrument: Instrument


def _get(payload: Dict[str, Any], *path: str) -> Any:
    node: Any = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def detect_source(payload: Dict[str, Any]) -> WebhookSource:
    """
    Detect the webhook source from payload content.

    Rules are checked in order; the first match wins.

    Raises:
        UnrecognizedSource: If no rule matches
    """
    if not isinstance(payload, dict):
        raise UnrecognizedSource("Payload must be a JSON object")

    if _get(payload, "meta", "engine") == "SATY_PO":
        return WebhookSource.SATY_PHASE

    if _get(payload, "timeframes", "tf3min") is not None and _get(payload, "timeframes", "tf5min") is not None:
        return WebhookSource.MTF_DOTS

    if (
        _get(payload, "signal", "type") is not None
        and _get(payload, "signal", "timeframe") is not None
        and _get(payload, "instrument", "ticker") is not None
    ):
        return WebhookSource.TRADINGVIEW_SIGNAL

    if (
        _get(payload, "signal", "ai_score") is not None
        and _get(payload, "signal", "quality") is not None
        and _get(payload, "signal", "timeframe") is None
    ):
        return WebhookSource.ULTIMATE_OPTIONS

    if "setup_valid" in payload and "liquidity_ok" in payload:
        return WebhookSource.STRAT_EXEC

    raise UnrecognizedSource(
        f"Unable to detect webhook source from keys: {sorted(payload.keys())}"
    )


def normalize(
    payload: Dict[str, Any],
    source: Optional[Union[WebhookSource, str]] = None
) -> NormalizedFragment:
    """
    Validate a payload and map it to a context fragment.

    Args:
        payload: Raw JSON payload
        source: Declared source (endpoint); detected from content when None

    Returns:
        NormalizedFragment with symbol, fragment kind, fragment and instrument

    Raises:
        UnrecognizedSource: If the source cannot be detected or is unknown
        ValidationError: If the payload is malformed for its source
    """
    if source is None:
        source = detect_source(payload)
    elif not isinstance(source, WebhookSource):
        try:
            source = WebhookSource.from_slug(source)
        except ValueError as e:
            raise UnrecognizedSource(f"Unknown webhook source: {source}") from e

    if not isinstance(payload, dict):
        raise ValidationError("Payload must be a JSON object", source=source.value)

    model = PAYLOAD_MODELS[source]
    try:
        parsed = model.model_validate(payload)
    except PydanticValidationError as e:
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            f"Invalid {source.value} payload: {len(details)} error(s)",
            source=source.value,
            details=details,
        ) from e

    if source == WebhookSource.SATY_PHASE:
        instrument, fragment = _map_saty_phase(parsed)
    elif source == WebhookSource.MTF_DOTS:
        instrument, fragment = _map_mtf_dots(parsed)
    elif source == WebhookSource.STRAT_EXEC:
        instrument, fragment = _map_strat_exec(parsed)
    else:
        instrument, fragment = _map_expert(parsed)

    symbol = instrument.symbol.strip().upper()
    if not symbol:
        raise ValidationError(f"{source.value} payload carries no symbol", source=source.value)

    instrument = Instrument(symbol=symbol, exchange=instrument.exchange, price=instrument.price)

    logger.debug(f"Normalized {source.value} webhook for {symbol}", extra={'symbol': symbol, 'source': source.value})

    return NormalizedFragment(
        source=source,
        symbol=symbol,
        kind=FRAGMENT_KIND[source],
        fragment=fragment,
        instrument=instrument,
    )


# ============================================================================
# Per-source mappings
# ============================================================================

def _phase_from_event(event_name: str) -> str:
    for name in PHASE_NUMBERS:
        if name in (event_name or "").upper():
            return name
    return "ACCUMULATION"


def _resolve_phase(value: Union[int, str, None], event_name: str, source: str):
    if value is None:
        name = _phase_from_event(event_name)
        return PHASE_NUMBERS[name], name

    if isinstance(value, int) or (isinstance(value, str) and value.isdigit()):
        number = int(value)
        if number not in PHASE_NAMES:
            raise ValidationError(f"Phase must be 1-4, got {number}", source=source)
        return number, PHASE_NAMES[number]

    name = value.upper()
    if name not in PHASE_NUMBERS:
        raise ValidationError(f"Unknown phase name: {value}", source=source)
    return PHASE_NUMBERS[name], name


def _map_bias(value: Optional[str]) -> str:
    value = (value or "").upper()
    if value in ("BULLISH", "LONG"):
        return Bias.LONG.value
    if value in ("BEARISH", "SHORT"):
        return Bias.SHORT.value
    return Bias.NEUTRAL.value


def _map_volatility(value: Optional[str]) -> str:
    value = (value or "").lower()
    if "high" in value:
        return Volatility.HIGH.value
    if "low" in value:
        return Volatility.LOW.value
    return Volatility.NORMAL.value


def _map_saty_phase(payload: SatyPhasePayload):
    data = payload.data
    event_name = payload.event.name if payload.event else ""
    phase, phase_name = _resolve_phase(
        data.phase if data else None, event_name, WebhookSource.SATY_PHASE.value
    )

    regime_context = payload.regime_context
    bias = _map_bias(
        (data.bias if data else None)
        or (regime_context.local_bias if regime_context else None)
    )

    confidence = data.confidence if data and data.confidence is not None else None
    if confidence is None and payload.confidence is not None:
        confidence = payload.confidence.confidence_score

    instrument = Instrument(
        symbol=(data.symbol if data and data.symbol else None)
        or (payload.instrument.symbol if payload.instrument else ""),
        exchange=payload.instrument.exchange if payload.instrument else "",
    )

    fragment = RegimeFragment(
        phase=phase,
        phase_name=phase_name,
        volatility=_map_volatility(regime_context.volatility if regime_context else None),
        confidence=float(confidence or 0.0),
        bias=bias,
    )
    return instrument, fragment


def _trend_state(direction: str) -> str:
    direction = (direction or "").lower()
    if direction in ("bullish", "bull"):
        return TrendState.BULLISH.value
    if direction in ("bearish", "bear"):
        return TrendState.BEARISH.value
    return TrendState.NEUTRAL.value


def _map_mtf_dots(payload: MtfDotsPayload):
    states = {}
    for tf in ALIGNMENT_TIMEFRAMES:
        state = payload.timeframes.get(tf)
        if state is not None:
            states[tf] = _trend_state(state.direction)

    total = len(states)
    bullish = sum(1 for s in states.values() if s == TrendState.BULLISH.value)
    bearish = sum(1 for s in states.values() if s == TrendState.BEARISH.value)

    fragment = AlignmentFragment(
        tf_states=freeze_mapping(states),
        bullish_pct=round(bullish / total * 100, 2) if total else 0.0,
        bearish_pct=round(bearish / total * 100, 2) if total else 0.0,
    )
    instrument = Instrument(symbol=payload.ticker, exchange=payload.exchange, price=payload.price)
    return instrument, fragment


def _map_expert(payload: UltimateOptionsPayload):
    signal = payload.signal
    risk = payload.risk
    fragment = ExpertFragment(
        direction=signal.type,
        ai_score=signal.ai_score,
        quality=signal.quality,
        components=tuple(signal.components or payload.components),
        rr1=risk.rr_ratio_t1 if risk else 0.0,
        rr2=risk.rr_ratio_t2 if risk else 0.0,
    )
    instrument = Instrument(
        symbol=payload.instrument.ticker,
        exchange=payload.instrument.exchange,
        price=payload.instrument.current_price,
    )
    return instrument, fragment


def _map_strat_exec(payload: StratExecPayload):
    fragment = StructureFragment(
        valid_setup=payload.setup_valid,
        liquidity_ok=payload.liquidity_ok,
        execution_quality=payload.quality,
    )
    instrument = Instrument(symbol=payload.symbol, exchange=payload.exchange, price=payload.price)
    return instrument, fragment
