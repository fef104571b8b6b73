"""
Decision Orchestrator.

Drives one request through the decision cycle:

    RECEIVED -> NORMALIZED -> INCOMPLETE (respond waiting)
                           -> MARKET_ENRICHED -> GATED -> SCORED -> AUDITED -> RESPONDED
    RECEIVED -> REJECTED (validation failure)

Failures after NORMALIZED never escape: a budget overrun yields a SKIP packet
with cause TIMEOUT and any other exception a SKIP packet with cause
ENGINE_FAULT. Every packet is appended to the audit store.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .audit.store import AuditStore
from .context.accumulator import ContextAccumulator
from .context.models import ContextMeta, DecisionContext
from .core.errors import IncompleteContextError, ValidationError
from .decision.engine import DecisionEngine
from .decision.models import DecisionCause, DecisionPacket
from .market_data.builder import MarketContextBuilder
from .market_data.models import MarketContext
from .utils.logger import get_decision_logger
from .utils.metrics import EngineMetrics
from .utils.time_utils import Clock, now_ms
from .webhooks.normalizer import normalize
from .webhooks.payloads import WebhookSource

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    RECEIVED = "RECEIVED"
    NORMALIZED = "NORMALIZED"
    INCOMPLETE = "INCOMPLETE"
    MARKET_ENRICHED = "MARKET_ENRICHED"
    GATED = "GATED"
    SCORED = "SCORED"
    AUDITED = "AUDITED"
    RESPONDED = "RESPONDED"
    REJECTED = "REJECTED"


@dataclass
class WebhookResponse:
    """Structured outcome of one request."""
    status: str  # rejected | waiting | decided
    request_id: str
    source: Optional[str] = None
    symbol: Optional[str] = None
    missing: List[str] = field(default_factory=list)
    completeness: Optional[float] = None
    packet: Optional[DecisionPacket] = None
    decision_id: Optional[str] = None
    error: Optional[str] = None
    details: List[Dict[str, Any]] = field(default_factory=list)
    states: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "request_id": self.request_id,
            "source": self.source,
            "symbol": self.symbol,
            "missing": list(self.missing),
            "completeness": self.completeness,
            "decision_id": self.decision_id,
            "decision": self.packet.to_dict() if self.packet else None,
            "error": self.error,
            "details": list(self.details),
            "states": list(self.states),
        }


@dataclass
class _CycleTrace:
    request_id: str
    states: List[str] = field(default_factory=list)
    market: Optional[MarketContext] = None

    def enter(self, state: CycleState) -> None:
        self.states.append(state.value)

    @property
    def state(self) -> Optional[str]:
        return self.states[-1] if self.states else None


class DecisionOrchestrator:
    """
    Long-lived coordinator of the decision cycle; one per process.

    Args:
        accumulator: Per-symbol context store
        builder: Market context builder
        engine: Pure decision engine
        audit_store: Append-only audit sink
        request_budget_ms: End-to-end budget of one decision cycle
        decision_budget_ms: Budget of the synchronous gate+score step
        clock: Epoch-millisecond clock
        metrics: Optional engine metrics
    """

    def __init__(
        self,
        accumulator: ContextAccumulator,
        builder: MarketContextBuilder,
        engine: DecisionEngine,
        audit_store: AuditStore,
        request_budget_ms: int = 1000,
        decision_budget_ms: int = 10,
        clock: Clock = now_ms,
        metrics: Optional[EngineMetrics] = None,
        name: str = "DecisionOrchestrator"
    ):
        self.accumulator = accumulator
        self.builder = builder
        self.engine = engine
        self.audit_store = audit_store
        self.request_budget_ms = request_budget_ms
        self.decision_budget_ms = decision_budget_ms
        self.clock = clock
        self.metrics = metrics
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{self.name}")
        self.decision_logger = get_decision_logger(f"{__name__}.{self.name}")

        self.stats = {
            "received": 0,
            "rejected": 0,
            "waiting": 0,
            "decided": 0,
            "forced": 0,
            "audit_failures": 0,
        }
        self.last_decision_at: Optional[int] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_webhook(
        self,
        payload: Dict[str, Any],
        source: Optional[Union[WebhookSource, str]] = None
    ) -> WebhookResponse:
        """
        Process one inbound webhook.

        Args:
            payload: Raw JSON payload
            source: Declared source from the endpoint; detected when None

        Returns:
            WebhookResponse with status rejected, waiting or decided
        """
        trace = _CycleTrace(request_id=uuid.uuid4().hex[:12])
        trace.enter(CycleState.RECEIVED)
        self.stats["received"] += 1
        received_at = self.clock()

        try:
            normalized = normalize(payload, source)
        except ValidationError as e:
            trace.enter(CycleState.REJECTED)
            self.stats["rejected"] += 1
            if self.metrics:
                self.metrics.webhook_rejected(type(e).__name__)
            self.logger.warning(
                f"❌ Webhook rejected: {e}",
                extra={'request_id': trace.request_id, 'source': e.source}
            )
            return WebhookResponse(
                status="rejected",
                request_id=trace.request_id,
                source=e.source,
                error=str(e),
                details=e.details,
                states=trace.states,
            )

        trace.enter(CycleState.NORMALIZED)
        symbol = normalized.symbol
        if self.metrics:
            self.metrics.webhook_received(normalized.source.value)

        try:
            await self.accumulator.update(
                symbol,
                normalized.kind,
                normalized.fragment,
                normalized.source.value,
                received_at,
                instrument=normalized.instrument,
            )

            if not self.accumulator.is_complete(symbol, received_at):
                return self._waiting(trace, normalized.source.value, symbol, received_at)

            context = self.accumulator.build(symbol, received_at)
        except Exception as e:
            self.logger.error(
                f"Context fault for {symbol} after {trace.state}: {e}",
                exc_info=True,
                extra={'request_id': trace.request_id, 'symbol': symbol}
            )
            context = DecisionContext(
                meta=ContextMeta(self.engine.engine_version, received_at, 0.0),
                instrument=normalized.instrument,
            )
            packet = self.engine.forced_skip(
                context, None, self.clock(), DecisionCause.ENGINE_FAULT,
                f"{type(e).__name__}: {e}"
            )
            return self._respond(trace, context, normalized.source.value, packet, 0.0)

        return await self._decide_and_respond(trace, context, normalized.source.value)

    async def decide_now(self, symbol: str) -> WebhookResponse:
        """
        Run a decision cycle on the current context without a new webhook.

        Raises:
            IncompleteContextError: If required fragments are missing or stale
        """
        symbol = symbol.strip().upper()
        now = self.clock()
        if not self.accumulator.is_complete(symbol, now):
            raise IncompleteContextError(symbol, self.accumulator.missing_required(symbol, now))

        trace = _CycleTrace(request_id=uuid.uuid4().hex[:12])
        trace.enter(CycleState.RECEIVED)
        trace.enter(CycleState.NORMALIZED)
        context = self.accumulator.build(symbol, now)
        return await self._decide_and_respond(trace, context, None)

    def context_status(self, symbol: str) -> Dict[str, Any]:
        return self.accumulator.completeness_stats(symbol.strip().upper(), self.clock())

    def health(self) -> Dict[str, Any]:
        try:
            audited = self.audit_store.count()
            audit_ok = True
        except Exception as e:
            self.logger.error(f"Audit store health check failed: {e}")
            audited, audit_ok = None, False

        return {
            "status": "healthy" if audit_ok else "degraded",
            "engine_version": self.engine.engine_version,
            "rules_fingerprint": self.engine.fingerprint,
            "symbols": self.accumulator.symbols(),
            "audited_decisions": audited,
            "last_decision_at": self.last_decision_at,
            "stats": dict(self.stats),
        }

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _waiting(self, trace: _CycleTrace, source: str, symbol: str, now: int) -> WebhookResponse:
        trace.enter(CycleState.INCOMPLETE)
        self.stats["waiting"] += 1
        missing = self.accumulator.missing_required(symbol, now)
        self.logger.info(
            f"Waiting for {', '.join(missing)} on {symbol}",
            extra={'request_id': trace.request_id, 'symbol': symbol, 'source': source}
        )
        return WebhookResponse(
            status="waiting",
            request_id=trace.request_id,
            source=source,
            symbol=symbol,
            missing=missing,
            completeness=self.accumulator.completeness(symbol, now),
            states=trace.states,
        )

    async def _decide_and_respond(
        self,
        trace: _CycleTrace,
        context: DecisionContext,
        source: Optional[str]
    ) -> WebhookResponse:
        start = time.perf_counter()
        packet = await self._run_cycle(trace, context)
        latency_ms = (time.perf_counter() - start) * 1000
        return self._respond(trace, context, source, packet, latency_ms)

    def _respond(
        self,
        trace: _CycleTrace,
        context: DecisionContext,
        source: Optional[str],
        packet: DecisionPacket,
        latency_ms: float
    ) -> WebhookResponse:
        decision_id, error = self._audit(trace, packet)
        self._record(trace, packet, latency_ms)
        trace.enter(CycleState.RESPONDED)

        return WebhookResponse(
            status="decided",
            request_id=trace.request_id,
            source=source,
            symbol=context.symbol,
            completeness=context.meta.completeness,
            packet=packet,
            decision_id=decision_id,
            error=error,
            states=trace.states,
        )

    async def _run_cycle(self, trace: _CycleTrace, context: DecisionContext) -> DecisionPacket:
        budget_s = self.request_budget_ms / 1000
        try:
            return await asyncio.wait_for(self._decide(trace, context), timeout=budget_s)
        except asyncio.TimeoutError:
            detail = f"decision cycle exceeded {self.request_budget_ms}ms (last state {trace.state})"
            self.logger.error(
                f"⏱️ {detail} for {context.symbol}",
                extra={'request_id': trace.request_id, 'symbol': context.symbol}
            )
            return self.engine.forced_skip(context, trace.market, self.clock(), DecisionCause.TIMEOUT, detail)
        except Exception as e:
            self.logger.error(
                f"Engine fault for {context.symbol} after {trace.state}: {e}",
                exc_info=True,
                extra={'request_id': trace.request_id, 'symbol': context.symbol}
            )
            return self.engine.forced_skip(
                context, trace.market, self.clock(), DecisionCause.ENGINE_FAULT,
                f"{type(e).__name__}: {e}"
            )

    async def _decide(self, trace: _CycleTrace, context: DecisionContext) -> DecisionPacket:
        trace.market = await self.builder.build(context.symbol)
        trace.enter(CycleState.MARKET_ENRICHED)

        start = time.perf_counter()
        packet = self.engine.decide(context, trace.market, self.clock())
        elapsed_ms = (time.perf_counter() - start) * 1000
        trace.enter(CycleState.GATED)
        trace.enter(CycleState.SCORED)

        if elapsed_ms > self.decision_budget_ms:
            self.logger.warning(
                f"Gate+score step took {elapsed_ms:.2f}ms (budget {self.decision_budget_ms}ms)",
                extra={'request_id': trace.request_id, 'symbol': context.symbol, 'execution_time': elapsed_ms}
            )
            if self.metrics:
                self.metrics.decision_budget_exceeded(elapsed_ms)

        return packet

    def _audit(self, trace: _CycleTrace, packet: DecisionPacket):
        try:
            decision_id = self.audit_store.append(packet)
        except Exception as e:
            self.stats["audit_failures"] += 1
            self.logger.error(
                f"Audit append failed for {packet.symbol}: {e}",
                exc_info=True,
                extra={'request_id': trace.request_id, 'symbol': packet.symbol}
            )
            return None, f"audit append failed: {e}"

        trace.enter(CycleState.AUDITED)
        return decision_id, None

    def _record(self, trace: _CycleTrace, packet: DecisionPacket, latency_ms: float) -> None:
        self.stats["decided"] += 1
        self.last_decision_at = packet.timestamp

        if packet.is_forced:
            self.stats["forced"] += 1
            if self.metrics:
                self.metrics.decision_forced(packet.cause)

        for gate in packet.gates_failed:
            reason = next((r.reason for r in packet.gate_results if r.gate_name == gate), "")
            self.decision_logger.gate_failed(packet.symbol, gate, reason, request_id=trace.request_id)
            if self.metrics:
                self.metrics.gate_failed(gate)

        if self.metrics:
            self.metrics.decision_made(packet.action, packet.confidence, latency_ms)

        self.decision_logger.decision(
            packet.symbol,
            packet.action,
            packet.confidence,
            request_id=trace.request_id,
            execution_time=round(latency_ms, 3),
        )
