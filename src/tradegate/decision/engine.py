"""
Decision Engine.

Pure gate-and-score step of the decision cycle:

    (DecisionContext, MarketContext, timestamp) -> DecisionPacket

No I/O, no clock reads and no mutable state, so the same inputs always
produce the same packet. The replay engine relies on this.
"""

import logging
from types import MappingProxyType
from typing import Optional

from ..config.rules import RuleRegistry
from ..context.models import DecisionContext
from ..market_data.models import MarketContext
from .models import DecisionPacket
from .pipeline import GatePipeline
from .scoring import Action, ConfidenceCalculator, SizeCalculator, action_for

logger = logging.getLogger(__name__)


class DecisionEngine:
    """
    Gates, confidence and sizing under one frozen rule registry.

    Args:
        rules: Frozen rule registry
        pipeline: Optional gate pipeline (defaults to the canonical gate set)
    """

    def __init__(self, rules: RuleRegistry, pipeline: Optional[GatePipeline] = None,
                 name: str = "DecisionEngine"):
        self.rules = rules
        self.pipeline = pipeline or GatePipeline(rules)
        self.confidence = ConfidenceCalculator(rules)
        self.sizing = SizeCalculator(rules)
        self.fingerprint = rules.fingerprint()
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    @property
    def engine_version(self) -> str:
        return self.rules.engine_version

    def decide(self, context: DecisionContext, market: MarketContext, timestamp: int) -> DecisionPacket:
        """
        Produce a decision for a complete context.

        Args:
            context: Immutable context snapshot
            market: Market context for this decision
            timestamp: Decision time in epoch milliseconds

        Returns:
            DecisionPacket with the full gate record
        """
        gates = self.pipeline.evaluate(context, market)
        breakdown = self.confidence.calculate(context, market, gate_penalty=gates.penalty)
        action = action_for(breakdown.confidence, gates.all_passed, self.rules)
        size = self.sizing.calculate(context)

        reasons = [f"{r.gate_name}: {r.reason}" for r in gates.results if not r.passed]
        for failure in market.errors:
            reasons.append(f"PROVIDER_FALLBACK: {failure.provider} {failure.kind}")
        if gates.all_passed:
            reasons.append(
                f"Confidence {breakdown.confidence:.1f} -> {action.value} "
                f"(execute >= {self.rules.execute_threshold:g}, wait >= {self.rules.wait_threshold:g})"
            )

        return DecisionPacket(
            action=action.value,
            direction=context.direction,
            confidence=breakdown.confidence,
            size_multiplier=size,
            gates_passed=tuple(gates.passed),
            gates_failed=tuple(gates.failed),
            gate_results=gates.results,
            reasons=tuple(reasons),
            engine_version=self.engine_version,
            rules_fingerprint=self.fingerprint,
            input_context=context,
            market_context=market,
            timestamp=timestamp,
            confidence_breakdown=MappingProxyType(breakdown.to_dict()),
        )

    def forced_skip(
        self,
        context: DecisionContext,
        market: Optional[MarketContext],
        timestamp: int,
        cause: str,
        detail: str
    ) -> DecisionPacket:
        """SKIP packet for a cycle that could not complete (timeout or fault)."""
        return DecisionPacket(
            action=Action.SKIP.value,
            direction=context.direction,
            confidence=0.0,
            size_multiplier=self.rules.min_size,
            gates_passed=(),
            gates_failed=(),
            reasons=(f"{cause}: {detail}",),
            engine_version=self.engine_version,
            rules_fingerprint=self.fingerprint,
            input_context=context,
            market_context=market,
            timestamp=timestamp,
            cause=cause,
        )
