"""
Confidence & Sizing Calculator.

Confidence is a fixed weighted sum of five component scores (0-100):

    regime      0.30  regime confidence
    expert      0.25  AI score normalized to 0-100 (x0.8 below the minimum)
    alignment   0.20  timeframe agreement with the trade direction (x1.2 bonus)
    market      0.15  execution quality (spread and depth)
    structural  0.10  setup grade A/B/C

plus the provider degradation penalty and any fallback-neutral gate
penalties, clamped to [0, 100].

Sizing multiplies the phase cap, volatility cap and quality boost from the
rule registry and clamps the product to the registry's size bounds.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from ..config.rules import RuleRegistry
from ..context.models import DecisionContext
from ..market_data.models import MarketContext

logger = logging.getLogger(__name__)


class Action(str, Enum):
    EXECUTE = "EXECUTE"
    WAIT = "WAIT"
    SKIP = "SKIP"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def provider_penalty(failed_count: int, rules: RuleRegistry) -> float:
    """
    Confidence penalty for degraded market data.

    -10 per failed provider, capped at -30 (values from the registry).
    Returns a value <= 0.
    """
    if failed_count <= 0:
        return 0.0
    scoring = rules.scoring
    return -min(failed_count * scoring.provider_penalty, scoring.max_provider_penalty)


def action_for(confidence: float, gates_passed: bool, rules: RuleRegistry) -> Action:
    """Map confidence to an action; any failed gate forces SKIP."""
    if not gates_passed:
        return Action.SKIP
    if confidence >= rules.execute_threshold:
        return Action.EXECUTE
    if confidence >= rules.wait_threshold:
        return Action.WAIT
    return Action.SKIP


@dataclass(frozen=True)
class ConfidenceBreakdown:
    """Per-component scores and contributions behind one confidence value."""
    scores: Mapping[str, float]
    contributions: Mapping[str, float]
    weighted_sum: float
    provider_penalty: float
    gate_penalty: float
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scores": dict(self.scores),
            "contributions": dict(self.contributions),
            "weighted_sum": self.weighted_sum,
            "provider_penalty": self.provider_penalty,
            "gate_penalty": self.gate_penalty,
            "confidence": self.confidence,
        }


class ConfidenceCalculator:
    """
    Pure confidence calculation.

    This is a pure calculation component - no side effects or state.
    """

    def __init__(self, rules: RuleRegistry, name: str = "ConfidenceCalculator"):
        self.rules = rules
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    # ------------------------------------------------------------------
    # Component scores
    # ------------------------------------------------------------------

    def regime_score(self, context: DecisionContext) -> float:
        if context.regime is None:
            return self.rules.scoring.neutral_score
        return clamp(context.regime.confidence, 0.0, 100.0)

    def expert_score(self, context: DecisionContext) -> float:
        scoring = self.rules.scoring
        if context.expert is None:
            return scoring.neutral_score

        ai_score = context.expert.ai_score
        score = min(100.0, ai_score / scoring.ai_score_max * 100)
        if ai_score < scoring.min_ai_score:
            score *= scoring.low_ai_score_factor
        return score

    def alignment_score(self, context: DecisionContext) -> float:
        scoring = self.rules.scoring
        if context.alignment is None or context.expert is None:
            return scoring.neutral_score

        pct = context.alignment.pct_for(context.expert.direction)
        if pct >= scoring.alignment_bonus_threshold:
            pct *= scoring.alignment_bonus_factor
        return min(100.0, pct)

    def market_score(self, market: Optional[MarketContext]) -> float:
        """
        Execution quality: mean of spread score and depth score.

        Fallback liquidity earns the fixed `fallback_market_score` (0 by
        default), never more than observed liquidity, so a failed provider
        can only lower confidence.
        """
        if market is None or market.liquidity is None:
            return self.rules.scoring.neutral_score
        if "alpaca" in market.fallbacks:
            return self.rules.scoring.fallback_market_score

        spread = market.liquidity.spread_bps
        max_spread = self.rules.gates.max_spread_bps
        if spread > max_spread:
            spread_score = max(0.0, 100 - (spread - max_spread) * 10)
        else:
            spread_score = max(50.0, 100 - spread)

        depth_score = clamp(market.liquidity.depth_score, 0.0, 100.0)
        return (spread_score + depth_score) / 2

    def structural_score(self, context: DecisionContext) -> float:
        scoring = self.rules.scoring
        if context.structure is None:
            return scoring.neutral_score
        return scoring.structure_grades.get(context.structure.execution_quality, scoring.neutral_score)

    # ------------------------------------------------------------------
    # Total
    # ------------------------------------------------------------------

    def calculate(
        self,
        context: DecisionContext,
        market: Optional[MarketContext],
        gate_penalty: float = 0.0
    ) -> ConfidenceBreakdown:
        """
        Calculate confidence for a context and its market data.

        Args:
            context: Decision context snapshot
            market: Market context (fallbacks count as data)
            gate_penalty: Sum of fallback-neutral gate penalties (>= 0)

        Returns:
            ConfidenceBreakdown with confidence rounded to 1 decimal
        """
        weights = self.rules.weights
        scores = {
            "regime": self.regime_score(context),
            "expert": self.expert_score(context),
            "alignment": self.alignment_score(context),
            "market": self.market_score(market),
            "structural": self.structural_score(context),
        }
        contributions = {
            name: round(score * getattr(weights, name), 4)
            for name, score in scores.items()
        }
        weighted_sum = sum(contributions.values())

        failed = market.failed_provider_count if market is not None else 0
        degradation = provider_penalty(failed, self.rules)

        confidence = round(clamp(weighted_sum + degradation - gate_penalty, 0.0, 100.0), 1)

        return ConfidenceBreakdown(
            scores=MappingProxyType({k: round(v, 4) for k, v in scores.items()}),
            contributions=MappingProxyType(contributions),
            weighted_sum=round(weighted_sum, 4),
            provider_penalty=degradation,
            gate_penalty=gate_penalty,
            confidence=confidence,
        )


class SizeCalculator:
    """Position size multiplier from the frozen lookup tables."""

    def __init__(self, rules: RuleRegistry):
        self.rules = rules

    def calculate(self, context: DecisionContext) -> float:
        """
        clamp(phase cap x volatility cap x quality boost, MIN, MAX).

        Phase 2 and NORMAL volatility are assumed when the regime is absent;
        MEDIUM quality when the expert is absent.
        """
        regime = context.regime
        phase = regime.phase if regime else 2
        volatility = regime.volatility if regime else "NORMAL"
        quality = context.expert.quality if context.expert else "MEDIUM"

        raw = (
            self.rules.phase_size_cap(phase)
            * self.rules.volatility_cap(volatility)
            * self.rules.quality_boost(quality)
        )
        return round(clamp(raw, self.rules.min_size, self.rules.max_size), 2)
