"""
Base class for risk gates.

Gates are stateless, synchronous predicates over a DecisionContext and a
MarketContext. A gate never blocks evaluation of the others; the pipeline
always produces a complete passed/failed record.

Each gate declares exactly one missing-data policy:
- FAIL_CLOSED: missing input is a gate failure
- FALLBACK_NEUTRAL: missing input passes with a recorded confidence penalty
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ...config.rules import RuleRegistry
from ...context.models import DecisionContext
from ...market_data.models import MarketContext


class MissingDataPolicy(str, Enum):
    FAIL_CLOSED = "FAIL_CLOSED"
    FALLBACK_NEUTRAL = "FALLBACK_NEUTRAL"


@dataclass(frozen=True)
class GateResult:
    """
    Result of one gate evaluation.

    Attributes:
        gate_name: Canonical gate name (e.g. SPREAD_GATE)
        passed: Whether the gate passed
        reason: Human-readable explanation
        observed_value: Value the gate looked at, None when missing
        threshold: Threshold it was compared against
        penalty: Confidence points deducted by a fallback-neutral pass
    """
    gate_name: str
    passed: bool
    reason: str
    observed_value: Any = None
    threshold: Any = None
    penalty: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gate_name": self.gate_name,
            "passed": self.passed,
            "reason": self.reason,
            "observed_value": self.observed_value,
            "threshold": self.threshold,
            "penalty": self.penalty,
        }


class Gate(ABC):
    """Base class for all gates."""

    name: str = "GATE"
    missing_data_policy: MissingDataPolicy = MissingDataPolicy.FAIL_CLOSED

    def __init__(self, rules: RuleRegistry):
        self.rules = rules
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    @abstractmethod
    def evaluate(self, context: DecisionContext, market: MarketContext) -> GateResult:
        """
        Evaluate the gate.

        Returns:
            GateResult; must not raise for missing inputs
        """
        pass

    def passed(self, reason: str, observed: Any = None, threshold: Any = None) -> GateResult:
        return GateResult(self.name, True, reason, observed, threshold)

    def failed(self, reason: str, observed: Any = None, threshold: Any = None) -> GateResult:
        return GateResult(self.name, False, reason, observed, threshold)

    def missing(self, what: str, threshold: Any = None) -> GateResult:
        """Resolve a missing input according to the gate's policy."""
        if self.missing_data_policy == MissingDataPolicy.FAIL_CLOSED:
            return self.failed(f"Missing {what} (fail-closed)", None, threshold)

        penalty = self.rules.gates.missing_data_penalty
        return GateResult(
            self.name,
            True,
            f"Missing {what}; neutral pass with -{penalty:g} confidence",
            None,
            threshold,
            penalty,
        )

    def direction(self, context: DecisionContext) -> Optional[str]:
        return context.expert.direction if context.expert else None
