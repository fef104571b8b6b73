"""
Gate Pipeline.

Runs the full ordered gate set; no short-circuit, so every decision carries a
complete gates_passed / gates_failed record.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..config.rules import RuleRegistry
from ..context.models import DecisionContext
from ..core.errors import EngineFault
from ..market_data.models import MarketContext
from .gates import DEFAULT_GATES, Gate, GateResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    results: Tuple[GateResult, ...]

    @property
    def passed(self) -> List[str]:
        return [r.gate_name for r in self.results if r.passed]

    @property
    def failed(self) -> List[str]:
        return [r.gate_name for r in self.results if not r.passed]

    @property
    def all_passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def penalty(self) -> float:
        return sum(r.penalty for r in self.results)


class GatePipeline:
    """Evaluates an ordered list of gates."""

    def __init__(self, rules: RuleRegistry, gates: Optional[Sequence[Gate]] = None):
        self.rules = rules
        self.gates = list(gates) if gates is not None else [cls(rules) for cls in DEFAULT_GATES]
        names = [g.name for g in self.gates]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate gate names: {names}")

    @property
    def gate_names(self) -> List[str]:
        return [g.name for g in self.gates]

    def evaluate(self, context: DecisionContext, market: MarketContext) -> PipelineResult:
        """
        Evaluate every gate in order.

        Raises:
            EngineFault: If a gate raises instead of returning a result
        """
        results = []
        for gate in self.gates:
            try:
                results.append(gate.evaluate(context, market))
            except Exception as e:
                raise EngineFault(f"{gate.name} raised {type(e).__name__}: {e}") from e

        return PipelineResult(tuple(results))
