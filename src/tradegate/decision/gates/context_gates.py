"""
Gates over the accumulated signal context.
"""

from ...context.models import Bias, DecisionContext
from ...market_data.models import MarketContext
from ...utils.time_utils import market_session
from .base import Gate, GateResult, MissingDataPolicy


class RegimeGate(Gate):
    """
    Phase and bias must be consistent with the trade direction.

    The direction must be allowed by the phase rule, a directional bias must
    not oppose it, and the regime confidence must reach the minimum.
    """

    name = "REGIME_GATE"
    missing_data_policy = MissingDataPolicy.FAIL_CLOSED

    def evaluate(self, context: DecisionContext, market: MarketContext) -> GateResult:
        regime = context.regime
        direction = self.direction(context)

        if regime is None:
            return self.missing("regime fragment")
        if direction is None:
            return self.missing("trade direction")

        rule = self.rules.phase_rule(regime.phase)
        observed = f"phase={regime.phase} bias={regime.bias} direction={direction}"

        if not rule.allows(direction):
            allowed = ", ".join(rule.allowed) or "none"
            return self.failed(
                f"{direction} not allowed in phase {regime.phase} ({rule.name}); allowed: {allowed}",
                observed,
                tuple(rule.allowed),
            )

        if regime.bias != Bias.NEUTRAL.value and regime.bias != direction:
            return self.failed(
                f"Regime bias {regime.bias} opposes {direction}", observed, direction
            )

        minimum = self.rules.gates.min_regime_confidence
        if regime.confidence < minimum:
            return self.failed(
                f"Regime confidence {regime.confidence:g} < {minimum:g}", regime.confidence, minimum
            )

        return self.passed(f"{direction} consistent with {rule.name} regime", observed, tuple(rule.allowed))


class StructuralGate(Gate):
    """The execution setup must be valid and liquid."""

    name = "STRUCTURAL_GATE"
    missing_data_policy = MissingDataPolicy.FALLBACK_NEUTRAL

    def evaluate(self, context: DecisionContext, market: MarketContext) -> GateResult:
        structure = context.structure
        if structure is None:
            return self.missing("structure fragment")

        observed = f"valid_setup={structure.valid_setup} liquidity_ok={structure.liquidity_ok}"
        if not structure.valid_setup:
            return self.failed("Setup not valid", observed, True)
        if not structure.liquidity_ok:
            return self.failed("Structural liquidity not OK", observed, True)
        return self.passed(f"Valid setup (grade {structure.execution_quality})", observed, True)


class SessionGate(Gate):
    """Reject decisions received during restricted market sessions."""

    name = "SESSION_GATE"
    missing_data_policy = MissingDataPolicy.FAIL_CLOSED

    def evaluate(self, context: DecisionContext, market: MarketContext) -> GateResult:
        received_at = context.meta.received_at
        if not received_at:
            return self.missing("receive time")

        session = market_session(received_at).value
        restricted = self.rules.gates.restricted_sessions

        if session in restricted:
            return self.failed(f"Execution restricted during {session} session", session, restricted)
        return self.passed(f"Execution allowed during {session} session", session, restricted)
