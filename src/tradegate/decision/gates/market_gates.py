"""
Gates over the market microstructure context.

Provider fallbacks are data, not missing data: these gates evaluate them like
live values. Only a sub-object that is entirely absent triggers the
missing-data policy.
"""

from ...context.models import DecisionContext
from ...market_data.models import MarketContext
from .base import Gate, GateResult, MissingDataPolicy


class SpreadGate(Gate):
    """Bid-ask spread must not exceed the maximum (basis points)."""

    name = "SPREAD_GATE"
    missing_data_policy = MissingDataPolicy.FAIL_CLOSED

    def evaluate(self, context: DecisionContext, market: MarketContext) -> GateResult:
        threshold = self.rules.gates.max_spread_bps
        if market.liquidity is None or market.liquidity.spread_bps is None:
            return self.missing("spread data", threshold)

        spread = market.liquidity.spread_bps
        if spread > threshold:
            return self.failed(f"Spread too wide: {spread:g}bps > {threshold:g}bps", spread, threshold)
        return self.passed(f"Spread acceptable: {spread:g}bps <= {threshold:g}bps", spread, threshold)


class VolatilityGate(Gate):
    """ATR(14) relative to realized volatility must not spike."""

    name = "VOLATILITY_GATE"
    missing_data_policy = MissingDataPolicy.FAIL_CLOSED

    def evaluate(self, context: DecisionContext, market: MarketContext) -> GateResult:
        threshold = self.rules.gates.max_atr_spike
        stats = market.stats
        if stats is None or stats.atr14 is None or not stats.rv20 or stats.rv20 <= 0:
            return self.missing("ATR/realized volatility", threshold)

        ratio = round(stats.atr14 / stats.rv20, 4)
        if ratio > threshold:
            return self.failed(f"Volatility spike: ATR/RV {ratio:g} > {threshold:g}", ratio, threshold)
        return self.passed(f"Volatility normal: ATR/RV {ratio:g} <= {threshold:g}", ratio, threshold)


class DepthGate(Gate):
    """Order book depth score must reach the minimum."""

    name = "DEPTH_GATE"
    missing_data_policy = MissingDataPolicy.FAIL_CLOSED

    def evaluate(self, context: DecisionContext, market: MarketContext) -> GateResult:
        threshold = self.rules.gates.min_depth_score
        if market.liquidity is None or market.liquidity.depth_score is None:
            return self.missing("depth data", threshold)

        depth = market.liquidity.depth_score
        if depth < threshold:
            return self.failed(f"Insufficient depth: {depth:g} < {threshold:g}", depth, threshold)
        return self.passed(f"Adequate depth: {depth:g} >= {threshold:g}", depth, threshold)


class GammaGate(Gate):
    """Trade direction must not oppose a non-neutral options gamma bias."""

    name = "GAMMA_GATE"
    missing_data_policy = MissingDataPolicy.FALLBACK_NEUTRAL

    CONFLICTS = {("POSITIVE", "SHORT"), ("NEGATIVE", "LONG")}

    def evaluate(self, context: DecisionContext, market: MarketContext) -> GateResult:
        if market.options is None or not market.options.gamma_bias:
            return self.missing("gamma bias")

        direction = self.direction(context)
        if direction is None:
            return self.missing("trade direction")

        bias = market.options.gamma_bias
        if (bias, direction) in self.CONFLICTS:
            return self.failed(f"Gamma headwind: {bias} bias opposes {direction}", bias, direction)
        return self.passed(f"No gamma conflict: {bias} bias with {direction}", bias, direction)
