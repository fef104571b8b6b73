"""
Frozen rule registry.

The registry is built once from validated configuration and never mutated
afterwards. Every node is an immutable value: frozen dataclasses, tuples,
strings, numbers and read-only mapping proxies. The Immutability Guard
re-verifies this structure and its fingerprint while the process runs.
"""

import hashlib
import json
from dataclasses import dataclass, fields, is_dataclass
from types import MappingProxyType
from typing import Any, Mapping, Tuple

from .settings import RulesConfig


def _frozen_mapping(data: dict) -> Mapping:
    return MappingProxyType(dict(data))


@dataclass(frozen=True)
class PhaseRule:
    phase: int
    name: str
    allowed: Tuple[str, ...]
    size_cap: float

    def allows(self, direction: str) -> bool:
        return direction in self.allowed


@dataclass(frozen=True)
class Weights:
    regime: float
    expert: float
    alignment: float
    market: float
    structural: float

    @property
    def total(self) -> float:
        return self.regime + self.expert + self.alignment + self.market + self.structural


@dataclass(frozen=True)
class GateRules:
    max_spread_bps: float
    max_atr_spike: float
    min_depth_score: float
    min_regime_confidence: float
    restricted_sessions: Tuple[str, ...]
    missing_data_penalty: float


@dataclass(frozen=True)
class ScoringRules:
    ai_score_max: float
    min_ai_score: float
    low_ai_score_factor: float
    alignment_bonus_threshold: float
    alignment_bonus_factor: float
    neutral_score: float
    provider_penalty: float
    max_provider_penalty: float
    fallback_market_score: float
    structure_grades: Mapping[str, float]


@dataclass(frozen=True)
class ContextRules:
    max_age_ms: int
    required: Tuple[str, ...]
    optional: Tuple[str, ...]

    @property
    def tracked(self) -> Tuple[str, ...]:
        return self.required + self.optional


@dataclass(frozen=True)
class RuleRegistry:
    """
    Immutable set of thresholds, weights and lookup tables.

    Use RuleRegistry.from_config() to build one; lookups never fall back
    silently for unknown phases.
    """

    engine_version: str
    weights: Weights
    execute_threshold: float
    wait_threshold: float
    min_size: float
    max_size: float
    gates: GateRules
    scoring: ScoringRules
    context: ContextRules
    phases: Mapping[int, PhaseRule]
    volatility_caps: Mapping[str, float]
    quality_boosts: Mapping[str, float]

    @classmethod
    def from_config(cls, config: RulesConfig = None) -> "RuleRegistry":
        config = config or RulesConfig()
        gates = config.gates
        scoring = config.scoring

        return cls(
            engine_version=config.engine_version,
            weights=Weights(
                regime=config.weights.regime,
                expert=config.weights.expert,
                alignment=config.weights.alignment,
                market=config.weights.market,
                structural=config.weights.structural,
            ),
            execute_threshold=float(config.thresholds.execute),
            wait_threshold=float(config.thresholds.wait),
            min_size=config.size_bounds.min,
            max_size=config.size_bounds.max,
            gates=GateRules(
                max_spread_bps=float(gates.max_spread_bps),
                max_atr_spike=float(gates.max_atr_spike),
                min_depth_score=float(gates.min_depth_score),
                min_regime_confidence=float(gates.min_regime_confidence),
                restricted_sessions=tuple(gates.restricted_sessions),
                missing_data_penalty=float(gates.missing_data_penalty),
            ),
            scoring=ScoringRules(
                ai_score_max=scoring.ai_score_max,
                min_ai_score=scoring.min_ai_score,
                low_ai_score_factor=scoring.low_ai_score_factor,
                alignment_bonus_threshold=scoring.alignment_bonus_threshold,
                alignment_bonus_factor=scoring.alignment_bonus_factor,
                neutral_score=scoring.neutral_score,
                provider_penalty=scoring.provider_penalty,
                max_provider_penalty=scoring.max_provider_penalty,
                fallback_market_score=scoring.fallback_market_score,
                structure_grades=_frozen_mapping(scoring.structure_grades),
            ),
            context=ContextRules(
                max_age_ms=config.context.max_age_ms,
                required=tuple(config.context.required),
                optional=tuple(config.context.optional),
            ),
            phases=_frozen_mapping({
                phase: PhaseRule(
                    phase=phase,
                    name=rule.name,
                    allowed=tuple(rule.allowed),
                    size_cap=rule.size_cap,
                )
                for phase, rule in sorted(config.phases.items())
            }),
            volatility_caps=_frozen_mapping(config.volatility_caps),
            quality_boosts=_frozen_mapping(config.quality_boosts),
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def phase_rule(self, phase: int) -> PhaseRule:
        if phase not in self.phases:
            raise KeyError(f"No rule for phase {phase}")
        return self.phases[phase]

    def phase_size_cap(self, phase: int) -> float:
        return self.phase_rule(phase).size_cap

    def volatility_cap(self, volatility: str) -> float:
        return self.volatility_caps[volatility]

    def quality_boost(self, quality: str) -> float:
        return self.quality_boosts[quality]

    def phase_number(self, name: str) -> int:
        """Phase number for a phase name (ACCUMULATION -> 1)."""
        for phase, rule in self.phases.items():
            if rule.name == name.upper():
                return phase
        raise KeyError(f"Unknown phase name: {name}")

    # ------------------------------------------------------------------
    # Fingerprint
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return _plain(self)

    def fingerprint(self) -> str:
        """SHA-256 over the canonical JSON form (16 hex characters)."""
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def _plain(value: Any) -> Any:
    """Convert registry nodes to JSON-compatible values."""
    if is_dataclass(value):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (tuple, list)):
        return [_plain(v) for v in value]
    return value
