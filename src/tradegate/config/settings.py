"""
Configuration models using Pydantic for type-safe validation.

This module defines all configuration models for the decision engine:
- SystemConfig: Environment, logging, API server
- RulesConfig: Weights, thresholds and lookup tables of the rule registry
- FeedsConfig: Market data providers (Tradier, Twelve Data, Alpaca)
- OrchestratorConfig: Latency budgets
- AuditConfig: Audit store backend
- GuardConfig: Immutability guard schedule

Invariant violations are reported as pydantic validation errors, which the
loader turns into ConfigurationError.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# Enums for Configuration
# ============================================================================

class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging level."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AuditBackend(str, Enum):
    """Audit store implementation."""
    MEMORY = "memory"
    DUCKDB = "duckdb"


# ============================================================================
# System Configuration
# ============================================================================

class SystemConfig(BaseModel):
    """System-wide settings."""

    model_config = ConfigDict(use_enum_values=True)

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment"
    )

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level"
    )

    json_logs: bool = Field(
        default=True,
        description="Emit JSON formatted logs"
    )

    log_file: Optional[str] = Field(
        default=None,
        description="Optional log file path"
    )

    data_dir: Path = Field(
        default=Path("data"),
        description="Data storage directory"
    )

    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )

    api_port: int = Field(
        default=8000,
        ge=1024,
        le=65535,
        description="API server port"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION.value


# ============================================================================
# Rules Configuration
# ============================================================================

class PhaseRuleConfig(BaseModel):
    """Allowed directions and size cap for one regime phase."""

    name: str
    allowed: List[str] = Field(default_factory=list)
    size_cap: float = Field(gt=0)

    @field_validator("allowed")
    @classmethod
    def validate_directions(cls, v):
        for direction in v:
            if direction not in ("LONG", "SHORT"):
                raise ValueError(f"Unknown direction in phase rule: {direction}")
        return v


class WeightsConfig(BaseModel):
    """Confidence weights; must sum to 1.0 within 0.01."""

    regime: float = Field(default=0.30, ge=0, le=1)
    expert: float = Field(default=0.25, ge=0, le=1)
    alignment: float = Field(default=0.20, ge=0, le=1)
    market: float = Field(default=0.15, ge=0, le=1)
    structural: float = Field(default=0.10, ge=0, le=1)

    @model_validator(mode="after")
    def validate_sum(self):
        total = self.regime + self.expert + self.alignment + self.market + self.structural
        if abs(total - 1.0) > 0.01:
            raise ValueError(f"Confidence weights must sum to 1.0 (got {total:.3f})")
        return self


class ThresholdsConfig(BaseModel):
    execute: float = Field(default=80, ge=0, le=100)
    wait: float = Field(default=65, ge=0, le=100)

    @model_validator(mode="after")
    def validate_order(self):
        if self.execute < self.wait:
            raise ValueError(
                f"Execute threshold ({self.execute}) must be >= wait threshold ({self.wait})"
            )
        return self


class SizeBoundsConfig(BaseModel):
    min: float = Field(default=0.5, gt=0)
    max: float = Field(default=3.0, gt=0)

    @model_validator(mode="after")
    def validate_bounds(self):
        if self.min >= self.max:
            raise ValueError(f"Size bounds min ({self.min}) must be < max ({self.max})")
        return self


class GatesConfig(BaseModel):
    max_spread_bps: float = Field(default=12, gt=0)
    max_atr_spike: float = Field(default=2.0, gt=0)
    min_depth_score: float = Field(default=30, ge=0, le=100)
    min_regime_confidence: float = Field(default=50, ge=0, le=100)
    restricted_sessions: List[str] = Field(default_factory=lambda: ["AFTERHOURS"])
    missing_data_penalty: float = Field(default=5, ge=0, le=100)


class ScoringConfig(BaseModel):
    ai_score_max: float = Field(default=10.5, gt=0)
    min_ai_score: float = Field(default=7.0, ge=0)
    low_ai_score_factor: float = Field(default=0.8, gt=0, le=1)
    alignment_bonus_threshold: float = Field(default=75, ge=0, le=100)
    alignment_bonus_factor: float = Field(default=1.2, ge=1)
    neutral_score: float = Field(default=50, ge=0, le=100)
    provider_penalty: float = Field(default=10, ge=0)
    max_provider_penalty: float = Field(default=30, ge=0)
    # Execution quality credited to a fallback liquidity sub-object
    fallback_market_score: float = Field(default=0, ge=0, le=100)
    structure_grades: Dict[str, float] = Field(
        default_factory=lambda: {"A": 100, "B": 75, "C": 40}
    )


class ContextConfig(BaseModel):
    max_age_ms: int = Field(default=5 * 60 * 1000, gt=0)
    required: List[str] = Field(default_factory=lambda: ["regime", "expert"])
    optional: List[str] = Field(default_factory=lambda: ["alignment", "structure"])


def _default_phases() -> Dict[int, PhaseRuleConfig]:
    return {
        1: PhaseRuleConfig(name="ACCUMULATION", allowed=["LONG", "SHORT"], size_cap=1.0),
        2: PhaseRuleConfig(name="MARKUP", allowed=["LONG"], size_cap=2.0),
        3: PhaseRuleConfig(name="DISTRIBUTION", allowed=[], size_cap=0.5),
        4: PhaseRuleConfig(name="MARKDOWN", allowed=["SHORT"], size_cap=2.0),
    }


class RulesConfig(BaseModel):
    """Every value the frozen rule registry is built from."""

    engine_version: str = Field(default="2.5.0")
    weights: WeightsConfig = Field(default_factory=WeightsConfig)
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    size_bounds: SizeBoundsConfig = Field(default_factory=SizeBoundsConfig)
    gates: GatesConfig = Field(default_factory=GatesConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    phases: Dict[int, PhaseRuleConfig] = Field(default_factory=_default_phases)
    volatility_caps: Dict[str, float] = Field(
        default_factory=lambda: {"LOW": 1.0, "NORMAL": 1.5, "HIGH": 0.5}
    )
    quality_boosts: Dict[str, float] = Field(
        default_factory=lambda: {"EXTREME": 1.15, "HIGH": 1.05, "MEDIUM": 1.0}
    )

    @field_validator("phases")
    @classmethod
    def validate_phases(cls, v):
        if sorted(v.keys()) != [1, 2, 3, 4]:
            raise ValueError(f"Phase rules must cover phases 1-4 (got {sorted(v.keys())})")
        return v

    @field_validator("volatility_caps")
    @classmethod
    def validate_volatility_caps(cls, v):
        missing = {"LOW", "NORMAL", "HIGH"} - set(v)
        if missing:
            raise ValueError(f"Volatility caps missing: {sorted(missing)}")
        return v

    @field_validator("quality_boosts")
    @classmethod
    def validate_quality_boosts(cls, v):
        missing = {"EXTREME", "HIGH", "MEDIUM"} - set(v)
        if missing:
            raise ValueError(f"Quality boosts missing: {sorted(missing)}")
        return v


# ============================================================================
# Market Data Feeds
# ============================================================================

class FeedConfig(BaseModel):
    """One external market data provider."""

    enabled: bool = True
    base_url: str
    api_key_env: str = Field(description="Environment variable holding the API key")
    api_secret_env: Optional[str] = Field(
        default=None,
        description="Environment variable holding the API secret"
    )
    timeout_ms: int = Field(default=600, gt=0, le=10_000)
    max_retries: int = Field(default=2, ge=0, le=5)
    backoff_ms: int = Field(default=50, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)


class FeedsConfig(BaseModel):
    tradier: FeedConfig = Field(
        default_factory=lambda: FeedConfig(
            base_url="https://api.tradier.com",
            api_key_env="TRADIER_API_KEY",
        )
    )
    twelvedata: FeedConfig = Field(
        default_factory=lambda: FeedConfig(
            base_url="https://api.twelvedata.com",
            api_key_env="TWELVEDATA_API_KEY",
        )
    )
    alpaca: FeedConfig = Field(
        default_factory=lambda: FeedConfig(
            base_url="https://data.alpaca.markets",
            api_key_env="ALPACA_API_KEY",
            api_secret_env="ALPACA_SECRET_KEY",
        )
    )


# ============================================================================
# Orchestrator / Audit / Guard
# ============================================================================

class OrchestratorConfig(BaseModel):
    request_budget_ms: int = Field(default=1000, gt=0)
    decision_budget_ms: float = Field(default=10, gt=0)


class AuditConfig(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    backend: AuditBackend = AuditBackend.MEMORY
    path: str = Field(default="data/audit.duckdb")
    memory_limit: int = Field(default=10_000, gt=0)


class GuardConfig(BaseModel):
    enabled: bool = True
    check_interval_s: float = Field(default=30, gt=0)


# ============================================================================
# Main Application Configuration
# ============================================================================

class AppConfig(BaseModel):
    """Complete application configuration."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    feeds: FeedsConfig = Field(default_factory=FeedsConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    guard: GuardConfig = Field(default_factory=GuardConfig)
