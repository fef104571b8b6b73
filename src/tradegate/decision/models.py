"""
Decision packet.

The immutable output of one decision cycle. It carries the complete input
snapshots so the replay engine can recompute it without external state.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..context.models import DecisionContext, freeze_mapping, to_plain
from ..market_data.models import MarketContext
from .gates.base import GateResult


class DecisionCause:
    """Why a packet was forced instead of computed."""
    TIMEOUT = "TIMEOUT"
    ENGINE_FAULT = "ENGINE_FAULT"


@dataclass(frozen=True)
class DecisionPacket:
    action: str
    confidence: float
    size_multiplier: float
    gates_passed: Tuple[str, ...]
    gates_failed: Tuple[str, ...]
    reasons: Tuple[str, ...]
    engine_version: str
    rules_fingerprint: str
    input_context: DecisionContext
    market_context: Optional[MarketContext]
    timestamp: int
    direction: Optional[str] = None
    cause: Optional[str] = None
    gate_results: Tuple[GateResult, ...] = ()
    confidence_breakdown: Mapping[str, Any] = field(default_factory=freeze_mapping)

    @property
    def symbol(self) -> str:
        return self.input_context.symbol

    @property
    def is_forced(self) -> bool:
        return self.cause is not None

    def to_dict(self) -> Dict[str, Any]:
        data = to_plain(self)
        data["input_context"] = self.input_context.to_dict()
        data["market_context"] = self.market_context.to_dict() if self.market_context else None
        return data

    def packet_id(self) -> str:
        """Content-derived identifier; identical packets share an id."""
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionPacket":
        market = data.get("market_context")
        return cls(
            action=data["action"],
            confidence=data["confidence"],
            size_multiplier=data["size_multiplier"],
            gates_passed=tuple(data.get("gates_passed", ())),
            gates_failed=tuple(data.get("gates_failed", ())),
            reasons=tuple(data.get("reasons", ())),
            engine_version=data["engine_version"],
            rules_fingerprint=data.get("rules_fingerprint", ""),
            input_context=DecisionContext.from_dict(data["input_context"]),
            market_context=MarketContext.from_dict(market) if market else None,
            timestamp=data["timestamp"],
            direction=data.get("direction"),
            cause=data.get("cause"),
            gate_results=tuple(
                GateResult(**_thaw_gate(r)) for r in data.get("gate_results", ())
            ),
            confidence_breakdown=freeze_mapping(data.get("confidence_breakdown")),
        )


def _thaw_gate(result: Dict[str, Any]) -> Dict[str, Any]:
    """Restore tuple thresholds that JSON turned into lists."""
    result = dict(result)
    for key in ("observed_value", "threshold"):
        if isinstance(result.get(key), list):
            result[key] = tuple(result[key])
    return result
