"""
Replay Engine.

Re-runs the pure decision step on the snapshots stored in an audit record and
compares the result with what was recorded:

- VERSION_MISMATCH: recorded engine version differs; nothing is recomputed
- MATCH: every compared field agrees (numbers within EPSILON)
- MISMATCH: field-level differences are reported
- ERROR: the record cannot be replayed (forced packet, missing snapshot,
  unexpected failure)
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from ..core.errors import VersionMismatch
from ..decision.engine import DecisionEngine
from ..decision.models import DecisionPacket
from .store import AuditRecord

logger = logging.getLogger(__name__)

EPSILON = 0.001

COMPARED_FIELDS = (
    "action",
    "direction",
    "confidence",
    "size_multiplier",
    "gates_passed",
    "gates_failed",
    "reasons",
    "rules_fingerprint",
    "gate_results",
    "confidence_breakdown",
)


class ReplayStatus(str, Enum):
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"
    VERSION_MISMATCH = "VERSION_MISMATCH"
    ERROR = "ERROR"


@dataclass(frozen=True)
class FieldMismatch:
    field: str
    original: Any
    replayed: Any


@dataclass(frozen=True)
class ReplayResult:
    record_id: str
    status: ReplayStatus
    original_action: str
    replayed_action: Optional[str] = None
    original_confidence: Optional[float] = None
    replayed_confidence: Optional[float] = None
    mismatches: tuple = ()
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "status": self.status.value,
            "original_action": self.original_action,
            "replayed_action": self.replayed_action,
            "original_confidence": self.original_confidence,
            "replayed_confidence": self.replayed_confidence,
            "mismatches": [
                {"field": m.field, "original": m.original, "replayed": m.replayed}
                for m in self.mismatches
            ],
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class BatchReplayResult:
    results: List[ReplayResult] = field(default_factory=list)

    def _count(self, status: ReplayStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def matches(self) -> int:
        return self._count(ReplayStatus.MATCH)

    @property
    def mismatches(self) -> int:
        return self._count(ReplayStatus.MISMATCH)

    @property
    def version_mismatches(self) -> int:
        return self._count(ReplayStatus.VERSION_MISMATCH)

    @property
    def errors(self) -> int:
        return self._count(ReplayStatus.ERROR)

    @property
    def match_rate(self) -> float:
        return self.matches / self.total if self.total else 0.0

    @property
    def avg_duration_ms(self) -> float:
        if not self.results:
            return 0.0
        return sum(r.duration_ms for r in self.results) / len(self.results)

    def summary(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "matches": self.matches,
            "mismatches": self.mismatches,
            "version_mismatches": self.version_mismatches,
            "errors": self.errors,
            "match_rate": round(self.match_rate, 4),
            "avg_replay_duration_ms": round(self.avg_duration_ms, 3),
        }


def _values_equal(original: Any, replayed: Any) -> bool:
    if isinstance(original, bool) or isinstance(replayed, bool):
        return original == replayed
    if isinstance(original, (int, float)) and isinstance(replayed, (int, float)):
        return abs(original - replayed) <= EPSILON
    if isinstance(original, (list, tuple)) and isinstance(replayed, (list, tuple)):
        return len(original) == len(replayed) and all(
            _values_equal(a, b) for a, b in zip(original, replayed)
        )
    if isinstance(original, dict) and isinstance(replayed, dict):
        return original.keys() == replayed.keys() and all(
            _values_equal(original[k], replayed[k]) for k in original
        )
    return original == replayed


def diff_packets(original: DecisionPacket, replayed: DecisionPacket) -> List[FieldMismatch]:
    """Field-level differences between a recorded and a replayed packet."""
    original_data = original.to_dict()
    replayed_data = replayed.to_dict()
    return [
        FieldMismatch(name, original_data.get(name), replayed_data.get(name))
        for name in COMPARED_FIELDS
        if not _values_equal(original_data.get(name), replayed_data.get(name))
    ]


class ReplayEngine:
    """Recomputes recorded decisions with the current engine."""

    def __init__(self, engine: DecisionEngine, name: str = "ReplayEngine"):
        self.engine = engine
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    def replay(self, record: Union[AuditRecord, DecisionPacket]) -> ReplayResult:
        """
        Replay one audit record.

        Args:
            record: AuditRecord or bare DecisionPacket

        Returns:
            ReplayResult; never raises
        """
        if isinstance(record, AuditRecord):
            record_id, packet = record.id, record.packet
        else:
            record_id, packet = record.packet_id(), record

        start = time.perf_counter()

        def elapsed() -> float:
            return round((time.perf_counter() - start) * 1000, 3)

        if packet.engine_version != self.engine.engine_version:
            return ReplayResult(
                record_id=record_id,
                status=ReplayStatus.VERSION_MISMATCH,
                original_action=packet.action,
                original_confidence=packet.confidence,
                error=str(VersionMismatch(packet.engine_version, self.engine.engine_version)),
                duration_ms=elapsed(),
            )

        if packet.is_forced:
            return ReplayResult(
                record_id=record_id,
                status=ReplayStatus.ERROR,
                original_action=packet.action,
                original_confidence=packet.confidence,
                error=f"Packet was forced ({packet.cause}); no computed decision to replay",
                duration_ms=elapsed(),
            )

        if packet.market_context is None:
            return ReplayResult(
                record_id=record_id,
                status=ReplayStatus.ERROR,
                original_action=packet.action,
                original_confidence=packet.confidence,
                error="Record has no market context snapshot",
                duration_ms=elapsed(),
            )

        try:
            replayed = self.engine.decide(packet.input_context, packet.market_context, packet.timestamp)
        except Exception as e:
            self.logger.error(f"Replay of {record_id} failed: {e}", exc_info=True)
            return ReplayResult(
                record_id=record_id,
                status=ReplayStatus.ERROR,
                original_action=packet.action,
                original_confidence=packet.confidence,
                error=f"{type(e).__name__}: {e}",
                duration_ms=elapsed(),
            )

        mismatches = diff_packets(packet, replayed)
        status = ReplayStatus.MISMATCH if mismatches else ReplayStatus.MATCH
        if mismatches:
            self.logger.warning(
                f"Replay mismatch for {record_id}: {[m.field for m in mismatches]}",
                extra={'symbol': packet.symbol}
            )

        return ReplayResult(
            record_id=record_id,
            status=status,
            original_action=packet.action,
            replayed_action=replayed.action,
            original_confidence=packet.confidence,
            replayed_confidence=replayed.confidence,
            mismatches=tuple(mismatches),
            duration_ms=elapsed(),
        )

    def verify_determinism(self, record: Union[AuditRecord, DecisionPacket], iterations: int = 10) -> bool:
        """True when `iterations` replays all agree with each other."""
        results = [self.replay(record) for _ in range(iterations)]
        first = results[0]
        return all(
            r.status == first.status
            and r.replayed_action == first.replayed_action
            and r.replayed_confidence == first.replayed_confidence
            and r.mismatches == first.mismatches
            for r in results[1:]
        )

    def replay_batch(self, records: Sequence[Union[AuditRecord, DecisionPacket]]) -> BatchReplayResult:
        return BatchReplayResult([self.replay(r) for r in records])


def generate_audit_report(batch: BatchReplayResult) -> str:
    """Plain-text report for a batch replay."""
    summary = batch.summary()
    lines = [
        "=== Decision Replay Audit Report ===",
        "",
        f"Total Entries: {batch.total}",
        f"Matches: {batch.matches} ({batch.match_rate * 100:.1f}%)",
        f"Mismatches: {batch.mismatches}",
        f"Version Mismatches: {batch.version_mismatches}",
        f"Errors: {batch.errors}",
        f"Avg Replay Duration: {summary['avg_replay_duration_ms']:.2f}ms",
        "",
    ]

    mismatched = [r for r in batch.results if r.status == ReplayStatus.MISMATCH]
    if mismatched:
        lines += ["=== Mismatches ===", ""]
        for result in mismatched:
            lines.append(f"Entry: {result.record_id}")
            lines.append(f"  Original: {result.original_action} (confidence: {result.original_confidence})")
            lines.append(f"  Replayed: {result.replayed_action} (confidence: {result.replayed_confidence})")
            for mismatch in result.mismatches:
                lines.append(f"  - {mismatch.field}: {mismatch.original} -> {mismatch.replayed}")
            lines.append("")

    failed = [r for r in batch.results if r.status == ReplayStatus.ERROR]
    if failed:
        lines += ["=== Errors ===", ""]
        for result in failed:
            lines.append(f"Entry: {result.record_id}")
            lines.append(f"  Error: {result.error}")
            lines.append("")

    return "\n".join(lines)
