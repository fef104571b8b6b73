"""
Context Accumulator.

Keeps one mutable record per instrument and merges normalized webhook
fragments into it. Records are created on the first webhook for a symbol and
never deleted; stale fragments are ignored by readers but never purged.

Writes for one symbol are serialized by a per-symbol asyncio.Lock; distinct
symbols proceed concurrently.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config.rules import RuleRegistry
from ..utils.time_utils import Clock, now_ms
from .models import ContextMeta, DecisionContext, Instrument, freeze_mapping

logger = logging.getLogger(__name__)


@dataclass
class _SymbolRecord:
    instrument: Instrument
    fragments: Dict[str, Any] = field(default_factory=dict)
    last_updated: Dict[str, int] = field(default_factory=dict)
    source_updated: Dict[str, int] = field(default_factory=dict)


class ContextStore(ABC):
    """Interface of the long-lived per-symbol context store."""

    @abstractmethod
    async def update(
        self,
        symbol: str,
        kind: str,
        fragment: Any,
        source: str,
        received_at: int,
        instrument: Optional[Instrument] = None
    ) -> None:
        pass

    @abstractmethod
    def is_complete(self, symbol: str, now: Optional[int] = None) -> bool:
        pass

    @abstractmethod
    def completeness(self, symbol: str, now: Optional[int] = None) -> float:
        pass

    @abstractmethod
    def build(self, symbol: str, now: Optional[int] = None) -> Optional[DecisionContext]:
        pass


class ContextAccumulator(ContextStore):
    """
    In-memory context store.

    Args:
        rules: Frozen registry providing the freshness window and the
            required/optional fragment kinds
        clock: Epoch-millisecond clock used when callers pass no `now`
    """

    def __init__(self, rules: RuleRegistry, clock: Clock = now_ms, name: str = "ContextAccumulator"):
        self.rules = rules
        self.clock = clock
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{self.name}")
        self._records: Dict[str, _SymbolRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _lock_for(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = self._locks[symbol] = asyncio.Lock()
        return lock

    async def update(
        self,
        symbol: str,
        kind: str,
        fragment: Any,
        source: str,
        received_at: int,
        instrument: Optional[Instrument] = None
    ) -> None:
        """
        Merge one fragment into the symbol's record.

        Args:
            symbol: Instrument symbol (record key)
            kind: Fragment kind (regime, alignment, expert, structure)
            fragment: Frozen fragment value
            source: Webhook source that produced it
            received_at: Receive time in epoch milliseconds
            instrument: Optional instrument fragment; only non-empty fields merge
        """
        if kind not in self.rules.context.tracked:
            raise ValueError(f"Unknown fragment kind: {kind}")

        async with self._lock_for(symbol):
            record = self._records.get(symbol)
            if record is None:
                record = self._records[symbol] = _SymbolRecord(instrument=Instrument(symbol=symbol))
                self.logger.info(f"Created context record for {symbol}", extra={'symbol': symbol})

            if instrument is not None:
                record.instrument = record.instrument.merge(instrument)

            record.fragments[kind] = fragment
            record.last_updated[kind] = received_at
            record.source_updated[source] = received_at

        self.logger.debug(
            f"Updated {kind} for {symbol} from {source}",
            extra={'symbol': symbol, 'source': source}
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _now(self, now: Optional[int]) -> int:
        return self.clock() if now is None else now

    def _is_fresh(self, record: _SymbolRecord, kind: str, now: int) -> bool:
        updated = record.last_updated.get(kind)
        if updated is None or kind not in record.fragments:
            return False
        return now - updated <= self.rules.context.max_age_ms

    def fresh_kinds(self, symbol: str, now: Optional[int] = None) -> List[str]:
        record = self._records.get(symbol)
        if record is None:
            return []
        now = self._now(now)
        return [kind for kind in self.rules.context.tracked if self._is_fresh(record, kind, now)]

    def missing_required(self, symbol: str, now: Optional[int] = None) -> List[str]:
        fresh = set(self.fresh_kinds(symbol, now))
        return [kind for kind in self.rules.context.required if kind not in fresh]

    def is_complete(self, symbol: str, now: Optional[int] = None) -> bool:
        record = self._records.get(symbol)
        if record is None or not record.instrument.symbol:
            return False
        return not self.missing_required(symbol, now)

    def completeness(self, symbol: str, now: Optional[int] = None) -> float:
        tracked = self.rules.context.tracked
        return len(self.fresh_kinds(symbol, now)) / len(tracked)

    def build(self, symbol: str, now: Optional[int] = None) -> Optional[DecisionContext]:
        """
        Build an immutable snapshot of the symbol's context.

        Returns:
            DecisionContext containing only fresh fragments, or None when the
            symbol has never been seen
        """
        record = self._records.get(symbol)
        if record is None:
            return None

        now = self._now(now)
        fresh = set(self.fresh_kinds(symbol, now))
        fragments = {
            kind: record.fragments[kind]
            for kind in self.rules.context.tracked
            if kind in fresh
        }

        return DecisionContext(
            meta=ContextMeta(
                engine_version=self.rules.engine_version,
                received_at=now,
                completeness=len(fresh) / len(self.rules.context.tracked),
            ),
            instrument=record.instrument,
            last_updated=freeze_mapping(record.last_updated),
            **fragments
        )

    def completeness_stats(self, symbol: str, now: Optional[int] = None) -> Dict[str, Any]:
        """Per-fragment availability, age and freshness for diagnostics."""
        record = self._records.get(symbol)
        now = self._now(now)
        fragments = {}

        for kind in self.rules.context.tracked:
            updated = record.last_updated.get(kind) if record else None
            fragments[kind] = {
                "required": kind in self.rules.context.required,
                "available": updated is not None,
                "age_ms": (now - updated) if updated is not None else None,
                "fresh": bool(record) and self._is_fresh(record, kind, now),
            }

        return {
            "symbol": symbol,
            "known": record is not None,
            "complete": self.is_complete(symbol, now),
            "completeness": self.completeness(symbol, now),
            "missing_required": self.missing_required(symbol, now),
            "fragments": fragments,
            "sources": dict(record.source_updated) if record else {},
        }

    def symbols(self) -> List[str]:
        return sorted(self._records)

    def clear(self, symbol: Optional[str] = None) -> None:
        """Drop records (tests and manual recovery only)."""
        if symbol is None:
            self._records.clear()
            self._locks.clear()
        else:
            self._records.pop(symbol, None)
            self._locks.pop(symbol, None)
        self.logger.warning(f"Context cleared for {symbol or 'all symbols'}")
