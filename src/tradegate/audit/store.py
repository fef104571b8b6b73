"""
Audit store for decision packets.

Append-only sink. Record ids are derived from packet content, so retrying an
append (at-least-once delivery) never creates a duplicate.

Backends:
- InMemoryAuditStore: bounded, for development and tests
- DuckDBAuditStore: single DuckDB file, one row per packet (JSON payload)
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import duckdb

from ..decision.models import DecisionPacket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    id: str
    packet: DecisionPacket
    appended_at: int

    def to_dict(self) -> dict:
        return {"id": self.id, "appended_at": self.appended_at, "packet": self.packet.to_dict()}


class AuditStore(ABC):
    """Interface of the decision audit sink."""

    @abstractmethod
    def append(self, packet: DecisionPacket) -> str:
        """Persist a packet and return its stable id."""
        pass

    @abstractmethod
    def list_recent(self, n: int = 50, symbol: Optional[str] = None) -> List[AuditRecord]:
        """Most recent records first."""
        pass

    @abstractmethod
    def get_by_id(self, record_id: str) -> Optional[AuditRecord]:
        pass

    def count(self) -> int:
        return len(self.list_recent(n=1_000_000))

    def close(self) -> None:
        pass


class InMemoryAuditStore(AuditStore):
    """Bounded in-process audit store; oldest records are evicted first."""

    def __init__(self, limit: int = 10_000):
        self.limit = limit
        self._records: "OrderedDict[str, AuditRecord]" = OrderedDict()
        self._lock = threading.RLock()

    def append(self, packet: DecisionPacket) -> str:
        record_id = packet.packet_id()
        with self._lock:
            if record_id in self._records:
                logger.debug(f"Duplicate append ignored: {record_id}")
                return record_id

            self._records[record_id] = AuditRecord(record_id, packet, int(time.time() * 1000))
            while len(self._records) > self.limit:
                self._records.popitem(last=False)

        return record_id

    def list_recent(self, n: int = 50, symbol: Optional[str] = None) -> List[AuditRecord]:
        with self._lock:
            records = list(reversed(self._records.values()))
        if symbol:
            records = [r for r in records if r.packet.symbol == symbol]
        return records[:n]

    def get_by_id(self, record_id: str) -> Optional[AuditRecord]:
        with self._lock:
            return self._records.get(record_id)

    def count(self) -> int:
        with self._lock:
            return len(self._records)


CREATE_DECISIONS_TABLE = """
CREATE TABLE IF NOT EXISTS decisions (
    id VARCHAR PRIMARY KEY,
    seq BIGINT NOT NULL,
    symbol VARCHAR NOT NULL,
    action VARCHAR NOT NULL,
    confidence DOUBLE NOT NULL,
    engine_version VARCHAR NOT NULL,
    cause VARCHAR,
    decided_at BIGINT NOT NULL,
    appended_at BIGINT NOT NULL,
    packet VARCHAR NOT NULL
)
"""

CREATE_DECISIONS_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS decisions_seq START 1"


class DuckDBAuditStore(AuditStore):
    """
    DuckDB-backed audit store.

    Example:
        store = DuckDBAuditStore("data/audit.duckdb")
        record_id = store.append(packet)
    """

    def __init__(self, path: str = "data/audit.duckdb"):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self.conn = duckdb.connect(path)
        self.conn.execute(CREATE_DECISIONS_SEQUENCE)
        self.conn.execute(CREATE_DECISIONS_TABLE)
        logger.info(f"DuckDBAuditStore initialized at {path}")

    def append(self, packet: DecisionPacket) -> str:
        record_id = packet.packet_id()
        payload = json.dumps(packet.to_dict(), sort_keys=True, default=str)

        with self._lock:
            exists = self.conn.execute(
                "SELECT 1 FROM decisions WHERE id = ?", [record_id]
            ).fetchone()
            if exists:
                logger.debug(f"Duplicate append ignored: {record_id}")
                return record_id

            self.conn.execute(
                """
                INSERT INTO decisions
                    (id, seq, symbol, action, confidence, engine_version, cause,
                     decided_at, appended_at, packet)
                VALUES (?, nextval('decisions_seq'), ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    record_id,
                    packet.symbol,
                    packet.action,
                    packet.confidence,
                    packet.engine_version,
                    packet.cause,
                    packet.timestamp,
                    int(time.time() * 1000),
                    payload,
                ],
            )

        return record_id

    def _to_record(self, row) -> AuditRecord:
        record_id, appended_at, payload = row
        return AuditRecord(record_id, DecisionPacket.from_dict(json.loads(payload)), appended_at)

    def list_recent(self, n: int = 50, symbol: Optional[str] = None) -> List[AuditRecord]:
        query = "SELECT id, appended_at, packet FROM decisions"
        params: list = []
        if symbol:
            query += " WHERE symbol = ?"
            params.append(symbol)
        query += " ORDER BY seq DESC LIMIT ?"
        params.append(n)

        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [self._to_record(row) for row in rows]

    def get_by_id(self, record_id: str) -> Optional[AuditRecord]:
        with self._lock:
            row = self.conn.execute(
                "SELECT id, appended_at, packet FROM decisions WHERE id = ?", [record_id]
            ).fetchone()
        return self._to_record(row) if row else None

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM decisions").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
        logger.info("DuckDBAuditStore closed")
