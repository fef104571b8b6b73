"""
Audit trail: append-only decision store and deterministic replay.
"""

from .replay import (
    BatchReplayResult,
    ReplayEngine,
    ReplayResult,
    ReplayStatus,
    generate_audit_report,
)
from .store import AuditRecord, AuditStore, DuckDBAuditStore, InMemoryAuditStore

__all__ = [
    'AuditRecord',
    'AuditStore',
    'InMemoryAuditStore',
    'DuckDBAuditStore',
    'ReplayEngine',
    'ReplayResult',
    'ReplayStatus',
    'BatchReplayResult',
    'generate_audit_report',
]
