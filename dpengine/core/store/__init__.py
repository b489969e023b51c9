"""
Storage backends.

Components never touch a database directly; they talk to a `RecordStore`
(keyed, versioned collections) and an `AuditStore` (append-only log).
"""

from dpengine.core.store.interface import (
    AUDIT_EVENTS,
    CONSENTS,
    DATA_SUBJECTS,
    PROCESSING_ACTIVITIES,
    AuditStore,
    RecordStore,
)
from dpengine.core.store.memory import MemoryAuditStore, MemoryRecordStore
from dpengine.core.store.sqlite import SqliteAuditStore, SqliteRecordStore

__all__ = [
    "AUDIT_EVENTS",
    "CONSENTS",
    "DATA_SUBJECTS",
    "PROCESSING_ACTIVITIES",
    "AuditStore",
    "RecordStore",
    "MemoryAuditStore",
    "MemoryRecordStore",
    "SqliteAuditStore",
    "SqliteRecordStore",
]
