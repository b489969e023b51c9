from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

DATA_SUBJECTS = "data_subjects"
CONSENTS = "consents"
PROCESSING_ACTIVITIES = "processing_activities"
AUDIT_EVENTS = "audit_events"


class RecordStore(Protocol):
    """
    Keyed, versioned JSON collections.

    Every record carries an integer `version`. `replace` is a compare-and-swap on
    that version and raises InvalidStateError when another writer got there first.
    Implementations return copies, never live references.
    """

    def insert(self, collection: str, key: str, data: Dict[str, Any]) -> None: ...

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]: ...

    def replace(self, collection: str, key: str, data: Dict[str, Any], *, expected_version: int) -> None: ...

    def delete(self, collection: str, key: str) -> bool: ...

    def scan(self, collection: str) -> List[Dict[str, Any]]: ...


class AuditStore(Protocol):
    """
    Append-only event log. There is deliberately no update or delete.
    """

    def append(self, event: Dict[str, Any]) -> int:
        """Store the event and return its strictly increasing sequence number."""
        ...

    def query(
        self,
        *,
        subject_id: Optional[str] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Matching events, newest first (timestamp desc, seq desc)."""
        ...
