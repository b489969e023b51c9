from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List, Optional

from dpengine.core.errors import InvalidStateError


class MemoryRecordStore:
    """
    Process-local RecordStore. Each engine instance owns its own; nothing is global.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def insert(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        with self._lock:
            coll = self._data.setdefault(collection, {})
            if key in coll:
                raise InvalidStateError("Record already exists.", collection=collection, key=key)
            coll[key] = copy.deepcopy(data)

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._data.get(collection, {}).get(key)
            return copy.deepcopy(row) if row is not None else None

    def replace(self, collection: str, key: str, data: Dict[str, Any], *, expected_version: int) -> None:
        with self._lock:
            coll = self._data.get(collection, {})
            cur = coll.get(key)
            if cur is None:
                raise InvalidStateError("Record vanished during update.", collection=collection, key=key)
            if int(cur.get("version") or 0) != int(expected_version):
                raise InvalidStateError(
                    "Record was modified concurrently.",
                    reason="concurrent_modification",
                    collection=collection,
                    key=key,
                    expected_version=int(expected_version),
                    actual_version=int(cur.get("version") or 0),
                )
            coll[key] = copy.deepcopy(data)

    def delete(self, collection: str, key: str) -> bool:
        with self._lock:
            return self._data.get(collection, {}).pop(key, None) is not None

    def scan(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(v) for v in self._data.get(collection, {}).values()]


class MemoryAuditStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: List[Dict[str, Any]] = []
        self._seq = 0

    def append(self, event: Dict[str, Any]) -> int:
        with self._lock:
            self._seq += 1
            rec = copy.deepcopy(event)
            rec["seq"] = self._seq
            self._events.append(rec)
            return self._seq

    def query(
        self,
        *,
        subject_id: Optional[str] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [copy.deepcopy(e) for e in self._events]
        out = []
        for e in rows:
            ts = float(e.get("timestamp") or 0.0)
            if subject_id is not None and e.get("data_subject_id") != subject_id:
                continue
            if since is not None and ts < float(since):
                continue
            if until is not None and ts > float(until):
                continue
            if action and e.get("action") != action:
                continue
            out.append(e)
        out.sort(key=lambda e: (float(e.get("timestamp") or 0.0), int(e.get("seq") or 0)), reverse=True)
        if limit is not None:
            out = out[: max(0, int(limit))]
        return out
