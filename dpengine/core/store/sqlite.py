from __future__ import annotations

import contextlib
import json
import os
import sqlite3
import threading
from typing import Any, Dict, Iterator, List, Optional

from dpengine.core.errors import InvalidStateError, StoreError, StoreTimeoutError


def _dumps(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True)


@contextlib.contextmanager
def _store_errors(op: str, **ctx: Any) -> Iterator[None]:
    """
    Map sqlite3 failures onto the engine taxonomy.

    A writer that cannot obtain the database lock within the connection timeout
    surfaces as StoreTimeoutError; everything else is a StoreError.
    """
    try:
        yield
    except sqlite3.OperationalError as e:
        msg = str(e).lower()
        if "locked" in msg or "busy" in msg:
            raise StoreTimeoutError(f"Store operation '{op}' timed out.", op=op, **ctx) from e
        raise StoreError(f"Store operation '{op}' failed.", op=op, error=str(e)[:200], **ctx) from e
    except sqlite3.Error as e:
        raise StoreError(f"Store operation '{op}' failed.", op=op, error=str(e)[:200], **ctx) from e


class _SqliteBase:
    def __init__(self, *, path: str, timeout_seconds: float = 5.0):
        self.path = str(path)
        self.timeout_seconds = float(timeout_seconds)
        self._lock = threading.Lock()
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        except OSError as e:
            raise StoreError("Store directory is not usable.", op="init", path=self.path, error=str(e)[:200]) from e
        with _store_errors("init", path=self.path):
            self._init_db()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout_seconds, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class SqliteRecordStore(_SqliteBase):
    """
    RecordStore on a single sqlite file. Records are JSON blobs keyed by
    (collection, key); `version` is mirrored into a column so compare-and-swap
    is a single UPDATE and holds across processes.
    """

    def _init_db(self) -> None:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS records (
                      collection TEXT NOT NULL,
                      key TEXT NOT NULL,
                      version INTEGER NOT NULL,
                      json TEXT NOT NULL,
                      PRIMARY KEY (collection, key)
                    )
                    """
                )
                conn.commit()
            finally:
                conn.close()

    def insert(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        with _store_errors("insert", collection=collection, key=key):
            with self._lock:
                conn = self._conn()
                try:
                    conn.execute(
                        "INSERT INTO records(collection, key, version, json) VALUES (?, ?, ?, ?)",
                        (collection, key, int(data.get("version") or 1), _dumps(data)),
                    )
                    conn.commit()
                except sqlite3.IntegrityError as e:
                    raise InvalidStateError("Record already exists.", collection=collection, key=key) from e
                finally:
                    conn.close()

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        with _store_errors("get", collection=collection, key=key):
            conn = self._conn()
            try:
                row = conn.execute("SELECT json FROM records WHERE collection=? AND key=?", (collection, key)).fetchone()
            finally:
                conn.close()
        return json.loads(row["json"]) if row else None

    def replace(self, collection: str, key: str, data: Dict[str, Any], *, expected_version: int) -> None:
        with _store_errors("replace", collection=collection, key=key):
            with self._lock:
                conn = self._conn()
                try:
                    cur = conn.execute(
                        "UPDATE records SET version=?, json=? WHERE collection=? AND key=? AND version=?",
                        (int(data.get("version") or expected_version + 1), _dumps(data), collection, key, int(expected_version)),
                    )
                    conn.commit()
                    updated = int(cur.rowcount or 0)
                finally:
                    conn.close()
        if updated == 0:
            raise InvalidStateError(
                "Record was modified concurrently.",
                reason="concurrent_modification",
                collection=collection,
                key=key,
                expected_version=int(expected_version),
            )

    def delete(self, collection: str, key: str) -> bool:
        with _store_errors("delete", collection=collection, key=key):
            with self._lock:
                conn = self._conn()
                try:
                    cur = conn.execute("DELETE FROM records WHERE collection=? AND key=?", (collection, key))
                    conn.commit()
                    return int(cur.rowcount or 0) > 0
                finally:
                    conn.close()

    def scan(self, collection: str) -> List[Dict[str, Any]]:
        with _store_errors("scan", collection=collection):
            conn = self._conn()
            try:
                rows = conn.execute("SELECT json FROM records WHERE collection=? ORDER BY key", (collection,)).fetchall()
            finally:
                conn.close()
        return [json.loads(r["json"]) for r in rows]


class SqliteAuditStore(_SqliteBase):
    """
    Append-only audit table. `seq` is an AUTOINCREMENT rowid, so ordering stays
    strictly increasing even with several processes writing to the same file.
    """

    def _init_db(self) -> None:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS audit_events (
                      seq INTEGER PRIMARY KEY AUTOINCREMENT,
                      audit_id TEXT NOT NULL UNIQUE,
                      ts REAL NOT NULL,
                      data_subject_id TEXT,
                      action TEXT,
                      json TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_ts ON audit_events(ts);")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_subject ON audit_events(data_subject_id, ts);")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_events(action, ts);")
                conn.commit()
            finally:
                conn.close()

    def append(self, event: Dict[str, Any]) -> int:
        payload = dict(event)
        payload.pop("seq", None)
        with _store_errors("append", audit_id=str(payload.get("audit_id") or "")):
            with self._lock:
                conn = self._conn()
                try:
                    cur = conn.execute(
                        "INSERT INTO audit_events(audit_id, ts, data_subject_id, action, json) VALUES (?, ?, ?, ?, ?)",
                        (
                            str(payload.get("audit_id")),
                            float(payload.get("timestamp") or 0.0),
                            payload.get("data_subject_id"),
                            str(payload.get("action") or ""),
                            _dumps(payload),
                        ),
                    )
                    conn.commit()
                    return int(cur.lastrowid)
                finally:
                    conn.close()

    def query(
        self,
        *,
        subject_id: Optional[str] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        where = []
        params: list[Any] = []
        if subject_id is not None:
            where.append("data_subject_id = ?")
            params.append(str(subject_id))
        if since is not None:
            where.append("ts >= ?")
            params.append(float(since))
        if until is not None:
            where.append("ts <= ?")
            params.append(float(until))
        if action:
            where.append("action = ?")
            params.append(str(action))

        sql = "SELECT seq, json FROM audit_events"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY ts DESC, seq DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(limit)))

        out: List[Dict[str, Any]] = []
        with _store_errors("query"):
            conn = self._conn()
            try:
                for row in conn.execute(sql, params):
                    obj = json.loads(row["json"])
                    obj["seq"] = int(row["seq"])
                    out.append(obj)
            finally:
                conn.close()
        return out

    def count(self) -> int:
        with _store_errors("count"):
            conn = self._conn()
            try:
                row = conn.execute("SELECT COUNT(1) FROM audit_events").fetchone()
            finally:
                conn.close()
        return int(row[0] if row else 0)
