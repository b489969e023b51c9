from __future__ import annotations

import sqlite3
import threading

import pytest

from dpengine.core.errors import InvalidStateError, StoreError, StoreTimeoutError
from dpengine.core.store.interface import CONSENTS, DATA_SUBJECTS
from dpengine.core.store.sqlite import SqliteAuditStore, SqliteRecordStore
from tests.helpers.builders import subject_payload


def test_insert_get_returns_copies(stores):
    records, _ = stores
    rec = {"subject_id": "s1", "version": 1, "tags": ["a"]}
    records.insert(DATA_SUBJECTS, "s1", rec)
    rec["tags"].append("mutated")
    got = records.get(DATA_SUBJECTS, "s1")
    assert got == {"subject_id": "s1", "version": 1, "tags": ["a"]}
    got["tags"].append("again")
    assert records.get(DATA_SUBJECTS, "s1")["tags"] == ["a"]


def test_duplicate_insert_is_invalid_state(stores):
    records, _ = stores
    records.insert(DATA_SUBJECTS, "s1", {"version": 1})
    with pytest.raises(InvalidStateError):
        records.insert(DATA_SUBJECTS, "s1", {"version": 1})


def test_collections_are_separate(stores):
    records, _ = stores
    records.insert(DATA_SUBJECTS, "k", {"version": 1, "kind": "subject"})
    records.insert(CONSENTS, "k", {"version": 1, "kind": "consent"})
    assert records.get(DATA_SUBJECTS, "k")["kind"] == "subject"
    assert [r["kind"] for r in records.scan(CONSENTS)] == ["consent"]


def test_replace_is_compare_and_swap(stores):
    records, _ = stores
    records.insert(DATA_SUBJECTS, "s1", {"version": 1, "name": "a"})
    records.replace(DATA_SUBJECTS, "s1", {"version": 2, "name": "b"}, expected_version=1)
    assert records.get(DATA_SUBJECTS, "s1")["name"] == "b"

    with pytest.raises(InvalidStateError) as ei:
        records.replace(DATA_SUBJECTS, "s1", {"version": 2, "name": "stale"}, expected_version=1)
    assert ei.value.context["reason"] == "concurrent_modification"
    assert records.get(DATA_SUBJECTS, "s1")["name"] == "b"


def test_delete_reports_presence(stores):
    records, _ = stores
    records.insert(DATA_SUBJECTS, "s1", {"version": 1})
    assert records.delete(DATA_SUBJECTS, "s1") is True
    assert records.delete(DATA_SUBJECTS, "s1") is False
    assert records.get(DATA_SUBJECTS, "s1") is None


def test_audit_seq_strictly_increases_under_concurrency(stores):
    _, audit = stores
    seqs = []
    lock = threading.Lock()

    def worker(n):
        for i in range(20):
            s = audit.append({"audit_id": f"{n}-{i}", "action": "x", "timestamp": 1.0, "data_subject_id": "s"})
            with lock:
                seqs.append(s)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(seqs) == 80
    assert len(set(seqs)) == 80
    rows = audit.query(subject_id="s")
    assert [r["seq"] for r in rows] == sorted(seqs, reverse=True)


def test_concurrent_updates_through_registry_never_lose_writes(engine):
    sid = engine.subjects.register(subject_payload())
    errors = []

    def worker(i):
        try:
            engine.subjects.update(sid, {"nationality": f"n{i}"})
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert engine.subjects.get(sid).version == 9
    assert len(engine.audit.query({"subject_id": sid, "action": "update_data_subject"})) == 8


def test_sqlite_persists_across_instances(tmp_path):
    path = str(tmp_path / "db.sqlite")
    SqliteRecordStore(path=path).insert(DATA_SUBJECTS, "s1", {"version": 1, "name": "Ana"})
    SqliteAuditStore(path=path).append({"audit_id": "a1", "action": "x", "timestamp": 5.0})
    assert SqliteRecordStore(path=path).get(DATA_SUBJECTS, "s1")["name"] == "Ana"
    audit = SqliteAuditStore(path=path)
    assert audit.count() == 1
    assert audit.query()[0]["audit_id"] == "a1"


def test_sqlite_cas_holds_across_instances(tmp_path):
    path = str(tmp_path / "db.sqlite")
    a = SqliteRecordStore(path=path)
    b = SqliteRecordStore(path=path)
    a.insert(DATA_SUBJECTS, "s1", {"version": 1})
    a.replace(DATA_SUBJECTS, "s1", {"version": 2}, expected_version=1)
    with pytest.raises(InvalidStateError):
        b.replace(DATA_SUBJECTS, "s1", {"version": 2}, expected_version=1)


def test_sqlite_lock_wait_surfaces_as_timeout(tmp_path):
    path = str(tmp_path / "db.sqlite")
    store = SqliteRecordStore(path=path, timeout_seconds=0.1)
    blocker = sqlite3.connect(path, timeout=0.1)
    try:
        blocker.execute("BEGIN EXCLUSIVE")
        with pytest.raises(StoreTimeoutError) as ei:
            store.insert(DATA_SUBJECTS, "s1", {"version": 1})
        assert ei.value.code == "timeout"
        assert ei.value.context["op"] == "insert"
    finally:
        blocker.rollback()
        blocker.close()
    store.insert(DATA_SUBJECTS, "s1", {"version": 1})


def test_sqlite_unusable_path_is_store_error(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(StoreError):
        SqliteRecordStore(path=str(blocker / "db.sqlite"))
