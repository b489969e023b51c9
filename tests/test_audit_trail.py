from __future__ import annotations

import pytest

from dpengine.core.audit.models import AuditEventInput
from dpengine.core.audit.trail import AuditTrail
from dpengine.core.errors import AuditWriteError, StoreError, ValidationError
from dpengine.core.ids import SequentialGenerator
from dpengine.core.store.memory import MemoryRecordStore
from tests.helpers.builders import make_engine, subject_payload
from tests.helpers.fakes import FailingAuditStore, FakeClock, RecordingLogger


def _trail(stores, clock):
    _records, audit_store = stores
    return AuditTrail(store=audit_store, ids=SequentialGenerator("ev"), clock=clock)


def test_append_assigns_id_timestamp_and_increasing_seq(stores, clock):
    trail = _trail(stores, clock)
    a = trail.append({"action": "register_data_subject", "data_subject_id": "s1"})
    b = trail.append(AuditEventInput(action="register_consent", data_subject_id="s1"))
    assert a.audit_id and b.audit_id and a.audit_id != b.audit_id
    assert a.timestamp == clock.time()
    assert b.seq > a.seq


def test_append_keeps_caller_timestamp(stores, clock):
    trail = _trail(stores, clock)
    ev = trail.append({"action": "x", "timestamp": 123.0})
    assert ev.timestamp == 123.0


def test_append_rejects_malformed_event(stores, clock):
    trail = _trail(stores, clock)
    with pytest.raises(ValidationError):
        trail.append({"action": ""})
    with pytest.raises(ValidationError):
        trail.append({"action": "x", "result": "maybe"})


def test_query_newest_first_with_seq_tiebreak(stores, clock):
    trail = _trail(stores, clock)
    first = trail.append({"action": "a", "data_subject_id": "s1"})
    second = trail.append({"action": "b", "data_subject_id": "s1"})
    clock.advance(1)
    third = trail.append({"action": "c", "data_subject_id": "s1"})
    out = trail.query({"subject_id": "s1"})
    assert [e.audit_id for e in out] == [third.audit_id, second.audit_id, first.audit_id]


def test_query_filters(stores, clock):
    trail = _trail(stores, clock)
    t0 = clock.time()
    trail.append({"action": "a", "data_subject_id": "s1"})
    clock.advance(10)
    trail.append({"action": "b", "data_subject_id": "s2"})
    clock.advance(10)
    trail.append({"action": "a", "data_subject_id": "s1"})

    assert len(trail.query({"subject_id": "s1"})) == 2
    assert len(trail.query({"action": "b"})) == 1
    assert len(trail.query({"from_ts": t0 + 10})) == 2
    assert len(trail.query({"to_ts": t0 + 10})) == 2
    assert len(trail.query({"from_ts": t0 + 5, "to_ts": t0 + 15})) == 1
    assert len(trail.query({"limit": 1})) == 1
    assert trail.query({"subject_id": "nobody"}) == []


def test_tail_formatted_is_oldest_first(stores, clock):
    trail = _trail(stores, clock)
    trail.append({"action": "a", "data_subject_id": "s1"})
    clock.advance(1)
    trail.append({"action": "b", "data_subject_id": "s1", "result": "blocked"})
    lines = trail.tail_formatted(5)
    assert len(lines) == 2
    assert " a subject=s1" in lines[0]
    assert lines[1].endswith("[BLOCKED]")


def test_store_failure_raises_audit_write_error(clock):
    store = FailingAuditStore()
    log = RecordingLogger()
    trail = AuditTrail(store=store, clock=clock, logger=log)
    store.fail = True
    with pytest.raises(AuditWriteError) as ei:
        trail.append({"action": "register_consent", "data_subject_id": "s1", "ip_address": "10.0.0.7"})
    err = ei.value
    assert isinstance(err, StoreError)
    assert err.code == "audit_write_failed"
    assert err.context["action"] == "register_consent"
    assert err.context["data_subject_id"] == "s1"
    assert any("Audit append failed" in m for m in log.messages("error"))
    # ip is truncated in the log line
    assert not any("10.0.0.7" in m for m in log.messages())


def test_unexpected_store_exception_is_wrapped(clock):
    store = FailingAuditStore(exc=RuntimeError("boom"))
    store.fail = True
    trail = AuditTrail(store=store, clock=clock)
    with pytest.raises(AuditWriteError) as ei:
        trail.append({"action": "x"})
    assert ei.value.context["cause"] == "RuntimeError"


def test_primary_mutation_survives_audit_failure():
    clock = FakeClock()
    audit_store = FailingAuditStore()
    eng = make_engine((MemoryRecordStore(), audit_store), clock)
    sid = eng.subjects.register(subject_payload())

    audit_store.fail = True
    with pytest.raises(AuditWriteError):
        eng.consents.register({"data_subject_id": sid, "purpose": "scoring"})

    # the consent was stored before the audit append failed
    assert len(eng.consents.find_by_subject(sid)) == 1
    assert eng.subjects.get(sid).consent_given is True

    audit_store.fail = False
    assert [e.action for e in eng.audit.query({"subject_id": sid})] == ["register_data_subject"]
