from __future__ import annotations

import pytest

from dpengine.core.errors import NotFoundError, ValidationError
from tests.helpers.builders import processing_payload, subject_payload


def test_register_does_not_cross_check_consents(engine):
    sid = engine.subjects.register(subject_payload())
    pid = engine.processing.register(processing_payload([sid]))
    p = engine.processing.get(pid)
    assert p.processing_id == pid
    assert p.legal_basis == "consent"
    assert p.data_subjects == [sid]
    assert p.version == 1


def test_register_accepts_unlawful_declarations(engine):
    # lawfulness is judged by the regulation engine, not at registration
    pid = engine.processing.register({"purpose": "", "legal_basis": "vibes"})
    assert engine.processing.get(pid).legal_basis == "vibes"


def test_register_audit_subject_is_first_reference_or_system(engine):
    a = engine.subjects.register(subject_payload())
    b = engine.subjects.register(subject_payload(name="Bruno", document="222"))
    engine.processing.register(processing_payload([a, b]))
    engine.processing.register(processing_payload([]))

    evs = engine.audit.query({"action": "register_data_processing"})
    assert sorted(e.data_subject_id for e in evs) == sorted([a, "system"])


def test_register_rejects_malformed_input(engine):
    with pytest.raises(ValidationError):
        engine.processing.register(processing_payload([], retention_period=-1))
    with pytest.raises(ValidationError):
        engine.processing.register(processing_payload([], owner="me"))


def test_get_missing_raises_not_found(engine):
    with pytest.raises(NotFoundError):
        engine.processing.get("nope")


def test_find_referencing(engine):
    a = engine.subjects.register(subject_payload())
    b = engine.subjects.register(subject_payload(name="Bruno", document="222"))
    p1 = engine.processing.register(processing_payload([a]))
    p2 = engine.processing.register(processing_payload([a, b]))
    engine.processing.register(processing_payload([]))

    assert sorted(p.processing_id for p in engine.processing.find_referencing(a)) == sorted([p1, p2])
    assert [p.processing_id for p in engine.processing.find_referencing(b)] == [p2]
    assert engine.processing.find_referencing("ghost") == []
    assert len(engine.processing.list()) == 3


def test_update_changes_fields_and_audits_names(engine, clock):
    sid = engine.subjects.register(subject_payload())
    pid = engine.processing.register(processing_payload([sid]))
    clock.advance(3)
    p = engine.processing.update(pid, {"security_measures": ["encryption"], "retention_period": 365})
    assert p.version == 2
    assert p.retention_period == 365
    assert p.updated_at == clock.time()

    ev = engine.audit.query({"action": "update_data_processing"})[0]
    assert ev.details["changed_fields"] == ["retention_period", "security_measures"]
    assert ev.details["processing_id"] == pid


def test_update_rejects_identity_fields(engine):
    pid = engine.processing.register(processing_payload([]))
    with pytest.raises(ValidationError):
        engine.processing.update(pid, {"processing_id": "other"})


def test_delete_is_explicit_and_audited(engine):
    sid = engine.subjects.register(subject_payload())
    pid = engine.processing.register(processing_payload([sid]))
    engine.processing.delete(pid)
    with pytest.raises(NotFoundError):
        engine.processing.get(pid)
    ev = engine.audit.query({"action": "delete_data_processing"})[0]
    assert ev.data_subject_id == sid
    assert ev.details["processing_id"] == pid

    with pytest.raises(NotFoundError):
        engine.processing.delete(pid)


def _interleave_before_lock(monkeypatch, registry, pid, changes):
    """Apply `changes` right after the next unlocked read, returning that stale read."""
    real_get = registry.get

    def stale_get(processing_id):
        snapshot = real_get(processing_id)
        monkeypatch.setattr(registry, "get", real_get)
        registry.update(pid, changes)
        return snapshot

    monkeypatch.setattr(registry, "get", stale_get)


def test_update_merges_onto_the_locked_read(engine, monkeypatch):
    pid = engine.processing.register(processing_payload([]))
    _interleave_before_lock(monkeypatch, engine.processing, pid, {"purpose": "fraud"})

    p = engine.processing.update(pid, {"retention_period": 30})
    assert p.purpose == "fraud"
    assert p.retention_period == 30
    assert p.version == 3
    assert engine.processing.get(pid).purpose == "fraud"


def test_update_relocks_when_references_change_underneath(engine, monkeypatch):
    a = engine.subjects.register(subject_payload())
    b = engine.subjects.register(subject_payload(name="Bruno", document="222"))
    pid = engine.processing.register(processing_payload([a]))
    _interleave_before_lock(monkeypatch, engine.processing, pid, {"data_subjects": [a, b]})

    p = engine.processing.update(pid, {"retention_period": 30})
    assert p.data_subjects == [a, b]
    assert p.retention_period == 30
    assert [x.processing_id for x in engine.processing.find_referencing(b)] == [pid]
    assert len(engine.locks) == 0


def test_register_rejects_non_list_tags(engine):
    with pytest.raises(ValidationError) as ei:
        engine.processing.register({"purpose": "x", "data_subjects": 5})
    assert "data_subjects" in ei.value.context["fields"]
