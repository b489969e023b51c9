from __future__ import annotations

import threading
import time

import pytest

from dpengine.core.context import SYSTEM_CONTEXT, RequestContext, current_context, request_context, resolve_context
from dpengine.core.errors import NotFoundError
from dpengine.core.ids import SequentialGenerator, UuidGenerator, iso_from_ts
from dpengine.core.locks import KeyedLockManager, consent_key, subject_key


def test_hold_acquires_in_sorted_order_and_is_reentrant():
    lm = KeyedLockManager()
    with lm.hold([subject_key("b"), consent_key("a"), subject_key("b")]) as keys:
        assert keys == ["consent:a", "subject:b"]
        with lm.hold([subject_key("b")]):
            pass


def test_hold_excludes_other_threads():
    lm = KeyedLockManager()
    order = []
    entered = threading.Event()

    def other():
        entered.set()
        with lm.hold([subject_key("s1")]):
            order.append("other")

    with lm.hold([subject_key("s1")]):
        t = threading.Thread(target=other)
        t.start()
        entered.wait(1)
        time.sleep(0.05)
        order.append("owner")
    t.join(1)
    assert order == ["owner", "other"]


def test_opposite_key_orders_do_not_deadlock():
    lm = KeyedLockManager()
    done = []

    def worker(keys):
        for _ in range(200):
            with lm.hold(keys):
                pass
        done.append(True)

    a = threading.Thread(target=worker, args=([subject_key("x"), consent_key("y")],))
    b = threading.Thread(target=worker, args=([consent_key("y"), subject_key("x")],))
    a.start()
    b.start()
    a.join(5)
    b.join(5)
    assert done == [True, True]


def test_request_context_binding():
    assert current_context() is SYSTEM_CONTEXT
    with request_context(actor="u1", ip_address="1.2.3.4") as ctx:
        assert current_context() is ctx
        assert resolve_context().actor == "u1"
        assert resolve_context(RequestContext(actor="explicit")).actor == "explicit"
    assert current_context() is SYSTEM_CONTEXT


def test_request_context_is_immutable_and_strict():
    ctx = RequestContext(actor="u1")
    with pytest.raises(Exception):
        ctx.actor = "u2"
    with pytest.raises(Exception):
        RequestContext(actor="u1", role="admin")


def test_identifier_generators():
    seq = SequentialGenerator("sub")
    assert [seq.new_id(), seq.new_id()] == ["sub-000001", "sub-000002"]
    u = UuidGenerator()
    a, b = u.new_id(), u.new_id()
    assert len(a) == 32 and a != b


def test_iso_from_ts():
    assert iso_from_ts(0) == "1970-01-01T00:00:00Z"


def test_lock_entries_are_dropped_after_release():
    lm = KeyedLockManager()
    with lm.hold([subject_key("a"), consent_key("b")]):
        assert len(lm) == 2
        with lm.hold([subject_key("a")]):
            assert len(lm) == 2
        assert len(lm) == 2
    assert len(lm) == 0


def test_lock_entry_survives_while_another_thread_waits():
    lm = KeyedLockManager()
    waiting = threading.Event()
    got = []

    def other():
        waiting.set()
        with lm.hold([subject_key("s1")]):
            got.append(len(lm))

    with lm.hold([subject_key("s1")]):
        t = threading.Thread(target=other)
        t.start()
        waiting.wait(1)
        time.sleep(0.05)
    t.join(1)
    assert got == [1]
    assert len(lm) == 0


def test_unknown_ids_leave_no_lock_entries(engine):
    for i in range(50):
        with pytest.raises(NotFoundError):
            engine.rights.erase(f"ghost-{i}")
    assert len(engine.locks) == 0
