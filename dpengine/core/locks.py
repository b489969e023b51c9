from __future__ import annotations

import contextlib
import threading
from typing import Dict, Iterable, Iterator, List


class KeyedLockManager:
    """
    Per-entity mutual exclusion shared by the registries and the rights coordinator.

    Keys are namespaced strings (`subject:<id>`, `consent:<id>`). Multiple keys are
    always acquired in sorted order so two callers can never deadlock on each other.
    A key's lock only lives while some caller holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._refs: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = threading.RLock()
                self._locks[key] = lk
            self._refs[key] = self._refs.get(key, 0) + 1
            return lk

    def _checkin(self, key: str) -> None:
        with self._guard:
            n = self._refs.get(key, 0) - 1
            if n <= 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._refs[key] = n

    @contextlib.contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[List[str]]:
        ordered = sorted({str(k) for k in keys if k})
        checked_out: List[str] = []
        acquired: List[threading.RLock] = []
        try:
            for k in ordered:
                # counted before acquire so a waiter keeps the lock alive
                lk = self._checkout(k)
                checked_out.append(k)
                lk.acquire()
                acquired.append(lk)
            yield ordered
        finally:
            for lk in reversed(acquired):
                lk.release()
            for k in reversed(checked_out):
                self._checkin(k)


def subject_key(subject_id: str) -> str:
    return f"subject:{subject_id}"


def consent_key(consent_id: str) -> str:
    return f"consent:{consent_id}"


def processing_key(processing_id: str) -> str:
    return f"processing:{processing_id}"
