from __future__ import annotations

import itertools
import threading
import time
import uuid
from typing import Callable, Protocol


class IdentifierGenerator(Protocol):
    def new_id(self) -> str: ...


class UuidGenerator:
    """UUIDv4 hex identifiers (32 chars)."""

    def new_id(self) -> str:
        return uuid.uuid4().hex


class SequentialGenerator:
    """
    Deterministic identifiers: `<prefix>-000001`, `<prefix>-000002`, ...

    Meant for tests and reproducible fixtures.
    """

    def __init__(self, prefix: str = "id"):
        self.prefix = str(prefix or "id")
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def new_id(self) -> str:
        with self._lock:
            n = next(self._counter)
        return f"{self.prefix}-{n:06d}"


Clock = Callable[[], float]


def system_clock() -> float:
    return time.time()


def iso_from_ts(ts: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(float(ts)))
