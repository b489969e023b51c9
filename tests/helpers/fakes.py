from __future__ import annotations

from typing import Any, Dict, List, Optional

from dpengine.core.errors import StoreError
from dpengine.core.store.memory import MemoryAuditStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self._t = float(start)

    def __call__(self) -> float:
        return self._t

    def time(self) -> float:
        return self._t

    def advance(self, seconds: float) -> None:
        self._t += float(seconds)


class FailingAuditStore(MemoryAuditStore):
    """
    MemoryAuditStore that can be switched to fail every append.
    """

    def __init__(self, *, exc: Optional[Exception] = None):
        super().__init__()
        self.fail = False
        self.exc = exc or StoreError("disk full", op="append")
        self.attempts = 0

    def append(self, event: Dict[str, Any]) -> int:
        self.attempts += 1
        if self.fail:
            raise self.exc
        return super().append(event)


class RecordingLogger:
    def __init__(self) -> None:
        self.lines: List[tuple] = []

    def debug(self, msg, *_a, **_k):  # noqa: ANN001
        self.lines.append(("debug", str(msg)))

    def info(self, msg, *_a, **_k):  # noqa: ANN001
        self.lines.append(("info", str(msg)))

    def warning(self, msg, *_a, **_k):  # noqa: ANN001
        self.lines.append(("warning", str(msg)))

    def error(self, msg, *_a, **_k):  # noqa: ANN001
        self.lines.append(("error", str(msg)))

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [m for lv, m in self.lines if level is None or lv == level]
