from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError

from dpengine.core.redaction import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class DpEngineError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return f"{self.code}: {self.user_message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- CRUD-layer errors (returned to the direct caller) ----
class NotFoundError(DpEngineError):
    def __init__(self, user_message: str = "Not found.", **ctx: Any):
        super().__init__("not_found", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class ValidationError(DpEngineError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class InvalidStateError(DpEngineError):
    def __init__(self, user_message: str = "Illegal state transition.", **ctx: Any):
        super().__init__("invalid_state", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


# ---- system errors ----
class StoreError(DpEngineError):
    def __init__(self, user_message: str = "Store failure.", *, code: str = "system_error", **ctx: Any):
        super().__init__(code, user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class AuditWriteError(StoreError):
    """
    The audit event could not be stored.

    Raised after the primary mutation has been applied; `context` names the
    affected entity so the caller can reconcile.
    """

    def __init__(self, user_message: str = "Audit event could not be written.", **ctx: Any):
        super().__init__(user_message, code="audit_write_failed", **ctx)


class StoreTimeoutError(DpEngineError):
    def __init__(self, user_message: str = "Store operation timed out.", **ctx: Any):
        super().__init__("timeout", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class ConfigError(DpEngineError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


def from_pydantic(e: PydanticValidationError, user_message: str = "Invalid request.") -> ValidationError:
    """Convert a pydantic failure into a ValidationError naming the offending fields."""
    fields = []
    for err in e.errors():
        loc = ".".join(str(x) for x in (err.get("loc") or ()))
        if loc and loc not in fields:
            fields.append(loc)
    return ValidationError(user_message, fields=fields)
