from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from dpengine.core.audit.formatter import format_line
from dpengine.core.audit.models import AuditEvent, AuditEventInput, AuditFilter
from dpengine.core.errors import AuditWriteError, DpEngineError, from_pydantic
from dpengine.core.ids import Clock, IdentifierGenerator, UuidGenerator, system_clock
from dpengine.core.redaction import redact
from dpengine.core.store.interface import AuditStore


class AuditTrail:
    """
    Append-only log of every state change made by the registries and the
    rights coordinator.

    There is no update or delete here; events of erased subjects stay as
    written.
    """

    def __init__(
        self,
        *,
        store: AuditStore,
        ids: Optional[IdentifierGenerator] = None,
        clock: Optional[Clock] = None,
        default_limit: int = 200,
        logger=None,
    ):
        self.store = store
        self.ids = ids or UuidGenerator()
        self.clock = clock or system_clock
        self.default_limit = max(1, int(default_limit))
        self.logger = logger

    def append(self, event: Union[AuditEventInput, Dict[str, Any]]) -> AuditEvent:
        if isinstance(event, dict):
            try:
                event = AuditEventInput.model_validate(event)
            except PydanticValidationError as e:
                raise from_pydantic(e, "Invalid audit event.") from e

        payload = event.model_dump(mode="json")
        if payload.get("timestamp") is None:
            payload["timestamp"] = float(self.clock())
        payload["audit_id"] = self.ids.new_id()

        try:
            seq = self.store.append(dict(payload))
        except DpEngineError as e:
            self._log_failure(payload, e)
            raise AuditWriteError(
                action=payload.get("action"),
                data_subject_id=payload.get("data_subject_id"),
                cause=e.code,
            ) from e
        except Exception as e:  # noqa: BLE001
            self._log_failure(payload, e)
            raise AuditWriteError(
                action=payload.get("action"),
                data_subject_id=payload.get("data_subject_id"),
                cause=type(e).__name__,
            ) from e

        payload["seq"] = int(seq)
        return AuditEvent.model_validate(payload)

    def query(self, flt: Optional[Union[AuditFilter, Dict[str, Any]]] = None) -> List[AuditEvent]:
        """
        Events matching every given filter field, newest first.

        `from_ts`/`to_ts` are inclusive. No limit means all matching events.
        """
        if flt is None:
            flt = AuditFilter()
        elif isinstance(flt, dict):
            try:
                flt = AuditFilter.model_validate(flt)
            except PydanticValidationError as e:
                raise from_pydantic(e, "Invalid audit filter.") from e
        rows = self.store.query(
            subject_id=flt.subject_id,
            since=flt.from_ts,
            until=flt.to_ts,
            action=flt.action,
            limit=flt.limit,
        )
        return [AuditEvent.model_validate(r) for r in rows]

    def tail_formatted(self, n: Optional[int] = None) -> List[str]:
        limit = int(n) if n is not None else self.default_limit
        items = self.query(AuditFilter(limit=max(0, limit)))
        return [format_line(ev) for ev in reversed(items)]

    def _log_failure(self, payload: Dict[str, Any], err: Exception) -> None:
        if self.logger:
            self.logger.error(
                f"Audit append failed: action={payload.get('action')} "
                f"subject={payload.get('data_subject_id')} err={type(err).__name__} "
                f"ctx={redact({'ip_address': payload.get('ip_address')})}"
            )

