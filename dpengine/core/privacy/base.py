from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from dpengine.core.audit.models import SYSTEM_SUBJECT, AuditEvent, AuditEventInput, AuditResult
from dpengine.core.audit.trail import AuditTrail
from dpengine.core.context import RequestContext, resolve_context
from dpengine.core.errors import from_pydantic

M = TypeVar("M", bound=BaseModel)


def coerce(model: Type[M], obj: Any, user_message: str = "Invalid request.") -> M:
    """Accept a model instance or a plain dict; pydantic failures become ValidationError."""
    if isinstance(obj, model):
        return obj
    if isinstance(obj, BaseModel):
        obj = obj.model_dump()
    try:
        return model.model_validate(obj)
    except PydanticValidationError as e:
        raise from_pydantic(e, user_message) from e


def record_event(
    audit: AuditTrail,
    *,
    action: str,
    context: Optional[RequestContext],
    data_subject_id: Optional[str] = None,
    purpose: str = "",
    legal_basis: str = "",
    data_categories: Optional[Iterable[str]] = None,
    result: AuditResult = AuditResult.success,
    timestamp: Optional[float] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditEvent:
    ctx = resolve_context(context)
    return audit.append(
        AuditEventInput(
            data_subject_id=str(data_subject_id or SYSTEM_SUBJECT),
            action=action,
            purpose=str(purpose or ""),
            legal_basis=str(legal_basis or ""),
            data_categories=list(data_categories or []),
            actor=ctx.actor,
            timestamp=timestamp,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            result=result,
            details={**dict(details or {}), **({"trace_id": ctx.trace_id} if ctx.trace_id else {})},
        )
    )
