from __future__ import annotations

import contextlib
import contextvars
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field


class RequestContext(BaseModel):
    """
    Caller-supplied request metadata, copied into audit events.

    The transport layer fills this from the authenticated session.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    actor: str = Field(default="system", min_length=1, max_length=128)
    ip_address: str = Field(default="system", max_length=64)
    user_agent: str = Field(default="system", max_length=512)
    trace_id: Optional[str] = Field(default=None, max_length=64)


SYSTEM_CONTEXT = RequestContext()

_CONTEXT: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar("dpengine.request_context", default=None)


def current_context() -> RequestContext:
    ctx = _CONTEXT.get()
    return ctx if ctx is not None else SYSTEM_CONTEXT


def resolve_context(context: Optional[RequestContext] = None) -> RequestContext:
    if context is not None:
        return context
    return current_context()


@contextlib.contextmanager
def request_context(context: Optional[RequestContext] = None, **fields: str) -> Iterator[RequestContext]:
    """
    Bind a request context for the duration of a block:

        with request_context(actor="user-17", ip_address="10.0.0.4"):
            ledger.register(...)
    """
    ctx = context if context is not None else RequestContext(**fields)
    token = _CONTEXT.set(ctx)
    try:
        yield ctx
    finally:
        _CONTEXT.reset(token)
