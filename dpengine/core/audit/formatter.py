from __future__ import annotations

from dpengine.core.audit.models import AuditEvent
from dpengine.core.ids import iso_from_ts


def format_line(ev: AuditEvent) -> str:
    out = f"#{ev.seq} {iso_from_ts(ev.timestamp)} {ev.action} subject={ev.data_subject_id} actor={ev.actor}"
    if ev.result.value != "success":
        out = f"{out} [{ev.result.value.upper()}]"
    return out
