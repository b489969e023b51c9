from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditResult(str, Enum):
    success = "success"
    failure = "failure"
    blocked = "blocked"


class AuditAction(str, Enum):
    register_data_subject = "register_data_subject"
    update_data_subject = "update_data_subject"
    delete_data_subject = "delete_data_subject"
    register_consent = "register_consent"
    withdraw_consent = "withdraw_consent"
    register_data_processing = "register_data_processing"
    update_data_processing = "update_data_processing"
    delete_data_processing = "delete_data_processing"
    export_data_portability = "export_data_portability"


SYSTEM_SUBJECT = "system"


class AuditEventInput(BaseModel):
    """
    What a component hands to the trail. Identity and ordering fields are
    assigned on append.
    """

    model_config = ConfigDict(extra="forbid")

    data_subject_id: str = SYSTEM_SUBJECT
    action: str = Field(min_length=1, max_length=64)
    purpose: str = ""
    legal_basis: str = ""
    data_categories: List[str] = Field(default_factory=list)
    actor: str = "system"
    timestamp: Optional[float] = None
    ip_address: str = "system"
    user_agent: str = "system"
    result: AuditResult = AuditResult.success
    details: Dict[str, Any] = Field(default_factory=dict)


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    audit_id: str
    seq: int = 0
    data_subject_id: str = SYSTEM_SUBJECT
    action: str
    purpose: str = ""
    legal_basis: str = ""
    data_categories: List[str] = Field(default_factory=list)
    actor: str = "system"
    timestamp: float
    ip_address: str = "system"
    user_agent: str = "system"
    result: AuditResult = AuditResult.success
    details: Dict[str, Any] = Field(default_factory=dict)


class AuditFilter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subject_id: Optional[str] = None
    from_ts: Optional[float] = None
    to_ts: Optional[float] = None
    action: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=0)
