from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LegalBasis(str, Enum):
    CONSENT = "consent"
    CONTRACT = "contract"
    LEGAL_OBLIGATION = "legal_obligation"
    VITAL_INTERESTS = "vital_interests"
    PUBLIC_INTEREST = "public_interest"
    LEGITIMATE_INTERESTS = "legitimate_interests"


LEGAL_BASIS_VALUES = frozenset(b.value for b in LegalBasis)


class ConsentMethod(str, Enum):
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"
    OPT_IN = "opt_in"
    OPT_OUT = "opt_out"


def _clean_tags(v: Any) -> List[str]:
    """Strip, drop empties, keep first-seen order."""
    if v is None:
        return []
    if isinstance(v, str):
        v = [v]
    if not isinstance(v, (list, tuple, set)):
        raise ValueError("expected a list of strings")
    out: List[str] = []
    for x in v:
        s = str(x or "").strip()
        if s and s not in out:
            out.append(s)
    return out


# ---- data subjects ----
class DataSubjectInput(BaseModel):
    """
    Registration payload, usually mapped from the user-management seed record.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="", max_length=200)
    email: str = Field(default="", max_length=254)
    document: str = Field(default="", max_length=64)
    phone: Optional[str] = Field(default=None, max_length=40)
    address: Optional[str] = Field(default=None, max_length=400)
    birth_date: Optional[str] = Field(default=None, max_length=10)  # YYYY-MM-DD
    nationality: Optional[str] = Field(default=None, max_length=80)

    consent_given: bool = False
    consent_purposes: List[str] = Field(default_factory=list)
    data_categories: List[str] = Field(default_factory=list)
    processing_basis: LegalBasis = LegalBasis.CONSENT
    data_retention_period: Optional[int] = Field(default=None, ge=0, le=36500)  # days

    @field_validator("consent_purposes", "data_categories", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        return _clean_tags(v)


class DataSubject(DataSubjectInput):
    subject_id: str = Field(min_length=1, max_length=64)
    created_at: float
    updated_at: float
    version: int = Field(default=1, ge=1)


# Fields a rectification request may change. `consent_given` is owned by the
# consent ledger and identity/bookkeeping fields never change.
SUBJECT_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "email",
        "document",
        "phone",
        "address",
        "birth_date",
        "nationality",
        "consent_purposes",
        "data_categories",
        "processing_basis",
        "data_retention_period",
    }
)


# ---- consents ----
class ConsentInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data_subject_id: str = Field(default="", max_length=64)
    purpose: str = Field(default="", max_length=120)
    data_categories: List[str] = Field(default_factory=list)
    consent_given: bool = True
    consent_date: Optional[float] = None
    consent_method: ConsentMethod = ConsentMethod.EXPLICIT
    consent_withdrawal: bool = False
    withdrawal_date: Optional[float] = None
    consent_version: str = Field(default="1.0", max_length=32)
    # capture context; falls back to the request context when omitted
    ip_address: Optional[str] = Field(default=None, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=512)

    @field_validator("data_categories", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        return _clean_tags(v)


class Consent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    consent_id: str = Field(min_length=1, max_length=64)
    data_subject_id: str = Field(min_length=1, max_length=64)
    purpose: str = Field(min_length=1, max_length=120)
    data_categories: List[str] = Field(default_factory=list)
    consent_given: bool
    consent_date: float
    consent_method: ConsentMethod
    consent_withdrawal: bool = False
    withdrawal_date: Optional[float] = None
    consent_version: str = "1.0"
    ip_address: str = "system"
    user_agent: str = "system"
    created_at: float
    updated_at: float
    version: int = Field(default=1, ge=1)

    def is_valid_for(self, purpose: str) -> bool:
        return bool(self.consent_given) and not bool(self.consent_withdrawal) and self.purpose == purpose


# ---- processing activities ----
class ProcessingInput(BaseModel):
    """
    Declared processing activity. Lawfulness is not checked here; the
    regulation engine evaluates it later.
    """

    model_config = ConfigDict(extra="forbid")

    purpose: str = Field(default="", max_length=200)
    legal_basis: str = Field(default="", max_length=64)
    data_categories: List[str] = Field(default_factory=list)
    data_subjects: List[str] = Field(default_factory=list)
    retention_period: Optional[int] = Field(default=None, ge=0, le=36500)  # days
    security_measures: List[str] = Field(default_factory=list)
    third_party_sharing: bool = False
    third_parties: List[str] = Field(default_factory=list)
    cross_border_transfer: bool = False
    transfer_countries: List[str] = Field(default_factory=list)
    dpo_contact: str = Field(default="", max_length=254)

    @field_validator("data_categories", "data_subjects", "security_measures", "third_parties", "transfer_countries", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        return _clean_tags(v)


class ProcessingActivity(ProcessingInput):
    processing_id: str = Field(min_length=1, max_length=64)
    created_at: float
    updated_at: float
    version: int = Field(default=1, ge=1)


PROCESSING_UPDATABLE_FIELDS = frozenset(ProcessingInput.model_fields.keys())


def model_changes(before: BaseModel, after: BaseModel) -> Dict[str, Any]:
    """Field names whose values differ (values are not returned)."""
    a = before.model_dump()
    b = after.model_dump()
    return {k: True for k in b if a.get(k) != b.get(k)}


# ---- rights artifacts ----
class SubjectSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    email: str
    document: str
    created_at: float


class ConsentExport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    purpose: str
    data_categories: List[str] = Field(default_factory=list)
    consent_given: bool
    consent_date: float
    consent_method: str
    consent_withdrawal: bool
    withdrawal_date: Optional[float] = None


class AuditExport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: str
    purpose: str
    legal_basis: str
    data_categories: List[str] = Field(default_factory=list)
    actor: str
    timestamp: float
    result: str


class PortabilityReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subject: SubjectSummary
    consents: List[ConsentExport] = Field(default_factory=list)
    audit_trail: List[AuditExport] = Field(default_factory=list)
    generated_at: float
    format: str = "JSON"
    version: str = "1.0"


class ErasureResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subject_id: str
    consents_deleted: int
    erased_at: float
