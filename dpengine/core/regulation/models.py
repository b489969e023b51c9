from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ViolationSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class Violation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    rule_id: str
    article: str
    severity: ViolationSeverity
    title: str
    description: str


class Recommendation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    rule_id: str
    article: str
    priority: Priority
    title: str
    description: str
    # static reminders are emitted regardless of the evaluated record
    static: bool = False


class ComplianceCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    regulation: str
    rule_set_id: str
    passed: bool
    violations: List[Violation] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    timestamp: float
    details: Dict[str, Any] = Field(default_factory=dict)


class ArticleLabels(BaseModel):
    """Citation text per rule. Wording differs per regime, structure does not."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    purpose: str
    data_categories: str
    data_subjects: str
    contact: str
    legal_basis: str
    consent: str
    rights: str
    security: str
    transfer: str
    subject_not_found: str


class RuleText(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    title: str
    description: str


class RuleSet(BaseModel):
    """
    A regulatory regime as data.

    `messages` is keyed by rule kind (see regulation.rulesets.MESSAGE_KEYS);
    descriptions may use `{right}`, `{measure}`, `{countries}` and `{subject_id}`.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1, max_length=32)
    regulation: str = Field(min_length=1, max_length=32)
    language: str = "en"
    article_labels: ArticleLabels
    rights: List[str] = Field(min_length=1)
    required_security_measures: List[str] = Field(default_factory=list)
    extra_required_measures: List[str] = Field(default_factory=list)
    adequate_countries: List[str] = Field(default_factory=list)
    messages: Dict[str, RuleText] = Field(default_factory=dict)

    @field_validator("rights", "required_security_measures", "extra_required_measures", "adequate_countries", mode="before")
    @classmethod
    def _dedupe(cls, v: Any) -> List[str]:
        out: List[str] = []
        for x in v or []:
            s = str(x or "").strip()
            if s and s not in out:
                out.append(s)
        return out

    def security_measures(self) -> List[str]:
        """Required measures in evaluation order: the base set first, then extras."""
        out = list(self.required_security_measures)
        out.extend(m for m in self.extra_required_measures if m not in out)
        return out

    def text(self, key: str, **fmt: Any) -> RuleText:
        t = self.messages.get(key)
        if t is None:
            return RuleText(title=key, description=key)
        return RuleText(title=t.title.format(**fmt), description=t.description.format(**fmt))
