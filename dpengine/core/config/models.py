from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StoreConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    backend: Literal["memory", "sqlite"] = "sqlite"
    sqlite_path: str = "data/dpengine.sqlite"
    timeout_seconds: float = Field(default=5.0, gt=0, le=300)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _level(cls, v: str) -> str:
        lv = str(v or "").strip().upper()
        if lv not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("level must be DEBUG, INFO, WARNING, ERROR or CRITICAL")
        return lv


class ConsentsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    rewithdraw: Literal["reject", "ignore"] = "reject"


class RuleSetOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")
    adequate_countries: Optional[List[str]] = None
    extra_required_measures: Optional[List[str]] = None


class RegulationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    default_rule_set: Literal["gdpr", "lgpd"] = "gdpr"
    consent_subjects: Literal["first", "all"] = "first"
    rule_sets: Dict[str, RuleSetOverride] = Field(default_factory=dict)


class AuditConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    default_limit: int = Field(default=200, ge=1, le=100000)


class EngineConfigFile(BaseModel):
    """config/engine.json"""

    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    max_backups: int = Field(default=10, ge=1, le=100)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    consents: ConsentsConfig = Field(default_factory=ConsentsConfig)
    regulation: RegulationConfig = Field(default_factory=RegulationConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
