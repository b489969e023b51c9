from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from dpengine.core.audit.trail import AuditTrail
from dpengine.core.config.models import EngineConfigFile
from dpengine.core.ids import Clock, IdentifierGenerator, UuidGenerator, system_clock
from dpengine.core.locks import KeyedLockManager
from dpengine.core.privacy.consents import ConsentLedger
from dpengine.core.privacy.processing import ProcessingRegistry
from dpengine.core.privacy.rights import RightsCoordinator
from dpengine.core.privacy.subjects import DataSubjectRegistry
from dpengine.core.regulation.engine import RegulationEngine
from dpengine.core.regulation.rulesets import RuleSetCatalog
from dpengine.core.store.interface import AuditStore, RecordStore
from dpengine.core.store.memory import MemoryAuditStore, MemoryRecordStore
from dpengine.core.store.sqlite import SqliteAuditStore, SqliteRecordStore


@dataclass
class ComplianceEngine:
    subjects: DataSubjectRegistry
    consents: ConsentLedger
    processing: ProcessingRegistry
    audit: AuditTrail
    regulation: RegulationEngine
    rights: RightsCoordinator
    locks: KeyedLockManager


def build_stores(cfg: EngineConfigFile, *, sqlite_path: Optional[str] = None) -> Tuple[RecordStore, AuditStore]:
    if cfg.store.backend == "memory":
        return MemoryRecordStore(), MemoryAuditStore()
    path = sqlite_path or cfg.store.sqlite_path
    timeout = float(cfg.store.timeout_seconds)
    return SqliteRecordStore(path=path, timeout_seconds=timeout), SqliteAuditStore(path=path, timeout_seconds=timeout)


def build_engine(
    cfg: Optional[EngineConfigFile] = None,
    *,
    records: Optional[RecordStore] = None,
    audit_store: Optional[AuditStore] = None,
    ids: Optional[IdentifierGenerator] = None,
    clock: Optional[Clock] = None,
    sqlite_path: Optional[str] = None,
    logger=None,
) -> ComplianceEngine:
    """
    Wire every component around one lock manager, id generator and clock.

    Explicit `records`/`audit_store` win over the configured backend.
    """
    cfg = cfg or EngineConfigFile()
    if records is None or audit_store is None:
        built_records, built_audit = build_stores(cfg, sqlite_path=sqlite_path)
        records = records if records is not None else built_records
        audit_store = audit_store if audit_store is not None else built_audit

    ids = ids or UuidGenerator()
    clock = clock or system_clock
    locks = KeyedLockManager()

    audit = AuditTrail(store=audit_store, ids=ids, clock=clock, default_limit=cfg.audit.default_limit, logger=logger)
    subjects = DataSubjectRegistry(store=records, audit=audit, locks=locks, ids=ids, clock=clock, logger=logger)
    consents = ConsentLedger(
        store=records,
        subjects=subjects,
        audit=audit,
        locks=locks,
        ids=ids,
        clock=clock,
        rewithdraw=cfg.consents.rewithdraw,
        logger=logger,
    )
    processing = ProcessingRegistry(store=records, audit=audit, locks=locks, ids=ids, clock=clock, logger=logger)
    catalog = RuleSetCatalog(
        overrides={k: v.model_dump(exclude_none=True) for k, v in cfg.regulation.rule_sets.items()},
        default=cfg.regulation.default_rule_set,
    )
    regulation = RegulationEngine(
        subjects=subjects,
        consents=consents,
        processing=processing,
        catalog=catalog,
        consent_subjects=cfg.regulation.consent_subjects,
        clock=clock,
        logger=logger,
    )
    rights = RightsCoordinator(
        subjects=subjects,
        consents=consents,
        processing=processing,
        audit=audit,
        locks=locks,
        clock=clock,
        logger=logger,
    )
    if logger:
        logger.info(f"Compliance engine ready: backend={cfg.store.backend} rule_set={catalog.default_id}")
    return ComplianceEngine(
        subjects=subjects,
        consents=consents,
        processing=processing,
        audit=audit,
        regulation=regulation,
        rights=rights,
        locks=locks,
    )
