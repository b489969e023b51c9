from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Union

from dpengine.core.audit.models import AuditAction
from dpengine.core.audit.trail import AuditTrail
from dpengine.core.context import RequestContext
from dpengine.core.errors import NotFoundError, ValidationError
from dpengine.core.ids import Clock, IdentifierGenerator, UuidGenerator, system_clock
from dpengine.core.locks import KeyedLockManager, subject_key
from dpengine.core.privacy.base import coerce, record_event
from dpengine.core.privacy.models import (
    SUBJECT_UPDATABLE_FIELDS,
    DataSubject,
    DataSubjectInput,
    model_changes,
)
from dpengine.core.store.interface import DATA_SUBJECTS, RecordStore


def _require_identity(subject: DataSubjectInput) -> None:
    missing = []
    if not subject.name.strip():
        missing.append("name")
    if not subject.document.strip():
        missing.append("document")
    if not subject.data_categories:
        missing.append("data_categories")
    if missing:
        raise ValidationError("Name, document and data categories are required.", fields=missing)


class DataSubjectRegistry:
    """
    Source of truth for data subjects.

    Mutations hold the subject lock and write through a version compare-and-swap.
    Deletion is reserved for the rights coordinator, which checks the erasure
    preconditions first.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        audit: AuditTrail,
        locks: Optional[KeyedLockManager] = None,
        ids: Optional[IdentifierGenerator] = None,
        clock: Optional[Clock] = None,
        logger=None,
    ):
        self.store = store
        self.audit = audit
        self.locks = locks or KeyedLockManager()
        self.ids = ids or UuidGenerator()
        self.clock = clock or system_clock
        self.logger = logger

    def register(self, subject: Union[DataSubjectInput, Mapping[str, Any]], *, context: Optional[RequestContext] = None) -> str:
        inp = coerce(DataSubjectInput, subject, "Invalid data subject.")
        _require_identity(inp)

        subject_id = self.ids.new_id()
        now = float(self.clock())
        rec = DataSubject(**inp.model_dump(), subject_id=subject_id, created_at=now, updated_at=now, version=1)
        with self.locks.hold([subject_key(subject_id)]):
            self.store.insert(DATA_SUBJECTS, subject_id, rec.model_dump(mode="json"))
            if self.logger:
                self.logger.info(f"Data subject registered: {subject_id}")
            record_event(
                self.audit,
                action=AuditAction.register_data_subject.value,
                context=context,
                data_subject_id=subject_id,
                purpose="data_registration",
                legal_basis=rec.processing_basis.value,
                data_categories=rec.data_categories,
                timestamp=now,
            )
        return subject_id

    def get(self, subject_id: str) -> DataSubject:
        raw = self.store.get(DATA_SUBJECTS, str(subject_id))
        if raw is None:
            raise NotFoundError("Data subject not found.", subject_id=str(subject_id))
        return DataSubject.model_validate(raw)

    def exists(self, subject_id: str) -> bool:
        return self.store.get(DATA_SUBJECTS, str(subject_id)) is not None

    def list(self) -> List[DataSubject]:
        return [DataSubject.model_validate(r) for r in self.store.scan(DATA_SUBJECTS)]

    def update(
        self,
        subject_id: str,
        changes: Mapping[str, Any],
        *,
        context: Optional[RequestContext] = None,
    ) -> DataSubject:
        """
        Rectify a subject's personal data.

        Only fields in SUBJECT_UPDATABLE_FIELDS may change; the audit event lists
        the changed field names, never their values.
        """
        changes = dict(changes or {})
        rejected = sorted(k for k in changes if k not in SUBJECT_UPDATABLE_FIELDS)
        if rejected:
            raise ValidationError("These fields cannot be changed.", fields=rejected)

        with self.locks.hold([subject_key(subject_id)]):
            current = self.get(subject_id)
            merged = current.model_dump()
            merged.update(changes)
            inp = coerce(DataSubjectInput, {k: merged[k] for k in DataSubjectInput.model_fields}, "Invalid data subject.")
            _require_identity(inp)

            candidate = DataSubject(
                **inp.model_dump(),
                subject_id=current.subject_id,
                created_at=current.created_at,
                updated_at=current.updated_at,
                version=current.version,
            )
            changed = sorted(model_changes(current, candidate))
            if not changed:
                return current

            now = float(self.clock())
            updated = candidate.model_copy(update={"updated_at": now, "version": current.version + 1})
            self.store.replace(DATA_SUBJECTS, current.subject_id, updated.model_dump(mode="json"), expected_version=current.version)
            if self.logger:
                self.logger.info(f"Data subject updated: {current.subject_id} fields={changed}")
            record_event(
                self.audit,
                action=AuditAction.update_data_subject.value,
                context=context,
                data_subject_id=current.subject_id,
                purpose="data_rectification",
                legal_basis=updated.processing_basis.value,
                data_categories=updated.data_categories,
                timestamp=now,
                details={"changed_fields": changed},
            )
            return updated

    def set_consent_summary(self, subject_id: str, consent_given: bool) -> DataSubject:
        """
        Maintain the `consent_given` summary flag. Called by the consent ledger
        only; the ledger's own event covers the change.
        """
        with self.locks.hold([subject_key(subject_id)]):
            current = self.get(subject_id)
            if bool(current.consent_given) == bool(consent_given):
                return current
            updated = current.model_copy(
                update={"consent_given": bool(consent_given), "updated_at": float(self.clock()), "version": current.version + 1}
            )
            self.store.replace(DATA_SUBJECTS, current.subject_id, updated.model_dump(mode="json"), expected_version=current.version)
            return updated

    def delete(
        self,
        subject_id: str,
        *,
        context: Optional[RequestContext] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> DataSubject:
        with self.locks.hold([subject_key(subject_id)]):
            current = self.get(subject_id)
            self.store.delete(DATA_SUBJECTS, current.subject_id)
            if self.logger:
                self.logger.info(f"Data subject deleted: {current.subject_id}")
            record_event(
                self.audit,
                action=AuditAction.delete_data_subject.value,
                context=context,
                data_subject_id=current.subject_id,
                purpose="data_deletion",
                legal_basis=current.processing_basis.value,
                data_categories=current.data_categories,
                details=details,
            )
            return current
