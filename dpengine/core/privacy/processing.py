from __future__ import annotations

from typing import Any, List, Mapping, Optional, Set, Union

from dpengine.core.audit.models import AuditAction
from dpengine.core.audit.trail import AuditTrail
from dpengine.core.context import RequestContext
from dpengine.core.errors import InvalidStateError, NotFoundError, ValidationError
from dpengine.core.ids import Clock, IdentifierGenerator, UuidGenerator, system_clock
from dpengine.core.locks import KeyedLockManager, processing_key, subject_key
from dpengine.core.privacy.base import coerce, record_event
from dpengine.core.privacy.models import (
    PROCESSING_UPDATABLE_FIELDS,
    ProcessingActivity,
    ProcessingInput,
    model_changes,
)
from dpengine.core.store.interface import PROCESSING_ACTIVITIES, RecordStore


# re-reads that keep turning up unlocked subject references give up after this
UPDATE_ATTEMPTS = 3


def _audit_subject(activity: ProcessingInput) -> Optional[str]:
    return activity.data_subjects[0] if activity.data_subjects else None


def _merge(current: ProcessingActivity, changes: Mapping[str, Any]) -> ProcessingInput:
    merged = {k: v for k, v in current.model_dump().items() if k in PROCESSING_UPDATABLE_FIELDS}
    merged.update(changes)
    return coerce(ProcessingInput, merged, "Invalid processing activity.")


class ProcessingRegistry:
    """
    Declared processing activities.

    Registration never checks lawfulness or consents; that is the regulation
    engine's job. Writes hold the locks of every referenced subject so an
    erasure cannot interleave with a new reference.
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

    def register(self, activity: Union[ProcessingInput, Mapping[str, Any]], *, context: Optional[RequestContext] = None) -> str:
        inp = coerce(ProcessingInput, activity, "Invalid processing activity.")
        processing_id = self.ids.new_id()
        now = float(self.clock())
        rec = ProcessingActivity(**inp.model_dump(), processing_id=processing_id, created_at=now, updated_at=now, version=1)

        keys = [processing_key(processing_id)] + [subject_key(s) for s in rec.data_subjects]
        with self.locks.hold(keys):
            self.store.insert(PROCESSING_ACTIVITIES, processing_id, rec.model_dump(mode="json"))
            if self.logger:
                self.logger.info(f"Processing registered: {processing_id} purpose={rec.purpose} basis={rec.legal_basis}")
            record_event(
                self.audit,
                action=AuditAction.register_data_processing.value,
                context=context,
                data_subject_id=_audit_subject(rec),
                purpose=rec.purpose,
                legal_basis=rec.legal_basis,
                data_categories=rec.data_categories,
                timestamp=now,
                details={"processing_id": processing_id, "data_subjects": len(rec.data_subjects)},
            )
        return processing_id

    def get(self, processing_id: str) -> ProcessingActivity:
        raw = self.store.get(PROCESSING_ACTIVITIES, str(processing_id))
        if raw is None:
            raise NotFoundError("Processing activity not found.", processing_id=str(processing_id))
        return ProcessingActivity.model_validate(raw)

    def list(self) -> List[ProcessingActivity]:
        return [ProcessingActivity.model_validate(r) for r in self.store.scan(PROCESSING_ACTIVITIES)]

    def find_referencing(self, subject_id: str) -> List[ProcessingActivity]:
        sid = str(subject_id)
        return [p for p in self.list() if sid in p.data_subjects]

    def update(
        self,
        processing_id: str,
        changes: Mapping[str, Any],
        *,
        context: Optional[RequestContext] = None,
    ) -> ProcessingActivity:
        changes = dict(changes or {})
        rejected = sorted(k for k in changes if k not in PROCESSING_UPDATABLE_FIELDS)
        if rejected:
            raise ValidationError("These fields cannot be changed.", fields=rejected)

        # old and new references both need locking: dropping a subject must not
        # race an erasure check either
        keys = self._update_keys(self.get(processing_id), changes)
        for _ in range(UPDATE_ATTEMPTS):
            with self.locks.hold(keys):
                current = self.get(processing_id)
                needed = self._update_keys(current, changes)
                if needed <= keys:
                    return self._apply_update(current, changes, context)
            keys = keys | needed
        raise InvalidStateError(
            "Processing activity changed during update.",
            reason="concurrent_modification",
            processing_id=str(processing_id),
        )

    def _update_keys(self, current: ProcessingActivity, changes: Mapping[str, Any]) -> Set[str]:
        keys = {processing_key(current.processing_id)}
        keys.update(subject_key(s) for s in current.data_subjects)
        if "data_subjects" in changes:
            keys.update(subject_key(s) for s in _merge(current, changes).data_subjects)
        return keys

    def _apply_update(
        self,
        current: ProcessingActivity,
        changes: Mapping[str, Any],
        context: Optional[RequestContext],
    ) -> ProcessingActivity:
        inp = _merge(current, changes)
        candidate = ProcessingActivity(
            **inp.model_dump(),
            processing_id=current.processing_id,
            created_at=current.created_at,
            updated_at=current.updated_at,
            version=current.version,
        )
        changed = sorted(model_changes(current, candidate))
        if not changed:
            return current

        now = float(self.clock())
        updated = candidate.model_copy(update={"updated_at": now, "version": current.version + 1})
        self.store.replace(
            PROCESSING_ACTIVITIES, current.processing_id, updated.model_dump(mode="json"), expected_version=current.version
        )
        if self.logger:
            self.logger.info(f"Processing updated: {current.processing_id} fields={changed}")
        record_event(
            self.audit,
            action=AuditAction.update_data_processing.value,
            context=context,
            data_subject_id=_audit_subject(updated),
            purpose=updated.purpose,
            legal_basis=updated.legal_basis,
            data_categories=updated.data_categories,
            timestamp=now,
            details={"processing_id": current.processing_id, "changed_fields": changed},
        )
        return updated

    def delete(self, processing_id: str, *, context: Optional[RequestContext] = None) -> ProcessingActivity:
        current = self.get(processing_id)
        keys = [processing_key(processing_id)] + [subject_key(s) for s in current.data_subjects]
        with self.locks.hold(keys):
            current = self.get(processing_id)
            self.store.delete(PROCESSING_ACTIVITIES, current.processing_id)
            if self.logger:
                self.logger.info(f"Processing deleted: {current.processing_id}")
            record_event(
                self.audit,
                action=AuditAction.delete_data_processing.value,
                context=context,
                data_subject_id=_audit_subject(current),
                purpose=current.purpose,
                legal_basis=current.legal_basis,
                data_categories=current.data_categories,
                details={"processing_id": current.processing_id},
            )
            return current
