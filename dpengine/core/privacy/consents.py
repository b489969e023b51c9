from __future__ import annotations

from typing import Any, List, Mapping, Optional, Union

from dpengine.core.audit.models import AuditAction, AuditResult
from dpengine.core.audit.trail import AuditTrail
from dpengine.core.context import RequestContext, resolve_context
from dpengine.core.errors import InvalidStateError, NotFoundError, ValidationError
from dpengine.core.ids import Clock, IdentifierGenerator, UuidGenerator, system_clock
from dpengine.core.locks import KeyedLockManager, consent_key, subject_key
from dpengine.core.privacy.base import coerce, record_event
from dpengine.core.privacy.models import Consent, ConsentInput, LegalBasis
from dpengine.core.privacy.subjects import DataSubjectRegistry
from dpengine.core.store.interface import CONSENTS, RecordStore

REWITHDRAW_REJECT = "reject"
REWITHDRAW_IGNORE = "ignore"


class ConsentLedger:
    """
    Per-purpose consent records.

    Withdrawal is one-way: a withdrawn consent is never reinstated and its
    original `consent_date` is kept. A fresh consent is a new record.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        subjects: DataSubjectRegistry,
        audit: AuditTrail,
        locks: Optional[KeyedLockManager] = None,
        ids: Optional[IdentifierGenerator] = None,
        clock: Optional[Clock] = None,
        rewithdraw: str = REWITHDRAW_REJECT,
        logger=None,
    ):
        if rewithdraw not in {REWITHDRAW_REJECT, REWITHDRAW_IGNORE}:
            raise ValueError(f"rewithdraw must be '{REWITHDRAW_REJECT}' or '{REWITHDRAW_IGNORE}'")
        self.store = store
        self.subjects = subjects
        self.audit = audit
        self.locks = locks or subjects.locks
        self.ids = ids or UuidGenerator()
        self.clock = clock or system_clock
        self.rewithdraw = rewithdraw
        self.logger = logger

    # ---- commands ----
    def register(self, consent: Union[ConsentInput, Mapping[str, Any]], *, context: Optional[RequestContext] = None) -> str:
        inp = coerce(ConsentInput, consent, "Invalid consent.")
        if not inp.purpose.strip():
            raise ValidationError("Consent purpose is required.", fields=["purpose"])
        if not inp.data_subject_id.strip():
            raise ValidationError("Data subject id is required.", fields=["data_subject_id"])

        ctx = resolve_context(context)
        subject_id = inp.data_subject_id
        consent_id = self.ids.new_id()
        with self.locks.hold([subject_key(subject_id), consent_key(consent_id)]):
            if not self.subjects.exists(subject_id):
                raise NotFoundError("Data subject not found.", subject_id=subject_id)

            now = float(self.clock())
            withdrawal_date = inp.withdrawal_date
            if inp.consent_withdrawal and withdrawal_date is None:
                withdrawal_date = now
            rec = Consent(
                consent_id=consent_id,
                data_subject_id=subject_id,
                purpose=inp.purpose.strip(),
                data_categories=inp.data_categories,
                consent_given=inp.consent_given,
                consent_date=inp.consent_date if inp.consent_date is not None else now,
                consent_method=inp.consent_method,
                consent_withdrawal=inp.consent_withdrawal,
                withdrawal_date=withdrawal_date,
                consent_version=inp.consent_version,
                ip_address=inp.ip_address or ctx.ip_address,
                user_agent=inp.user_agent or ctx.user_agent,
                created_at=now,
                updated_at=now,
                version=1,
            )
            self.store.insert(CONSENTS, consent_id, rec.model_dump(mode="json"))
            if rec.consent_given and not rec.consent_withdrawal:
                self.subjects.set_consent_summary(subject_id, True)
            if self.logger:
                self.logger.info(f"Consent registered: {consent_id} subject={subject_id} purpose={rec.purpose}")
            record_event(
                self.audit,
                action=AuditAction.register_consent.value,
                context=ctx,
                data_subject_id=subject_id,
                purpose=rec.purpose,
                legal_basis=LegalBasis.CONSENT.value,
                data_categories=rec.data_categories,
                timestamp=now,
                details={"consent_id": consent_id, "consent_method": rec.consent_method.value},
            )
        return consent_id

    def withdraw(
        self,
        consent_id: str,
        acting_subject_id: str,
        *,
        context: Optional[RequestContext] = None,
    ) -> Consent:
        # resolve the owner first so subject and consent keys can be held together
        owner = self.get(consent_id).data_subject_id
        with self.locks.hold([subject_key(owner), consent_key(consent_id)]):
            current = self.get(consent_id)
            details = {"consent_id": current.consent_id, "acting_subject_id": str(acting_subject_id)}

            if current.consent_withdrawal:
                if self.rewithdraw == REWITHDRAW_IGNORE:
                    record_event(
                        self.audit,
                        action=AuditAction.withdraw_consent.value,
                        context=context,
                        data_subject_id=current.data_subject_id,
                        purpose=current.purpose,
                        legal_basis=LegalBasis.CONSENT.value,
                        data_categories=current.data_categories,
                        details={**details, "already_withdrawn": True},
                    )
                    return current
                if self.logger:
                    self.logger.warning(f"Consent withdrawal rejected (already withdrawn): {current.consent_id}")
                record_event(
                    self.audit,
                    action=AuditAction.withdraw_consent.value,
                    context=context,
                    data_subject_id=current.data_subject_id,
                    purpose=current.purpose,
                    legal_basis=LegalBasis.CONSENT.value,
                    data_categories=current.data_categories,
                    result=AuditResult.blocked,
                    details={**details, "reason": "already_withdrawn"},
                )
                raise InvalidStateError("Consent is already withdrawn.", consent_id=current.consent_id, reason="already_withdrawn")

            now = float(self.clock())
            updated = current.model_copy(
                update={"consent_withdrawal": True, "withdrawal_date": now, "updated_at": now, "version": current.version + 1}
            )
            self.store.replace(CONSENTS, current.consent_id, updated.model_dump(mode="json"), expected_version=current.version)

            if self.subjects.exists(current.data_subject_id):
                still_given = any(c.consent_given and not c.consent_withdrawal for c in self.find_by_subject(current.data_subject_id))
                self.subjects.set_consent_summary(current.data_subject_id, still_given)

            if self.logger:
                self.logger.info(f"Consent withdrawn: {current.consent_id} subject={current.data_subject_id}")
            record_event(
                self.audit,
                action=AuditAction.withdraw_consent.value,
                context=context,
                data_subject_id=current.data_subject_id,
                purpose=current.purpose,
                legal_basis=LegalBasis.CONSENT.value,
                data_categories=current.data_categories,
                timestamp=now,
                details=details,
            )
            return updated

    def purge_subject(self, subject_id: str) -> int:
        """
        Delete every consent of a subject. Used by erasure, which records the
        count on its own audit event.
        """
        n = 0
        # every consent mutation also holds its subject lock
        with self.locks.hold([subject_key(subject_id)]):
            for c in self.find_by_subject(subject_id):
                if self.store.delete(CONSENTS, c.consent_id):
                    n += 1
        if n and self.logger:
            self.logger.info(f"Consents purged: subject={subject_id} count={n}")
        return n

    # ---- queries ----
    def get(self, consent_id: str) -> Consent:
        raw = self.store.get(CONSENTS, str(consent_id))
        if raw is None:
            raise NotFoundError("Consent not found.", consent_id=str(consent_id))
        return Consent.model_validate(raw)

    def find_by_subject(self, subject_id: str) -> List[Consent]:
        out = [Consent.model_validate(r) for r in self.store.scan(CONSENTS) if r.get("data_subject_id") == str(subject_id)]
        out.sort(key=lambda c: (c.created_at, c.consent_id))
        return out

    def find_valid(self, subject_id: str, purpose: str) -> Optional[Consent]:
        for c in self.find_by_subject(subject_id):
            if c.is_valid_for(purpose):
                return c
        return None
