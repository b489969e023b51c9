from __future__ import annotations

from typing import Optional

from dpengine.core.audit.models import AuditAction, AuditResult
from dpengine.core.audit.trail import AuditTrail
from dpengine.core.context import RequestContext
from dpengine.core.errors import InvalidStateError
from dpengine.core.ids import Clock, system_clock
from dpengine.core.locks import KeyedLockManager, subject_key
from dpengine.core.privacy.base import record_event
from dpengine.core.privacy.consents import ConsentLedger
from dpengine.core.privacy.models import (
    AuditExport,
    ConsentExport,
    ErasureResult,
    PortabilityReport,
    SubjectSummary,
)
from dpengine.core.privacy.processing import ProcessingRegistry
from dpengine.core.privacy.subjects import DataSubjectRegistry


class RightsCoordinator:
    """
    Data-subject rights that span several registries: erasure and portability.
    """

    def __init__(
        self,
        *,
        subjects: DataSubjectRegistry,
        consents: ConsentLedger,
        processing: ProcessingRegistry,
        audit: AuditTrail,
        locks: Optional[KeyedLockManager] = None,
        clock: Optional[Clock] = None,
        logger=None,
    ):
        self.subjects = subjects
        self.consents = consents
        self.processing = processing
        self.audit = audit
        self.locks = locks or subjects.locks
        self.clock = clock or system_clock
        self.logger = logger

    def erase(self, subject_id: str, *, context: Optional[RequestContext] = None) -> ErasureResult:
        """
        Delete a subject and all of its consents.

        Refused while any processing activity still references the subject. The
        subject's audit history is kept as written.
        """
        with self.locks.hold([subject_key(subject_id)]):
            subject = self.subjects.get(subject_id)
            referencing = sorted(p.processing_id for p in self.processing.find_referencing(subject.subject_id))
            if referencing:
                if self.logger:
                    self.logger.warning(f"Erasure blocked: subject={subject.subject_id} processing={referencing}")
                record_event(
                    self.audit,
                    action=AuditAction.delete_data_subject.value,
                    context=context,
                    data_subject_id=subject.subject_id,
                    purpose="data_deletion",
                    legal_basis=subject.processing_basis.value,
                    data_categories=subject.data_categories,
                    result=AuditResult.blocked,
                    details={"reason": "active_processing", "processing_ids": referencing},
                )
                raise InvalidStateError(
                    "Active processing references subject.",
                    subject_id=subject.subject_id,
                    reason="active_processing",
                    processing_ids=referencing,
                )

            purged = self.consents.purge_subject(subject.subject_id)
            self.subjects.delete(subject.subject_id, context=context, details={"consents_deleted": purged})
            return ErasureResult(subject_id=subject.subject_id, consents_deleted=purged, erased_at=float(self.clock()))

    def export_portability_report(self, subject_id: str, *, context: Optional[RequestContext] = None) -> PortabilityReport:
        with self.locks.hold([subject_key(subject_id)]):
            subject = self.subjects.get(subject_id)
            consents = [
                ConsentExport(
                    id=c.consent_id,
                    purpose=c.purpose,
                    data_categories=list(c.data_categories),
                    consent_given=c.consent_given,
                    consent_date=c.consent_date,
                    consent_method=c.consent_method.value,
                    consent_withdrawal=c.consent_withdrawal,
                    withdrawal_date=c.withdrawal_date,
                )
                for c in self.consents.find_by_subject(subject.subject_id)
            ]
            trail = [
                AuditExport(
                    action=ev.action,
                    purpose=ev.purpose,
                    legal_basis=ev.legal_basis,
                    data_categories=list(ev.data_categories),
                    actor=ev.actor,
                    timestamp=ev.timestamp,
                    result=ev.result.value,
                )
                for ev in self.audit.query({"subject_id": subject.subject_id})
            ]
            report = PortabilityReport(
                subject=SubjectSummary(
                    id=subject.subject_id,
                    name=subject.name,
                    email=subject.email,
                    document=subject.document,
                    created_at=subject.created_at,
                ),
                consents=consents,
                audit_trail=trail,
                generated_at=float(self.clock()),
            )
            if self.logger:
                self.logger.info(f"Portability report exported: subject={subject.subject_id} consents={len(consents)}")
            record_event(
                self.audit,
                action=AuditAction.export_data_portability.value,
                context=context,
                data_subject_id=subject.subject_id,
                purpose="data_portability",
                legal_basis=subject.processing_basis.value,
                data_categories=subject.data_categories,
                timestamp=report.generated_at,
                details={"consents": len(consents), "audit_events": len(trail)},
            )
            return report
