from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from dpengine.core.ids import Clock, system_clock
from dpengine.core.privacy.base import coerce
from dpengine.core.privacy.consents import ConsentLedger
from dpengine.core.privacy.models import LEGAL_BASIS_VALUES, LegalBasis, ProcessingActivity, ProcessingInput
from dpengine.core.privacy.processing import ProcessingRegistry
from dpengine.core.privacy.subjects import DataSubjectRegistry
from dpengine.core.regulation.models import ComplianceCheck, Priority, Recommendation, RuleSet, Violation, ViolationSeverity
from dpengine.core.regulation.rulesets import RuleSetCatalog

CONSENT_SUBJECTS_FIRST = "first"
CONSENT_SUBJECTS_ALL = "all"

Findings = Tuple[List[Violation], List[Recommendation]]


class RegulationEngine:
    """
    Pure evaluator: reads registries, never writes and never appends audit events.

    Rule failures are returned as violations. Only an unresolvable reference
    (`check_processing_by_id` with an unknown id) raises.
    """

    def __init__(
        self,
        *,
        subjects: DataSubjectRegistry,
        consents: ConsentLedger,
        processing: Optional[ProcessingRegistry] = None,
        catalog: Optional[RuleSetCatalog] = None,
        consent_subjects: str = CONSENT_SUBJECTS_FIRST,
        clock: Optional[Clock] = None,
        logger=None,
    ):
        if consent_subjects not in {CONSENT_SUBJECTS_FIRST, CONSENT_SUBJECTS_ALL}:
            raise ValueError(f"consent_subjects must be '{CONSENT_SUBJECTS_FIRST}' or '{CONSENT_SUBJECTS_ALL}'")
        self.subjects = subjects
        self.consents = consents
        self.processing = processing
        self.catalog = catalog or RuleSetCatalog()
        self.consent_subjects = consent_subjects
        self.clock = clock or system_clock
        self.logger = logger

    def resolve_rule_set(self, rule_set: Union[RuleSet, str, None] = None) -> RuleSet:
        if isinstance(rule_set, RuleSet):
            return rule_set
        return self.catalog.get(rule_set)

    # ---- processing ----
    def check_processing_compliance(
        self,
        activity: Union[ProcessingActivity, ProcessingInput, Mapping[str, Any]],
        rule_set: Union[RuleSet, str, None] = None,
    ) -> ComplianceCheck:
        rs = self.resolve_rule_set(rule_set)
        if not isinstance(activity, (ProcessingActivity, ProcessingInput)):
            data = dict(activity)
            model = ProcessingActivity if "processing_id" in data else ProcessingInput
            activity = coerce(model, data, "Invalid processing activity.")

        violations: List[Violation] = []
        recommendations: List[Recommendation] = []
        for check in (
            self._check_principles,
            self._check_legal_basis,
            self._check_consent,
            self._check_rights,
            self._check_security,
            self._check_transfer,
        ):
            v, r = check(activity, rs)
            violations.extend(v)
            recommendations.extend(r)

        details: Dict[str, Any] = {
            "processing_id": getattr(activity, "processing_id", None),
            "purpose": activity.purpose,
            "legal_basis": activity.legal_basis,
            "processing": activity.model_dump(mode="json"),
            "violation_count": len(violations),
            "recommendation_count": len(recommendations),
        }
        out = ComplianceCheck(
            regulation=rs.regulation,
            rule_set_id=rs.id,
            passed=not violations,
            violations=violations,
            recommendations=recommendations,
            timestamp=float(self.clock()),
            details=details,
        )
        if self.logger and not out.passed:
            self.logger.info(
                f"Compliance check failed: rule_set={rs.id} processing={details['processing_id']} "
                f"violations={[v.rule_id for v in violations]}"
            )
        return out

    def check_processing_by_id(self, processing_id: str, rule_set: Union[RuleSet, str, None] = None) -> ComplianceCheck:
        if self.processing is None:
            raise RuntimeError("RegulationEngine has no processing registry.")
        return self.check_processing_compliance(self.processing.get(processing_id), rule_set)

    # ---- subject rights ----
    def check_data_subject_rights(self, subject_id: str, rule_set: Union[RuleSet, str, None] = None) -> ComplianceCheck:
        rs = self.resolve_rule_set(rule_set)
        violations: List[Violation] = []
        recommendations: List[Recommendation] = []
        if not self.subjects.exists(subject_id):
            t = rs.text("rights.subject_not_found", subject_id=subject_id)
            violations.append(
                Violation(
                    rule_id="rights.subject_not_found",
                    article=rs.article_labels.subject_not_found,
                    severity=ViolationSeverity.high,
                    title=t.title,
                    description=t.description,
                )
            )
        else:
            recommendations.extend(self._right_reminders(rs, "rights.subject_reminder"))

        return ComplianceCheck(
            regulation=rs.regulation,
            rule_set_id=rs.id,
            passed=not violations,
            violations=violations,
            recommendations=recommendations,
            timestamp=float(self.clock()),
            details={
                "data_subject_id": str(subject_id),
                "violation_count": len(violations),
                "recommendation_count": len(recommendations),
            },
        )

    # ---- individual checks (fixed order, all always run) ----
    def _check_principles(self, p: ProcessingInput, rs: RuleSet) -> Findings:
        labels = rs.article_labels
        out: List[Violation] = []
        checks = (
            ("principles.purpose", labels.purpose, not p.purpose.strip(), ViolationSeverity.high),
            ("principles.data_categories", labels.data_categories, not p.data_categories, ViolationSeverity.high),
            ("principles.data_subjects", labels.data_subjects, not p.data_subjects, ViolationSeverity.high),
            # advisory in some regimes
            ("principles.contact", labels.contact, not p.dpo_contact.strip(), ViolationSeverity.medium),
        )
        for rule_id, article, failed, severity in checks:
            if failed:
                t = rs.text(rule_id)
                out.append(Violation(rule_id=rule_id, article=article, severity=severity, title=t.title, description=t.description))
        return out, []

    def _check_legal_basis(self, p: ProcessingInput, rs: RuleSet) -> Findings:
        if p.legal_basis in LEGAL_BASIS_VALUES:
            return [], []
        t = rs.text("legal_basis.invalid")
        return [
            Violation(
                rule_id="legal_basis.invalid",
                article=rs.article_labels.legal_basis,
                severity=ViolationSeverity.high,
                title=t.title,
                description=t.description,
            )
        ], []

    def _check_consent(self, p: ProcessingInput, rs: RuleSet) -> Findings:
        if p.legal_basis != LegalBasis.CONSENT.value:
            return [], []

        if not p.data_subjects:
            return [self._consent_violation(rs, "consent.required", None)], []

        if self.consent_subjects == CONSENT_SUBJECTS_ALL:
            targets = list(p.data_subjects)
        else:
            targets = [p.data_subjects[0]]

        out: List[Violation] = []
        for sid in targets:
            rule_id = self._consent_rule_for(sid, p.purpose)
            if rule_id:
                out.append(self._consent_violation(rs, rule_id, sid if len(targets) > 1 else None))
        return out, []

    def _consent_rule_for(self, subject_id: str, purpose: str) -> Optional[str]:
        if not self.consents.find_by_subject(subject_id):
            return "consent.required"
        if self.consents.find_valid(subject_id, purpose) is None:
            return "consent.invalid"
        return None

    def _consent_violation(self, rs: RuleSet, rule_id: str, subject_id: Optional[str]) -> Violation:
        t = rs.text(rule_id)
        desc = t.description if subject_id is None else f"{t.description} [{subject_id}]"
        return Violation(
            rule_id=rule_id,
            article=rs.article_labels.consent,
            severity=ViolationSeverity.high,
            title=t.title,
            description=desc,
        )

    def _check_rights(self, p: ProcessingInput, rs: RuleSet) -> Findings:
        return [], self._right_reminders(rs, "rights.reminder")

    def _right_reminders(self, rs: RuleSet, key: str) -> List[Recommendation]:
        out: List[Recommendation] = []
        for right in rs.rights:
            t = rs.text(key, right=right)
            out.append(
                Recommendation(
                    rule_id=f"rights.{right}",
                    article=rs.article_labels.rights,
                    priority=Priority.high,
                    title=t.title,
                    description=t.description,
                    static=True,
                )
            )
        return out

    def _check_security(self, p: ProcessingInput, rs: RuleSet) -> Findings:
        present = set(p.security_measures)
        out: List[Violation] = []
        for measure in rs.security_measures():
            if measure in present:
                continue
            t = rs.text("security.missing", measure=measure)
            out.append(
                Violation(
                    rule_id=f"security.{measure}",
                    article=rs.article_labels.security,
                    severity=ViolationSeverity.high,
                    title=t.title,
                    description=t.description,
                )
            )
        return out, []

    def _check_transfer(self, p: ProcessingInput, rs: RuleSet) -> Findings:
        if not p.cross_border_transfer:
            return [], []
        if not p.transfer_countries:
            t = rs.text("transfer.countries_unspecified")
            return [
                Violation(
                    rule_id="transfer.countries_unspecified",
                    article=rs.article_labels.transfer,
                    severity=ViolationSeverity.high,
                    title=t.title,
                    description=t.description,
                )
            ], []
        adequate = set(rs.adequate_countries)
        inadequate = [c for c in p.transfer_countries if c not in adequate]
        if not inadequate:
            return [], []
        t = rs.text("transfer.inadequate_country", countries=", ".join(inadequate))
        return [
            Violation(
                rule_id="transfer.inadequate_country",
                article=rs.article_labels.transfer,
                severity=ViolationSeverity.high,
                title=t.title,
                description=t.description,
            )
        ], []
