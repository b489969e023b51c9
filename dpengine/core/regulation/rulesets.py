from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from dpengine.core.errors import ConfigError, NotFoundError
from dpengine.core.regulation.models import ArticleLabels, RuleSet, RuleText

REQUIRED_SECURITY_MEASURES = ["encryption", "access_control", "audit_logging", "backup", "anonymization"]
ADEQUATE_COUNTRIES = ["EU", "UK", "Switzerland", "Canada", "New Zealand"]

MESSAGE_KEYS = (
    "principles.purpose",
    "principles.data_categories",
    "principles.data_subjects",
    "principles.contact",
    "legal_basis.invalid",
    "consent.required",
    "consent.invalid",
    "rights.reminder",
    "rights.subject_reminder",
    "rights.subject_not_found",
    "security.missing",
    "transfer.countries_unspecified",
    "transfer.inadequate_country",
)


def _t(title: str, description: str) -> RuleText:
    return RuleText(title=title, description=description)


GDPR = RuleSet(
    id="gdpr",
    regulation="GDPR",
    language="en",
    article_labels=ArticleLabels(
        purpose="Art. 5(1)(a)",
        data_categories="Art. 5(1)(b)",
        data_subjects="Art. 5(1)(c)",
        contact="Art. 5(1)(d)",
        legal_basis="Art. 6",
        consent="Art. 7",
        rights="Art. 15-22",
        security="Art. 32",
        transfer="Art. 44-49",
        subject_not_found="Art. 15",
    ),
    rights=["access", "rectification", "erasure", "portability", "objection"],
    required_security_measures=REQUIRED_SECURITY_MEASURES,
    adequate_countries=ADEQUATE_COUNTRIES,
    messages={
        "principles.purpose": _t("Purpose not specified", "The purpose of processing must be specified"),
        "principles.data_categories": _t("Data categories not specified", "Data categories must be specified"),
        "principles.data_subjects": _t("Data subjects not specified", "Data subjects must be specified"),
        "principles.contact": _t("DPO contact not specified", "DPO contact must be specified"),
        "legal_basis.invalid": _t("Invalid legal basis", "Legal basis must be one of those specified in Art. 6 GDPR"),
        "consent.required": _t("Consent required", "Explicit consent is required for consent-based processing"),
        "consent.invalid": _t("Invalid or withdrawn consent", "Consent must be valid and not withdrawn"),
        "rights.reminder": _t("Right of {right}", "The {right} right must be implemented"),
        "rights.subject_reminder": _t("Right of {right}", "The {right} right must be implemented for the data subject"),
        "rights.subject_not_found": _t("Data subject not found", "The data subject was not found in the system"),
        "security.missing": _t("Missing security measure", "Security measure {measure} must be implemented"),
        "transfer.countries_unspecified": _t("Transfer countries not specified", "Transfer countries must be specified"),
        "transfer.inadequate_country": _t(
            "Transfer to inadequate countries",
            "Transfer to countries without adequate protection requires additional measures: {countries}",
        ),
    },
)


LGPD = RuleSet(
    id="lgpd",
    regulation="LGPD",
    language="pt-BR",
    article_labels=ArticleLabels(
        purpose="Art. 6º, I",
        data_categories="Art. 6º, II",
        data_subjects="Art. 6º, III",
        contact="Art. 6º, IV",
        legal_basis="Art. 7º",
        consent="Art. 9º",
        rights="Art. 18º",
        security="Art. 46",
        transfer="Art. 48",
        subject_not_found="Art. 18º",
    ),
    rights=["access", "correction", "deletion", "portability", "information"],
    required_security_measures=REQUIRED_SECURITY_MEASURES,
    adequate_countries=ADEQUATE_COUNTRIES,
    messages={
        "principles.purpose": _t("Finalidade não especificada", "A finalidade do tratamento deve ser especificada"),
        "principles.data_categories": _t("Categorias de dados não especificadas", "As categorias de dados devem ser especificadas"),
        "principles.data_subjects": _t("Titulares não especificados", "Os titulares dos dados devem ser especificados"),
        "principles.contact": _t("Contato do DPO não especificado", "O contato do DPO deve ser especificado"),
        "legal_basis.invalid": _t("Base legal inválida", "A base legal deve ser uma das previstas no Art. 7º da LGPD"),
        "consent.required": _t("Consentimento necessário", "É necessário obter o consentimento do titular"),
        "consent.invalid": _t("Consentimento inválido ou retirado", "O consentimento deve ser válido e não retirado"),
        "rights.reminder": _t("Direito de {right}", "O direito de {right} deve ser implementado"),
        "rights.subject_reminder": _t("Direito de {right}", "O direito de {right} deve ser implementado para o titular"),
        "rights.subject_not_found": _t("Titular não encontrado", "O titular dos dados não foi encontrado no sistema"),
        "security.missing": _t("Medida de segurança ausente", "A medida de segurança {measure} deve ser implementada"),
        "transfer.countries_unspecified": _t(
            "Países de transferência não especificados", "Os países de transferência devem ser especificados"
        ),
        "transfer.inadequate_country": _t(
            "Transferência para países sem adequação",
            "A transferência para países sem adequação requer medidas adicionais: {countries}",
        ),
    },
)


BUILTIN_RULE_SETS: Dict[str, RuleSet] = {GDPR.id: GDPR, LGPD.id: LGPD}


def with_overrides(base: RuleSet, overrides: Optional[Mapping[str, Any]]) -> RuleSet:
    """
    Apply configured overrides. Only `adequate_countries` and
    `extra_required_measures` are tunable; citations and rights are fixed per regime.
    """
    if not overrides:
        return base
    allowed = {"adequate_countries", "extra_required_measures"}
    unknown = sorted(k for k in overrides if k not in allowed)
    if unknown:
        raise ConfigError("Unsupported rule set override.", rule_set=base.id, fields=unknown)
    data = base.model_dump()
    for k in allowed:
        if overrides.get(k) is not None:
            data[k] = list(overrides[k])
    return RuleSet.model_validate(data)


class RuleSetCatalog:
    def __init__(self, *, overrides: Optional[Mapping[str, Mapping[str, Any]]] = None, default: str = "gdpr"):
        overrides = dict(overrides or {})
        unknown = sorted(k for k in overrides if k.lower() not in BUILTIN_RULE_SETS)
        if unknown:
            raise ConfigError("Override for unknown rule set.", rule_sets=unknown)
        self._sets: Dict[str, RuleSet] = {
            rid: with_overrides(rs, overrides.get(rid) or overrides.get(rid.upper())) for rid, rs in BUILTIN_RULE_SETS.items()
        }
        if str(default).lower() not in self._sets:
            raise ConfigError("Unknown default rule set.", default_rule_set=str(default))
        self.default_id = str(default).lower()

    def ids(self) -> List[str]:
        return sorted(self._sets)

    def get(self, rule_set_id: Optional[str] = None) -> RuleSet:
        rid = str(rule_set_id or self.default_id).lower()
        rs = self._sets.get(rid)
        if rs is None:
            raise NotFoundError("Rule set not found.", rule_set_id=rid)
        return rs

    @property
    def default(self) -> RuleSet:
        return self._sets[self.default_id]
