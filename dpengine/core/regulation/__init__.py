from dpengine.core.regulation.engine import RegulationEngine
from dpengine.core.regulation.models import ComplianceCheck, Recommendation, RuleSet, Violation
from dpengine.core.regulation.rulesets import GDPR, LGPD, RuleSetCatalog

__all__ = ["ComplianceCheck", "GDPR", "LGPD", "Recommendation", "RegulationEngine", "RuleSet", "RuleSetCatalog", "Violation"]
