from dpengine.core.audit.models import AuditAction, AuditEvent, AuditEventInput, AuditFilter, AuditResult
from dpengine.core.audit.trail import AuditTrail

__all__ = ["AuditAction", "AuditEvent", "AuditEventInput", "AuditFilter", "AuditResult", "AuditTrail"]
