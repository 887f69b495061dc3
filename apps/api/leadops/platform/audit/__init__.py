from leadops.platform.audit.models import AuditEvent
from leadops.platform.audit.trail import AuditEntry, AuditEventRepository, AuditTrail

__all__ = ["AuditEvent", "AuditEntry", "AuditEventRepository", "AuditTrail"]
