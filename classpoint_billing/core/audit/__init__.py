from classpoint_billing.core.audit.models import AuditLog
from classpoint_billing.core.audit.service import AuditAction, AuditService

__all__ = ["AuditLog", "AuditAction", "AuditService"]
