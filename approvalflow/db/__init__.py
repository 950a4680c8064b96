from .audit_db import SQLAuditLog
from .models import AuditLogRecord

__all__ = [
    "AuditLogRecord",
    "SQLAuditLog",
]
