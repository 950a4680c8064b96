"""Authorization and audit support."""

from .audit import AuditLog, InMemoryAuditLog, get_audit_log
from .context import ActorContext
from .policy import ApprovalPolicy

__all__ = ["ActorContext", "ApprovalPolicy", "AuditLog", "InMemoryAuditLog", "get_audit_log"]
