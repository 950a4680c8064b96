from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from ..contracts import AuditEntry, utcnow


class AuditLogRecord(SQLModel, table=True):
    """Stored audit entry for a document action."""

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    action: str
    action_type: str = Field(default="info")
    document_id: Optional[str] = Field(default=None, index=True)
    document_title: Optional[str] = None
    details: str = ""
    ip_address: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditLogRecord":
        return cls(
            user_id=entry.user,
            action=entry.action,
            action_type=entry.action_type,
            document_id=entry.document,
            document_title=entry.document_title,
            details=entry.details,
            ip_address=entry.ip_address,
            created_at=entry.created_at,
        )

    def to_entry(self) -> AuditEntry:
        return AuditEntry(
            user=self.user_id,
            action=self.action,
            action_type=self.action_type,
            document=self.document_id,
            document_title=self.document_title,
            details=self.details,
            ip_address=self.ip_address,
            created_at=self.created_at,
        )
