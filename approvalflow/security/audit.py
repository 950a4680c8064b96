"""Audit trail sinks for workflow actions."""

from __future__ import annotations

import abc
from typing import List, Optional

from ..contracts import AuditEntry


class AuditLog(metaclass=abc.ABCMeta):
    """Append-only record of document actions."""

    @abc.abstractmethod
    async def append(self, entry: AuditEntry) -> None:
        """Persist an audit log entry."""
        raise NotImplementedError

    @abc.abstractmethod
    async def list_entries(
        self,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[AuditEntry]:
        """Return the newest entries first, optionally filtered."""
        raise NotImplementedError


class InMemoryAuditLog(AuditLog):
    """Keeps audit entries in a list; intended for tests and local runs."""

    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    async def list_entries(
        self,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[AuditEntry]:
        matches = [
            entry
            for entry in reversed(self.entries)
            if (document_id is None or entry.document == document_id)
            and (user_id is None or entry.user == user_id)
        ]
        return matches[:limit]


def get_audit_log(database_url: Optional[str] = None) -> AuditLog:
    """Return an SQL-backed audit log for ``database_url``, else an in-memory one."""
    if not database_url:
        return InMemoryAuditLog()
    from ..db import SQLAuditLog

    return SQLAuditLog(database_url)
