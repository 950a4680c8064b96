"""Interfaces to the user directory and the document store.

Both are owned by the surrounding application. The in-memory
implementations here back the test suite and local experiments.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Protocol

from .contracts import DocumentRecord, UserRecord


class UserDirectory(Protocol):
    async def find_by_id(self, user_id: str) -> UserRecord | None:
        """Return the user or ``None``."""

    async def find_by_email(self, email: str) -> UserRecord | None:
        """Return the user registered with ``email`` or ``None``."""


class DocumentStore(Protocol):
    async def find_by_id(self, document_id: str) -> DocumentRecord | None:
        """Return the document or ``None``."""

    async def update(
        self, document_id: str, changes: Dict[str, Any]
    ) -> DocumentRecord | None:
        """Apply ``changes`` and return the updated record, ``None`` if absent."""


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Optional[Iterable[UserRecord]] = None) -> None:
        self._users: Dict[str, UserRecord] = {}
        for user in users or ():
            self.add(user)

    def add(self, user: UserRecord) -> UserRecord:
        self._users[user.id] = user
        return user

    async def find_by_id(self, user_id: str) -> UserRecord | None:
        return self._users.get(user_id)

    async def find_by_email(self, email: str) -> UserRecord | None:
        needle = email.lower()
        for user in self._users.values():
            if user.email and user.email.lower() == needle:
                return user
        return None


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, documents: Optional[Iterable[DocumentRecord]] = None) -> None:
        self._documents: Dict[str, DocumentRecord] = {}
        for document in documents or ():
            self.add(document)

    def add(self, document: DocumentRecord) -> DocumentRecord:
        self._documents[document.id] = document
        return document

    def remove(self, document_id: str) -> None:
        self._documents.pop(document_id, None)

    async def find_by_id(self, document_id: str) -> DocumentRecord | None:
        document = self._documents.get(document_id)
        return document.model_copy() if document else None

    async def update(
        self, document_id: str, changes: Dict[str, Any]
    ) -> DocumentRecord | None:
        document = self._documents.get(document_id)
        if document is None:
            return None
        updated = document.model_copy(update=changes)
        self._documents[document_id] = updated
        return updated.model_copy()
