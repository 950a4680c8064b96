from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..contracts import AuditEntry
from ..security.audit import AuditLog
from .models import AuditLogRecord


class SQLAuditLog(AuditLog):
    """Audit sink backed by an async SQLAlchemy engine."""

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine) as session:
            yield session

    async def append(self, entry: AuditEntry) -> None:
        async with self.session() as session:
            session.add(AuditLogRecord.from_entry(entry))
            await session.commit()

    async def list_entries(
        self,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[AuditEntry]:
        stmt = select(AuditLogRecord)
        if document_id is not None:
            stmt = stmt.where(AuditLogRecord.document_id == document_id)
        if user_id is not None:
            stmt = stmt.where(AuditLogRecord.user_id == user_id)
        stmt = stmt.order_by(AuditLogRecord.created_at.desc()).limit(limit)
        async with self.session() as session:
            result = await session.execute(stmt)
            return [row.to_entry() for row in result.scalars().all()]

    async def dispose(self) -> None:
        await self.engine.dispose()
