"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Any

import asyncpg

from ..contracts import OverallStatus, Workflow, utcnow
from ..errors import InvalidState, VersionConflict
from .repository import WorkflowRepository, is_pending_for
from .sqlite import dump_stages, load_stages

_COLUMNS = (
    "id, document_id, stages, current_stage_index, overall_status, version, "
    "created_at, updated_at"
)


def _affected(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 1"
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflows using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_workflows (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL UNIQUE,
                stages JSONB NOT NULL,
                current_stage_index INTEGER NOT NULL,
                overall_status TEXT NOT NULL,
                version INTEGER NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_approval_workflows_status
            ON approval_workflows (overall_status)
            """
        )

    @staticmethod
    def _to_workflow(row: Any) -> Workflow:
        return Workflow(
            id=row["id"],
            document_id=row["document_id"],
            stages=load_stages(row["stages"]),
            current_stage_index=row["current_stage_index"],
            overall_status=OverallStatus(row["overall_status"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO approval_workflows ({_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8)",
                workflow.id,
                workflow.document_id,
                dump_stages(workflow.stages),
                workflow.current_stage_index,
                workflow.overall_status.value,
                workflow.version,
                workflow.created_at,
                workflow.updated_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise InvalidState(
                f"Document {workflow.document_id} already has an approval workflow"
            ) from exc
        finally:
            await conn.close()
        return workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM approval_workflows WHERE id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        return self._to_workflow(row) if row else None

    async def get_by_document_id(self, document_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM approval_workflows WHERE document_id = $1",
                document_id,
            )
        finally:
            await conn.close()
        return self._to_workflow(row) if row else None

    async def update_workflow(self, workflow: Workflow, expected_version: int) -> Workflow:
        updated_at = utcnow()
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE approval_workflows
                SET stages = $1, current_stage_index = $2, overall_status = $3,
                    version = $4, updated_at = $5
                WHERE id = $6 AND version = $7
                """,
                dump_stages(workflow.stages),
                workflow.current_stage_index,
                workflow.overall_status.value,
                expected_version + 1,
                updated_at,
                workflow.id,
                expected_version,
            )
        finally:
            await conn.close()
        if _affected(status) != 1:
            raise VersionConflict(workflow.id, expected_version)
        return workflow.model_copy(
            update={"version": expected_version + 1, "updated_at": updated_at},
            deep=True,
        )

    async def delete_by_document_id(self, document_id: str) -> bool:
        conn = await self._connect()
        try:
            status = await conn.execute(
                "DELETE FROM approval_workflows WHERE document_id = $1",
                document_id,
            )
        finally:
            await conn.close()
        return _affected(status) > 0

    async def list_pending_for_user(self, user_id: str) -> list[Workflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM approval_workflows WHERE overall_status = $1",
                OverallStatus.IN_PROGRESS.value,
            )
        finally:
            await conn.close()
        workflows = [self._to_workflow(r) for r in rows]
        return [wf for wf in workflows if is_pending_for(wf, user_id)]

    async def list_workflows(self) -> list[Workflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM approval_workflows ORDER BY created_at"
            )
        finally:
            await conn.close()
        return [self._to_workflow(r) for r in rows]
