"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..contracts import OverallStatus, Stage, Workflow, utcnow
from ..errors import InvalidState, VersionConflict
from .repository import WorkflowRepository, is_pending_for

_COLUMNS = (
    "id, document_id, stages, current_stage_index, overall_status, version, "
    "created_at, updated_at"
)


def dump_stages(stages: list[Stage]) -> str:
    return json.dumps([stage.model_dump(mode="json") for stage in stages])


def load_stages(raw: Any) -> list[Stage]:
    data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    return [Stage.model_validate(item) for item in data or []]


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflows using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_workflows (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL UNIQUE,
                stages TEXT NOT NULL,
                current_stage_index INTEGER NOT NULL,
                overall_status TEXT NOT NULL,
                version INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_approval_workflows_status
            ON approval_workflows (overall_status)
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _to_workflow(row: sqlite3.Row) -> Workflow:
        return Workflow(
            id=row["id"],
            document_id=row["document_id"],
            stages=load_stages(row["stages"]),
            current_stage_index=row["current_stage_index"],
            overall_status=OverallStatus(row["overall_status"]),
            version=row["version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        try:
            await asyncio.to_thread(
                self._execute,
                f"INSERT INTO approval_workflows ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                workflow.id,
                workflow.document_id,
                dump_stages(workflow.stages),
                workflow.current_stage_index,
                workflow.overall_status.value,
                workflow.version,
                workflow.created_at.isoformat(),
                workflow.updated_at.isoformat(),
            )
        except sqlite3.IntegrityError as exc:
            raise InvalidState(
                f"Document {workflow.document_id} already has an approval workflow"
            ) from exc
        return workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM approval_workflows WHERE id = ?",
            workflow_id,
        )
        return self._to_workflow(row) if row else None

    async def get_by_document_id(self, document_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM approval_workflows WHERE document_id = ?",
            document_id,
        )
        return self._to_workflow(row) if row else None

    async def update_workflow(self, workflow: Workflow, expected_version: int) -> Workflow:
        updated_at = utcnow()
        count = await asyncio.to_thread(
            self._execute,
            """
            UPDATE approval_workflows
            SET stages = ?, current_stage_index = ?, overall_status = ?,
                version = ?, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            dump_stages(workflow.stages),
            workflow.current_stage_index,
            workflow.overall_status.value,
            expected_version + 1,
            updated_at.isoformat(),
            workflow.id,
            expected_version,
        )
        if count != 1:
            raise VersionConflict(workflow.id, expected_version)
        return workflow.model_copy(
            update={"version": expected_version + 1, "updated_at": updated_at},
            deep=True,
        )

    async def delete_by_document_id(self, document_id: str) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            "DELETE FROM approval_workflows WHERE document_id = ?",
            document_id,
        )
        return count > 0

    async def list_pending_for_user(self, user_id: str) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM approval_workflows WHERE overall_status = ?",
            OverallStatus.IN_PROGRESS.value,
        )
        workflows = [self._to_workflow(row) for row in rows]
        return [wf for wf in workflows if is_pending_for(wf, user_id)]

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM approval_workflows ORDER BY created_at",
        )
        return [self._to_workflow(row) for row in rows]
