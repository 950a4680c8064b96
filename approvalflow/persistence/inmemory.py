"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict

from ..contracts import Workflow, utcnow
from ..errors import InvalidState, VersionConflict
from .repository import WorkflowRepository, is_pending_for


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflows in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored copies are never handed out
    directly, so callers cannot mutate state behind the version check.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._by_document: Dict[str, str] = {}

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        if workflow.document_id in self._by_document:
            raise InvalidState(
                f"Document {workflow.document_id} already has an approval workflow"
            )
        stored = workflow.model_copy(deep=True)
        self._workflows[stored.id] = stored
        self._by_document[stored.document_id] = stored.id
        return stored.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def get_by_document_id(self, document_id: str) -> Workflow | None:
        workflow_id = self._by_document.get(document_id)
        if workflow_id is None:
            return None
        return await self.get_workflow(workflow_id)

    async def update_workflow(self, workflow: Workflow, expected_version: int) -> Workflow:
        stored = self._workflows.get(workflow.id)
        if stored is None or stored.version != expected_version:
            raise VersionConflict(workflow.id, expected_version)
        stored.stages = [stage.model_copy() for stage in workflow.stages]
        stored.current_stage_index = workflow.current_stage_index
        stored.overall_status = workflow.overall_status
        stored.version = expected_version + 1
        stored.updated_at = utcnow()
        return stored.model_copy(deep=True)

    async def delete_by_document_id(self, document_id: str) -> bool:
        workflow_id = self._by_document.pop(document_id, None)
        if workflow_id is None:
            return False
        self._workflows.pop(workflow_id, None)
        return True

    async def list_pending_for_user(self, user_id: str) -> list[Workflow]:
        return [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if is_pending_for(wf, user_id)
        ]

    async def list_workflows(self) -> list[Workflow]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]
