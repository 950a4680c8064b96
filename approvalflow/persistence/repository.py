"""Repository abstraction for workflow persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import StageStatus, Workflow


class WorkflowRepository(Protocol):
    """Protocol for workflow persistence backends.

    Every backend stores one workflow per document. ``update_workflow`` is a
    conditional write: it only succeeds when the stored version still equals
    ``expected_version`` and raises :class:`~approvalflow.errors.VersionConflict`
    otherwise.
    """

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        """Persist a new workflow; a second workflow for a document is refused."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow by id."""

    async def get_by_document_id(self, document_id: str) -> Workflow | None:
        """Retrieve the workflow owned by ``document_id``."""

    async def update_workflow(self, workflow: Workflow, expected_version: int) -> Workflow:
        """Store stages, pointer and status, returning the stored copy."""

    async def delete_by_document_id(self, document_id: str) -> bool:
        """Delete the workflow of ``document_id``; return whether one existed."""

    async def list_pending_for_user(self, user_id: str) -> list[Workflow]:
        """Return in-progress workflows whose current stage is assigned to ``user_id``."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all persisted workflows."""


def is_pending_for(workflow: Workflow, user_id: str) -> bool:
    """Return ``True`` when ``user_id`` owns the active stage of ``workflow``."""
    if not workflow.is_in_progress():
        return False
    stage = workflow.current_stage
    return (
        stage is not None
        and stage.assignee == user_id
        and stage.status == StageStatus.CURRENT
    )
