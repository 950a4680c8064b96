"""Authorization rules for workflow transitions."""

from __future__ import annotations

from typing import Optional

from ..config import RoleConfig
from ..constants import EDITOR_ROLE
from ..contracts import DocumentRecord, Workflow
from .context import ActorContext


class ApprovalPolicy:
    """Decides whether an actor may act on a workflow or its document."""

    def __init__(self, roles: Optional[RoleConfig] = None) -> None:
        self.roles = roles or RoleConfig()

    def is_admin(self, actor: ActorContext) -> bool:
        return actor.role == self.roles.admin_role

    def is_reviewer(self, actor: ActorContext) -> bool:
        return actor.role == self.roles.reviewer_role

    def can_act(self, workflow: Workflow, actor: ActorContext) -> bool:
        """Return ``True`` if ``actor`` may decide the current stage.

        Any of the following grants access: the actor is assigned to the stage
        under the pointer, the actor is assigned to any stage still open
        (covers records where the pointer and the stage flags disagree), or
        the actor holds the admin or the blanket reviewer role.
        """
        current = workflow.current_stage
        if current is not None and current.assignee == actor.user_id:
            return True
        if any(
            stage.is_open() and stage.assignee == actor.user_id
            for stage in workflow.stages
        ):
            return True
        return self.is_admin(actor) or self.is_reviewer(actor)

    def can_revise(self, document: DocumentRecord, actor: ActorContext) -> bool:
        """Only the document owner or an admin may upload revisions."""
        return document.uploaded_by == actor.user_id or self.is_admin(actor)

    def can_edit(self, document: DocumentRecord, actor: ActorContext) -> bool:
        """Owner, admin and editors may change the reviewer list or delete."""
        return self.can_revise(document, actor) or actor.role == EDITOR_ROLE
