"""Exceptions raised by the approval workflow engine."""

from __future__ import annotations

from typing import Optional


class ApprovalError(Exception):
    """Base class for workflow errors surfaced to callers."""


class WorkflowNotFound(ApprovalError):
    """The workflow, or the document it belongs to, does not exist."""

    def __init__(self, identifier: str, kind: str = "workflow") -> None:
        super().__init__(f"Approval {kind} not found: {identifier}")
        self.identifier = identifier
        self.kind = kind


class Forbidden(ApprovalError):
    """The acting user may not perform the requested action."""

    def __init__(self, user_id: str, workflow_id: Optional[str] = None) -> None:
        target = f" on workflow {workflow_id}" if workflow_id else ""
        super().__init__(f"User {user_id} is not authorized to act{target}")
        self.user_id = user_id
        self.workflow_id = workflow_id


class InvalidState(ApprovalError):
    """The workflow is not in a state that accepts the action."""


class WorkflowValidationError(ApprovalError, ValueError):
    """Request-level validation failure."""


class MissingNote(WorkflowValidationError):
    def __init__(self, action: str) -> None:
        super().__init__(f"A note is required to {action}")
        self.action = action


class MissingReviewers(WorkflowValidationError):
    def __init__(self) -> None:
        super().__init__("At least one reviewer is required")


class VersionConflict(ApprovalError):
    """A conditional update found a newer workflow version than expected."""

    def __init__(self, workflow_id: str, expected_version: int) -> None:
        super().__init__(
            f"Workflow {workflow_id} changed concurrently (expected version {expected_version})"
        )
        self.workflow_id = workflow_id
        self.expected_version = expected_version
