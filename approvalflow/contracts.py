"""Core data contracts for approval workflows."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageStatus(str, Enum):
    """Per-stage progress marker."""

    PENDING = "pending"
    CURRENT = "current"
    COMPLETED = "completed"
    REJECTED = "rejected"


class StageAction(str, Enum):
    """Outcome label recorded once a stage has been acted on."""

    APPROVED = "Approved"
    REJECTED = "Rejected"
    CHANGES_REQUESTED = "Changes Requested"
    REVISION_UPLOADED = "Revision Uploaded"


class OverallStatus(str, Enum):
    """Workflow-level status, distinct from the per-stage status."""

    IN_PROGRESS = "In Progress"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CHANGES_REQUESTED = "Changes Requested"


HISTORY_STATUSES = (StageStatus.COMPLETED, StageStatus.REJECTED)


class Stage(BaseModel):
    """One ordered review step, owned by a single assignee.

    ``assignee`` is always a plain user id. Display data for the assignee is
    only attached on the read path, see :class:`StageView`.
    """

    name: str
    assignee: str
    department: Optional[str] = None
    status: StageStatus = StageStatus.PENDING
    action: Optional[StageAction] = None
    note: Optional[str] = None
    action_date: Optional[datetime] = None
    order: int = Field(ge=1)

    def is_history(self) -> bool:
        return self.status in HISTORY_STATUSES

    def is_open(self) -> bool:
        """Return ``True`` while the stage still awaits a decision."""
        return self.status in (StageStatus.CURRENT, StageStatus.PENDING)


class Workflow(BaseModel):
    """Approval state container for a single document."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    document_id: str
    stages: List[Stage] = Field(default_factory=list)
    current_stage_index: int = 0
    overall_status: OverallStatus = OverallStatus.IN_PROGRESS
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def current_stage(self) -> Optional[Stage]:
        if 0 <= self.current_stage_index < len(self.stages):
            return self.stages[self.current_stage_index]
        return None

    @property
    def current_approver(self) -> Optional[str]:
        stage = self.current_stage
        if stage is None or stage.status != StageStatus.CURRENT:
            return None
        return stage.assignee

    def is_in_progress(self) -> bool:
        return self.overall_status == OverallStatus.IN_PROGRESS

    def history(self) -> List[Stage]:
        return [stage for stage in self.stages if stage.is_history()]

    def assignee_ids(self) -> List[str]:
        """Distinct stage assignees in stage order."""
        seen: List[str] = []
        for stage in self.stages:
            if stage.assignee not in seen:
                seen.append(stage.assignee)
        return seen

    def next_order(self) -> int:
        return max((stage.order for stage in self.stages), default=0) + 1


# ----------------------------------------------------------------------
# Records exchanged with external collaborators


class UserRecord(BaseModel):
    """User as returned by the user directory."""

    id: str
    name: str = ""
    email: Optional[str] = None
    avatar: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None


class DocumentRecord(BaseModel):
    """Subset of the document record the workflow engine reads and writes."""

    id: str
    title: str = ""
    status: Optional[str] = None
    category: Optional[str] = None
    uploaded_by: Optional[str] = None
    current_approver: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)


class AuditEntry(BaseModel):
    """Append-only record of an action taken on a document."""

    user: Optional[str] = None
    action: str
    action_type: str = "info"
    document: Optional[str] = None
    document_title: Optional[str] = None
    details: str = ""
    ip_address: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Notification(BaseModel):
    """In-app notification addressed to one user."""

    title: str
    message: str
    type: str = "info"
    link: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "Notification":
        return cls.model_validate_json(data)


# ----------------------------------------------------------------------
# Read path views


class UserSummary(BaseModel):
    id: str
    name: str = ""
    email: Optional[str] = None
    avatar: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None

    @classmethod
    def from_user(cls, user: UserRecord) -> "UserSummary":
        return cls(**user.model_dump())


class DocumentSummary(BaseModel):
    id: str
    title: str = ""
    status: Optional[str] = None
    category: Optional[str] = None
    uploaded_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, document: DocumentRecord) -> "DocumentSummary":
        return cls(
            id=document.id,
            title=document.title,
            status=document.status,
            category=document.category,
            uploaded_by=document.uploaded_by,
            created_at=document.created_at,
        )


class StageView(BaseModel):
    """Stage with its assignee resolved for display."""

    name: str
    assignee_id: str
    assignee: Optional[UserSummary] = None
    department: Optional[str] = None
    status: StageStatus
    action: Optional[StageAction] = None
    note: Optional[str] = None
    action_date: Optional[datetime] = None
    order: int


class WorkflowView(BaseModel):
    """Workflow assembled for a response, never persisted."""

    id: str
    document_id: str
    document: Optional[DocumentSummary] = None
    stages: List[StageView] = Field(default_factory=list)
    current_stage_index: int
    overall_status: OverallStatus
    version: int
    created_at: datetime
    updated_at: datetime
