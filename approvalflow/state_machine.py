"""Pure stage transition logic for approval workflows.

Nothing in this module performs I/O. Each transition takes a workflow and
returns a :class:`TransitionOutcome` describing the new stage list, the
stage pointer, the overall status and what the owning document should be
synced to. The input workflow is never mutated.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .constants import (
    DEFAULT_APPROVE_NOTE,
    DOC_STATUS_APPROVED,
    DOC_STATUS_CHANGES_REQUESTED,
    DOC_STATUS_IN_REVIEW,
    DOC_STATUS_REJECTED,
)
from .contracts import OverallStatus, Stage, StageAction, StageStatus, Workflow, utcnow
from .errors import InvalidState, MissingNote


class WorkflowAction(str, Enum):
    """Reviewer decisions accepted by :func:`transition`."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"


class TransitionOutcome(BaseModel):
    """Result of a stage transition."""

    action: StageAction
    stages: List[Stage]
    current_stage_index: int
    overall_status: OverallStatus
    next_approver: Optional[str] = None
    document_status: str
    # request-changes leaves the document's current approver untouched
    sync_approver: bool = True
    final: bool = False

    def apply(self, workflow: Workflow) -> Workflow:
        """Return a copy of ``workflow`` carrying this outcome."""
        return workflow.model_copy(
            update={
                "stages": self.stages,
                "current_stage_index": self.current_stage_index,
                "overall_status": self.overall_status,
            },
            deep=True,
        )


def require_note(note: Optional[str], action: str) -> str:
    """Return the stripped note or raise :class:`MissingNote`."""
    if note is None or not note.strip():
        raise MissingNote(action)
    return note.strip()


def ensure_in_progress(workflow: Workflow) -> None:
    if not workflow.is_in_progress():
        raise InvalidState(
            f"Workflow {workflow.id} is '{workflow.overall_status.value}', "
            f"expected '{OverallStatus.IN_PROGRESS.value}'"
        )


def _open_stage_index(workflow: Workflow) -> Optional[int]:
    stage = workflow.current_stage
    if stage is None or not stage.is_open():
        return None
    return workflow.current_stage_index


def _first_pending(
    stages: List[Stage], start: int = 0, exclude: Optional[str] = None
) -> Optional[int]:
    for idx in range(start, len(stages)):
        stage = stages[idx]
        if stage.status != StageStatus.PENDING:
            continue
        if exclude is not None and stage.assignee == exclude:
            continue
        return idx
    return None


def approve(
    workflow: Workflow, note: Optional[str] = None, now: Optional[datetime] = None
) -> TransitionOutcome:
    """Complete the current stage and activate the next pending one.

    History stages appended after the review stages (revision uploads) are
    skipped; when no pending stage remains the workflow is approved.
    """
    ensure_in_progress(workflow)
    now = now or utcnow()
    idx = _open_stage_index(workflow)
    if idx is None:
        raise InvalidState(f"Workflow {workflow.id} has no active stage to approve")

    stages = [stage.model_copy() for stage in workflow.stages]
    stages[idx] = stages[idx].model_copy(
        update={
            "status": StageStatus.COMPLETED,
            "action": StageAction.APPROVED,
            "note": (note or "").strip() or DEFAULT_APPROVE_NOTE,
            "action_date": now,
        }
    )

    next_idx = _first_pending(stages, start=idx + 1)
    if next_idx is None:
        return TransitionOutcome(
            action=StageAction.APPROVED,
            stages=stages,
            current_stage_index=idx,
            overall_status=OverallStatus.APPROVED,
            next_approver=None,
            document_status=DOC_STATUS_APPROVED,
            final=True,
        )

    stages[next_idx] = stages[next_idx].model_copy(update={"status": StageStatus.CURRENT})
    return TransitionOutcome(
        action=StageAction.APPROVED,
        stages=stages,
        current_stage_index=next_idx,
        overall_status=OverallStatus.IN_PROGRESS,
        next_approver=stages[next_idx].assignee,
        document_status=DOC_STATUS_IN_REVIEW,
    )


def reject(
    workflow: Workflow, note: Optional[str], now: Optional[datetime] = None
) -> TransitionOutcome:
    """Reject the current stage, halting the workflow."""
    note = require_note(note, "reject")
    ensure_in_progress(workflow)
    now = now or utcnow()
    stages = [stage.model_copy() for stage in workflow.stages]
    idx = _open_stage_index(workflow)
    if idx is not None:
        stages[idx] = stages[idx].model_copy(
            update={
                "status": StageStatus.REJECTED,
                "action": StageAction.REJECTED,
                "note": note,
                "action_date": now,
            }
        )
    return TransitionOutcome(
        action=StageAction.REJECTED,
        stages=stages,
        current_stage_index=workflow.current_stage_index,
        overall_status=OverallStatus.REJECTED,
        next_approver=None,
        document_status=DOC_STATUS_REJECTED,
        final=True,
    )


def request_changes(
    workflow: Workflow, note: Optional[str], now: Optional[datetime] = None
) -> TransitionOutcome:
    """Annotate the current stage; its status stays ``current``."""
    note = require_note(note, "request changes")
    ensure_in_progress(workflow)
    now = now or utcnow()
    stages = [stage.model_copy() for stage in workflow.stages]
    idx = _open_stage_index(workflow)
    if idx is not None:
        stages[idx] = stages[idx].model_copy(
            update={
                "action": StageAction.CHANGES_REQUESTED,
                "note": note,
                "action_date": now,
            }
        )
    return TransitionOutcome(
        action=StageAction.CHANGES_REQUESTED,
        stages=stages,
        current_stage_index=workflow.current_stage_index,
        overall_status=OverallStatus.CHANGES_REQUESTED,
        next_approver=workflow.current_approver,
        document_status=DOC_STATUS_CHANGES_REQUESTED,
        sync_approver=False,
    )


def apply_revision(
    workflow: Workflow,
    uploader_id: str,
    version: int | str,
    note: Optional[str] = None,
    department: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    """Reset halted review state after the owner uploads a new version.

    Rejected stages and the stage holding a changes-requested annotation (or
    an in-flight review) go back to ``pending``. A completed history stage
    records the upload, then the first pending stage not assigned to the
    uploader becomes current. The submission stage is never reset.
    """
    now = now or utcnow()
    stages: List[Stage] = []
    for idx, stage in enumerate(workflow.stages):
        if idx > 0 and stage.status in (StageStatus.REJECTED, StageStatus.CURRENT):
            stage = stage.model_copy(
                update={
                    "status": StageStatus.PENDING,
                    "action": None,
                    "note": None,
                    "action_date": None,
                }
            )
        stages.append(stage.model_copy())

    stages.append(
        Stage(
            name=f"Revision v{version} Uploaded",
            assignee=uploader_id,
            department=department or "Uploader",
            status=StageStatus.COMPLETED,
            action=StageAction.REVISION_UPLOADED,
            note=(note or "").strip() or f"Uploaded version {version}",
            action_date=now,
            order=workflow.next_order(),
        )
    )

    promote = _first_pending(stages, start=1, exclude=uploader_id)
    if promote is None:
        promote = _first_pending(stages, start=1)

    if promote is None:
        # nothing left to review, e.g. a revision of an approved document
        status = workflow.overall_status
        return TransitionOutcome(
            action=StageAction.REVISION_UPLOADED,
            stages=stages,
            current_stage_index=workflow.current_stage_index,
            overall_status=status,
            next_approver=None,
            document_status=(
                DOC_STATUS_APPROVED
                if status == OverallStatus.APPROVED
                else DOC_STATUS_IN_REVIEW
            ),
        )

    stages[promote] = stages[promote].model_copy(update={"status": StageStatus.CURRENT})
    return TransitionOutcome(
        action=StageAction.REVISION_UPLOADED,
        stages=stages,
        current_stage_index=promote,
        overall_status=OverallStatus.IN_PROGRESS,
        next_approver=stages[promote].assignee,
        document_status=DOC_STATUS_IN_REVIEW,
    )


def transition(
    workflow: Workflow,
    action: WorkflowAction | str,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    """Dispatch a reviewer decision to the matching transition."""
    action = WorkflowAction(action)
    if action == WorkflowAction.APPROVE:
        return approve(workflow, note, now=now)
    if action == WorkflowAction.REJECT:
        return reject(workflow, note, now=now)
    return request_changes(workflow, note, now=now)
