"""Builds workflow stage lists from upload and reviewer-edit events."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel

from .constants import (
    DEFAULT_STAGE_DEPARTMENT,
    DEFAULT_STAGE_NAME,
    INITIAL_VERSION_LABEL,
    SUBMISSION_STAGE_NAME,
)
from .contracts import (
    OverallStatus,
    Stage,
    StageAction,
    StageStatus,
    Workflow,
    utcnow,
)
from .directory import UserDirectory
from .errors import MissingReviewers
from .security.context import ActorContext


class ReviewerSlot(BaseModel):
    """A reviewer id with the display data used to label its stage."""

    user_id: str
    name: Optional[str] = None
    department: Optional[str] = None

    def stage_name(self, position: int) -> str:
        return f"{self.name} Review" if self.name else f"Review Stage {position}"


def submission_stage(submitter: ActorContext, now: Optional[datetime] = None) -> Stage:
    """Provenance stage for the upload itself; created already completed."""
    prefix = f"{submitter.name} " if submitter.name else ""
    return Stage(
        name=SUBMISSION_STAGE_NAME,
        assignee=submitter.user_id,
        department=submitter.department or "Submitter",
        status=StageStatus.COMPLETED,
        action=StageAction.APPROVED,
        note=f"{prefix}submitted version {INITIAL_VERSION_LABEL}",
        action_date=now or utcnow(),
        order=1,
    )


def review_stages(
    reviewers: Sequence[ReviewerSlot], first_order: int
) -> List[Stage]:
    stages = []
    for i, reviewer in enumerate(reviewers):
        status = StageStatus.CURRENT if i == 0 else StageStatus.PENDING
        stages.append(
            Stage(
                name=reviewer.stage_name(i + 1),
                assignee=reviewer.user_id,
                department=reviewer.department or "Review",
                status=status,
                order=first_order + i,
            )
        )
    return stages


def build_initial_workflow(
    document_id: str,
    submitter: ActorContext,
    reviewers: Sequence[ReviewerSlot] = (),
    fallback_approver: Optional[str] = None,
    stage_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Workflow:
    """Return the workflow created when a document is uploaded.

    Stage 0 records the submission. Reviewers follow in the given order with
    the first one current. Without reviewers a single default stage goes to
    ``fallback_approver``, or back to the submitter.
    """
    now = now or utcnow()
    stages = [submission_stage(submitter, now)]
    if reviewers:
        stages.extend(review_stages(reviewers, first_order=2))
    else:
        stages.append(
            Stage(
                name=stage_name or DEFAULT_STAGE_NAME,
                assignee=fallback_approver or submitter.user_id,
                department=DEFAULT_STAGE_DEPARTMENT,
                status=StageStatus.CURRENT,
                order=2,
            )
        )
    return Workflow(
        document_id=document_id,
        stages=stages,
        current_stage_index=1,
        overall_status=OverallStatus.IN_PROGRESS,
        created_at=now,
        updated_at=now,
    )


def rebuild_for_reviewers(
    workflow: Workflow, reviewers: Sequence[ReviewerSlot]
) -> Workflow:
    """Replace the open stages of ``workflow`` with a new reviewer list.

    Completed and rejected stages are kept untouched as history. The first
    new stage becomes current, unless a rejection in the history keeps the
    workflow rejected. Then every new stage waits as pending until a
    revision is uploaded.
    """
    if not reviewers:
        raise MissingReviewers()
    history = [stage.model_copy() for stage in workflow.stages if stage.is_history()]
    first_order = max((stage.order for stage in history), default=0) + 1
    fresh = review_stages(reviewers, first_order=first_order)
    rejected = any(stage.status == StageStatus.REJECTED for stage in history)
    if rejected:
        for stage in fresh:
            stage.status = StageStatus.PENDING
    return workflow.model_copy(
        update={
            "stages": history + fresh,
            "current_stage_index": len(history),
            "overall_status": (
                OverallStatus.REJECTED if rejected else OverallStatus.IN_PROGRESS
            ),
        },
        deep=True,
    )


class WorkflowAssembler:
    """Resolves reviewer ids through the user directory and builds workflows."""

    def __init__(self, users: UserDirectory) -> None:
        self._users = users

    async def resolve_reviewers(self, reviewer_ids: Sequence[str]) -> List[ReviewerSlot]:
        slots: List[ReviewerSlot] = []
        for reviewer_id in reviewer_ids:
            reviewer_id = (reviewer_id or "").strip()
            if not reviewer_id:
                continue
            user = await self._users.find_by_id(reviewer_id)
            slots.append(
                ReviewerSlot(
                    user_id=reviewer_id,
                    name=user.name if user and user.name else None,
                    department=user.department if user else None,
                )
            )
        return slots

    async def initial(
        self,
        document_id: str,
        submitter: ActorContext,
        reviewer_ids: Sequence[str] = (),
        fallback_approver: Optional[str] = None,
        stage_name: Optional[str] = None,
    ) -> Workflow:
        reviewers = await self.resolve_reviewers(reviewer_ids)
        return build_initial_workflow(
            document_id,
            submitter,
            reviewers,
            fallback_approver=fallback_approver,
            stage_name=stage_name,
        )
