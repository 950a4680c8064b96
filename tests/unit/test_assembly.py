import pytest

from approvalflow.assembly import (
    ReviewerSlot,
    WorkflowAssembler,
    build_initial_workflow,
    rebuild_for_reviewers,
)
from approvalflow.contracts import OverallStatus, StageAction, StageStatus
from approvalflow.directory import InMemoryUserDirectory
from approvalflow.errors import MissingReviewers
from approvalflow.state_machine import approve, reject
from tests.fixtures.builders import FIXED_NOW, USERS, actor, three_stage_workflow


def test_initial_workflow_with_reviewers():
    wf = build_initial_workflow(
        "doc-9",
        actor("u1"),
        [ReviewerSlot(user_id="u2", name="Rae Reviewer", department="Finance"), ReviewerSlot(user_id="u3")],
        now=FIXED_NOW,
    )

    assert wf.current_stage_index == 1
    assert wf.overall_status == OverallStatus.IN_PROGRESS
    assert [s.order for s in wf.stages] == [1, 2, 3]
    submission = wf.stages[0]
    assert submission.name == "Draft Submission"
    assert submission.status == StageStatus.COMPLETED
    assert submission.action == StageAction.APPROVED
    assert submission.note == "Uma Owner submitted version 1.0"
    assert submission.department == "Legal"
    assert wf.stages[1].name == "Rae Reviewer Review"
    assert wf.stages[1].department == "Finance"
    assert wf.stages[1].status == StageStatus.CURRENT
    assert wf.stages[2].name == "Review Stage 2"
    assert wf.stages[2].department == "Review"
    assert wf.stages[2].status == StageStatus.PENDING
    assert wf.current_approver == "u2"


def test_initial_workflow_without_reviewers_uses_default_stage():
    wf = build_initial_workflow("doc-9", actor("u1"), fallback_approver="admin")

    assert len(wf.stages) == 2
    assert wf.current_stage_index == 1
    assert wf.stages[1].name == "Manager Review"
    assert wf.stages[1].department == "Management"
    assert wf.current_approver == "admin"


def test_initial_workflow_falls_back_to_submitter():
    wf = build_initial_workflow("doc-9", actor("u1"), stage_name="Legal Check")
    assert wf.stages[1].name == "Legal Check"
    assert wf.current_approver == "u1"


def test_rebuild_keeps_history_and_continues_order():
    wf = three_stage_workflow()
    wf = approve(wf).apply(wf)

    rebuilt = rebuild_for_reviewers(
        wf, [ReviewerSlot(user_id="admin", name="Ada Admin"), ReviewerSlot(user_id="u3")]
    )

    assert [s.assignee for s in rebuilt.stages] == ["u1", "u2", "admin", "u3"]
    assert [s.order for s in rebuilt.stages] == [1, 2, 3, 4]
    assert rebuilt.current_stage_index == 2
    assert rebuilt.stages[2].status == StageStatus.CURRENT
    assert rebuilt.overall_status == OverallStatus.IN_PROGRESS
    assert rebuilt.id == wf.id


def test_rebuild_after_rejection_stays_rejected():
    wf = three_stage_workflow()
    wf = reject(wf, "No").apply(wf)

    rebuilt = rebuild_for_reviewers(wf, [ReviewerSlot(user_id="u3")])

    assert rebuilt.overall_status == OverallStatus.REJECTED
    assert rebuilt.stages[1].status == StageStatus.REJECTED
    assert rebuilt.stages[-1].assignee == "u3"
    assert rebuilt.stages[-1].status == StageStatus.PENDING
    assert rebuilt.current_approver is None


def test_rebuild_requires_reviewers():
    with pytest.raises(MissingReviewers):
        rebuild_for_reviewers(three_stage_workflow(), [])


@pytest.mark.asyncio
async def test_assembler_resolves_names_and_skips_blank_ids():
    assembler = WorkflowAssembler(InMemoryUserDirectory(USERS))

    slots = await assembler.resolve_reviewers(["u2", " ", "ghost"])

    assert [s.user_id for s in slots] == ["u2", "ghost"]
    assert slots[0].name == "Rae Reviewer"
    assert slots[0].department == "Finance"
    assert slots[1].name is None


@pytest.mark.asyncio
async def test_assembler_initial():
    assembler = WorkflowAssembler(InMemoryUserDirectory(USERS))
    wf = await assembler.initial("doc-2", actor("u1"), ["u2", "u3"])
    assert [s.assignee for s in wf.stages] == ["u1", "u2", "u3"]
    assert wf.stages[2].name == "Sam Second Review"
