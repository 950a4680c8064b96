"""Tests for the pure stage transitions."""

import pytest

from approvalflow.contracts import OverallStatus, Stage, StageAction, StageStatus
from approvalflow.errors import InvalidState, MissingNote
from approvalflow.state_machine import (
    WorkflowAction,
    apply_revision,
    approve,
    reject,
    request_changes,
    transition,
)
from tests.fixtures.builders import FIXED_NOW, three_stage_workflow


def _statuses(stages):
    return [stage.status for stage in stages]


def test_approve_advances_to_next_pending_stage():
    wf = three_stage_workflow()

    outcome = approve(wf, note="Looks good", now=FIXED_NOW)

    assert _statuses(outcome.stages) == [
        StageStatus.COMPLETED,
        StageStatus.COMPLETED,
        StageStatus.CURRENT,
    ]
    assert outcome.current_stage_index == 2
    assert outcome.overall_status == OverallStatus.IN_PROGRESS
    assert outcome.next_approver == "u3"
    assert outcome.document_status == "In Review"
    assert not outcome.final
    assert outcome.stages[1].action == StageAction.APPROVED
    assert outcome.stages[1].note == "Looks good"
    assert outcome.stages[1].action_date == FIXED_NOW


def test_approve_does_not_mutate_input():
    wf = three_stage_workflow()
    approve(wf)
    assert wf.stages[1].status == StageStatus.CURRENT
    assert wf.current_stage_index == 1


def test_approve_without_note_uses_default():
    outcome = approve(three_stage_workflow(), note="   ")
    assert outcome.stages[1].note == "Approved"


def test_approving_last_stage_approves_workflow():
    wf = three_stage_workflow()
    wf = approve(wf).apply(wf)

    outcome = approve(wf, note="Final sign-off")

    assert outcome.overall_status == OverallStatus.APPROVED
    assert outcome.final
    assert outcome.next_approver is None
    assert outcome.document_status == "Approved"
    assert outcome.current_stage_index == 2
    assert all(stage.status == StageStatus.COMPLETED for stage in outcome.stages)


def test_approve_skips_history_stages():
    wf = three_stage_workflow()
    wf.stages[2] = wf.stages[2].model_copy(
        update={"status": StageStatus.COMPLETED, "action": StageAction.APPROVED}
    )
    wf.stages.append(Stage(name="Late Review", assignee="u4", order=4))

    outcome = approve(wf)

    assert outcome.current_stage_index == 3
    assert outcome.next_approver == "u4"


def test_reject_halts_workflow():
    wf = three_stage_workflow()

    outcome = reject(wf, "Missing signature", now=FIXED_NOW)

    assert outcome.stages[1].status == StageStatus.REJECTED
    assert outcome.stages[1].action == StageAction.REJECTED
    assert outcome.stages[1].note == "Missing signature"
    assert outcome.stages[2].status == StageStatus.PENDING
    assert outcome.overall_status == OverallStatus.REJECTED
    assert outcome.current_stage_index == 1
    assert outcome.next_approver is None
    assert outcome.document_status == "Rejected"


@pytest.mark.parametrize("note", [None, "", "   "])
def test_reject_requires_note(note):
    with pytest.raises(MissingNote):
        reject(three_stage_workflow(), note)


def test_request_changes_keeps_stage_current():
    wf = three_stage_workflow()

    outcome = request_changes(wf, "  Fix clause 4  ")

    stage = outcome.stages[1]
    assert stage.status == StageStatus.CURRENT
    assert stage.action == StageAction.CHANGES_REQUESTED
    assert stage.note == "Fix clause 4"
    assert outcome.overall_status == OverallStatus.CHANGES_REQUESTED
    assert outcome.document_status == "Changes Requested"
    assert outcome.sync_approver is False


def test_request_changes_requires_note():
    with pytest.raises(MissingNote):
        request_changes(three_stage_workflow(), None)


@pytest.mark.parametrize(
    "status", [OverallStatus.APPROVED, OverallStatus.REJECTED, OverallStatus.CHANGES_REQUESTED]
)
def test_decisions_on_halted_workflow_raise_invalid_state(status):
    wf = three_stage_workflow()
    wf.overall_status = status

    with pytest.raises(InvalidState):
        approve(wf)
    with pytest.raises(InvalidState):
        reject(wf, "no")
    with pytest.raises(InvalidState):
        request_changes(wf, "no")


def test_missing_note_is_checked_before_state():
    wf = three_stage_workflow()
    wf.overall_status = OverallStatus.APPROVED
    with pytest.raises(MissingNote):
        reject(wf, "")


def test_revision_after_rejection_restarts_review():
    wf = three_stage_workflow()
    wf = reject(wf, "Missing signature").apply(wf)

    outcome = apply_revision(wf, "u1", 2, now=FIXED_NOW)

    assert len(outcome.stages) == 4
    revision = outcome.stages[3]
    assert revision.name == "Revision v2 Uploaded"
    assert revision.status == StageStatus.COMPLETED
    assert revision.action == StageAction.REVISION_UPLOADED
    assert revision.order == 4
    assert revision.note == "Uploaded version 2"
    assert outcome.stages[1].status == StageStatus.CURRENT
    assert outcome.stages[1].action is None
    assert outcome.stages[1].note is None
    assert outcome.current_stage_index == 1
    assert outcome.overall_status == OverallStatus.IN_PROGRESS
    assert outcome.next_approver == "u2"


def test_revision_after_changes_requested_resets_annotation():
    wf = three_stage_workflow()
    wf = request_changes(wf, "Fix clause 4").apply(wf)

    outcome = apply_revision(wf, "u1", "3", note="Clause 4 fixed")

    assert outcome.stages[1].status == StageStatus.CURRENT
    assert outcome.stages[1].action is None
    assert outcome.stages[-1].note == "Clause 4 fixed"
    assert outcome.overall_status == OverallStatus.IN_PROGRESS


def test_revision_never_resets_submission_stage():
    wf = three_stage_workflow()
    wf.stages[0] = wf.stages[0].model_copy(update={"status": StageStatus.REJECTED})

    outcome = apply_revision(wf, "u1", 2)

    assert outcome.stages[0].status == StageStatus.REJECTED


def test_revision_skips_stages_owned_by_uploader():
    wf = three_stage_workflow()
    wf.stages[1] = wf.stages[1].model_copy(update={"assignee": "u1"})
    wf = reject(wf, "Redo").apply(wf)

    outcome = apply_revision(wf, "u1", 2)

    assert outcome.current_stage_index == 2
    assert outcome.next_approver == "u3"
    assert outcome.stages[1].status == StageStatus.PENDING


def test_revision_falls_back_to_uploader_stage_when_only_one_left():
    wf = three_stage_workflow()
    wf.stages = wf.stages[:2]
    wf.stages[1] = wf.stages[1].model_copy(update={"assignee": "u1"})
    wf = reject(wf, "Redo").apply(wf)

    outcome = apply_revision(wf, "u1", 2)

    assert outcome.current_stage_index == 1
    assert outcome.next_approver == "u1"


def test_revision_of_approved_workflow_keeps_status():
    wf = three_stage_workflow()
    wf = approve(wf).apply(wf)
    wf = approve(wf).apply(wf)

    outcome = apply_revision(wf, "u1", 2)

    assert outcome.overall_status == OverallStatus.APPROVED
    assert outcome.current_stage_index == wf.current_stage_index
    assert outcome.next_approver is None
    assert outcome.stages[-1].order == 4


def test_transition_dispatches_by_action_name():
    wf = three_stage_workflow()
    assert transition(wf, "approve").action == StageAction.APPROVED
    assert transition(wf, WorkflowAction.REJECT, "no").action == StageAction.REJECTED
    assert (
        transition(wf, "request_changes", "tweak").action
        == StageAction.CHANGES_REQUESTED
    )
    with pytest.raises(ValueError):
        transition(wf, "escalate")
