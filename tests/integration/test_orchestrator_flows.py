"""End-to-end approval flows through the orchestrator with in-memory collaborators."""

import asyncio

import pytest

from approvalflow.contracts import OverallStatus, StageStatus
from approvalflow.errors import (
    Forbidden,
    InvalidState,
    MissingNote,
    WorkflowNotFound,
)
from tests.fixtures.builders import Harness, actor


@pytest.mark.asyncio
async def test_full_approval_flow():
    h = Harness()
    wf = await h.seed()

    view = await h.orchestrator.approve(wf.id, actor("u2"), "Looks good")
    assert view.current_stage_index == 2
    assert [s.status for s in view.stages] == [
        StageStatus.COMPLETED,
        StageStatus.COMPLETED,
        StageStatus.CURRENT,
    ]
    assert view.stages[2].assignee.name == "Sam Second"
    assert view.document.title == "Vendor Contract"

    doc = await h.documents.find_by_id("doc-1")
    assert doc.status == "In Review"
    assert doc.current_approver == "u3"

    inbox = await h.notifier.inbox("u3")
    assert [n.title for n in inbox] == ["Approval Required"]
    assert inbox[0].link == "http://localhost:3000/#/documents/details/doc-1"
    subjects = sorted(e.subject for e in h.mailer.outbox)
    assert subjects == [
        "Action Required: Approval for Vendor Contract",
        "Step Approved: Vendor Contract",
    ]

    final = await h.orchestrator.approve(wf.id, actor("u3"))
    assert final.overall_status == OverallStatus.APPROVED
    assert final.version == 3
    doc = await h.documents.find_by_id("doc-1")
    assert doc.status == "Approved"
    assert doc.current_approver is None
    assert [n.title for n in await h.notifier.inbox("u1")] == ["Document Approved"]

    actions = [(e.user, e.action, e.action_type) for e in h.audit.entries]
    assert actions == [("u2", "Approved", "success"), ("u3", "Approved", "success")]
    assert h.audit.entries[0].details == "Looks good"
    assert h.audit.entries[1].details == "Review complete. Document approved."
    assert h.audit.entries[0].ip_address == "127.0.0.1"
    assert h.audit.entries[0].document_title == "Vendor Contract"


@pytest.mark.asyncio
async def test_reject_then_revision_restarts_review():
    h = Harness()
    wf = await h.seed()

    rejected = await h.orchestrator.reject(wf.id, actor("u2"), "Missing signature")
    assert rejected.overall_status == OverallStatus.REJECTED
    doc = await h.documents.find_by_id("doc-1")
    assert doc.status == "Rejected"
    assert doc.current_approver is None
    assert h.audit.entries[-1].action_type == "error"
    assert h.audit.entries[-1].details == "Missing signature"
    assert [n.title for n in await h.notifier.inbox("u1")] == ["Document Rejected"]

    with pytest.raises(InvalidState):
        await h.orchestrator.approve(wf.id, actor("u2"))

    revised = await h.orchestrator.record_revision("doc-1", actor("u1"), 2)
    assert revised.overall_status == OverallStatus.IN_PROGRESS
    assert revised.current_stage_index == 1
    assert len(revised.stages) == 4
    assert revised.stages[3].name == "Revision v2 Uploaded"
    assert revised.stages[3].order == 4
    doc = await h.documents.find_by_id("doc-1")
    assert doc.status == "In Review"
    assert doc.current_approver == "u2"
    assert h.audit.entries[-1].details == "Uploaded revision v2"

    # the revision stage is history and approval continues past it
    await h.orchestrator.approve(wf.id, actor("u2"))
    final = await h.orchestrator.approve(wf.id, actor("u3"))
    assert final.overall_status == OverallStatus.APPROVED


@pytest.mark.asyncio
async def test_request_changes_keeps_current_approver():
    h = Harness()
    wf = await h.seed()

    view = await h.orchestrator.request_changes(wf.id, actor("u2"), "Fix clause 4")

    assert view.overall_status == OverallStatus.CHANGES_REQUESTED
    assert view.stages[1].status == StageStatus.CURRENT
    doc = await h.documents.find_by_id("doc-1")
    assert doc.status == "Changes Requested"
    assert doc.current_approver == "u2"
    assert h.audit.entries[-1].action_type == "warning"
    assert [n.title for n in await h.notifier.inbox("u1")] == ["Changes Requested"]

    with pytest.raises(InvalidState):
        await h.orchestrator.request_changes(wf.id, actor("u2"), "Again")

    revised = await h.orchestrator.record_revision("doc-1", actor("u1"), 2, note="Fixed")
    assert revised.overall_status == OverallStatus.IN_PROGRESS
    assert revised.stages[1].action is None


@pytest.mark.asyncio
async def test_error_precedence():
    h = Harness()
    wf = await h.seed()

    with pytest.raises(MissingNote):
        await h.orchestrator.reject("missing", actor("outsider"), " ")
    with pytest.raises(WorkflowNotFound):
        await h.orchestrator.reject("missing", actor("outsider"), "No")

    await h.orchestrator.reject(wf.id, actor("u2"), "No")
    with pytest.raises(Forbidden):
        await h.orchestrator.approve(wf.id, actor("outsider"))
    with pytest.raises(InvalidState):
        await h.orchestrator.approve(wf.id, actor("u2"))


@pytest.mark.asyncio
async def test_forbidden_actor_changes_nothing():
    h = Harness()
    wf = await h.seed()

    with pytest.raises(Forbidden):
        await h.orchestrator.approve(wf.id, actor("outsider"))
    with pytest.raises(Forbidden):
        await h.orchestrator.approve(wf.id, actor("u1"))

    stored = await h.repository.get_workflow(wf.id)
    assert stored.version == 1
    assert h.audit.entries == []
    assert h.mailer.outbox == []


@pytest.mark.asyncio
async def test_admin_and_pending_assignee_may_act():
    h = Harness()
    wf = await h.seed()

    view = await h.orchestrator.approve(wf.id, actor("u3"))
    assert view.current_stage_index == 2

    view = await h.orchestrator.approve(wf.id, actor("admin"))
    assert view.overall_status == OverallStatus.APPROVED


@pytest.mark.asyncio
async def test_replayed_approval_is_refused():
    h = Harness()
    wf = await h.seed()
    await h.orchestrator.approve(wf.id, actor("u2"))

    # u2 no longer owns an open stage
    with pytest.raises(Forbidden):
        await h.orchestrator.approve(wf.id, actor("u2"))


@pytest.mark.asyncio
async def test_resubmitted_admin_approval_advances_once():
    h = Harness()
    wf = await h.seed()

    view = await h.orchestrator.approve(wf.id, actor("admin"), expected_version=1)
    assert view.current_stage_index == 2

    with pytest.raises(InvalidState):
        await h.orchestrator.approve(wf.id, actor("admin"), expected_version=1)
    with pytest.raises(InvalidState):
        await h.orchestrator.reject(wf.id, actor("admin"), "No", expected_version=1)

    stored = await h.repository.get_workflow(wf.id)
    assert stored.version == 2
    assert stored.current_stage_index == 2
    assert stored.overall_status == OverallStatus.IN_PROGRESS
    assert stored.current_approver == "u3"
    assert len(h.audit.entries) == 1

    final = await h.orchestrator.approve(wf.id, actor("u3"), expected_version=2)
    assert final.overall_status == OverallStatus.APPROVED


@pytest.mark.asyncio
async def test_concurrent_approvals_advance_once():
    h = Harness()
    wf = await h.seed()

    results = await asyncio.gather(
        h.orchestrator.approve(wf.id, actor("u2")),
        h.orchestrator.approve(wf.id, actor("u2")),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], Forbidden)
    stored = await h.repository.get_workflow(wf.id)
    assert stored.version == 2
    assert stored.current_stage_index == 2


@pytest.mark.asyncio
async def test_version_conflict_is_retried():
    h = Harness()
    wf = await h.seed()
    original_update = h.repository.update_workflow
    calls = []

    async def racing_update(workflow, expected_version):
        if not calls:
            calls.append("raced")
            # another writer commits first
            current = await h.repository.get_workflow(workflow.id)
            current.stages[1].note = "external"
            await original_update(current, expected_version)
        return await original_update(workflow, expected_version)

    h.repository.update_workflow = racing_update

    view = await h.orchestrator.approve(wf.id, actor("u2"))

    assert view.version == 3
    assert view.current_stage_index == 2


@pytest.mark.asyncio
async def test_side_effect_failures_do_not_undo_commit():
    h = Harness()
    wf = await h.seed()

    async def broken(*args, **kwargs):
        raise RuntimeError("down")

    h.notifier.notify = broken
    h.mailer.send = broken
    h.audit.append = broken

    view = await h.orchestrator.approve(wf.id, actor("u2"))

    assert view.current_stage_index == 2
    stored = await h.repository.get_workflow(wf.id)
    assert stored.version == 2
    doc = await h.documents.find_by_id("doc-1")
    assert doc.current_approver == "u3"


@pytest.mark.asyncio
async def test_missing_document_does_not_block_decision():
    h = Harness()
    wf = await h.seed()
    h.documents.remove("doc-1")

    view = await h.orchestrator.approve(wf.id, actor("u2"))

    assert view.current_stage_index == 2
    assert view.document is None
    assert h.audit.entries[-1].document == "doc-1"


@pytest.mark.asyncio
async def test_read_path():
    h = Harness()
    wf = await h.seed()
    await h.orchestrator.approve(wf.id, actor("u2"), "ok")

    view = await h.orchestrator.get_workflow("doc-1")
    assert view.id == wf.id
    assert view.stages[1].assignee_id == "u2"
    assert view.stages[1].assignee.email == "rae@example.com"

    assert (await h.orchestrator.get_workflow_by_id(wf.id)).document_id == "doc-1"

    pending = await h.orchestrator.get_pending_for_user("u3")
    assert [p.document_id for p in pending] == ["doc-1"]
    assert await h.orchestrator.get_pending_for_user("u2") == []

    history = await h.orchestrator.get_history("doc-1")
    assert [s.name for s in history] == ["Draft Submission", "Rae Reviewer Review"]
    assert history[1].note == "ok"

    with pytest.raises(WorkflowNotFound):
        await h.orchestrator.get_workflow("doc-9")
    with pytest.raises(WorkflowNotFound):
        await h.orchestrator.get_history("doc-9")


@pytest.mark.asyncio
async def test_unknown_assignee_is_not_hydrated():
    h = Harness()
    wf = await h.seed()
    await h.orchestrator.update_reviewers("doc-1", actor("u1"), ["ghost"])

    view = await h.orchestrator.get_workflow_by_id(wf.id)
    assert view.stages[-1].assignee_id == "ghost"
    assert view.stages[-1].assignee is None
