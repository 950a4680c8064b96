"""Transition orchestration for approval workflows.

:class:`ApprovalOrchestrator` is the only component that mutates workflows.
Every mutation follows the same shape:

1. load the workflow and check state and authorization,
2. compute the new stages with the pure state machine,
3. persist them with a conditional (versioned) update while holding the
   per-workflow lock, retrying on version conflicts,
4. after the commit, sync the document, append an audit entry and fan out
   notifications and emails concurrently.

Failures in step 4 are logged and swallowed; they never undo the commit.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .assembly import WorkflowAssembler, rebuild_for_reviewers
from .config import ApprovalConfig, load_config
from .constants import (
    DEFAULT_APPROVE_DETAILS,
    DOC_STATUS_IN_REVIEW,
    DOC_STATUS_UPLOADED,
)
from .contracts import (
    AuditEntry,
    DocumentRecord,
    DocumentSummary,
    Stage,
    StageAction,
    StageView,
    UserRecord,
    UserSummary,
    Workflow,
    WorkflowView,
)
from .directory import DocumentStore, UserDirectory
from .errors import Forbidden, InvalidState, VersionConflict, WorkflowNotFound
from .locks import KeyedLock
from .mailer import EmailEvent, Mailer, get_mailer, render_email
from .notifications import BaseNotifier, build_notification, get_notifier
from .persistence import WorkflowRepository, get_repository
from .security.audit import AuditLog, get_audit_log
from .security.context import ActorContext
from .security.policy import ApprovalPolicy
from .state_machine import (
    TransitionOutcome,
    WorkflowAction,
    apply_revision,
    ensure_in_progress,
    require_note,
    transition,
)
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ACTION_TYPES = {
    StageAction.APPROVED: "success",
    StageAction.REJECTED: "error",
    StageAction.CHANGES_REQUESTED: "warning",
}

_NOTE_LABELS = {
    WorkflowAction.REJECT: "reject",
    WorkflowAction.REQUEST_CHANGES: "request changes",
}


@dataclass
class _Delivery:
    """One recipient of a post-commit message."""

    user_id: str
    event: EmailEvent
    notify: bool = True
    email: bool = True


class ApprovalOrchestrator:
    """Composes guard, state machine, store and side effects."""

    def __init__(
        self,
        documents: DocumentStore,
        users: UserDirectory,
        repository: WorkflowRepository | None = None,
        audit: AuditLog | None = None,
        notifier: BaseNotifier | None = None,
        mailer: Mailer | None = None,
        policy: ApprovalPolicy | None = None,
        config: ApprovalConfig | None = None,
    ) -> None:
        self._config = config or load_config()
        self._documents = documents
        self._users = users
        self._repository = repository or get_repository(config=self._config)
        self._audit = audit or get_audit_log(self._config.audit_database_url)
        self._notifier = notifier or get_notifier(config=self._config)
        self._mailer = mailer or get_mailer(self._config)
        self._policy = policy or ApprovalPolicy(self._config.roles)
        self._assembler = WorkflowAssembler(users)
        self._workflow_locks = KeyedLock()
        self._document_locks = KeyedLock()

    # ------------------------------------------------------------------
    # Read path
    async def get_workflow(self, document_id: str) -> WorkflowView:
        """Return the hydrated workflow of ``document_id``."""
        workflow = await self._repository.get_by_document_id(document_id)
        if workflow is None:
            raise WorkflowNotFound(document_id)
        return await self._view(workflow)

    async def get_workflow_by_id(self, workflow_id: str) -> WorkflowView:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        return await self._view(workflow)

    async def get_pending_for_user(self, user_id: str) -> List[WorkflowView]:
        """In-progress workflows whose current stage belongs to ``user_id``."""
        workflows = await self._repository.list_pending_for_user(user_id)
        return list(await asyncio.gather(*(self._view(wf) for wf in workflows)))

    async def get_history(self, document_id: str) -> List[StageView]:
        """Completed and rejected stages of the document's workflow."""
        workflow = await self._repository.get_by_document_id(document_id)
        if workflow is None:
            raise WorkflowNotFound(document_id)
        users = await self._resolve_users(s.assignee for s in workflow.history())
        return [self._stage_view(stage, users) for stage in workflow.history()]

    # ------------------------------------------------------------------
    # Reviewer decisions
    async def approve(
        self,
        workflow_id: str,
        actor: ActorContext,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> WorkflowView:
        return await self._decide(
            workflow_id, actor, WorkflowAction.APPROVE, note, expected_version
        )

    async def reject(
        self,
        workflow_id: str,
        actor: ActorContext,
        note: Optional[str],
        expected_version: Optional[int] = None,
    ) -> WorkflowView:
        return await self._decide(
            workflow_id, actor, WorkflowAction.REJECT, note, expected_version
        )

    async def request_changes(
        self,
        workflow_id: str,
        actor: ActorContext,
        note: Optional[str],
        expected_version: Optional[int] = None,
    ) -> WorkflowView:
        return await self._decide(
            workflow_id, actor, WorkflowAction.REQUEST_CHANGES, note, expected_version
        )

    async def _decide(
        self,
        workflow_id: str,
        actor: ActorContext,
        action: WorkflowAction,
        note: Optional[str],
        expected_version: Optional[int] = None,
    ) -> WorkflowView:
        """Apply one decision.

        ``expected_version`` is the workflow version the caller decided on. When
        given, a decision against any other version is refused, so a resubmitted
        request cannot advance the workflow twice.
        """
        if action in _NOTE_LABELS:
            note = require_note(note, _NOTE_LABELS[action])

        def compute(workflow: Workflow) -> Tuple[Workflow, TransitionOutcome]:
            if not self._policy.can_act(workflow, actor):
                logger.info(
                    f"Denied {action.value} by user={actor.user_id} on workflow={workflow.id}"
                )
                raise Forbidden(actor.user_id, workflow.id)
            ensure_in_progress(workflow)
            if expected_version is not None and workflow.version != expected_version:
                raise InvalidState(
                    f"Workflow {workflow.id} is at version {workflow.version}, "
                    f"not {expected_version}"
                )
            outcome = transition(workflow, action, note)
            return outcome.apply(workflow), outcome

        stored, outcome = await self._commit(workflow_id, compute)
        logger.info(
            f"Workflow {stored.id} {outcome.action.value} by user={actor.user_id}; "
            f"status={stored.overall_status.value} stage={stored.current_stage_index}"
        )

        document = await self._find_document(stored.document_id)
        await self._after_commit(
            stored,
            document,
            actor,
            document_changes=self._document_changes(outcome),
            audit=self._decision_audit(outcome, actor, stored, document, note),
            deliveries=self._decision_deliveries(outcome, document),
            note=note,
        )
        return await self._view(stored)

    # ------------------------------------------------------------------
    # Document lifecycle events
    async def start_workflow(
        self,
        document_id: str,
        actor: ActorContext,
        reviewer_ids: Sequence[str] = (),
        fallback_approver: Optional[str] = None,
        stage_name: Optional[str] = None,
    ) -> WorkflowView:
        """Create the workflow for a freshly uploaded document."""
        document = await self._require_document(document_id)
        workflow = await self._assembler.initial(
            document_id,
            actor,
            reviewer_ids,
            fallback_approver=fallback_approver,
            stage_name=stage_name,
        )
        stored = await self._repository.create_workflow(workflow)
        has_reviewers = any((rid or "").strip() for rid in reviewer_ids)
        reviewer_stages = stored.stages[1:] if has_reviewers else []
        logger.info(
            f"Workflow {stored.id} created for document={document_id} "
            f"with {len(reviewer_stages)} reviewer(s)"
        )

        deliveries = [
            _Delivery(stage.assignee, EmailEvent.DOCUMENT_UPLOADED, notify=False)
            for stage in reviewer_stages
        ]
        if stored.current_approver:
            deliveries.append(
                _Delivery(stored.current_approver, EmailEvent.APPROVAL_REQUESTED)
            )
        details = "New document uploaded"
        if reviewer_stages:
            details += f" with {len(reviewer_stages)} reviewer(s)"
        await self._after_commit(
            stored,
            document,
            actor,
            document_changes={
                "status": DOC_STATUS_IN_REVIEW if reviewer_stages else DOC_STATUS_UPLOADED,
                "current_approver": stored.current_approver,
            },
            audit=self._audit_entry("Uploaded", "success", actor, document, details),
            deliveries=deliveries,
        )
        return await self._view(stored)

    async def update_reviewers(
        self, document_id: str, actor: ActorContext, reviewer_ids: Sequence[str]
    ) -> WorkflowView:
        """Replace the open review stages after the reviewer list was edited."""
        document = await self._require_document(document_id)
        if not self._policy.can_edit(document, actor):
            raise Forbidden(actor.user_id)
        reviewers = await self._assembler.resolve_reviewers(reviewer_ids)

        def compute(workflow: Workflow) -> Tuple[Workflow, None]:
            return rebuild_for_reviewers(workflow, reviewers), None

        stored, _ = await self._commit_for_document(document_id, compute)
        logger.info(f"Workflow {stored.id} reviewers replaced by user={actor.user_id}")

        changes: Optional[Dict[str, Any]] = None
        deliveries = [
            _Delivery(user_id, EmailEvent.DOCUMENT_UPDATED, notify=False)
            for user_id in stored.assignee_ids()
        ]
        if stored.is_in_progress():
            changes = {
                "status": DOC_STATUS_IN_REVIEW,
                "current_approver": stored.current_approver,
            }
            if stored.current_approver:
                deliveries.append(
                    _Delivery(stored.current_approver, EmailEvent.APPROVAL_REQUESTED)
                )
        await self._after_commit(
            stored,
            document,
            actor,
            document_changes=changes,
            audit=self._audit_entry(
                "Updated", "info", actor, document, "Document details and reviewers updated"
            ),
            deliveries=deliveries,
        )
        return await self._view(stored)

    async def record_revision(
        self,
        document_id: str,
        actor: ActorContext,
        version: int | str,
        note: Optional[str] = None,
    ) -> WorkflowView:
        """Reset halted review state after the owner uploaded a new version."""
        document = await self._require_document(document_id)
        if not self._policy.can_revise(document, actor):
            raise Forbidden(actor.user_id)

        def compute(workflow: Workflow) -> Tuple[Workflow, TransitionOutcome]:
            outcome = apply_revision(
                workflow,
                actor.user_id,
                version,
                note=note,
                department=actor.department,
            )
            return outcome.apply(workflow), outcome

        stored, outcome = await self._commit_for_document(document_id, compute)
        logger.info(
            f"Workflow {stored.id} revision v{version} by user={actor.user_id}; "
            f"current stage={stored.current_stage_index}"
        )

        deliveries = [
            _Delivery(user_id, EmailEvent.REVISION_UPLOADED, notify=False)
            for user_id in stored.assignee_ids()
        ]
        if outcome.next_approver:
            deliveries.append(
                _Delivery(outcome.next_approver, EmailEvent.APPROVAL_REQUESTED)
            )
        await self._after_commit(
            stored,
            document,
            actor,
            document_changes=self._document_changes(outcome),
            audit=self._audit_entry(
                "Updated", "info", actor, document, f"Uploaded revision v{version}"
            ),
            deliveries=deliveries,
            note=note,
            version=version,
        )
        return await self._view(stored)

    async def delete_for_document(
        self,
        document_id: str,
        actor: ActorContext,
        document: Optional[DocumentRecord] = None,
    ) -> bool:
        """Cascade a document deletion to its workflow.

        Called by the document layer once it has authorized and performed the
        deletion, so the document may already be gone; pass its last known
        record as ``document`` to keep titles in the audit trail and emails.
        Returns ``False`` when the document had no workflow.
        """
        workflow = await self._repository.get_by_document_id(document_id)
        if workflow is None:
            logger.debug(f"No workflow to delete for document={document_id}")
            return False
        async with self._workflow_locks.hold(workflow.id):
            deleted = await self._repository.delete_by_document_id(document_id)
        if not deleted:
            return False
        logger.info(f"Workflow {workflow.id} deleted with document={document_id}")

        document = document or await self._find_document(document_id)
        await self._after_commit(
            workflow,
            document,
            actor,
            document_changes=None,
            audit=self._audit_entry(
                "Deleted", "info", actor, document, "Document and approval workflow deleted",
                document_id=document_id,
            ),
            deliveries=[
                _Delivery(user_id, EmailEvent.DOCUMENT_DELETED, notify=False)
                for user_id in workflow.assignee_ids()
            ],
        )
        return True

    # ------------------------------------------------------------------
    # Commit helpers
    async def _commit(
        self,
        workflow_id: str,
        compute: Callable[[Workflow], Tuple[Workflow, T]],
    ) -> Tuple[Workflow, T]:
        """Load, compute and conditionally store one workflow.

        The per-workflow lock serializes transitions inside this process; the
        version check catches writers in other processes. On conflict the
        whole read-check-compute cycle runs again against fresh state.
        """
        attempt = 0
        while True:
            async with self._workflow_locks.hold(workflow_id):
                workflow = await self._repository.get_workflow(workflow_id)
                if workflow is None:
                    raise WorkflowNotFound(workflow_id)
                updated, result = compute(workflow)
                try:
                    stored = await self._repository.update_workflow(
                        updated, expected_version=workflow.version
                    )
                    return stored, result
                except VersionConflict:
                    if attempt >= self._config.max_conflict_retries:
                        raise
                    logger.warning(
                        f"Version conflict on workflow={workflow_id} "
                        f"(attempt {attempt + 1}); retrying"
                    )
            await schedule_retry(attempt, base=self._config.retry_base_delay)
            attempt += 1

    async def _commit_for_document(
        self,
        document_id: str,
        compute: Callable[[Workflow], Tuple[Workflow, T]],
    ) -> Tuple[Workflow, T]:
        workflow = await self._repository.get_by_document_id(document_id)
        if workflow is None:
            raise WorkflowNotFound(document_id)
        return await self._commit(workflow.id, compute)

    async def _require_document(self, document_id: str) -> DocumentRecord:
        document = await self._documents.find_by_id(document_id)
        if document is None:
            raise WorkflowNotFound(document_id, kind="document")
        return document

    async def _find_document(self, document_id: str) -> Optional[DocumentRecord]:
        return await self._best_effort(
            self._documents.find_by_id(document_id), f"document lookup {document_id}"
        )

    # ------------------------------------------------------------------
    # Side effects
    async def _best_effort(self, awaitable: Awaitable[T], label: str) -> Optional[T]:
        try:
            return await awaitable
        except Exception:
            logger.exception(f"Side effect failed: {label}")
            return None

    async def _after_commit(
        self,
        workflow: Workflow,
        document: Optional[DocumentRecord],
        actor: ActorContext,
        document_changes: Optional[Dict[str, Any]],
        audit: AuditEntry,
        deliveries: Sequence[_Delivery],
        note: Optional[str] = None,
        version: Optional[int | str] = None,
    ) -> None:
        tasks: List[Awaitable[Any]] = [
            self._best_effort(self._audit.append(audit), f"audit {audit.action}")
        ]
        if document_changes is not None:
            tasks.append(
                self._best_effort(
                    self._sync_document(workflow.document_id, document, document_changes),
                    f"document sync {workflow.document_id}",
                )
            )
        subject = document or DocumentRecord(id=workflow.document_id)
        seen = set()
        for delivery in deliveries:
            key = (delivery.user_id, delivery.event)
            if delivery.user_id == actor.user_id or key in seen:
                continue
            seen.add(key)
            tasks.append(self._deliver(delivery, subject, actor, note, version))
        await asyncio.gather(*tasks)

    async def _sync_document(
        self,
        document_id: str,
        document: Optional[DocumentRecord],
        changes: Dict[str, Any],
    ) -> None:
        if document is None:
            logger.warning(f"Document {document_id} not found; skipping status sync")
            return
        async with self._document_locks.hold(document_id):
            updated = await self._documents.update(document_id, changes)
        if updated is None:
            logger.debug(f"Document {document_id} disappeared before status sync")

    async def _deliver(
        self,
        delivery: _Delivery,
        document: DocumentRecord,
        actor: ActorContext,
        note: Optional[str],
        version: Optional[int | str],
    ) -> None:
        link = f"{self._config.client_url}/#/documents/details/{document.id}"
        jobs: List[Awaitable[Any]] = []
        if delivery.notify:
            notification = build_notification(
                delivery.event, document, actor.display_name, note, version, link
            )
            jobs.append(
                self._best_effort(
                    self._notifier.notify(delivery.user_id, notification),
                    f"notify {delivery.event.value} user={delivery.user_id}",
                )
            )
        if delivery.email:
            jobs.append(
                self._best_effort(
                    self._send_email(delivery, document, actor, note, version, link),
                    f"email {delivery.event.value} user={delivery.user_id}",
                )
            )
        await asyncio.gather(*jobs)

    async def _send_email(
        self,
        delivery: _Delivery,
        document: DocumentRecord,
        actor: ActorContext,
        note: Optional[str],
        version: Optional[int | str],
        link: str,
    ) -> None:
        recipient = await self._users.find_by_id(delivery.user_id)
        if recipient is None:
            logger.debug(f"Unknown recipient {delivery.user_id}; email skipped")
            return
        email = render_email(
            delivery.event, recipient, document, actor.display_name, note, version, link
        )
        if email is None:
            logger.debug(f"User {delivery.user_id} has no email address; email skipped")
            return
        await self._mailer.send(email)

    @staticmethod
    def _document_changes(outcome: TransitionOutcome) -> Dict[str, Any]:
        changes: Dict[str, Any] = {"status": outcome.document_status}
        if outcome.sync_approver:
            changes["current_approver"] = outcome.next_approver
        return changes

    def _decision_audit(
        self,
        outcome: TransitionOutcome,
        actor: ActorContext,
        workflow: Workflow,
        document: Optional[DocumentRecord],
        note: Optional[str],
    ) -> AuditEntry:
        details = note or ""
        if outcome.action == StageAction.APPROVED and not (note or "").strip():
            details = DEFAULT_APPROVE_DETAILS
        return self._audit_entry(
            outcome.action.value,
            _ACTION_TYPES[outcome.action],
            actor,
            document,
            details,
            document_id=workflow.document_id,
        )

    @staticmethod
    def _decision_deliveries(
        outcome: TransitionOutcome, document: Optional[DocumentRecord]
    ) -> List[_Delivery]:
        uploader = document.uploaded_by if document else None
        deliveries: List[_Delivery] = []
        if outcome.action == StageAction.APPROVED:
            if outcome.final:
                if uploader:
                    deliveries.append(_Delivery(uploader, EmailEvent.DOCUMENT_APPROVED))
            else:
                if outcome.next_approver:
                    deliveries.append(
                        _Delivery(outcome.next_approver, EmailEvent.APPROVAL_REQUESTED)
                    )
                if uploader:
                    deliveries.append(
                        _Delivery(uploader, EmailEvent.STAGE_APPROVED, notify=False)
                    )
        elif outcome.action == StageAction.REJECTED and uploader:
            deliveries.append(_Delivery(uploader, EmailEvent.DOCUMENT_REJECTED))
        elif outcome.action == StageAction.CHANGES_REQUESTED and uploader:
            deliveries.append(_Delivery(uploader, EmailEvent.CHANGES_REQUESTED))
        return deliveries

    @staticmethod
    def _audit_entry(
        action: str,
        action_type: str,
        actor: ActorContext,
        document: Optional[DocumentRecord],
        details: str,
        document_id: Optional[str] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user=actor.user_id,
            action=action,
            action_type=action_type,
            document=document.id if document else document_id,
            document_title=document.title if document else None,
            details=details,
            ip_address=actor.ip_address,
        )

    # ------------------------------------------------------------------
    # Hydration
    async def _resolve_users(self, user_ids) -> Dict[str, UserRecord]:
        unique = list(dict.fromkeys(user_ids))
        found = await asyncio.gather(
            *(
                self._best_effort(self._users.find_by_id(uid), f"user lookup {uid}")
                for uid in unique
            )
        )
        return {uid: user for uid, user in zip(unique, found) if user is not None}

    @staticmethod
    def _stage_view(stage: Stage, users: Dict[str, UserRecord]) -> StageView:
        user = users.get(stage.assignee)
        return StageView(
            name=stage.name,
            assignee_id=stage.assignee,
            assignee=UserSummary.from_user(user) if user else None,
            department=stage.department,
            status=stage.status,
            action=stage.action,
            note=stage.note,
            action_date=stage.action_date,
            order=stage.order,
        )

    async def _view(self, workflow: Workflow) -> WorkflowView:
        users, document = await asyncio.gather(
            self._resolve_users(s.assignee for s in workflow.stages),
            self._find_document(workflow.document_id),
        )
        return WorkflowView(
            id=workflow.id,
            document_id=workflow.document_id,
            document=DocumentSummary.from_document(document) if document else None,
            stages=[self._stage_view(stage, users) for stage in workflow.stages],
            current_stage_index=workflow.current_stage_index,
            overall_status=workflow.overall_status,
            version=workflow.version,
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
        )
