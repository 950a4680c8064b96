"""In-app notification wording per workflow event."""

from __future__ import annotations

from typing import Optional

from ..contracts import DocumentRecord, Notification
from ..mailer import EmailEvent

# event -> (title, message template, type)
_MESSAGES = {
    EmailEvent.APPROVAL_REQUESTED: (
        "Approval Required",
        "{title} is awaiting your review.",
        "info",
    ),
    EmailEvent.STAGE_APPROVED: (
        "Stage Approved",
        "{title} was approved by {actor} and moved to the next stage.",
        "success",
    ),
    EmailEvent.DOCUMENT_APPROVED: (
        "Document Approved",
        "{title} was approved by {actor}. No further actions are required.",
        "success",
    ),
    EmailEvent.DOCUMENT_REJECTED: (
        "Document Rejected",
        "{title} was rejected by {actor}: {note}",
        "error",
    ),
    EmailEvent.CHANGES_REQUESTED: (
        "Changes Requested",
        "{actor} requested changes to {title}: {note}",
        "warning",
    ),
    EmailEvent.DOCUMENT_UPLOADED: (
        "New Document",
        "{actor} uploaded {title} for review.",
        "info",
    ),
    EmailEvent.REVISION_UPLOADED: (
        "Revision Uploaded",
        "{actor} uploaded version {version} of {title}.",
        "info",
    ),
    EmailEvent.DOCUMENT_UPDATED: (
        "Document Updated",
        "{actor} updated {title}.",
        "info",
    ),
    EmailEvent.DOCUMENT_DELETED: (
        "Document Deleted",
        "{actor} deleted {title}.",
        "info",
    ),
}


def build_notification(
    event: EmailEvent,
    document: DocumentRecord,
    actor_name: str = "",
    note: Optional[str] = None,
    version: Optional[int | str] = None,
    link: Optional[str] = None,
) -> Notification:
    title, template, kind = _MESSAGES[EmailEvent(event)]
    message = template.format(
        title=document.title or document.id,
        actor=actor_name or "A team member",
        note=note or "",
        version=version if version is not None else "",
    )
    return Notification(title=title, message=message, type=kind, link=link)
