"""Templated workflow emails and delivery backends."""

from __future__ import annotations

import abc
import html
import logging
from enum import Enum
from typing import List, Optional

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType
from pydantic import BaseModel

from .config import ApprovalConfig, EmailConfig, load_config
from .contracts import DocumentRecord, UserRecord

logger = logging.getLogger(__name__)


class EmailEvent(str, Enum):
    APPROVAL_REQUESTED = "approval_requested"
    STAGE_APPROVED = "stage_approved"
    DOCUMENT_APPROVED = "document_approved"
    DOCUMENT_REJECTED = "document_rejected"
    CHANGES_REQUESTED = "changes_requested"
    DOCUMENT_UPLOADED = "document_uploaded"
    REVISION_UPLOADED = "revision_uploaded"
    DOCUMENT_UPDATED = "document_updated"
    DOCUMENT_DELETED = "document_deleted"


class RenderedEmail(BaseModel):
    to: str
    subject: str
    html: str
    text: str


# event -> (subject, heading, body line, text line); formatted with
# title, recipient, actor, note and version
_TEMPLATES = {
    EmailEvent.APPROVAL_REQUESTED: (
        "Action Required: Approval for {title}",
        "Your Approval is Required",
        "The document <strong>{title}</strong> is at your review stage and awaits your decision.",
        "Approval required for {title}. Please log in to review.",
    ),
    EmailEvent.STAGE_APPROVED: (
        "Step Approved: {title}",
        "Stage Approved",
        "The document <strong>{title}</strong> was approved at the current stage by "
        "<strong>{actor}</strong>. It will proceed to the next stage.",
        "Document {title} was approved by {actor}.",
    ),
    EmailEvent.DOCUMENT_APPROVED: (
        "Document Approved: {title}",
        "Document Fully Approved",
        "The document <strong>{title}</strong> has been <strong>APPROVED</strong> by "
        "<strong>{actor}</strong>. No further actions are required.",
        "Document {title} was approved by {actor}.",
    ),
    EmailEvent.DOCUMENT_REJECTED: (
        "Document Rejected: {title}",
        "Document Rejected",
        "Your document <strong>{title}</strong> has been <strong>REJECTED</strong> by "
        "<strong>{actor}</strong>.<br/><strong>Reason:</strong> {note}<br/>"
        "Please review the feedback and upload a revision.",
        "Document {title} was rejected by {actor}. Reason: {note}",
    ),
    EmailEvent.CHANGES_REQUESTED: (
        "Changes Requested: {title}",
        "Action Required: Changes Requested",
        "<strong>{actor}</strong> has requested changes for your document "
        "<strong>{title}</strong>.<br/><strong>Note:</strong> {note}<br/>"
        "Please update the document and upload a revision.",
        "Changes requested for {title} by {actor}. Note: {note}",
    ),
    EmailEvent.DOCUMENT_UPLOADED: (
        "New Document for Review: {title}",
        "New Document Uploaded",
        "<strong>{actor}</strong> uploaded <strong>{title}</strong> and added you as a reviewer.",
        "{actor} uploaded {title} and added you as a reviewer.",
    ),
    EmailEvent.REVISION_UPLOADED: (
        "Revision Uploaded: {title} (v{version})",
        "New Revision Available",
        "<strong>{actor}</strong> uploaded version {version} of <strong>{title}</strong>.",
        "{actor} uploaded version {version} of {title}.",
    ),
    EmailEvent.DOCUMENT_UPDATED: (
        "Document Updated: {title}",
        "Document Updated",
        "<strong>{actor}</strong> updated the details or reviewers of <strong>{title}</strong>.",
        "{actor} updated {title}.",
    ),
    EmailEvent.DOCUMENT_DELETED: (
        "Document Deleted: {title}",
        "Document Deleted",
        "<strong>{actor}</strong> deleted <strong>{title}</strong>. Its approval workflow was removed.",
        "{actor} deleted {title}.",
    ),
}


def render_email(
    event: EmailEvent,
    recipient: UserRecord,
    document: DocumentRecord,
    actor_name: str = "",
    note: Optional[str] = None,
    version: Optional[int | str] = None,
    link: Optional[str] = None,
) -> Optional[RenderedEmail]:
    """Render ``event`` for ``recipient``; ``None`` when they have no address."""
    if not recipient.email:
        return None
    subject_t, heading, body_t, text_t = _TEMPLATES[EmailEvent(event)]
    raw = {
        "title": document.title or document.id,
        "actor": actor_name or "A team member",
        "note": note or "",
        "version": version if version is not None else "",
    }
    escaped = {key: html.escape(str(value)) for key, value in raw.items()}
    greeting = html.escape(recipient.name or "there")
    button = (
        f'<p><a href="{html.escape(link)}">View document</a></p>' if link else ""
    )
    body = (
        f"<h3>{heading}</h3>"
        f"<p>Hello {greeting},</p>"
        f"<p>{body_t.format(**escaped)}</p>"
        f"{button}"
        "<p>Best regards,<br/>Document Approvals</p>"
    )
    text = text_t.format(**raw)
    if link:
        text = f"{text}\n{link}"
    return RenderedEmail(
        to=recipient.email,
        subject=subject_t.format(**raw),
        html=body,
        text=text,
    )


class Mailer(metaclass=abc.ABCMeta):
    """Best-effort email delivery."""

    @abc.abstractmethod
    async def send(self, email: RenderedEmail) -> None:
        raise NotImplementedError


class InMemoryMailer(Mailer):
    """Collects sent emails in ``outbox``."""

    def __init__(self) -> None:
        self.outbox: List[RenderedEmail] = []

    async def send(self, email: RenderedEmail) -> None:
        self.outbox.append(email)


class LoggingMailer(Mailer):
    """Used when no SMTP server is configured; logs instead of sending."""

    async def send(self, email: RenderedEmail) -> None:
        logger.info(f"Email not sent (no SMTP configured) to={email.to} subject={email.subject!r}")


class SMTPMailer(Mailer):
    """Sends mail through an SMTP relay with fastapi-mail."""

    def __init__(self, settings: EmailConfig) -> None:
        if not settings.host:
            raise ValueError("SMTP host is required for SMTPMailer")
        self.settings = settings
        self.conf = ConnectionConfig(
            MAIL_USERNAME=settings.username or "",
            MAIL_PASSWORD=settings.password or "",
            MAIL_FROM=settings.sender_email or settings.username or f"noreply@{settings.host}",
            MAIL_FROM_NAME=settings.sender_name,
            MAIL_PORT=settings.port,
            MAIL_SERVER=settings.host,
            MAIL_STARTTLS=settings.use_tls,
            MAIL_SSL_TLS=False,
            USE_CREDENTIALS=bool(settings.username and settings.password),
            VALIDATE_CERTS=True,
        )
        self._client = FastMail(self.conf)

    def _build(self, email: RenderedEmail) -> MessageSchema:
        return MessageSchema(
            subject=email.subject,
            recipients=[email.to],
            body=email.html,
            subtype=MessageType.html,
        )

    async def send(self, email: RenderedEmail) -> None:
        await self._client.send_message(self._build(email))
        logger.info(f"Email sent to {email.to}: {email.subject!r}")


def get_mailer(config: Optional[ApprovalConfig] = None) -> Mailer:
    """Return an SMTP mailer when a host is configured, else a logging one."""
    config = config or load_config()
    if config.email.host:
        return SMTPMailer(config.email)
    return LoggingMailer()
