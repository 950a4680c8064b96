"""Shared constants for approval workflows."""

DEFAULT_ADMIN_ROLE = "Super Admin"
DEFAULT_REVIEWER_ROLE = "Approver"
EDITOR_ROLE = "Editor"

# Document statuses written back to the document store
DOC_STATUS_UPLOADED = "Uploaded"
DOC_STATUS_IN_REVIEW = "In Review"
DOC_STATUS_APPROVED = "Approved"
DOC_STATUS_REJECTED = "Rejected"
DOC_STATUS_CHANGES_REQUESTED = "Changes Requested"

DEFAULT_APPROVE_NOTE = "Approved"
DEFAULT_APPROVE_DETAILS = "Review complete. Document approved."
DEFAULT_STAGE_NAME = "Manager Review"
DEFAULT_STAGE_DEPARTMENT = "Management"
SUBMISSION_STAGE_NAME = "Draft Submission"
INITIAL_VERSION_LABEL = "1.0"

DEFAULT_CLIENT_URL = "http://localhost:3000"
NOTIFICATION_QUEUE_PREFIX = "approvalflow:notifications"
