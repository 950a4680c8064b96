"""Approvalflow: multi-stage document approval workflows."""

from .config import ApprovalConfig, load_config
from .contracts import (
    OverallStatus,
    Stage,
    StageAction,
    StageStatus,
    Workflow,
    WorkflowView,
)
from .errors import (
    ApprovalError,
    Forbidden,
    InvalidState,
    MissingNote,
    VersionConflict,
    WorkflowNotFound,
)
from .orchestrator import ApprovalOrchestrator
from .persistence import get_repository
from .security import ActorContext, ApprovalPolicy

__version__ = "0.1.0"
__all__ = [
    "ActorContext",
    "ApprovalConfig",
    "ApprovalError",
    "ApprovalOrchestrator",
    "ApprovalPolicy",
    "Forbidden",
    "InvalidState",
    "MissingNote",
    "OverallStatus",
    "Stage",
    "StageAction",
    "StageStatus",
    "VersionConflict",
    "Workflow",
    "WorkflowNotFound",
    "WorkflowView",
    "get_repository",
    "load_config",
]
