"""Acting-user context for workflow actions."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from ..contracts import UserRecord


class ActorContext(BaseModel):
    """Identity of the user performing a workflow action.

    The request layer authenticates the user and builds this context; the
    engine only reads it. ``ip_address`` is carried through to audit entries.
    """

    user_id: str = Field(..., description="Authenticated user id")
    role: Optional[str] = Field(default=None, description="Directory role")
    name: str = ""
    email: Optional[str] = None
    department: Optional[str] = None
    ip_address: Optional[str] = None

    @classmethod
    def from_user(cls, user: UserRecord, ip_address: Optional[str] = None) -> "ActorContext":
        return cls(
            user_id=user.id,
            role=user.role,
            name=user.name,
            email=user.email,
            department=user.department,
            ip_address=ip_address,
        )

    @property
    def display_name(self) -> str:
        return self.name or self.user_id
