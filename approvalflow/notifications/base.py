"""Base notifier interface for in-app notifications."""

from __future__ import annotations

import abc
from typing import List

from ..contracts import Notification


class BaseNotifier(metaclass=abc.ABCMeta):
    """Abstract delivery channel for per-user notifications."""

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def notify(self, user_id: str, notification: Notification) -> None:
        """Deliver ``notification`` to ``user_id``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def inbox(self, user_id: str, limit: int = 50) -> List[Notification]:
        """Return the newest notifications for ``user_id``."""
        raise NotImplementedError
