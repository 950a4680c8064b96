"""In-memory notifier for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Deque, Dict, List

from ..contracts import Notification
from .base import BaseNotifier


class InMemoryNotifier(BaseNotifier):
    """Per-user inboxes kept in process."""

    def __init__(self) -> None:
        self._inboxes: Dict[str, Deque[Notification]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def notify(self, user_id: str, notification: Notification) -> None:
        async with self._lock:
            self._inboxes[user_id].appendleft(notification)

    async def inbox(self, user_id: str, limit: int = 50) -> List[Notification]:
        async with self._lock:
            return list(self._inboxes[user_id])[:limit]
