"""Redis notifier for cross-process delivery."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..constants import NOTIFICATION_QUEUE_PREFIX
from ..contracts import Notification
from .base import BaseNotifier

logger = logging.getLogger(__name__)


class RedisNotifier(BaseNotifier):
    """Pushes notifications onto a Redis list per user."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = NOTIFICATION_QUEUE_PREFIX,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisNotifier")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = None

    def _key(self, user_id: str) -> str:
        return f"{self.prefix}:{user_id}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def notify(self, user_id: str, notification: Notification) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self._key(user_id), notification.to_json())

    async def inbox(self, user_id: str, limit: int = 50) -> List[Notification]:
        if not self._redis:
            await self.connect()
        raw_items = await self._redis.lrange(self._key(user_id), 0, limit - 1)
        notifications: List[Notification] = []
        for raw in raw_items:
            try:
                notifications.append(Notification.from_json(raw))
            except ValueError as exc:
                logger.warning(f"Skipping malformed notification for {user_id}: {exc}")
        return notifications
