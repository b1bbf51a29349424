"""
Admin session storage.

``SessionStore`` is the seam the auth service depends on. Redis is the
production backend; the in-memory store serves single-process development
and tests.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from redis.exceptions import RedisError

from src.cache.redis_client import CacheKeyManager, RedisClient
from src.core.logging import get_logger
from src.database.base import utc_now

logger = get_logger(__name__)


class SessionStoreError(Exception):
    """Raised when the session backend is unavailable."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


@dataclass
class AdminSession:
    token: str
    username: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def to_dict(self) -> dict[str, str]:
        return {
            "token": self.token,
            "username": self.username,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdminSession":
        return cls(
            token=data["token"],
            username=data["username"],
            created_at=_parse_time(data["created_at"]),
            expires_at=_parse_time(data["expires_at"]),
        )


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SessionStore(Protocol):
    async def save(self, session: AdminSession, ttl: timedelta) -> None:
        ...

    async def get(self, token: str) -> Optional[AdminSession]:
        ...

    async def delete(self, token: str) -> None:
        ...


class InMemorySessionStore:
    """Process-local session store."""

    def __init__(self) -> None:
        self._sessions: dict[str, AdminSession] = {}

    async def save(self, session: AdminSession, ttl: timedelta) -> None:
        self._sessions[session.token] = session

    async def get(self, token: str) -> Optional[AdminSession]:
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.is_expired():
            self._sessions.pop(token, None)
            return None
        return session

    async def delete(self, token: str) -> None:
        self._sessions.pop(token, None)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore:
    """Sessions stored as JSON with a Redis TTL."""

    def __init__(self, client: RedisClient, keys: Optional[CacheKeyManager] = None):
        self.client = client
        self.keys = keys or CacheKeyManager()

    async def save(self, session: AdminSession, ttl: timedelta) -> None:
        key = self.keys.session_key(session.token)
        try:
            await self.client.set_json(key, session.to_dict(), ex=int(ttl.total_seconds()))
        except (RedisError, ConnectionError) as e:
            raise SessionStoreError("Failed to store admin session", error=str(e)) from e

    async def get(self, token: str) -> Optional[AdminSession]:
        try:
            data = await self.client.get_json(self.keys.session_key(token))
        except (RedisError, ConnectionError) as e:
            raise SessionStoreError("Failed to read admin session", error=str(e)) from e

        if data is None:
            return None
        try:
            session = AdminSession.from_dict(data)
        except (KeyError, ValueError):
            logger.warning("Discarding malformed admin session record")
            return None
        return None if session.is_expired() else session

    async def delete(self, token: str) -> None:
        try:
            await self.client.delete(self.keys.session_key(token))
        except (RedisError, ConnectionError) as e:
            raise SessionStoreError("Failed to delete admin session", error=str(e)) from e
