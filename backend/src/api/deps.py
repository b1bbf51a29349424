"""
FastAPI dependencies for database sessions, settings, notification
dispatch and admin authentication.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.redis_client import get_redis_client
from src.core.config import Settings, get_settings
from src.core.logging import get_logger, set_actor
from src.database.connection import get_db
from src.services.auth.service import AdminAuthService, AuthenticationError
from src.services.auth.sessions import (
    AdminSession,
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
)
from src.services.notifications.dispatcher import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

_memory_store: Optional[InMemorySessionStore] = None


async def get_session_store(
    settings: Annotated[Settings, Depends(get_settings)],
) -> SessionStore:
    """Session store selected by ``session_backend``."""
    global _memory_store

    if settings.session_backend == "memory":
        if _memory_store is None:
            _memory_store = InMemorySessionStore()
        return _memory_store

    return RedisSessionStore(await get_redis_client())


async def get_auth_service(
    store: Annotated[SessionStore, Depends(get_session_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AdminAuthService:
    return AdminAuthService(store, settings)


def get_dispatcher(
    settings: Annotated[Settings, Depends(get_settings)],
) -> NotificationDispatcher:
    return get_notification_dispatcher(settings)


async def require_admin(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    auth: Annotated[AdminAuthService, Depends(get_auth_service)],
) -> AdminSession:
    """
    Validate the bearer session token.

    Raises:
        HTTPException: 401 if the token is missing, unknown or expired
    """
    try:
        session = await auth.validate(credentials.credentials if credentials else None)
    except AuthenticationError as e:
        logger.warning("Admin authentication failed", reason=e.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    set_actor(session.username)
    return session


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Dispatcher = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
AuthService = Annotated[AdminAuthService, Depends(get_auth_service)]
CurrentAdmin = Annotated[AdminSession, Depends(require_admin)]
