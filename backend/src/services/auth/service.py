"""
Admin authentication service.

A single administrator account is configured through settings
(``admin_username`` and a bcrypt ``admin_password_hash``). Successful logins
issue an opaque bearer token recorded in a ``SessionStore``.
"""

from datetime import timedelta
from typing import Optional

from src.core.config import Settings, get_settings
from src.core.logging import get_logger
from src.core.security import (
    constant_time_compare,
    generate_session_token,
    verify_password,
)
from src.database.base import utc_now
from src.services.auth.sessions import AdminSession, SessionStore

logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Base exception for authentication errors."""

    def __init__(self, message: str, code: str = "AUTH_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class LoginError(AuthenticationError):
    """Exception raised during login."""

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message, code="LOGIN_ERROR")


class SessionInvalidError(AuthenticationError):
    """Raised for unknown or expired session tokens."""

    def __init__(self, message: str = "Invalid or expired session"):
        super().__init__(message, code="SESSION_INVALID")


class AdminAuthService:
    """
    Login, logout and session validation for the admin dashboard.
    """

    def __init__(self, store: SessionStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.logger = logger.bind(service="admin_auth")

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.admin_session_ttl_hours)

    def check_credentials(self, username: str, password: str) -> bool:
        password_hash = self.settings.admin_password_hash
        if not password_hash:
            self.logger.warning("Admin login attempted but no password hash is configured")
            return False

        username_ok = constant_time_compare(username or "", self.settings.admin_username)
        password_ok = verify_password(password, password_hash)
        return username_ok and password_ok

    async def login(self, username: str, password: str) -> AdminSession:
        """
        Raises:
            LoginError: If credentials are wrong or login is disabled
        """
        if not self.check_credentials(username, password):
            self.logger.warning("Admin login failed", username=username)
            raise LoginError()

        now = utc_now()
        session = AdminSession(
            token=generate_session_token(),
            username=self.settings.admin_username,
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        await self.store.save(session, self.session_ttl)

        self.logger.info("Admin logged in", username=session.username)
        return session

    async def validate(self, token: Optional[str]) -> AdminSession:
        """
        Raises:
            SessionInvalidError: If the token is missing, unknown or expired
        """
        if not token:
            raise SessionInvalidError("Missing session token")

        session = await self.store.get(token)
        if session is None:
            raise SessionInvalidError()
        return session

    async def logout(self, token: str) -> None:
        await self.store.delete(token)
        self.logger.info("Admin logged out")
