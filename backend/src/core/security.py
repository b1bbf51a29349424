"""
Security utilities for password hashing and session tokens.

Admin sessions are opaque random tokens looked up in a session store;
no claims are encoded in the token itself.
"""

import secrets

from passlib.context import CryptContext

from src.core.logging import get_logger

logger = get_logger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=12,
    bcrypt__ident="2b",
)

SESSION_TOKEN_BYTES = 32


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context


class PasswordError(SecurityError):
    """Exception raised for password-related errors."""

    pass


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Raises:
        PasswordError: If password is empty

    Example:
        >>> hashed = hash_password("SecurePass123!")
        >>> verify_password("SecurePass123!", hashed)
        True
    """
    if not password:
        raise PasswordError("Password cannot be empty", code="EMPTY_PASSWORD")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a bcrypt hash.

    Returns False for empty values or a malformed hash.
    """
    if not plain_password or not hashed_password:
        logger.warning(
            "Password verification attempted with empty values",
            has_plain=bool(plain_password),
            has_hashed=bool(hashed_password),
        )
        return False

    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.error("Stored password hash is not recognised", error=str(e))
        return False


def generate_session_token() -> str:
    """URL-safe random token for an admin session."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def constant_time_compare(a: str, b: str) -> bool:
    return secrets.compare_digest(a.encode(), b.encode())


def get_security_headers(is_production: bool = False) -> dict[str, str]:
    """Headers added to every HTTP response."""
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
        "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'",
    }
    if is_production:
        headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
    return headers
