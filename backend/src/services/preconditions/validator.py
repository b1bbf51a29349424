"""
Precondition token issuing and validation.

Order creation requires proof that three upstream steps ran recently:
location verification (``LOC``), inventory reservation (``INV``) and payment
(``TXN``). Each proof is a token of the form::

    PREFIX_YYYYMMDD_HHMMSS_XXXXXXXX

where the timestamp is the UTC issuance time and the suffix is eight
uppercase hex characters. Validation is a format and freshness check only;
it never touches storage or the network.
"""

import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from src.core.config import Settings, get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class TokenKind(str, Enum):
    """Kinds of precondition token, in the order they are checked."""

    LOCATION = "location"
    INVENTORY = "inventory"
    PAYMENT = "payment"

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_PREFIXES = {
    TokenKind.LOCATION: "LOC",
    TokenKind.INVENTORY: "INV",
    TokenKind.PAYMENT: "TXN",
}

_LABELS = {
    TokenKind.LOCATION: "location verification",
    TokenKind.INVENTORY: "inventory reservation",
    TokenKind.PAYMENT: "payment transaction",
}

_PATTERNS = {
    kind: re.compile(rf"^{prefix}_(\d{{8}})_(\d{{6}})_([A-F0-9]{{8}})$")
    for kind, prefix in _PREFIXES.items()
}


class TokenFailure(str, Enum):
    """Reason codes for a rejected token."""

    MISSING = "missing"
    MALFORMED = "malformed"
    INVALID_TIMESTAMP = "invalid_timestamp"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    ALREADY_USED = "token_already_used"


class PreconditionError(Exception):
    """Raised when an order is submitted without valid precondition tokens."""

    def __init__(
        self,
        message: str,
        code: TokenFailure,
        kind: TokenKind,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.kind = kind
        self.context = context


@dataclass(frozen=True)
class TokenValidation:
    """Outcome of validating one token."""

    kind: TokenKind
    valid: bool
    code: Optional[TokenFailure] = None
    reason: Optional[str] = None
    issued_at: Optional[datetime] = None

    def raise_for_failure(self) -> None:
        if not self.valid:
            raise PreconditionError(self.reason or "", self.code, self.kind)


def issue_token(kind: TokenKind, now: Optional[datetime] = None) -> str:
    """
    Issue a fresh token for ``kind``.

    Args:
        kind: Token kind
        now: Issuance time, defaults to the current UTC time
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    return f"{kind.prefix}_{now.strftime(TIMESTAMP_FORMAT)}_{secrets.token_hex(4).upper()}"


def parse_token_timestamp(kind: TokenKind, token: str) -> Optional[datetime]:
    """Return the embedded UTC issuance time, or None when unparseable."""
    match = _PATTERNS[kind].match(token)
    if match is None:
        return None
    try:
        issued = datetime.strptime(f"{match.group(1)}_{match.group(2)}", TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return issued.replace(tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _describe_age(age: timedelta) -> str:
    minutes = age.total_seconds() / 60
    if minutes >= 120:
        return f"{minutes / 60:.1f} hours"
    return f"{minutes:.0f} minutes"


class PreconditionValidator:
    """
    Stateless format and freshness checks for precondition tokens.

    Attributes:
        max_ages: Maximum token age per kind
        clock_skew: How far in the future an issuance time may lie
    """

    def __init__(
        self,
        max_ages: Dict[TokenKind, timedelta],
        clock_skew: timedelta = timedelta(minutes=5),
    ):
        self.max_ages = max_ages
        self.clock_skew = clock_skew

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PreconditionValidator":
        settings = settings or get_settings()
        return cls(
            max_ages={
                TokenKind.LOCATION: timedelta(minutes=settings.location_token_max_age_minutes),
                TokenKind.INVENTORY: timedelta(minutes=settings.inventory_token_max_age_minutes),
                TokenKind.PAYMENT: timedelta(minutes=settings.payment_token_max_age_minutes),
            },
            clock_skew=timedelta(seconds=settings.token_clock_skew_seconds),
        )

    def validate(
        self,
        kind: TokenKind,
        token: Optional[str],
        now: Optional[datetime] = None,
    ) -> TokenValidation:
        """
        Validate a single token.

        Args:
            kind: Expected token kind
            token: Token string as submitted
            now: Reference time, defaults to the current UTC time

        Returns:
            TokenValidation; ``code`` distinguishes missing, malformed and
            expired tokens
        """
        if token is None or not token.strip():
            return TokenValidation(
                kind=kind,
                valid=False,
                code=TokenFailure.MISSING,
                reason=(
                    f"Missing {kind.label} token. Complete the {kind.label} "
                    "step before creating an order."
                ),
            )

        token = token.strip()
        if _PATTERNS[kind].match(token) is None:
            return TokenValidation(
                kind=kind,
                valid=False,
                code=TokenFailure.MALFORMED,
                reason=(
                    f"Invalid {kind.label} token format. Expected "
                    f"{kind.prefix}_YYYYMMDD_HHMMSS_XXXXXXXX."
                ),
            )

        issued_at = parse_token_timestamp(kind, token)
        if issued_at is None:
            return TokenValidation(
                kind=kind,
                valid=False,
                code=TokenFailure.INVALID_TIMESTAMP,
                reason=f"Invalid {kind.label} token: embedded timestamp is not a real date.",
            )

        now = _as_utc(now or datetime.now(timezone.utc))
        age = now - issued_at
        max_age = self.max_ages[kind]

        if age < -self.clock_skew:
            return TokenValidation(
                kind=kind,
                valid=False,
                code=TokenFailure.NOT_YET_VALID,
                reason=f"Invalid {kind.label} token: issued in the future.",
                issued_at=issued_at,
            )

        if age > max_age:
            return TokenValidation(
                kind=kind,
                valid=False,
                code=TokenFailure.EXPIRED,
                reason=(
                    f"Expired {kind.label} token: issued {_describe_age(age)} ago, "
                    f"maximum age is {_describe_age(max_age)}. "
                    f"Repeat the {kind.label} step."
                ),
                issued_at=issued_at,
            )

        return TokenValidation(kind=kind, valid=True, issued_at=issued_at)

    def validate_all(
        self,
        location_token: Optional[str],
        inventory_token: Optional[str],
        payment_token: Optional[str],
        now: Optional[datetime] = None,
    ) -> Optional[TokenValidation]:
        """
        Check all three tokens, presence first and validity second.

        Returns:
            The first failing TokenValidation, or None when all are valid
        """
        submitted = {
            TokenKind.LOCATION: location_token,
            TokenKind.INVENTORY: inventory_token,
            TokenKind.PAYMENT: payment_token,
        }

        for kind, token in submitted.items():
            if token is None or not token.strip():
                return self.validate(kind, token, now)

        for kind, token in submitted.items():
            result = self.validate(kind, token, now)
            if not result.valid:
                logger.info(
                    "Precondition token rejected",
                    kind=kind.value,
                    code=result.code.value,
                )
                return result

        return None

    def require_all(
        self,
        location_token: Optional[str],
        inventory_token: Optional[str],
        payment_token: Optional[str],
        now: Optional[datetime] = None,
    ) -> None:
        """
        Raises:
            PreconditionError: For the first missing or invalid token
        """
        failure = self.validate_all(location_token, inventory_token, payment_token, now)
        if failure is not None:
            failure.raise_for_failure()
