"""
Tests for precondition token issuing and validation.
"""

import re
from datetime import datetime, timedelta, timezone

import pytest

from src.core.config import Settings
from src.services.preconditions.validator import (
    PreconditionError,
    PreconditionValidator,
    TokenFailure,
    TokenKind,
    issue_token,
    parse_token_timestamp,
)

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def validator() -> PreconditionValidator:
    return PreconditionValidator.from_settings(Settings())


def tokens_at(now: datetime) -> dict[str, str]:
    return {
        "location_token": issue_token(TokenKind.LOCATION, now),
        "inventory_token": issue_token(TokenKind.INVENTORY, now),
        "payment_token": issue_token(TokenKind.PAYMENT, now),
    }


# ============================================================================
# Issuing
# ============================================================================


class TestIssueToken:
    """Token format produced by ``issue_token``."""

    @pytest.mark.parametrize(
        "kind,prefix",
        [
            (TokenKind.LOCATION, "LOC"),
            (TokenKind.INVENTORY, "INV"),
            (TokenKind.PAYMENT, "TXN"),
        ],
    )
    def test_token_format(self, kind, prefix):
        token = issue_token(kind, NOW)

        assert re.fullmatch(rf"{prefix}_20261018_120000_[A-F0-9]{{8}}", token)

    def test_embedded_timestamp_round_trips(self):
        token = issue_token(TokenKind.PAYMENT, NOW)

        assert parse_token_timestamp(TokenKind.PAYMENT, token) == NOW

    def test_naive_time_is_treated_as_utc(self):
        token = issue_token(TokenKind.LOCATION, datetime(2026, 1, 2, 3, 4, 5))

        assert token.startswith("LOC_20260102_030405_")

    def test_suffixes_differ(self):
        assert issue_token(TokenKind.INVENTORY, NOW) != issue_token(TokenKind.INVENTORY, NOW)


# ============================================================================
# Single token validation
# ============================================================================


class TestValidate:
    """Failure codes distinguish missing, malformed and expired tokens."""

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_missing(self, validator, token):
        result = validator.validate(TokenKind.LOCATION, token, NOW)

        assert not result.valid
        assert result.code is TokenFailure.MISSING
        assert "Missing location verification token" in result.reason

    @pytest.mark.parametrize(
        "token",
        [
            "INV_20261018_120000_ABCDEF12",
            "LOC_20261018_120000_abcdef12",
            "LOC_2026101_120000_ABCDEF12",
            "LOC_20261018_120000_ABCDEF1",
            "LOC-20261018-120000-ABCDEF12",
            "LOC_20261018_120000_ABCDEF12_EXTRA",
        ],
    )
    def test_malformed(self, validator, token):
        result = validator.validate(TokenKind.LOCATION, token, NOW)

        assert result.code is TokenFailure.MALFORMED
        assert "LOC_YYYYMMDD_HHMMSS_XXXXXXXX" in result.reason

    def test_impossible_date(self, validator):
        result = validator.validate(TokenKind.LOCATION, "LOC_20261341_250000_ABCDEF12", NOW)

        assert result.code is TokenFailure.INVALID_TIMESTAMP

    def test_location_token_25_hours_old_is_expired_not_malformed(self, validator):
        token = issue_token(TokenKind.LOCATION, NOW - timedelta(hours=25))

        result = validator.validate(TokenKind.LOCATION, token, NOW)

        assert result.code is TokenFailure.EXPIRED
        assert result.reason.startswith("Expired location verification token")
        assert "25.0 hours" in result.reason

    @pytest.mark.parametrize(
        "kind,fresh,stale",
        [
            (TokenKind.LOCATION, timedelta(hours=23, minutes=59), timedelta(hours=24, seconds=1)),
            (TokenKind.INVENTORY, timedelta(minutes=59), timedelta(minutes=61)),
            (TokenKind.PAYMENT, timedelta(minutes=119), timedelta(minutes=121)),
        ],
    )
    def test_maximum_ages(self, validator, kind, fresh, stale):
        assert validator.validate(kind, issue_token(kind, NOW - fresh), NOW).valid
        assert (
            validator.validate(kind, issue_token(kind, NOW - stale), NOW).code
            is TokenFailure.EXPIRED
        )

    def test_future_token_within_skew_is_accepted(self, validator):
        token = issue_token(TokenKind.PAYMENT, NOW + timedelta(minutes=2))

        assert validator.validate(TokenKind.PAYMENT, token, NOW).valid

    def test_future_token_beyond_skew_is_rejected(self, validator):
        token = issue_token(TokenKind.PAYMENT, NOW + timedelta(hours=1))

        result = validator.validate(TokenKind.PAYMENT, token, NOW)

        assert result.code is TokenFailure.NOT_YET_VALID

    def test_surrounding_whitespace_is_ignored(self, validator):
        token = issue_token(TokenKind.INVENTORY, NOW)

        result = validator.validate(TokenKind.INVENTORY, f"  {token} ", NOW)

        assert result.valid
        assert result.issued_at == NOW


# ============================================================================
# All three tokens
# ============================================================================


class TestValidateAll:
    """Presence of all three tokens is checked before validity of any."""

    def test_all_valid(self, validator):
        assert validator.validate_all(now=NOW, **tokens_at(NOW)) is None

    def test_missing_reported_before_invalid(self, validator):
        tokens = tokens_at(NOW)
        tokens["location_token"] = "garbage"
        tokens["payment_token"] = None

        failure = validator.validate_all(now=NOW, **tokens)

        assert failure.kind is TokenKind.PAYMENT
        assert failure.code is TokenFailure.MISSING

    def test_first_invalid_in_check_order(self, validator):
        tokens = tokens_at(NOW)
        tokens["inventory_token"] = issue_token(TokenKind.INVENTORY, NOW - timedelta(hours=2))
        tokens["payment_token"] = "TXN_bad"

        failure = validator.validate_all(now=NOW, **tokens)

        assert failure.kind is TokenKind.INVENTORY
        assert failure.code is TokenFailure.EXPIRED

    def test_require_all_raises(self, validator):
        tokens = tokens_at(NOW)
        tokens["location_token"] = ""

        with pytest.raises(PreconditionError) as exc_info:
            validator.require_all(now=NOW, **tokens)

        assert exc_info.value.code is TokenFailure.MISSING
        assert exc_info.value.kind is TokenKind.LOCATION

    def test_custom_max_age_from_settings(self):
        validator = PreconditionValidator.from_settings(
            Settings(inventory_token_max_age_minutes=5)
        )
        token = issue_token(TokenKind.INVENTORY, NOW - timedelta(minutes=10))

        assert validator.validate(TokenKind.INVENTORY, token, NOW).code is TokenFailure.EXPIRED
