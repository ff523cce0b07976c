"""Tests for wire schemas, session states and the error taxonomy."""

import pytest
from pydantic import ValidationError

from assist_auth.exceptions import (
    AuthErrorKind,
    RequestTimeoutError,
    SecurityMismatchError,
    ServerUnavailableError,
    UnauthorizedError,
    UnknownAuthError,
)
from assist_auth.schemas import (
    Authenticated,
    AwaitingOtp,
    TokenPair,
    Unauthenticated,
    UserProfile,
    is_authenticated,
)


class TestTokenPair:
    """Token bundle validation."""

    def test_empty_token_rejected(self):
        """Test empty tokens fail validation."""
        with pytest.raises(ValidationError):
            TokenPair(access_token="", refresh_token="r")
        with pytest.raises(ValidationError):
            TokenPair(access_token="a", refresh_token="   ")

    def test_null_password_change_flag(self):
        """Test a null password change flag reads as False."""
        tokens = TokenPair(access_token="a", refresh_token="r", password_change_required=None)
        assert tokens.password_change_required is False


class TestUserProfile:
    """Profile parsing."""

    def test_unknown_fields_are_kept(self):
        """Test unknown profile fields are kept."""
        user = UserProfile.model_validate({"id": "u-1", "email": "A@Example.com ", "tenant": "acme"})

        assert user.normalized_email == "a@example.com"
        assert user.biometric_mfa_enabled is False
        assert user.model_extra == {"tenant": "acme"}


class TestSessionStates:
    """Immutable state snapshots."""

    def test_secrets_not_in_repr(self):
        """Test passwords and tokens stay out of repr."""
        pending = AwaitingOtp(email="u@example.com", password="hunter2")
        session = Authenticated(
            user=UserProfile(id=1, email="u@example.com"),
            tokens=TokenPair(access_token="secret-access", refresh_token="secret-refresh"),
        )

        assert "hunter2" not in repr(pending)
        assert "secret-access" not in repr(session)

    def test_is_authenticated(self):
        """Test the is_authenticated helper."""
        session = Authenticated(
            user=UserProfile(id=1, email="u@example.com"),
            tokens=TokenPair(access_token="a", refresh_token="r"),
        )

        assert is_authenticated(session)
        assert not is_authenticated(Unauthenticated())


class TestErrorTaxonomy:
    """AuthError construction."""

    def test_security_mismatch_default_message(self):
        """SecurityMismatchError carries the user-facing alert text."""
        error = SecurityMismatchError()

        assert error.kind == AuthErrorKind.SECURITY_MISMATCH
        assert "fingerprint login has been disabled" in error.message

    def test_transient_kinds(self):
        """Timeouts and server outages are transient; 401 is not."""
        assert RequestTimeoutError().is_transient
        assert ServerUnavailableError().is_transient
        assert not UnauthorizedError().is_transient

    def test_custom_message(self):
        """Test an explicit message overrides the default."""
        error = UnknownAuthError("Invalid request format", status_code=422)

        assert str(error) == "Invalid request format"
        assert error.status_code == 422
