"""
Error taxonomy for the authentication client.

Every failure leaving the API client or the session controller is one of
the kinds below. Messages are user-safe: raw transport errors and server
markup never reach them.

Usage:
    from assist_auth.exceptions import AuthError, AuthErrorKind

    try:
        await controller.login(email, password)
    except AuthError as e:
        if e.kind == AuthErrorKind.ACCOUNT_LOCKED:
            ...
"""

from enum import Enum
from typing import Optional


class AuthErrorKind(str, Enum):
    """Closed set of authentication failure kinds."""
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    MFA_REQUIRED_EMAIL = "mfa_required_email"
    MFA_REQUIRED_TOTP = "mfa_required_totp"
    ACCOUNT_LOCKED = "account_locked"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    DEVICE_NOT_RECOGNIZED = "device_not_recognized"
    SERVER_UNAVAILABLE = "server_unavailable"
    TIMEOUT = "timeout"
    NETWORK_UNREACHABLE = "network_unreachable"
    SECURITY_MISMATCH = "security_mismatch"
    UNKNOWN = "unknown"


# Failures that say nothing about the validity of the current session
TRANSIENT_KINDS = frozenset({
    AuthErrorKind.TIMEOUT,
    AuthErrorKind.NETWORK_UNREACHABLE,
    AuthErrorKind.SERVER_UNAVAILABLE,
})


class AuthError(Exception):
    """
    Base class for all authentication errors.
    `message` is safe to show to the user.
    """
    kind = AuthErrorKind.UNKNOWN
    default_message = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.message)

    @property
    def is_transient(self) -> bool:
        """True when the failure is a connectivity or availability problem."""
        return self.kind in TRANSIENT_KINDS

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, status_code={self.status_code})"


class InvalidCredentialsError(AuthError):
    """Wrong email/password or verification code."""
    kind = AuthErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid email or password"


class EmailNotVerifiedError(AuthError):
    """Account exists but the email address is not verified (403)."""
    kind = AuthErrorKind.EMAIL_NOT_VERIFIED
    default_message = "Please verify your email address before logging in."


class MfaRequiredEmailError(AuthError):
    """Login needs an emailed one-time code."""
    kind = AuthErrorKind.MFA_REQUIRED_EMAIL
    default_message = "A verification code is required. Check your email."


class MfaRequiredTotpError(AuthError):
    """Login needs an authenticator-app (TOTP) code."""
    kind = AuthErrorKind.MFA_REQUIRED_TOTP
    default_message = "Enter the code from your authenticator app."


class AccountLockedError(AuthError):
    """Account is temporarily locked (423)."""
    kind = AuthErrorKind.ACCOUNT_LOCKED
    default_message = "Account is temporarily locked. Please try again later."


class RateLimitedError(AuthError):
    """Too many requests (429)."""
    kind = AuthErrorKind.RATE_LIMITED
    default_message = "Too many attempts. Please wait and try again."


class UnauthorizedError(AuthError):
    """Access or refresh token is expired or invalid."""
    kind = AuthErrorKind.UNAUTHORIZED
    default_message = "Session expired. Please login again."


class DeviceNotRecognizedError(AuthError):
    """Device fingerprint is not registered for biometric refresh (403)."""
    kind = AuthErrorKind.DEVICE_NOT_RECOGNIZED
    default_message = "This device is not recognized. Please login with your password."


class ServerUnavailableError(AuthError):
    """Server error or proxy error page (5xx / HTML body)."""
    kind = AuthErrorKind.SERVER_UNAVAILABLE
    default_message = "Service temporarily unavailable. Please try again later."


class RequestTimeoutError(AuthError):
    """Request did not complete within the configured timeout."""
    kind = AuthErrorKind.TIMEOUT
    default_message = "Request timed out. Please try again."


class NetworkUnreachableError(AuthError):
    """DNS, connection refused, no route to host."""
    kind = AuthErrorKind.NETWORK_UNREACHABLE
    default_message = "Cannot connect to server. Please check your internet connection."


class SecurityMismatchError(AuthError):
    """Biometric credential does not belong to the verified account."""
    kind = AuthErrorKind.SECURITY_MISMATCH
    default_message = (
        "For your security, fingerprint login has been disabled. "
        "Please login with your email and password."
    )


class UnknownAuthError(AuthError):
    """Anything the taxonomy does not name more precisely."""
    kind = AuthErrorKind.UNKNOWN
