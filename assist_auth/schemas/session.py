"""
Session state union published by the session controller.

Exactly one of these is current at a time. They are immutable snapshots:
consumers read them and never mutate them.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from assist_auth.exceptions import AuthErrorKind
from assist_auth.schemas.auth import MfaMethod, TokenPair
from assist_auth.schemas.user import UserProfile


@dataclass(frozen=True)
class Unauthenticated:
    """No session; the login screen is shown."""


@dataclass(frozen=True)
class Authenticating:
    """A login, OTP or biometric flow is in progress."""


@dataclass(frozen=True)
class AwaitingOtp:
    """Password accepted, second factor pending. `error` holds the last failed attempt."""
    email: str
    password: str = field(repr=False)
    mfa_method: MfaMethod = MfaMethod.EMAIL
    error: Optional[str] = None


@dataclass(frozen=True)
class Authenticated:
    """
    Live session. Tokens and user are always replaced together.

    `security_notice` is set when the biometric vault failed its security
    checks during recovery; consumers show it once and call clear_error().
    """
    user: UserProfile
    tokens: TokenPair = field(repr=False)
    password_change_required: bool = False
    security_notice: Optional[str] = None


@dataclass(frozen=True)
class SessionExpired:
    """Session could not be recovered; consumers redirect to login and show `notice` once."""
    notice: str = "Your session has expired. Please log in again."
    security_alert: bool = False


@dataclass(frozen=True)
class Error:
    """An explicit user action failed. No partial authentication is held."""
    message: str
    kind: AuthErrorKind = AuthErrorKind.UNKNOWN
    security_alert: bool = False


AuthSessionState = Union[Unauthenticated, Authenticating, AwaitingOtp, Authenticated, SessionExpired, Error]


def is_authenticated(state: AuthSessionState) -> bool:
    """Convenience check for consumers."""
    return isinstance(state, Authenticated)
