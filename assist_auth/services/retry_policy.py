"""
Retry policy table for auth API operations.

All retry and fallback behaviour lives here instead of at call sites. The
API client looks up its operation name and applies the policy uniformly.

Credential submissions and token refreshes are single-attempt: refresh
tokens rotate on use, so repeating a refresh whose response was lost can
burn the newly issued token.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

from assist_auth.config import settings
from assist_auth.exceptions import AuthErrorKind, TRANSIENT_KINDS


@dataclass(frozen=True)
class RetryPolicy:
    """How one operation reacts to failures."""
    max_attempts: int = 1
    backoff_seconds: Tuple[float, ...] = ()
    retry_on: FrozenSet[AuthErrorKind] = frozenset()
    # Errors after which the caller should switch to `fallback_operation`
    fallback_on: FrozenSet[AuthErrorKind] = frozenset()
    fallback_operation: Optional[str] = None

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (0-based); repeats the last step."""
        if not self.backoff_seconds:
            return 0.0
        return self.backoff_seconds[min(attempt, len(self.backoff_seconds) - 1)]

    def should_retry(self, kind: AuthErrorKind, attempt: int) -> bool:
        return kind in self.retry_on and attempt + 1 < self.max_attempts

    def should_fall_back(self, kind: AuthErrorKind) -> bool:
        return self.fallback_operation is not None and kind in self.fallback_on


SINGLE_ATTEMPT = RetryPolicy()


def build_retry_policies(backoff_seconds: Optional[Tuple[float, ...]] = None) -> Dict[str, RetryPolicy]:
    """Build the operation -> policy table using the configured backoff."""
    backoff = tuple(backoff_seconds if backoff_seconds is not None else settings.AUTH_RETRY_BACKOFF_SECONDS)
    transient_retry = RetryPolicy(max_attempts=3, backoff_seconds=backoff, retry_on=TRANSIENT_KINDS)

    return {
        "login": SINGLE_ATTEMPT,
        "verify_login_code": SINGLE_ATTEMPT,
        "send_login_code": RetryPolicy(max_attempts=2, backoff_seconds=backoff, retry_on=TRANSIENT_KINDS),
        "get_user_details": transient_retry,
        "refresh_token": SINGLE_ATTEMPT,
        "refresh_token_with_device": RetryPolicy(
            fallback_on=frozenset({AuthErrorKind.DEVICE_NOT_RECOGNIZED, AuthErrorKind.UNKNOWN}),
            fallback_operation="refresh_token",
        ),
        "logout": SINGLE_ATTEMPT,
        "change_password": SINGLE_ATTEMPT,
        "change_password_direct": SINGLE_ATTEMPT,
        "reset_password": SINGLE_ATTEMPT,
        "forgot_password": RetryPolicy(max_attempts=2, backoff_seconds=backoff, retry_on=TRANSIENT_KINDS),
        "register_biometric_device": SINGLE_ATTEMPT,
        "remove_biometric_device": SINGLE_ATTEMPT,
        "enable_biometric_flag": SINGLE_ATTEMPT,
        "disable_biometric_flag": SINGLE_ATTEMPT,
        "setup_email_mfa": SINGLE_ATTEMPT,
        "verify_email_mfa": SINGLE_ATTEMPT,
        "disable_email_mfa": SINGLE_ATTEMPT,
    }


RETRY_POLICIES = build_retry_policies()
