"""Read unverified claims from JWT access tokens (diagnostics only)."""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

import jwt

logger = logging.getLogger(__name__)


def get_token_expiry(token: str) -> Optional[datetime]:
    """
    Return the `exp` claim of a JWT as an aware UTC datetime.

    The signature is not verified; the server remains the only authority
    on token validity. Opaque (non-JWT) tokens return None.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.InvalidTokenError:
        return None

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def seconds_until_expiry(token: str, now: Optional[float] = None) -> Optional[int]:
    """Seconds until the token's `exp` (negative once expired), or None if unknown."""
    expiry = get_token_expiry(token)
    if expiry is None:
        return None
    current = time.time() if now is None else now
    return int(expiry.timestamp() - current)
