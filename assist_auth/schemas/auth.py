"""Authentication schemas."""

from enum import Enum
from pydantic import BaseModel, EmailStr, field_validator
from typing import Optional


class LoginRequest(BaseModel):
    """Login request body. `totp_code` is sent empty on the first attempt."""
    email: EmailStr
    password: str
    totp_code: str = ""


class LoginCodeRequest(BaseModel):
    """Credentials re-submitted to request an emailed login code."""
    email: EmailStr
    password: str


class RefreshTokenRequest(BaseModel):
    """Refresh request; `device_fingerprint` selects device validation."""
    refresh_token: str
    device_fingerprint: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    """Authenticated password change."""
    current_password: str
    new_password: str


class ChangePasswordDirectRequest(BaseModel):
    """Credential-based password change (forced reset after login)."""
    email: EmailStr
    current_password: str
    new_password: str


class ForgotPasswordRequest(BaseModel):
    """Request a password reset email."""
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Password reset using the token from a forgot-password email."""
    token: str
    new_password: str


class MfaCodeRequest(BaseModel):
    """Verification code confirming email MFA enrollment."""
    mfa_code: str


class TokenPair(BaseModel):
    """Access/refresh token bundle issued by the auth backend."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    password_change_required: bool = False

    @field_validator("access_token", "refresh_token")
    @classmethod
    def token_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Token must not be empty")
        return v

    @field_validator("password_change_required", mode="before")
    @classmethod
    def none_is_false(cls, v):
        return bool(v)


class MessageResponse(BaseModel):
    """Plain acknowledgement returned by the MFA and password endpoints."""
    message: str = ""


class MfaMethod(str, Enum):
    """Second-factor delivery method requested by the server."""
    EMAIL = "email"
    TOTP = "totp"


class LoginOutcome(str, Enum):
    """Result of a login step; callers branch on it before treating login as complete."""
    AUTHENTICATED = "authenticated"
    PASSWORD_CHANGE_REQUIRED = "password_change_required"
    OTP_REQUIRED = "otp_required"
