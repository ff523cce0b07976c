"""Data model: wire schemas and session states."""

from assist_auth.schemas.auth import (
    LoginRequest,
    LoginCodeRequest,
    RefreshTokenRequest,
    ChangePasswordRequest,
    ChangePasswordDirectRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    MfaCodeRequest,
    TokenPair,
    MessageResponse,
    MfaMethod,
    LoginOutcome,
)
from assist_auth.schemas.user import UserProfile
from assist_auth.schemas.biometric import (
    DeviceRegistrationRequest,
    DeviceRemovalRequest,
    BiometricAvailability,
    BiometricRecord,
)
from assist_auth.schemas.session import (
    Unauthenticated,
    Authenticating,
    AwaitingOtp,
    Authenticated,
    SessionExpired,
    Error,
    AuthSessionState,
    is_authenticated,
)

__all__ = [
    "LoginRequest",
    "LoginCodeRequest",
    "RefreshTokenRequest",
    "ChangePasswordRequest",
    "ChangePasswordDirectRequest",
    "ForgotPasswordRequest",
    "ResetPasswordRequest",
    "MfaCodeRequest",
    "TokenPair",
    "MessageResponse",
    "MfaMethod",
    "LoginOutcome",
    "UserProfile",
    "DeviceRegistrationRequest",
    "DeviceRemovalRequest",
    "BiometricAvailability",
    "BiometricRecord",
    "Unauthenticated",
    "Authenticating",
    "AwaitingOtp",
    "Authenticated",
    "SessionExpired",
    "Error",
    "AuthSessionState",
    "is_authenticated",
]
