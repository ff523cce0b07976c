"""User schemas."""

from pydantic import BaseModel, ConfigDict
from typing import Optional, Union
from datetime import datetime


class UserProfile(BaseModel):
    """Server-authoritative identity and MFA capability flags (GET /api/auth/me)."""

    model_config = ConfigDict(extra="allow")

    id: Union[int, str]
    email: str
    full_name: Optional[str] = None
    is_email_verified: bool = False
    is_active: bool = True
    is_superuser: bool = False
    email_mfa_enabled: bool = False
    biometric_mfa_enabled: bool = False
    totp_enabled: bool = False
    password_change_required: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def normalized_email(self) -> str:
        return self.email.strip().lower()
