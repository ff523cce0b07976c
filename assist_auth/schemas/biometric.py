"""Biometric vault schemas."""

from dataclasses import dataclass, field
from pydantic import BaseModel
from typing import Optional


class DeviceRegistrationRequest(BaseModel):
    """Body of POST /api/biometric/register."""
    device_fingerprint: str
    device_name: str = "Mobile Device"
    device_model: str = "Unknown"
    public_key: str = "client-stored-key"


class DeviceRemovalRequest(BaseModel):
    """Body of DELETE /api/biometric/remove-device."""
    device_fingerprint: str


@dataclass(frozen=True)
class BiometricAvailability:
    """Sensor capability, independent of whether biometric login is enabled."""
    available: bool
    kind: Optional[str] = None


@dataclass(frozen=True)
class BiometricRecord:
    """Refresh token bound to one verified email on this device."""
    refresh_token: str = field(repr=False)
    device_fingerprint: str
    bound_email: str
