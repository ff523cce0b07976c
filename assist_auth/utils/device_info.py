"""Device and install identity used for fingerprints and the User-Agent."""

import logging
import platform
import secrets
import uuid
from dataclasses import dataclass

from assist_auth.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    """Static facts about this device and app build."""
    unique_id: str
    model: str
    system_name: str
    system_version: str
    brand: str
    device_name: str
    app_name: str
    app_version: str
    build_number: str

    @classmethod
    def detect(cls) -> "DeviceInfo":
        """Collect device facts from the running host."""
        try:
            return cls(
                unique_id=f"{uuid.getnode():012x}",
                model=platform.machine() or "Unknown",
                system_name=platform.system() or "Unknown",
                system_version=platform.release() or "0",
                brand=platform.system() or "Generic",
                device_name=platform.node() or "Mobile Device",
                app_name=settings.APP_NAME,
                app_version=settings.APP_VERSION,
                build_number=settings.APP_BUILD,
            )
        except OSError as e:
            logger.warning(f"Could not read device info, using fallback identity: {e}")
            return cls(
                unique_id=f"mobile-{secrets.token_hex(6)}",
                model="Unknown",
                system_name="Unknown",
                system_version="0",
                brand="Generic",
                device_name="Mobile Device",
                app_name=settings.APP_NAME,
                app_version=settings.APP_VERSION,
                build_number=settings.APP_BUILD,
            )

    @property
    def fingerprint(self) -> str:
        """Identifier registered with the backend for device-validated refresh."""
        return f"{self.unique_id}-{self.model}-{self.system_name}-{self.system_version}"
