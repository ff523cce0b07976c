"""Client identification headers sent with every auth request."""

from typing import Dict

from assist_auth.config import settings
from assist_auth.utils.device_info import DeviceInfo

CLIENT_PRODUCT = "AssistChat/1.0"


def build_user_agent(device: DeviceInfo) -> str:
    """
    Build the User-Agent string for API requests.

    Args:
        device: Device and app build facts

    Returns:
        e.g. "AssistChat/1.16.0 (Android 14; Google Pixel 8; Build 116) AssistChat/1.0"
    """
    return (
        f"{device.app_name}/{device.app_version} "
        f"({device.system_name} {device.system_version}; {device.brand} {device.model}; "
        f"Build {device.build_number}) {CLIENT_PRODUCT}"
    )


def get_client_headers(device: DeviceInfo) -> Dict[str, str]:
    """Headers used for server-side analytics, never for authorization."""
    return {
        "User-Agent": build_user_agent(device),
        "X-Client-Source": settings.CLIENT_SOURCE,
        "X-Platform": device.system_name.lower(),
        "X-App-Type": settings.APP_TYPE,
    }
