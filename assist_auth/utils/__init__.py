"""Utility modules for the auth client."""

from assist_auth.utils.error_sanitizer import sanitize_error, is_html_response
from assist_auth.utils.device_info import DeviceInfo
from assist_auth.utils.user_agent import build_user_agent, get_client_headers
from assist_auth.utils.single_flight import SingleFlight
from assist_auth.utils.token_claims import get_token_expiry, seconds_until_expiry

__all__ = [
    "sanitize_error",
    "is_html_response",
    "DeviceInfo",
    "build_user_agent",
    "get_client_headers",
    "SingleFlight",
    "get_token_expiry",
    "seconds_until_expiry",
]
