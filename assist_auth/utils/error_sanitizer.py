"""
Turn raw error text into messages safe to show to the user.

Proxy and load-balancer error pages arrive as HTML; transport libraries
produce technical phrases. Neither should reach an alert dialog.
"""

from typing import Any

from assist_auth.config import HTML_MARKERS

GENERIC_MESSAGE = "An error occurred. Please try again."
UNAVAILABLE_MESSAGE = "Service temporarily unavailable. Please try again later."

# Longer than this is almost always a dumped page or stack trace
MAX_RAW_LENGTH = 1000
MAX_DISPLAY_LENGTH = 200

# (phrases, replacement) checked in order
KNOWN_PHRASES = [
    (("network request failed", "enotfound", "econnrefused", "name or service not known"),
     "Cannot connect to server. Please check your internet connection."),
    (("timeout", "timed out"), "Request timed out. Please try again."),
    (("401", "unauthorized"), "Authentication failed. Please log in again."),
    (("500", "internal server error"), "Server error. Please try again later."),
]


def is_html_response(text: str) -> bool:
    """Check whether a response body is an HTML page rather than JSON."""
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in HTML_MARKERS)


def extract_message(error: Any) -> str:
    """Pull a message out of a string, exception or error payload."""
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return str(getattr(error, "message", None) or error)
    if isinstance(error, dict):
        detail = error.get("detail") or error.get("message")
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    return str(error)


def sanitize_error(error: Any) -> str:
    """Return a short, user-presentable message for any error value."""
    message = extract_message(error).strip()
    if not message:
        return "An error occurred"

    if is_html_response(message) or len(message) > MAX_RAW_LENGTH:
        return UNAVAILABLE_MESSAGE

    lowered = message.lower()
    for phrases, replacement in KNOWN_PHRASES:
        if any(phrase in lowered for phrase in phrases):
            return replacement

    if len(message) > MAX_DISPLAY_LENGTH:
        return GENERIC_MESSAGE

    return message
