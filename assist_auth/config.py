"""
Client Configuration Settings
Support Assistant Authentication & Session Engine
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Application identity (used for the User-Agent and client headers)
    APP_NAME: str = "AssistChat"
    APP_VERSION: str = "1.16.0"
    APP_BUILD: str = "116"
    SECRET_KEY: str = "change-this-in-production"

    # Auth backend
    AUTH_API_BASE_URL: str = "https://localhost:8004"
    TENANT_ID: str = "default"
    AUTH_REQUEST_TIMEOUT_SECONDS: float = 30.0
    AUTH_RETRY_BACKOFF_SECONDS: List[float] = [1, 2, 4]

    # Client identification headers (analytics only, never authorization)
    CLIENT_SOURCE: str = "mobile-app"
    APP_TYPE: str = "support-assistant"

    # Session validation
    VALIDATION_BEFORE_REQUEST_INTERVAL_SECONDS: int = 30 * 60  # 30 minutes
    REFRESH_TOKEN_ROTATION: bool = True  # Re-bind biometric token after every refresh

    # Local persistence
    STORAGE_NAMESPACE: str = "assist_auth"
    STORAGE_DIR: str = ".assist_auth"
    STORAGE_ENCRYPTION_KEY: str = ""  # Fernet key; derived from SECRET_KEY in development

    # Biometric prompt
    BIOMETRIC_PROMPT_MESSAGE: str = "Authenticate to login"
    BIOMETRIC_CANCEL_TEXT: str = "Cancel"

    # MFA
    OTP_LENGTH: int = 6


settings = Settings()

# Server error codes that carry meaning beyond the HTTP status
EMAIL_NOT_VERIFIED_CODE = "email_not_verified"

# Markers that identify an HTML error page (proxy / load balancer)
HTML_MARKERS = ["<!doctype html", "<html", "<head>", "<body>", "<style>", "<script>"]
