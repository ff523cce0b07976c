"""Services for the authentication and session engine."""

from assist_auth.services.auth_api_client import AuthApiClient
from assist_auth.services.biometric_service import BiometricPrompt, BiometricService
from assist_auth.services.encryption_service import EncryptionService
from assist_auth.services.retry_policy import RetryPolicy, build_retry_policies
from assist_auth.services.session_controller import SessionController
from assist_auth.services.storage import EncryptedFileStorage, KeyValueStorage, MemoryStorage
from assist_auth.services.token_storage import AuthStorage

__all__ = [
    "AuthApiClient",
    "BiometricPrompt",
    "BiometricService",
    "EncryptionService",
    "RetryPolicy",
    "build_retry_policies",
    "SessionController",
    "EncryptedFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "AuthStorage",
]
