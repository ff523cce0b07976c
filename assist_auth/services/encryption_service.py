"""Encryption of locally persisted secrets using Fernet symmetric encryption."""

from cryptography.fernet import Fernet, InvalidToken
from typing import Optional
import base64
import hashlib
import logging

from assist_auth.config import settings

logger = logging.getLogger(__name__)


class EncryptionService:
    """Service for encrypting and decrypting values written to device storage."""

    def __init__(self, key: Optional[str] = None):
        self._explicit_key = key
        self._key = None
        self._fernet = None

    @property
    def fernet(self) -> Fernet:
        """Lazy load encryption key and create Fernet instance."""
        if self._fernet is None:
            self._key = self._get_encryption_key()
            self._fernet = Fernet(self._key)
        return self._fernet

    def _get_encryption_key(self) -> bytes:
        """Get encryption key from the constructor, environment, or derive one for development."""
        # Priority 1: Key passed in by the host (e.g. from the platform keystore)
        if self._explicit_key:
            return self._explicit_key.encode()

        # Priority 2: Direct environment variable (STORAGE_ENCRYPTION_KEY)
        if settings.STORAGE_ENCRYPTION_KEY:
            logger.info("Using storage encryption key from environment variable")
            return settings.STORAGE_ENCRYPTION_KEY.encode()

        # Priority 3: Development mode - derive from SECRET_KEY
        if settings.ENVIRONMENT == "development":
            logger.warning("Using development storage encryption key - not for production!")
            key_material = hashlib.sha256(settings.SECRET_KEY.encode()).digest()
            return base64.urlsafe_b64encode(key_material)

        raise ValueError(
            "No storage encryption key configured. Set STORAGE_ENCRYPTION_KEY "
            "or pass a key to EncryptionService."
        )

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key for STORAGE_ENCRYPTION_KEY."""
        return Fernet.generate_key().decode()

    def encrypt_string(self, plaintext: str) -> str:
        """Encrypt a string value."""
        try:
            encrypted_bytes = self.fernet.encrypt(plaintext.encode())
            return encrypted_bytes.decode()
        except Exception as e:
            logger.error(f"Encryption error: {e}")
            raise

    def decrypt_string(self, ciphertext: str) -> str:
        """Decrypt a string value."""
        try:
            decrypted_bytes = self.fernet.decrypt(ciphertext.encode())
            return decrypted_bytes.decode()
        except InvalidToken:
            logger.error("Decryption error: value was written with a different key or is corrupt")
            raise
        except Exception as e:
            logger.error(f"Decryption error: {e}")
            raise

    def _is_encrypted(self, value: str) -> bool:
        """Check if a value appears to be encrypted (Fernet format)."""
        # Fernet tokens start with 'gAAAAA' and are typically 100+ characters
        return value.startswith("gAAAAA") and len(value) >= 100
