"""
Biometric credential vault.

Stores a refresh token bound to one verified email and this device's
fingerprint. The platform sensor is reached through the BiometricPrompt
seam; the host application supplies the implementation (Face ID, Android
BiometricPrompt, ...).

Partial vault state (token without bound email, flag without token) is
treated as no vault at all.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from assist_auth.config import settings
from assist_auth.exceptions import AuthError
from assist_auth.schemas.biometric import BiometricAvailability, BiometricRecord
from assist_auth.services.auth_api_client import AuthApiClient
from assist_auth.services.storage import KeyValueStorage
from assist_auth.utils.device_info import DeviceInfo

logger = logging.getLogger(__name__)

BIOMETRIC_STORAGE_KEY = "biometric_refresh_token"
BIOMETRIC_ENABLED_KEY = "biometric_enabled"
DEVICE_FINGERPRINT_KEY = "device_fingerprint"
BIOMETRIC_USER_EMAIL_KEY = "biometric_user_email"

VAULT_KEYS = [BIOMETRIC_STORAGE_KEY, BIOMETRIC_ENABLED_KEY, DEVICE_FINGERPRINT_KEY, BIOMETRIC_USER_EMAIL_KEY]


class BiometricPrompt(ABC):
    """Platform biometric sensor."""

    @abstractmethod
    async def is_sensor_available(self) -> BiometricAvailability:
        """Whether hardware exists and the user has enrolled a biometric."""

    @abstractmethod
    async def simple_prompt(self, prompt_message: str, cancel_button_text: str) -> bool:
        """Show the system prompt; True only when the user authenticated."""


class UnavailableBiometricPrompt(BiometricPrompt):
    """Used when the host provides no sensor integration."""

    async def is_sensor_available(self) -> BiometricAvailability:
        return BiometricAvailability(available=False)

    async def simple_prompt(self, prompt_message: str, cancel_button_text: str) -> bool:
        return False


class BiometricService:
    """Vault for the biometric-bound refresh token."""

    def __init__(
        self,
        storage: KeyValueStorage,
        api_client: AuthApiClient,
        prompt: Optional[BiometricPrompt] = None,
        device_info: Optional[DeviceInfo] = None,
    ):
        self.storage = storage
        self.api_client = api_client
        self.prompt = prompt or UnavailableBiometricPrompt()
        self.device_info = device_info or api_client.device_info

    async def is_biometric_available(self) -> BiometricAvailability:
        """Check if device has biometric hardware and user has enrolled biometrics."""
        try:
            return await self.prompt.is_sensor_available()
        except Exception as e:
            # Platform sensor code is host-provided; any failure means "no sensor"
            logger.warning(f"Error checking biometric availability: {e}")
            return BiometricAvailability(available=False)

    async def get_record(self) -> Optional[BiometricRecord]:
        """Return the vault contents, or None unless every field is present."""
        values = await self.storage.multi_get(VAULT_KEYS)
        if values[BIOMETRIC_ENABLED_KEY] != "true":
            return None

        refresh_token = values[BIOMETRIC_STORAGE_KEY]
        bound_email = values[BIOMETRIC_USER_EMAIL_KEY]
        if not refresh_token or not bound_email:
            logger.warning("Biometric vault is incomplete, treating as disabled")
            return None

        return BiometricRecord(
            refresh_token=refresh_token,
            device_fingerprint=values[DEVICE_FINGERPRINT_KEY] or self.device_info.fingerprint,
            bound_email=bound_email,
        )

    async def is_biometric_enabled(self) -> bool:
        """Check if biometric login is currently enabled and usable."""
        return await self.get_record() is not None

    async def get_device_fingerprint(self) -> str:
        """Get the stored device fingerprint, generating and storing one if needed."""
        stored = await self.storage.get_item(DEVICE_FINGERPRINT_KEY)
        if stored:
            return stored

        fingerprint = self.device_info.fingerprint
        await self.storage.set_item(DEVICE_FINGERPRINT_KEY, fingerprint)
        return fingerprint

    async def get_biometric_user_email(self) -> Optional[str]:
        """Email the vault is bound to, if biometric login is enabled."""
        record = await self.get_record()
        return record.bound_email if record else None

    async def enable_biometric(
        self,
        refresh_token: str,
        access_token: str,
        device_fingerprint: str,
        email: str,
    ) -> bool:
        """
        Bind a refresh token to `email` on this device.

        Backend device registration is best-effort. Local storage failures
        propagate.

        Args:
            refresh_token: Current session refresh token
            access_token: Current access token (for device registration)
            device_fingerprint: Fingerprint from get_device_fingerprint()
            email: Verified account email to bind to

        Returns:
            True when the vault was written
        """
        if not refresh_token or not email:
            logger.warning("Cannot enable biometric without a refresh token and email")
            return False

        logger.info(f"Enabling biometric login for {email}")
        try:
            await self.api_client.register_biometric_device(access_token, device_fingerprint)
            logger.info("Device registered with backend")
        except AuthError as e:
            logger.warning(f"Backend device registration failed ({e.kind.value}), continuing with client-only mode")

        await self.storage.multi_set([
            (BIOMETRIC_STORAGE_KEY, refresh_token),
            (DEVICE_FINGERPRINT_KEY, device_fingerprint),
            (BIOMETRIC_USER_EMAIL_KEY, email.strip().lower()),
            (BIOMETRIC_ENABLED_KEY, "true"),
        ])
        logger.info(f"Biometric login enabled for {email}")
        return True

    async def update_refresh_token(self, refresh_token: str) -> bool:
        """Re-bind the vault to a rotated refresh token. No-op when disabled."""
        if not await self.is_biometric_enabled():
            return False
        await self.storage.set_item(BIOMETRIC_STORAGE_KEY, refresh_token)
        logger.debug("Biometric refresh token rotated")
        return True

    async def authenticate_and_get_token(self) -> Optional[str]:
        """Show the biometric prompt and return the stored refresh token on success."""
        if not await self.is_biometric_enabled():
            logger.info("Biometric login requested but vault is not enabled")
            return None

        try:
            success = await self.prompt.simple_prompt(
                settings.BIOMETRIC_PROMPT_MESSAGE, settings.BIOMETRIC_CANCEL_TEXT
            )
        except Exception as e:
            logger.warning(f"Error during biometric authentication: {e}")
            return None

        if not success:
            logger.info("Biometric authentication failed or cancelled")
            return None

        return await self.get_stored_token()

    async def get_stored_token(self) -> Optional[str]:
        """Get the stored token WITHOUT prompting. Only for silent session recovery."""
        record = await self.get_record()
        if record is None:
            return None
        return record.refresh_token

    async def disable_biometric(self, access_token: Optional[str] = None) -> None:
        """Best-effort unregister the device, then delete every vault field."""
        try:
            if access_token:
                fingerprint = await self.storage.get_item(DEVICE_FINGERPRINT_KEY)
                if fingerprint:
                    try:
                        await self.api_client.remove_biometric_device(access_token, fingerprint)
                        logger.info("Device unregistered from backend")
                    except AuthError as e:
                        logger.warning(f"Failed to unregister device from backend ({e.kind.value})")
        finally:
            await self.storage.multi_remove(VAULT_KEYS)
            logger.info("Biometric login disabled and tokens cleared")
