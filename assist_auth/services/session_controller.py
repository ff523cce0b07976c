"""
Session controller: the authentication state machine.

Owns the TokenPair and UserProfile for the process and publishes one
immutable AuthSessionState at a time. Handles:
- Password login, email-OTP / TOTP second factor
- Biometric login with identity and backend-flag security gates
- App-start recovery and silent recovery after a 401
- On-demand validation before authenticated requests
- Logout (biometric vault is kept; revocation is a separate action)

There is no periodic background validity check. Validation runs on demand
in validate_session_before_request().
"""

import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional, Tuple

from assist_auth.config import settings
from assist_auth.exceptions import (
    AuthError,
    AuthErrorKind,
    InvalidCredentialsError,
    MfaRequiredEmailError,
    MfaRequiredTotpError,
    SecurityMismatchError,
    UnauthorizedError,
)
from assist_auth.schemas.auth import LoginOutcome, MessageResponse, MfaMethod, TokenPair
from assist_auth.schemas.biometric import BiometricAvailability, BiometricRecord
from assist_auth.schemas.session import (
    Authenticated,
    Authenticating,
    AuthSessionState,
    AwaitingOtp,
    Error,
    SessionExpired,
    Unauthenticated,
)
from assist_auth.schemas.user import UserProfile
from assist_auth.services.auth_api_client import AuthApiClient
from assist_auth.services.biometric_service import BiometricPrompt, BiometricService
from assist_auth.services.storage import EncryptedFileStorage, KeyValueStorage
from assist_auth.services.token_storage import AuthStorage
from assist_auth.utils.single_flight import SingleFlight
from assist_auth.utils.token_claims import seconds_until_expiry

logger = logging.getLogger(__name__)

StateListener = Callable[[AuthSessionState], None]

LOGIN_EXPIRED_MESSAGE = "Your login session has expired. Please login again."
BIOMETRIC_REVOKED_MESSAGE = (
    "Fingerprint login was turned off for your account. "
    "Please login with your email and password."
)


class SessionController:
    """Single writer of the auth session state."""

    def __init__(
        self,
        api_client: AuthApiClient,
        auth_storage: AuthStorage,
        biometric: BiometricService,
        validation_interval: Optional[float] = None,
        refresh_token_rotation: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_client = api_client
        self.auth_storage = auth_storage
        self.biometric = biometric
        self.validation_interval = (
            validation_interval if validation_interval is not None
            else settings.VALIDATION_BEFORE_REQUEST_INTERVAL_SECONDS
        )
        self.refresh_token_rotation = (
            refresh_token_rotation if refresh_token_rotation is not None
            else settings.REFRESH_TOKEN_ROTATION
        )
        self._clock = clock
        self._state: AuthSessionState = Unauthenticated()
        self._listeners: List[StateListener] = []
        self._last_validation: Optional[float] = None
        self._validation = SingleFlight("session-validation")
        self._recovery = SingleFlight("session-recovery")
        self._started = False

    @classmethod
    async def create(
        cls,
        storage: Optional[KeyValueStorage] = None,
        api_client: Optional[AuthApiClient] = None,
        prompt: Optional[BiometricPrompt] = None,
        **kwargs,
    ) -> "SessionController":
        """Build a controller with its collaborators and run app-start recovery."""
        api_client = api_client or AuthApiClient()
        storage = storage or EncryptedFileStorage()
        controller = cls(
            api_client,
            AuthStorage(storage),
            BiometricService(storage, api_client, prompt=prompt),
            **kwargs,
        )
        await controller.start()
        return controller

    async def dispose(self) -> None:
        """Drop listeners and release the HTTP connection pool."""
        self._listeners.clear()
        await self.api_client.aclose()

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthSessionState:
        return self._state

    @property
    def tokens(self) -> Optional[TokenPair]:
        return self._state.tokens if isinstance(self._state, Authenticated) else None

    @property
    def user(self) -> Optional[UserProfile]:
        return self._state.user if isinstance(self._state, Authenticated) else None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register for state changes. Returns a function that unsubscribes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, new_state: AuthSessionState) -> None:
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        logger.info(f"Auth state: {type(old_state).__name__} -> {type(new_state).__name__}")
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Auth state listener raised")

    def _fail(self, error: AuthError) -> None:
        self._transition(Error(
            message=error.message,
            kind=error.kind,
            security_alert=error.kind == AuthErrorKind.SECURITY_MISMATCH,
        ))

    def _authenticate(
        self, tokens: TokenPair, user: UserProfile, security_notice: Optional[str] = None
    ) -> LoginOutcome:
        password_change_required = tokens.password_change_required or user.password_change_required
        self._last_validation = self._clock()
        self._transition(Authenticated(
            user=user,
            tokens=tokens,
            password_change_required=password_change_required,
            security_notice=security_notice,
        ))
        if password_change_required:
            logger.info(f"Password change required for {user.email}")
            return LoginOutcome.PASSWORD_CHANGE_REQUIRED
        return LoginOutcome.AUTHENTICATED

    async def _expire_session(self, notice: Optional[str] = None, security_alert: bool = False) -> None:
        """Drop tokens and profile; the biometric vault is left alone."""
        await self.auth_storage.clear_auth_data()
        self._last_validation = None
        if notice:
            self._transition(SessionExpired(notice=notice, security_alert=security_alert))
        else:
            self._transition(SessionExpired(security_alert=security_alert))

    # ------------------------------------------------------------------
    # Biometric sync steps
    # ------------------------------------------------------------------

    async def _exchange_token(
        self, refresh_token: str, device_fingerprint: Optional[str] = None
    ) -> Tuple[TokenPair, UserProfile]:
        """Refresh, then fetch the authoritative profile for the new access token."""
        tokens = await self.api_client.exchange_refresh_token(refresh_token, device_fingerprint)
        user = await self.api_client.get_user_details(tokens.access_token)
        return tokens, user

    @staticmethod
    def _verify_identity(user: UserProfile, bound_email: str) -> None:
        """Gate A: the refreshed identity must be the one the vault was bound to."""
        if user.normalized_email != bound_email.strip().lower():
            logger.warning(
                f"SECURITY: biometric vault bound to {bound_email} resolved to {user.email}; disabling vault"
            )
            raise SecurityMismatchError()

    @staticmethod
    def _verify_backend_flag(user: UserProfile) -> None:
        """Gate B: biometric MFA must still be enabled server-side."""
        if not user.biometric_mfa_enabled:
            logger.warning(f"SECURITY: biometric MFA revoked server-side for {user.email}; disabling vault")
            raise SecurityMismatchError(BIOMETRIC_REVOKED_MESSAGE)

    async def _persist_session(self, tokens: TokenPair, user: UserProfile) -> None:
        await self.auth_storage.save_session(tokens, user)

    async def _rebind_vault(self, tokens: TokenPair, user: UserProfile) -> None:
        """Point the vault at the newly issued refresh token."""
        if not self.refresh_token_rotation:
            return
        bound_email = await self.biometric.get_biometric_user_email()
        if bound_email is None:
            return
        if bound_email != user.normalized_email:
            logger.warning(f"Not re-binding biometric vault of {bound_email} to session of {user.email}")
            return
        await self.biometric.update_refresh_token(tokens.refresh_token)

    async def _biometric_sync(self, record: BiometricRecord, refresh_token: str) -> Tuple[TokenPair, UserProfile]:
        """Exchange a vault token and run both security gates before persisting anything."""
        tokens, user = await self._exchange_token(refresh_token, record.device_fingerprint)
        try:
            self._verify_identity(user, record.bound_email)
            self._verify_backend_flag(user)
        except SecurityMismatchError:
            await self.biometric.disable_biometric()
            # The session just issued must not outlive the failed gate
            await self.api_client.logout(tokens.access_token)
            raise
        await self._persist_session(tokens, user)
        await self._rebind_vault(tokens, user)
        return tokens, user

    async def _silent_biometric_exchange(self) -> Tuple[TokenPair, UserProfile]:
        """Same as biometric login but without the prompt (recovery paths only)."""
        record = await self.biometric.get_record()
        if record is None:
            raise UnauthorizedError("Biometric login is not enabled")
        return await self._biometric_sync(record, record.refresh_token)

    # ------------------------------------------------------------------
    # App-start recovery
    # ------------------------------------------------------------------

    async def start(self) -> AuthSessionState:
        """Run app-start recovery once per process."""
        if self._started:
            return self._state
        self._started = True

        if await self.auth_storage.was_intentional_logout():
            logger.info("Previous session ended with logout, skipping recovery")
            return self._state

        security_error = None
        if await self.biometric.is_biometric_enabled():
            self._transition(Authenticating())
            try:
                tokens, user = await self._silent_biometric_exchange()
            except SecurityMismatchError as e:
                logger.warning("Biometric vault failed security checks at startup")
                security_error = e
            except AuthError as e:
                if e.is_transient:
                    logger.warning(f"Silent biometric recovery unavailable ({e.kind.value}), keeping vault")
                else:
                    logger.info(f"Silent biometric recovery failed ({e.kind.value}), disabling vault")
                    await self.biometric.disable_biometric()
            else:
                logger.info(f"Session restored via biometric vault for {user.email}")
                self._authenticate(tokens, user)
                return self._state

        await self._restore_stored_session(security_error)
        return self._state

    async def _restore_stored_session(self, security_error: Optional[SecurityMismatchError] = None) -> None:
        """
        Refresh the persisted session.

        A vault that failed its security checks just before this still gets
        reported: as a security-alert SessionExpired when nothing can be
        restored, or as a one-time notice on the restored session.
        """
        notice = security_error.message if security_error else None
        tokens = await self.auth_storage.get_tokens()
        user = await self.auth_storage.get_user_data()
        if tokens is None or user is None:
            if tokens is not None or user is not None:
                logger.info("Incomplete stored session, clearing")
            await self._drop_stored_session(notice)
            return

        self._transition(Authenticating())
        try:
            new_tokens = await self.api_client.refresh_token(tokens.refresh_token)
        except AuthError as e:
            if e.is_transient:
                logger.warning(f"Auth server unreachable at startup ({e.kind.value}), restoring cached session")
                self._authenticate(tokens, user, security_notice=notice)
                # Unverified; the next request gate checks with the backend
                self._last_validation = None
                return
            logger.info(f"Stored session could not be refreshed ({e.kind.value}), clearing")
            await self._drop_stored_session(notice)
            return

        await self.auth_storage.save_tokens(new_tokens)
        await self._rebind_vault(new_tokens, user)
        logger.info(f"Stored session restored for {user.email}")
        self._authenticate(new_tokens, user, security_notice=notice)

    async def _drop_stored_session(self, security_notice: Optional[str]) -> None:
        if security_notice:
            await self._expire_session(notice=security_notice, security_alert=True)
            return
        await self.auth_storage.clear_auth_data()
        self._transition(Unauthenticated())

    # ------------------------------------------------------------------
    # Password login and second factor
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginOutcome:
        """
        Log in with email and password.

        Returns:
            OTP_REQUIRED when a second factor is pending, PASSWORD_CHANGE_REQUIRED
            when the account must change its password first, else AUTHENTICATED.

        Raises:
            AuthError for every other failure (state becomes Error).
        """
        email = email.strip()
        self._transition(Authenticating())
        try:
            tokens = await self.api_client.login(email, password)
        except MfaRequiredEmailError:
            try:
                await self.api_client.send_login_code(email, password)
            except AuthError as e:
                # The OTP screen's resend action is the recovery path
                logger.warning(f"Sending login code failed ({e.kind.value}), awaiting OTP anyway")
            self._transition(AwaitingOtp(email=email, password=password, mfa_method=MfaMethod.EMAIL))
            return LoginOutcome.OTP_REQUIRED
        except MfaRequiredTotpError:
            self._transition(AwaitingOtp(email=email, password=password, mfa_method=MfaMethod.TOTP))
            return LoginOutcome.OTP_REQUIRED
        except AuthError as e:
            logger.info(f"Login failed for {email} ({e.kind.value})")
            self._fail(e)
            raise

        return await self._complete_authentication(tokens)

    async def _complete_authentication(self, tokens: TokenPair) -> LoginOutcome:
        try:
            user = await self.api_client.get_user_details(tokens.access_token)
        except AuthError as e:
            self._fail(e)
            raise
        await self._persist_session(tokens, user)
        await self.auth_storage.set_intentional_logout(False)
        await self._rebind_vault(tokens, user)
        logger.info(f"Login completed for {user.email}")
        return self._authenticate(tokens, user)

    def _is_valid_otp(self, otp: str) -> bool:
        return len(otp) == settings.OTP_LENGTH and otp.isdigit()

    async def complete_login(self, otp: str) -> LoginOutcome:
        """Finish an MFA login with the one-time code."""
        pending = self._state
        if not isinstance(pending, AwaitingOtp):
            error = InvalidCredentialsError(LOGIN_EXPIRED_MESSAGE)
            if isinstance(pending, (Unauthenticated, Authenticating)):
                self._fail(error)
            raise error

        otp = otp.strip()
        if not self._is_valid_otp(otp):
            error = InvalidCredentialsError(f"Verification code must be {settings.OTP_LENGTH} digits.")
            self._transition(replace(pending, error=error.message))
            raise error

        self._transition(Authenticating())
        try:
            tokens = await self.api_client.verify_login_code(pending.email, pending.password, otp)
        except AuthError as e:
            logger.info(f"OTP verification failed for {pending.email} ({e.kind.value})")
            self._transition(replace(pending, error=e.message))
            raise

        return await self._complete_authentication(tokens)

    async def resend_otp(self) -> MessageResponse:
        """Send a new login code using the held credentials."""
        pending = self._state
        if not isinstance(pending, AwaitingOtp):
            raise InvalidCredentialsError(LOGIN_EXPIRED_MESSAGE)
        result = await self.api_client.send_login_code(pending.email, pending.password)
        if self._state is pending and pending.error:
            self._transition(replace(pending, error=None))
        return result

    # ------------------------------------------------------------------
    # Biometric login and enrollment
    # ------------------------------------------------------------------

    async def login_with_biometric(self) -> bool:
        """
        Log in with the biometric vault.

        Returns False when the vault is not enabled or the user cancelled the
        prompt (no state change). Raises SecurityMismatchError when the vault
        fails a security gate; the vault is disabled before raising.
        """
        record = await self.biometric.get_record()
        if record is None:
            logger.info("Biometric login requested but not enabled")
            return False

        refresh_token = await self.biometric.authenticate_and_get_token()
        if refresh_token is None:
            return False

        self._transition(Authenticating())
        try:
            tokens, user = await self._biometric_sync(record, refresh_token)
        except AuthError as e:
            logger.info(f"Biometric login failed ({e.kind.value})")
            self._fail(e)
            raise

        await self.auth_storage.set_intentional_logout(False)
        logger.info(f"Biometric login completed for {user.email}")
        self._authenticate(tokens, user)
        return True

    async def check_biometric_availability(self) -> BiometricAvailability:
        return await self.biometric.is_biometric_available()

    async def is_biometric_enabled(self) -> bool:
        return await self.biometric.is_biometric_enabled()

    async def enable_biometric(self) -> bool:
        """
        Enroll this device for biometric login for the current user.

        Returns False when there is no session or no sensor. Backend failures
        enabling the account flag raise AuthError.
        """
        session = self._state
        if not isinstance(session, Authenticated):
            logger.warning("Cannot enable biometric without an active session")
            return False

        availability = await self.biometric.is_biometric_available()
        if not availability.available:
            logger.info("Biometric hardware unavailable or not enrolled")
            return False

        await self.api_client.enable_biometric_flag(session.tokens.access_token)
        fingerprint = await self.biometric.get_device_fingerprint()
        enabled = await self.biometric.enable_biometric(
            session.tokens.refresh_token,
            session.tokens.access_token,
            fingerprint,
            session.user.email,
        )
        if enabled:
            await self._refresh_user_data_quietly()
        return enabled

    async def disable_biometric(self) -> None:
        """Revoke biometric login server-side and clear the local vault."""
        session = self._state
        access_token = session.tokens.access_token if isinstance(session, Authenticated) else None
        if access_token:
            await self.api_client.disable_biometric_flag(access_token)
        await self.biometric.disable_biometric(access_token)
        if access_token:
            await self._refresh_user_data_quietly()

    # ------------------------------------------------------------------
    # Validation and silent recovery
    # ------------------------------------------------------------------

    async def validate_session_before_request(self) -> bool:
        """
        Gate for consumers before any authenticated call.

        Throttled to one backend check per validation interval. Returns False
        only when there is no session or it could not be recovered; transient
        failures let the request proceed.
        """
        if not isinstance(self._state, Authenticated):
            return False

        if self._last_validation is not None and self._clock() - self._last_validation < self.validation_interval:
            return True

        return await self._validation.run(self._validate_with_backend)

    async def _validate_with_backend(self) -> bool:
        session = self._state
        if not isinstance(session, Authenticated):
            return False

        self._last_validation = self._clock()
        try:
            await self.api_client.get_user_details(session.tokens.access_token)
            return True
        except UnauthorizedError:
            logger.info("Access token rejected during validation, recovering session")
            return await self.handle_unauthorized()
        except AuthError as e:
            logger.warning(f"Session validation inconclusive ({e.kind.value}), allowing request")
            return True

    async def handle_unauthorized(self) -> bool:
        """
        Recover after a 401 on any authenticated call.

        Concurrent callers share one recovery attempt. Returns True when the
        session was re-established silently.
        """
        return await self._recovery.run(self._recover_session)

    async def _recover_session(self) -> bool:
        session = self._state
        if not isinstance(session, Authenticated):
            return False

        record = await self.biometric.get_record()
        try:
            if record is not None and record.bound_email == session.user.normalized_email:
                tokens, user = await self._biometric_sync(record, record.refresh_token)
            else:
                tokens, user = await self._exchange_token(session.tokens.refresh_token)
                await self._persist_session(tokens, user)
                await self._rebind_vault(tokens, user)
        except SecurityMismatchError as e:
            await self._expire_session(notice=e.message, security_alert=True)
            return False
        except AuthError as e:
            if e.is_transient:
                logger.warning(f"Session recovery deferred ({e.kind.value}), keeping session")
                return False
            logger.info(f"Session recovery failed ({e.kind.value}), session expired")
            await self._expire_session()
            return False

        logger.info(f"Session silently recovered for {user.email}")
        self._authenticate(tokens, user)
        return True

    # ------------------------------------------------------------------
    # Logout and account maintenance
    # ------------------------------------------------------------------

    async def logout(self) -> None:
        """End the session. The biometric vault is intentionally kept."""
        tokens = self.tokens
        await self.auth_storage.set_intentional_logout(True)
        try:
            if tokens is not None:
                await self.api_client.logout(tokens.access_token)
        finally:
            await self.auth_storage.clear_auth_data()
            self._last_validation = None
            self._transition(Unauthenticated())
            logger.info("Logout completed")

    def clear_error(self) -> None:
        """Dismiss the current error or one-time notice."""
        current = self._state
        if isinstance(current, (Error, SessionExpired)):
            self._transition(Unauthenticated())
        elif isinstance(current, AwaitingOtp) and current.error:
            self._transition(replace(current, error=None))
        elif isinstance(current, Authenticated) and current.security_notice:
            self._transition(replace(current, security_notice=None))

    async def refresh_user_data(self) -> UserProfile:
        """Re-fetch the profile, recovering the session once on a 401."""
        session = self._state
        if not isinstance(session, Authenticated):
            raise UnauthorizedError("No access token available")

        try:
            user = await self.api_client.get_user_details(session.tokens.access_token)
        except UnauthorizedError:
            if not await self.handle_unauthorized():
                raise
            session = self._state
            if not isinstance(session, Authenticated):
                raise
            user = await self.api_client.get_user_details(session.tokens.access_token)

        await self.auth_storage.save_user_data(user)
        if self._state is session:
            self._transition(replace(session, user=user))
        return user

    async def _refresh_user_data_quietly(self) -> None:
        try:
            await self.refresh_user_data()
        except AuthError as e:
            logger.warning(f"Could not refresh user data ({e.kind.value})")

    async def change_password(self, current_password: str, new_password: str) -> MessageResponse:
        """Change the password; clears a pending forced-change flag."""
        session = self._state
        if not isinstance(session, Authenticated):
            raise UnauthorizedError("No access token available")

        if session.password_change_required:
            result = await self.api_client.change_password_direct(session.user.email, current_password, new_password)
        else:
            result = await self.api_client.change_password(session.tokens.access_token, current_password, new_password)

        logger.info(f"Password changed for {session.user.email}")
        if self._state is session and session.password_change_required:
            self._transition(replace(session, password_change_required=False))
        return result

    async def forgot_password(self, email: str) -> MessageResponse:
        return await self.api_client.forgot_password(email.strip())

    async def reset_password(self, token: str, new_password: str) -> MessageResponse:
        return await self.api_client.reset_password(token, new_password)

    async def setup_email_mfa(self) -> MessageResponse:
        """Start email MFA enrollment; a code is emailed to the user."""
        session = self._state
        if not isinstance(session, Authenticated):
            raise UnauthorizedError("No access token available")
        return await self.api_client.setup_email_mfa(session.tokens.access_token)

    async def verify_email_mfa(self, code: str) -> MessageResponse:
        session = self._state
        if not isinstance(session, Authenticated):
            raise UnauthorizedError("No access token available")
        result = await self.api_client.verify_email_mfa(session.tokens.access_token, code.strip())
        await self._refresh_user_data_quietly()
        return result

    async def disable_email_mfa(self) -> MessageResponse:
        session = self._state
        if not isinstance(session, Authenticated):
            raise UnauthorizedError("No access token available")
        result = await self.api_client.disable_email_mfa(session.tokens.access_token)
        await self._refresh_user_data_quietly()
        return result

    def session_expires_in(self) -> Optional[int]:
        """Seconds until the access token's `exp` claim, when it carries one."""
        tokens = self.tokens
        if tokens is None:
            return None
        return seconds_until_expiry(tokens.access_token)
