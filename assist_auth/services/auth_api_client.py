"""
Auth backend API client.

Stateless request/response mapper for the tenant-scoped auth backend:
- Password login, emailed login codes and TOTP verification
- User profile retrieval
- Token refresh (plain and device-validated)
- Password change / reset
- Biometric device registration and MFA settings

Every failure is translated into the AuthError taxonomy before it leaves
this module; raw httpx, JSON and validation errors never escape.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from assist_auth.config import settings, EMAIL_NOT_VERIFIED_CODE
from assist_auth.exceptions import (
    AuthError,
    AccountLockedError,
    DeviceNotRecognizedError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    MfaRequiredEmailError,
    MfaRequiredTotpError,
    NetworkUnreachableError,
    RateLimitedError,
    RequestTimeoutError,
    ServerUnavailableError,
    UnauthorizedError,
    UnknownAuthError,
)
from assist_auth.schemas.auth import (
    ChangePasswordDirectRequest,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginCodeRequest,
    LoginRequest,
    MessageResponse,
    MfaCodeRequest,
    MfaMethod,
    RefreshTokenRequest,
    ResetPasswordRequest,
    TokenPair,
)
from assist_auth.schemas.biometric import DeviceRegistrationRequest, DeviceRemovalRequest
from assist_auth.schemas.user import UserProfile
from assist_auth.services.retry_policy import RETRY_POLICIES, SINGLE_ATTEMPT, RetryPolicy
from assist_auth.utils.device_info import DeviceInfo
from assist_auth.utils.error_sanitizer import is_html_response, sanitize_error
from assist_auth.utils.user_agent import get_client_headers

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

MFA_HEADERS = ("x-mfa-required", "x-mfa-method", "x-mfa-type")


class ErrorContext(str, Enum):
    """Which family of endpoint produced an error response."""
    CREDENTIALS = "credentials"   # email + password submitted
    OTP = "otp"                   # credentials + one-time code
    TOKEN = "token"               # Bearer access token
    REFRESH = "refresh"           # refresh token exchange
    DEVICE_REFRESH = "device_refresh"


def _parse_error_payload(text: str) -> Dict[str, Any]:
    """Decode an error body; non-JSON bodies become {"detail": text}."""
    if not text:
        return {}
    try:
        payload = json.loads(text)
    except ValueError:
        return {"detail": text}
    if isinstance(payload, dict):
        # FastAPI nests structured errors under "detail"
        detail = payload.get("detail")
        if isinstance(detail, dict):
            merged = dict(detail)
            merged.setdefault("detail", detail.get("message") or detail.get("code"))
            return merged
        return payload
    return {"detail": str(payload)}


def _mfa_method_from_value(value: Any) -> Optional[MfaMethod]:
    if value is None or value is False:
        return None
    text = str(value).strip().lower()
    if "totp" in text or "authenticator" in text:
        return MfaMethod.TOTP
    if "email" in text or "otp" in text:
        return MfaMethod.EMAIL
    if text in ("true", "1", "yes", "required"):
        # Marker without a method: the login-code flow is the server default
        return MfaMethod.EMAIL
    return None


def detect_mfa_method(headers: Mapping[str, str], payload: Dict[str, Any]) -> Optional[MfaMethod]:
    """
    Work out which second factor a 400 login response is asking for.

    Checked in order: response headers, structured body fields, then the
    wording of `detail`. Returns None when the 400 is not an MFA challenge.
    """
    lowered_headers = {k.lower(): v for k, v in headers.items()}
    for name in MFA_HEADERS:
        method = _mfa_method_from_value(lowered_headers.get(name))
        if method:
            return method

    for name in ("mfa_type", "mfa_method"):
        method = _mfa_method_from_value(payload.get(name))
        if method:
            return method

    detail = str(payload.get("detail") or "").lower()
    if "totp" in detail or "authenticator" in detail:
        return MfaMethod.TOTP
    if ("email" in detail or "verification code" in detail or "mfa" in detail) and (
        "code" in detail or "required" in detail
    ):
        return MfaMethod.EMAIL

    return _mfa_method_from_value(payload.get("mfa_required"))


def classify_response(
    status_code: int,
    body_text: str,
    headers: Mapping[str, str],
    context: ErrorContext,
) -> AuthError:
    """Map an error response onto the AuthError taxonomy."""
    if is_html_response(body_text):
        logger.warning(f"HTML error page received (HTTP {status_code})")
        return ServerUnavailableError(status_code=status_code)

    payload = _parse_error_payload(body_text)
    raw_detail = payload.get("detail")
    detail = str(raw_detail) if raw_detail is not None else ""
    safe_detail = sanitize_error(detail) if detail else None
    error_type = str(payload.get("type") or payload.get("code") or "")

    if status_code >= 500:
        return ServerUnavailableError(status_code=status_code, detail=detail)
    if status_code == 408:
        return RequestTimeoutError(status_code=status_code)
    if status_code == 423:
        return AccountLockedError(status_code=status_code, detail=detail)
    if status_code == 429:
        return RateLimitedError(status_code=status_code, detail=detail)

    if status_code == 403 and EMAIL_NOT_VERIFIED_CODE in (detail, error_type):
        return EmailNotVerifiedError(status_code=status_code, detail=detail)

    if context == ErrorContext.CREDENTIALS:
        if status_code == 400:
            method = detect_mfa_method(headers, payload)
            if method == MfaMethod.TOTP:
                return MfaRequiredTotpError(status_code=status_code, detail=detail)
            if method == MfaMethod.EMAIL:
                return MfaRequiredEmailError(status_code=status_code, detail=detail)
        if status_code in (401, 403):
            message = None if status_code == 401 else safe_detail
            return InvalidCredentialsError(message=message, status_code=status_code, detail=detail)
        if status_code == 422:
            return UnknownAuthError("Invalid request format", status_code=status_code, detail=detail)

    elif context == ErrorContext.OTP:
        if status_code in (400, 401, 403):
            return InvalidCredentialsError(
                "Invalid or expired verification code", status_code=status_code, detail=detail
            )

    elif context == ErrorContext.DEVICE_REFRESH:
        if status_code == 403:
            return DeviceNotRecognizedError(status_code=status_code, detail=detail)
        if status_code in (400, 401):
            return UnauthorizedError(status_code=status_code, detail=detail)

    elif context == ErrorContext.REFRESH:
        if status_code in (400, 401, 403, 422):
            return UnauthorizedError(status_code=status_code, detail=detail)

    elif context == ErrorContext.TOKEN:
        if status_code == 401:
            return UnauthorizedError(status_code=status_code, detail=detail)

    return UnknownAuthError(
        safe_detail or f"Request failed (HTTP {status_code})",
        status_code=status_code,
        detail=detail,
    )


class AuthApiClient:
    """Client for the remote login / token / MFA endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        tenant_id: Optional[str] = None,
        timeout: Optional[float] = None,
        device_info: Optional[DeviceInfo] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_policies: Optional[Dict[str, RetryPolicy]] = None,
    ):
        self.base_url = (base_url or settings.AUTH_API_BASE_URL).rstrip("/")
        self.tenant_id = tenant_id or settings.TENANT_ID
        self.timeout = timeout if timeout is not None else settings.AUTH_REQUEST_TIMEOUT_SECONDS
        self.device_info = device_info or DeviceInfo.detect()
        self.retry_policies = retry_policies if retry_policies is not None else RETRY_POLICIES
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "X-Tenant-ID": self.tenant_id,
                    **get_client_headers(self.device_info),
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AuthApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        context: ErrorContext,
        body: Optional[BaseModel] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        """Issue one HTTP call; errors come back as AuthError."""
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        payload = body.model_dump(exclude_none=True) if body is not None else None

        try:
            response = await self.client.request(method, path, json=payload, headers=headers)
        except httpx.TimeoutException:
            logger.warning(f"{method} {path} timed out after {self.timeout}s")
            raise RequestTimeoutError(f"Request timed out. Could not connect to {self.base_url}")
        except httpx.NetworkError as e:
            logger.warning(f"{method} {path} network error: {type(e).__name__}")
            raise NetworkUnreachableError()
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise UnknownAuthError(sanitize_error(e))

        if response.is_error:
            error = classify_response(response.status_code, response.text, response.headers, context)
            logger.info(f"{method} {path} -> HTTP {response.status_code} ({error.kind.value})")
            raise error

        return response

    async def _call_with_policy(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run `call` under the retry policy registered for `operation`."""
        policy = self.retry_policies.get(operation, SINGLE_ATTEMPT)
        attempt = 0
        while True:
            try:
                return await call()
            except AuthError as e:
                if not policy.should_retry(e.kind, attempt):
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{operation} failed (attempt {attempt + 1}/{policy.max_attempts}, {e.kind.value}), "
                    f"retrying in {delay}s"
                )
                await asyncio.sleep(delay)
                attempt += 1

    @staticmethod
    def _parse_model(response: httpx.Response, model: Type[ModelT]) -> ModelT:
        text = response.text
        if is_html_response(text):
            raise ServerUnavailableError(status_code=response.status_code)
        try:
            return model.model_validate_json(text)
        except ValidationError as e:
            logger.error(f"Unexpected {model.__name__} response: {e.error_count()} validation errors")
            raise UnknownAuthError("Invalid response format from server", status_code=response.status_code)

    @classmethod
    def _parse_message(cls, response: httpx.Response) -> MessageResponse:
        if not response.content:
            return MessageResponse()
        try:
            payload = response.json()
        except ValueError:
            if is_html_response(response.text):
                raise ServerUnavailableError(status_code=response.status_code)
            return MessageResponse(message=sanitize_error(response.text))
        if isinstance(payload, dict):
            return MessageResponse(message=str(payload.get("message") or payload.get("detail") or ""))
        return MessageResponse()

    async def _post_for_message(
        self,
        operation: str,
        path: str,
        context: ErrorContext,
        body: Optional[BaseModel] = None,
        access_token: Optional[str] = None,
        method: str = "POST",
    ) -> MessageResponse:
        response = await self._call_with_policy(
            operation,
            lambda: self._request(method, path, context, body=body, access_token=access_token),
        )
        return self._parse_message(response)

    # ------------------------------------------------------------------
    # Login and MFA
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str, totp_code: Optional[str] = None) -> TokenPair:
        """
        Authenticate with email and password.

        Args:
            email: Account email
            password: Account password
            totp_code: One-time code; empty on the first attempt

        Returns:
            TokenPair for the new session

        Raises:
            MfaRequiredEmailError / MfaRequiredTotpError when a second factor is needed,
            InvalidCredentialsError, EmailNotVerifiedError, AccountLockedError, ...
        """
        body = self._credentials_body(LoginRequest, email=email, password=password, totp_code=totp_code or "")
        response = await self._call_with_policy(
            "login",
            lambda: self._request("POST", "/api/auth/login", ErrorContext.CREDENTIALS, body=body),
        )
        tokens = self._parse_model(response, TokenPair)
        logger.info(f"Login succeeded for {email}")
        return tokens

    async def send_login_code(self, email: str, password: str) -> MessageResponse:
        """Ask the server to email a one-time login code."""
        body = self._credentials_body(LoginCodeRequest, email=email, password=password)
        result = await self._post_for_message(
            "send_login_code", "/api/email-mfa/send-login-code", ErrorContext.CREDENTIALS, body=body
        )
        logger.info(f"Login code sent to {email}")
        return result

    async def verify_login_code(self, email: str, password: str, otp: str) -> TokenPair:
        """Submit credentials plus a one-time code. The backend treats this as a login."""
        body = self._credentials_body(LoginRequest, email=email, password=password, totp_code=otp)
        response = await self._call_with_policy(
            "verify_login_code",
            lambda: self._request("POST", "/api/auth/login", ErrorContext.OTP, body=body),
        )
        return self._parse_model(response, TokenPair)

    @staticmethod
    def _credentials_body(model: Type[ModelT], **fields) -> ModelT:
        try:
            return model(**fields)
        except ValidationError:
            raise InvalidCredentialsError("Please enter a valid email address")

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def get_user_details(self, access_token: str) -> UserProfile:
        """
        Fetch the profile for an access token.

        Raises UnauthorizedError when the token is invalid or expired; this
        method never refreshes on its own.
        """
        response = await self._call_with_policy(
            "get_user_details",
            lambda: self._request("GET", "/api/auth/me", ErrorContext.TOKEN, access_token=access_token),
        )
        return self._parse_model(response, UserProfile)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new TokenPair."""
        body = RefreshTokenRequest(refresh_token=refresh_token)
        response = await self._call_with_policy(
            "refresh_token",
            lambda: self._request("POST", "/api/auth/refresh", ErrorContext.REFRESH, body=body),
        )
        return self._parse_model(response, TokenPair)

    async def refresh_token_with_device(self, refresh_token: str, device_fingerprint: str) -> TokenPair:
        """Device-validated refresh; raises DeviceNotRecognizedError on 403."""
        body = RefreshTokenRequest(refresh_token=refresh_token, device_fingerprint=device_fingerprint)
        response = await self._call_with_policy(
            "refresh_token_with_device",
            lambda: self._request("POST", "/api/auth/refresh", ErrorContext.DEVICE_REFRESH, body=body),
        )
        return self._parse_model(response, TokenPair)

    async def exchange_refresh_token(
        self, refresh_token: str, device_fingerprint: Optional[str] = None
    ) -> TokenPair:
        """Prefer the device-validated refresh, falling back as the policy table allows."""
        if not device_fingerprint:
            return await self.refresh_token(refresh_token)

        policy = self.retry_policies.get("refresh_token_with_device", SINGLE_ATTEMPT)
        try:
            return await self.refresh_token_with_device(refresh_token, device_fingerprint)
        except AuthError as e:
            if not policy.should_fall_back(e.kind):
                raise
            logger.warning(f"Device-validated refresh failed ({e.kind.value}), falling back to {policy.fallback_operation}")
            fallback = getattr(self, policy.fallback_operation)
            return await fallback(refresh_token)

    async def logout(self, access_token: str) -> None:
        """Best-effort server logout. Never raises."""
        try:
            await self._call_with_policy(
                "logout",
                lambda: self._request("POST", "/api/auth/logout", ErrorContext.TOKEN, access_token=access_token),
            )
        except AuthError as e:
            logger.warning(f"Logout request failed ({e.kind.value}), continuing with local cleanup")

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def change_password(self, access_token: str, current_password: str, new_password: str) -> MessageResponse:
        body = ChangePasswordRequest(current_password=current_password, new_password=new_password)
        return await self._post_for_message(
            "change_password", "/api/auth/change-password", ErrorContext.TOKEN, body=body, access_token=access_token
        )

    async def change_password_direct(self, email: str, current_password: str, new_password: str) -> MessageResponse:
        """Change password with credentials only (forced change right after login)."""
        body = self._credentials_body(
            ChangePasswordDirectRequest, email=email, current_password=current_password, new_password=new_password
        )
        return await self._post_for_message(
            "change_password_direct", "/api/auth/change-password-direct", ErrorContext.CREDENTIALS, body=body
        )

    async def reset_password(self, token: str, new_password: str) -> MessageResponse:
        body = ResetPasswordRequest(token=token, new_password=new_password)
        return await self._post_for_message("reset_password", "/api/auth/reset-password", ErrorContext.TOKEN, body=body)

    async def forgot_password(self, email: str) -> MessageResponse:
        body = self._credentials_body(ForgotPasswordRequest, email=email)
        return await self._post_for_message(
            "forgot_password", "/api/auth/forgot-password", ErrorContext.CREDENTIALS, body=body
        )

    # ------------------------------------------------------------------
    # Biometric devices and MFA settings
    # ------------------------------------------------------------------

    async def register_biometric_device(self, access_token: str, device_fingerprint: str) -> MessageResponse:
        body = DeviceRegistrationRequest(
            device_fingerprint=device_fingerprint,
            device_name=self.device_info.device_name or "Mobile Device",
            device_model=self.device_info.model or "Unknown",
        )
        return await self._post_for_message(
            "register_biometric_device", "/api/biometric/register", ErrorContext.TOKEN,
            body=body, access_token=access_token,
        )

    async def remove_biometric_device(self, access_token: str, device_fingerprint: str) -> MessageResponse:
        body = DeviceRemovalRequest(device_fingerprint=device_fingerprint)
        return await self._post_for_message(
            "remove_biometric_device", "/api/biometric/remove-device", ErrorContext.TOKEN,
            body=body, access_token=access_token, method="DELETE",
        )

    async def enable_biometric_flag(self, access_token: str) -> MessageResponse:
        """Turn on biometric MFA for the account server-side."""
        return await self._post_for_message(
            "enable_biometric_flag", "/api/biometric/enable", ErrorContext.TOKEN, access_token=access_token
        )

    async def disable_biometric_flag(self, access_token: str) -> MessageResponse:
        """Turn off biometric MFA server-side (also removes registered devices)."""
        return await self._post_for_message(
            "disable_biometric_flag", "/api/biometric/disable", ErrorContext.TOKEN, access_token=access_token
        )

    async def setup_email_mfa(self, access_token: str) -> MessageResponse:
        """Start email MFA enrollment; the server emails a verification code."""
        return await self._post_for_message(
            "setup_email_mfa", "/api/email-mfa/setup", ErrorContext.TOKEN, access_token=access_token
        )

    async def verify_email_mfa(self, access_token: str, code: str) -> MessageResponse:
        return await self._post_for_message(
            "verify_email_mfa", "/api/email-mfa/verify", ErrorContext.TOKEN,
            body=MfaCodeRequest(mfa_code=code), access_token=access_token,
        )

    async def disable_email_mfa(self, access_token: str) -> MessageResponse:
        return await self._post_for_message(
            "disable_email_mfa", "/api/email-mfa/disable", ErrorContext.TOKEN, access_token=access_token
        )
