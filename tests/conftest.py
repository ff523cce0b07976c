"""Pytest configuration and fixtures."""

import itertools
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from assist_auth.schemas.biometric import BiometricAvailability
from assist_auth.services.auth_api_client import AuthApiClient
from assist_auth.services.biometric_service import BiometricPrompt, BiometricService
from assist_auth.services.retry_policy import build_retry_policies
from assist_auth.services.session_controller import SessionController
from assist_auth.services.storage import MemoryStorage
from assist_auth.services.token_storage import AuthStorage
from assist_auth.utils.device_info import DeviceInfo


TEST_EMAIL = "user@example.com"
TEST_PASSWORD = "Secret123!"
EMAIL_LOGIN_CODE = "123456"
TOTP_CODE = "654321"


class FakeAuthBackend:
    """
    In-memory auth server served through httpx.MockTransport.

    Refresh tokens rotate on use. Individual responses can be overridden
    with queue(), which takes an httpx.Response or an exception to raise.
    """

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.access_tokens: Dict[str, str] = {}
        self.refresh_tokens: Dict[str, str] = {}
        self.devices: Dict[str, str] = {}
        self.requests: List[httpx.Request] = []
        self._queued: Dict[tuple, List[Any]] = {}
        self._ids = itertools.count(1)
        self._routes = {
            ("POST", "/api/auth/login"): self._login,
            ("POST", "/api/email-mfa/send-login-code"): self._send_login_code,
            ("GET", "/api/auth/me"): self._me,
            ("POST", "/api/auth/refresh"): self._refresh,
            ("POST", "/api/auth/logout"): self._logout,
            ("POST", "/api/auth/change-password"): self._change_password,
            ("POST", "/api/auth/change-password-direct"): self._change_password_direct,
            ("POST", "/api/auth/forgot-password"): self._ok,
            ("POST", "/api/auth/reset-password"): self._ok,
            ("POST", "/api/biometric/register"): self._register_device,
            ("DELETE", "/api/biometric/remove-device"): self._remove_device,
            ("POST", "/api/biometric/enable"): self._set_flag("biometric_mfa_enabled", True),
            ("POST", "/api/biometric/disable"): self._set_flag("biometric_mfa_enabled", False),
            ("POST", "/api/email-mfa/setup"): self._ok,
            ("POST", "/api/email-mfa/verify"): self._verify_email_mfa,
            ("POST", "/api/email-mfa/disable"): self._set_flag("email_mfa_enabled", False),
        }

    # -- test helpers --------------------------------------------------

    def add_user(self, email: str = TEST_EMAIL, password: str = TEST_PASSWORD, mfa: Optional[str] = None, **profile):
        user_id = next(self._ids)
        self.users[email] = {
            "password": password,
            "mfa": mfa,
            "profile": {
                "id": user_id,
                "email": email,
                "full_name": "Test User",
                "is_email_verified": True,
                "is_active": True,
                "email_mfa_enabled": mfa == "email",
                "biometric_mfa_enabled": False,
                "totp_enabled": mfa == "totp",
                "password_change_required": False,
                **profile,
            },
        }
        return self.users[email]

    def issue_tokens(self, email: str) -> Dict[str, Any]:
        n = next(self._ids)
        access_token, refresh_token = f"access-{n}", f"refresh-{n}"
        self.access_tokens[access_token] = email
        self.refresh_tokens[refresh_token] = email
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": 1800,
            "password_change_required": self.users[email]["profile"]["password_change_required"],
        }

    def expire_access_tokens(self) -> None:
        self.access_tokens.clear()

    def queue(self, method: str, path: str, response: Any) -> None:
        self._queued.setdefault((method, path), []).append(response)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        queued = self._queued.get(key)
        if queued:
            item = queued.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        route = self._routes.get(key)
        if route is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        return route(request)

    # -- routes --------------------------------------------------------

    @staticmethod
    def _body(request: httpx.Request) -> Dict[str, Any]:
        return json.loads(request.content) if request.content else {}

    def _bearer_email(self, request: httpx.Request) -> Optional[str]:
        auth = request.headers.get("Authorization", "")
        return self.access_tokens.get(auth.replace("Bearer ", "", 1))

    def _check_credentials(self, body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        user = self.users.get(body.get("email"))
        if user is None or user["password"] != body.get("password"):
            return None
        return user

    def _login(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        user = self._check_credentials(body)
        if user is None:
            return httpx.Response(401, json={"detail": "Incorrect email or password"})
        if not user["profile"]["is_email_verified"]:
            return httpx.Response(403, json={"detail": "email_not_verified"})

        code = body.get("totp_code") or ""
        if user["mfa"] == "email":
            if not code:
                return httpx.Response(400, json={"detail": "Email verification code required"})
            if code != user.get("login_code"):
                return httpx.Response(401, json={"detail": "Invalid verification code"})
        elif user["mfa"] == "totp":
            if not code:
                return httpx.Response(400, json={"detail": "TOTP code required"})
            if code != TOTP_CODE:
                return httpx.Response(401, json={"detail": "Invalid TOTP code"})

        return httpx.Response(200, json=self.issue_tokens(body["email"]))

    def _send_login_code(self, request: httpx.Request) -> httpx.Response:
        user = self._check_credentials(self._body(request))
        if user is None:
            return httpx.Response(401, json={"detail": "Incorrect email or password"})
        user["login_code"] = EMAIL_LOGIN_CODE
        return httpx.Response(200, json={"message": "Verification code sent to your email"})

    def _me(self, request: httpx.Request) -> httpx.Response:
        email = self._bearer_email(request)
        if email is None:
            return httpx.Response(401, json={"detail": "Could not validate credentials"})
        return httpx.Response(200, json=self.users[email]["profile"])

    def _refresh(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        email = self.refresh_tokens.get(body.get("refresh_token"))
        if email is None:
            return httpx.Response(401, json={"detail": "Invalid refresh token"})
        fingerprint = body.get("device_fingerprint")
        if fingerprint and fingerprint not in self.devices:
            return httpx.Response(403, json={"detail": "Device not recognized"})
        del self.refresh_tokens[body["refresh_token"]]
        return httpx.Response(200, json=self.issue_tokens(email))

    def _logout(self, request: httpx.Request) -> httpx.Response:
        if self._bearer_email(request) is None:
            return httpx.Response(401, json={"detail": "Could not validate credentials"})
        return httpx.Response(200, json={"message": "Logged out"})

    def _change_password(self, request: httpx.Request) -> httpx.Response:
        email = self._bearer_email(request)
        if email is None:
            return httpx.Response(401, json={"detail": "Could not validate credentials"})
        body = self._body(request)
        user = self.users[email]
        if user["password"] != body["current_password"]:
            return httpx.Response(400, json={"detail": "Current password is incorrect"})
        user["password"] = body["new_password"]
        user["profile"]["password_change_required"] = False
        return httpx.Response(200, json={"message": "Password changed successfully"})

    def _change_password_direct(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        user = self.users.get(body["email"])
        if user is None or user["password"] != body["current_password"]:
            return httpx.Response(401, json={"detail": "Incorrect email or password"})
        user["password"] = body["new_password"]
        user["profile"]["password_change_required"] = False
        return httpx.Response(200, json={"message": "Password changed successfully"})

    def _register_device(self, request: httpx.Request) -> httpx.Response:
        email = self._bearer_email(request)
        if email is None:
            return httpx.Response(401, json={"detail": "Could not validate credentials"})
        self.devices[self._body(request)["device_fingerprint"]] = email
        return httpx.Response(200, json={"message": "Device registered"})

    def _remove_device(self, request: httpx.Request) -> httpx.Response:
        if self._bearer_email(request) is None:
            return httpx.Response(401, json={"detail": "Could not validate credentials"})
        self.devices.pop(self._body(request)["device_fingerprint"], None)
        return httpx.Response(200, json={"message": "Device removed"})

    def _verify_email_mfa(self, request: httpx.Request) -> httpx.Response:
        email = self._bearer_email(request)
        if email is None:
            return httpx.Response(401, json={"detail": "Could not validate credentials"})
        if self._body(request).get("mfa_code") != EMAIL_LOGIN_CODE:
            return httpx.Response(400, json={"detail": "Invalid verification code"})
        self.users[email]["profile"]["email_mfa_enabled"] = True
        return httpx.Response(200, json={"message": "Email MFA enabled"})

    def _set_flag(self, flag: str, value: bool):
        def route(request: httpx.Request) -> httpx.Response:
            email = self._bearer_email(request)
            if email is None:
                return httpx.Response(401, json={"detail": "Could not validate credentials"})
            self.users[email]["profile"][flag] = value
            return httpx.Response(200, json={"message": "Updated"})
        return route

    def _ok(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"message": "OK"})


class FakeBiometricPrompt(BiometricPrompt):
    """Sensor stand-in; `succeed` decides the outcome of every prompt."""

    def __init__(self, available: bool = True, succeed: bool = True):
        self.available = available
        self.succeed = succeed
        self.prompts = 0

    async def is_sensor_available(self) -> BiometricAvailability:
        return BiometricAvailability(available=self.available, kind="Biometrics" if self.available else None)

    async def simple_prompt(self, prompt_message: str, cancel_button_text: str) -> bool:
        self.prompts += 1
        return self.succeed


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def device_info():
    """Fixed device identity."""
    return DeviceInfo(
        unique_id="a1b2c3d4e5f6",
        model="Pixel 8",
        system_name="Android",
        system_version="14",
        brand="Google",
        device_name="Test Phone",
        app_name="AssistChat",
        app_version="1.16.0",
        build_number="116",
    )


@pytest.fixture
def backend():
    """Fake auth backend with one verified user and no MFA."""
    fake = FakeAuthBackend()
    fake.add_user()
    return fake


@pytest.fixture
def api_client(backend, device_info):
    """API client wired to the fake backend with zero retry backoff."""
    return AuthApiClient(
        base_url="https://auth.test",
        tenant_id="tenant-1",
        device_info=device_info,
        transport=httpx.MockTransport(backend.handler),
        retry_policies=build_retry_policies(backoff_seconds=(0,)),
    )


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def auth_storage(storage):
    return AuthStorage(storage)


@pytest.fixture
def prompt():
    return FakeBiometricPrompt()


@pytest.fixture
def biometric(storage, api_client, prompt, device_info):
    return BiometricService(storage, api_client, prompt=prompt, device_info=device_info)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(api_client, auth_storage, biometric, clock):
    """Session controller that has not run app-start recovery yet."""
    return SessionController(
        api_client,
        auth_storage,
        biometric,
        validation_interval=1800,
        refresh_token_rotation=True,
        clock=clock,
    )
