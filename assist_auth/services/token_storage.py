"""Secure token store: persisted TokenPair, cached user profile and logout marker."""

import asyncio
import json
import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError

from assist_auth.schemas.auth import TokenPair
from assist_auth.schemas.user import UserProfile
from assist_auth.services.storage import KeyValueStorage

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
TOKEN_META_KEY = "token_meta"
USER_DATA_KEY = "user_data"
INTENTIONAL_LOGOUT_KEY = "intentional_logout"

AUTH_KEYS = [ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_META_KEY, USER_DATA_KEY]


class AuthStorage:
    """Persists the session so it survives app restarts."""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self._lock = asyncio.Lock()

    @staticmethod
    def _token_items(tokens: TokenPair) -> List[Tuple[str, str]]:
        meta = tokens.model_dump(exclude={"access_token", "refresh_token"})
        return [
            (ACCESS_TOKEN_KEY, tokens.access_token),
            (REFRESH_TOKEN_KEY, tokens.refresh_token),
            (TOKEN_META_KEY, json.dumps(meta)),
        ]

    async def save_tokens(self, tokens: TokenPair) -> None:
        """Persist access and refresh token together."""
        async with self._lock:
            await self.storage.multi_set(self._token_items(tokens))

    async def get_tokens(self) -> Optional[TokenPair]:
        """Return the stored pair, or None unless both tokens are present."""
        values = await self.storage.multi_get([ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_META_KEY])
        access_token = values[ACCESS_TOKEN_KEY]
        refresh_token = values[REFRESH_TOKEN_KEY]
        if not access_token or not refresh_token:
            return None

        meta = {}
        if values[TOKEN_META_KEY]:
            try:
                meta = json.loads(values[TOKEN_META_KEY])
            except json.JSONDecodeError:
                logger.warning("Stored token metadata is unreadable, using defaults")

        return TokenPair(access_token=access_token, refresh_token=refresh_token, **meta)

    async def save_user_data(self, user: UserProfile) -> None:
        async with self._lock:
            await self.storage.set_item(USER_DATA_KEY, user.model_dump_json())

    async def get_user_data(self) -> Optional[UserProfile]:
        raw = await self.storage.get_item(USER_DATA_KEY)
        if not raw:
            return None
        try:
            return UserProfile.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Cached user profile is invalid, ignoring: {e.error_count()} errors")
            return None

    async def save_session(self, tokens: TokenPair, user: UserProfile) -> None:
        """Persist tokens and profile in one write."""
        items = self._token_items(tokens) + [(USER_DATA_KEY, user.model_dump_json())]
        async with self._lock:
            await self.storage.multi_set(items)

    async def clear_auth_data(self) -> None:
        """Remove tokens and cached profile. Biometric records are not touched."""
        async with self._lock:
            await self.storage.multi_remove(AUTH_KEYS)
        logger.info("Local auth data cleared")

    async def set_intentional_logout(self, value: bool) -> None:
        async with self._lock:
            if value:
                await self.storage.set_item(INTENTIONAL_LOGOUT_KEY, "true")
            else:
                await self.storage.remove_item(INTENTIONAL_LOGOUT_KEY)

    async def was_intentional_logout(self) -> bool:
        return await self.storage.get_item(INTENTIONAL_LOGOUT_KEY) == "true"
