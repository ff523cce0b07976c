"""
Key/value persistence for auth state.

Each persisted item (access token, refresh token, cached profile, biometric
fields) is a discrete record under a namespaced key; there is no single
blob. Values are strings; callers serialize JSON themselves.
"""

import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from cryptography.fernet import InvalidToken

from assist_auth.config import settings
from assist_auth.services.encryption_service import EncryptionService

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStorage(ABC):
    """Async string storage with multi-key operations."""

    def __init__(self, namespace: Optional[str] = None):
        self.namespace = namespace or settings.STORAGE_NAMESPACE

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def multi_set(self, items: Iterable[Tuple[str, str]]) -> None:
        """Write several keys as one logical transaction."""

    @abstractmethod
    async def multi_remove(self, keys: Iterable[str]) -> None:
        ...

    async def set_item(self, key: str, value: str) -> None:
        await self.multi_set([(key, value)])

    async def remove_item(self, key: str) -> None:
        await self.multi_remove([key])

    async def multi_get(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        return {key: await self.get_item(key) for key in keys}


class MemoryStorage(KeyValueStorage):
    """Process-local storage. Nothing survives a restart."""

    def __init__(self, namespace: Optional[str] = None):
        super().__init__(namespace)
        self._data: Dict[str, str] = {}

    async def get_item(self, key: str) -> Optional[str]:
        return self._data.get(self._full_key(key))

    async def multi_set(self, items: Iterable[Tuple[str, str]]) -> None:
        self._data.update({self._full_key(k): v for k, v in items})

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(self._full_key(key), None)

    def keys(self) -> List[str]:
        """Stored keys without the namespace prefix."""
        prefix = f"{self.namespace}:"
        return [k[len(prefix):] for k in self._data if k.startswith(prefix)]


class EncryptedFileStorage(KeyValueStorage):
    """
    One encrypted file per key under `directory`.

    Survives restarts. Values are Fernet-encrypted; a value that cannot be
    decrypted (key rotated, file corrupted) reads as absent.
    """

    def __init__(
        self,
        directory: Optional[str] = None,
        encryption: Optional[EncryptionService] = None,
        namespace: Optional[str] = None,
    ):
        super().__init__(namespace)
        self.directory = Path(directory or settings.STORAGE_DIR)
        self.encryption = encryption or EncryptionService()

    def _path(self, key: str) -> Path:
        return self.directory / _SAFE_KEY.sub("_", self._full_key(key))

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        ciphertext = path.read_text(encoding="utf-8")
        try:
            return self.encryption.decrypt_string(ciphertext)
        except InvalidToken:
            logger.warning(f"Discarding unreadable storage record: {key}")
            return None

    def _write_all(self, items: List[Tuple[str, str]]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        staged = []
        try:
            for key, value in items:
                target = self._path(key)
                tmp = target.with_name(target.name + ".tmp")
                tmp.write_text(self.encryption.encrypt_string(value), encoding="utf-8")
                staged.append((tmp, target))
        except OSError:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise
        # Every value is on disk before any becomes visible
        for tmp, target in staged:
            os.replace(tmp, target)

    def _remove_all(self, keys: List[str]) -> None:
        for key in keys:
            self._path(key).unlink(missing_ok=True)

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def multi_set(self, items: Iterable[Tuple[str, str]]) -> None:
        await asyncio.to_thread(self._write_all, list(items))

    async def multi_remove(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._remove_all, list(keys))
