"""Tests for key/value storage and the secure token store."""

import pytest

from assist_auth.schemas.auth import TokenPair
from assist_auth.schemas.user import UserProfile
from assist_auth.services.biometric_service import BIOMETRIC_ENABLED_KEY, BIOMETRIC_STORAGE_KEY
from assist_auth.services.encryption_service import EncryptionService
from assist_auth.services.storage import EncryptedFileStorage, MemoryStorage
from assist_auth.services.token_storage import AuthStorage


def make_tokens(**overrides):
    values = {"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 1800}
    values.update(overrides)
    return TokenPair(**values)


def make_user(**overrides):
    values = {"id": 7, "email": "user@example.com", "full_name": "Test User"}
    values.update(overrides)
    return UserProfile(**values)


class TestMemoryStorage:
    """Process-local storage."""

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        """Test set, get and remove."""
        storage = MemoryStorage()

        await storage.set_item("a", "1")
        assert await storage.get_item("a") == "1"

        await storage.remove_item("a")
        assert await storage.get_item("a") is None

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self):
        """Test namespaces do not share keys."""
        first = MemoryStorage(namespace="one")
        second = MemoryStorage(namespace="two")
        second._data = first._data

        await first.set_item("key", "value")

        assert await second.get_item("key") is None
        assert first.keys() == ["key"]

    @pytest.mark.asyncio
    async def test_multi_get_reports_missing_keys(self):
        """Test multi_get returns None for missing keys."""
        storage = MemoryStorage()
        await storage.multi_set([("a", "1"), ("b", "2")])

        assert await storage.multi_get(["a", "b", "c"]) == {"a": "1", "b": "2", "c": None}


class TestEncryptedFileStorage:
    """Encrypted one-file-per-key storage."""

    def setup_method(self):
        """Set up test fixtures."""
        self.encryption = EncryptionService(key=EncryptionService.generate_key())

    @pytest.mark.asyncio
    async def test_values_survive_new_instance(self, tmp_path):
        """Test values persist across instances."""
        storage = EncryptedFileStorage(directory=str(tmp_path), encryption=self.encryption)
        await storage.multi_set([("access_token", "secret-access"), ("user_data", '{"id": 1}')])

        reopened = EncryptedFileStorage(directory=str(tmp_path), encryption=self.encryption)

        assert await reopened.get_item("access_token") == "secret-access"
        assert await reopened.get_item("user_data") == '{"id": 1}'

    @pytest.mark.asyncio
    async def test_values_are_encrypted_on_disk(self, tmp_path):
        """Test values are encrypted on disk."""
        storage = EncryptedFileStorage(directory=str(tmp_path), encryption=self.encryption)
        await storage.set_item("refresh_token", "secret-refresh")

        files = list(tmp_path.iterdir())
        assert len(files) == 1
        content = files[0].read_text()
        assert "secret-refresh" not in content
        assert self.encryption._is_encrypted(content)

    @pytest.mark.asyncio
    async def test_unreadable_record_reads_as_missing(self, tmp_path):
        """Test a record encrypted with another key reads as missing."""
        storage = EncryptedFileStorage(directory=str(tmp_path), encryption=self.encryption)
        await storage.set_item("refresh_token", "secret-refresh")

        rotated = EncryptedFileStorage(
            directory=str(tmp_path), encryption=EncryptionService(key=EncryptionService.generate_key())
        )

        assert await rotated.get_item("refresh_token") is None

    @pytest.mark.asyncio
    async def test_remove(self, tmp_path):
        """Test multi_remove leaves no temporary files."""
        storage = EncryptedFileStorage(directory=str(tmp_path), encryption=self.encryption)
        await storage.multi_set([("a", "1"), ("b", "2")])

        await storage.multi_remove(["a", "missing"])

        assert await storage.get_item("a") is None
        assert await storage.get_item("b") == "2"
        assert not any(p.name.endswith(".tmp") for p in tmp_path.iterdir())


class TestAuthStorage:
    """Secure token store."""

    @pytest.mark.asyncio
    async def test_save_and_load_session(self, auth_storage):
        """Test saving and loading a session."""
        tokens = make_tokens(password_change_required=True)
        user = make_user()

        await auth_storage.save_session(tokens, user)

        assert await auth_storage.get_tokens() == tokens
        assert await auth_storage.get_user_data() == user

    @pytest.mark.asyncio
    async def test_tokens_require_both_values(self, storage, auth_storage):
        """Test tokens need both access and refresh values."""
        await storage.set_item("access_token", "only-access")

        assert await auth_storage.get_tokens() is None

    @pytest.mark.asyncio
    async def test_corrupt_profile_is_ignored(self, storage, auth_storage):
        """Test a corrupt profile reads as missing."""
        await storage.set_item("user_data", '{"email": 5}')

        assert await auth_storage.get_user_data() is None

    @pytest.mark.asyncio
    async def test_clear_keeps_biometric_records(self, storage, auth_storage):
        """Test clearing auth data keeps the biometric vault."""
        await auth_storage.save_session(make_tokens(), make_user())
        await storage.multi_set([(BIOMETRIC_STORAGE_KEY, "vault-token"), (BIOMETRIC_ENABLED_KEY, "true")])

        await auth_storage.clear_auth_data()

        assert await auth_storage.get_tokens() is None
        assert await auth_storage.get_user_data() is None
        assert await storage.get_item(BIOMETRIC_STORAGE_KEY) == "vault-token"

    @pytest.mark.asyncio
    async def test_intentional_logout_flag(self, auth_storage):
        """Test the intentional logout flag."""
        assert await auth_storage.was_intentional_logout() is False

        await auth_storage.set_intentional_logout(True)
        assert await auth_storage.was_intentional_logout() is True

        await auth_storage.set_intentional_logout(False)
        assert await auth_storage.was_intentional_logout() is False

    @pytest.mark.asyncio
    async def test_each_item_is_a_discrete_record(self, storage, auth_storage):
        """Test each value is stored under its own key."""
        await auth_storage.save_session(make_tokens(), make_user())

        assert sorted(storage.keys()) == ["access_token", "refresh_token", "token_meta", "user_data"]
