"""Keystore 测试。

测试密码指纹、文件 keystore 和 KeystoreService：
- 指纹生成与校验
- 文件格式与持久化
- 加密提供者的读写、覆盖与密码校验
- 提供者选择
"""

from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path
from unittest import mock

import pytest

from devctl.keystore import (
    AuthenticationError,
    FileKeystore,
    FileKeystoreProvider,
    InvalidPasswordError,
    KeystoreError,
    KeystoreService,
    SecretCipher,
    StoredSecret,
    create_encryption_key,
    create_password_hash,
    derive_key,
    verify_password_hash,
)


@pytest.fixture
def keystore_path(tmp_path: Path) -> Path:
    return tmp_path / "home" / "keystore.json"


def make_provider(path: Path, password: str = "correct horse") -> FileKeystoreProvider:
    return FileKeystoreProvider(FileKeystore(path), lambda: password)


# =============================================================================
# Password Hash Tests
# =============================================================================


class TestPasswordHash:
    """密码指纹测试。"""

    def test_format(self):
        result = create_password_hash("password")
        digest, salt = result.split(":")
        assert len(digest) == 64
        assert len(salt) == 32
        int(digest, 16)
        int(salt, 16)

    def test_deterministic_with_same_salt(self):
        salt = os.urandom(16).hex()
        assert create_password_hash("pw", salt) == create_password_hash("pw", salt)

    def test_keeps_given_salt(self):
        salt = os.urandom(16).hex()
        assert create_password_hash("pw", salt).endswith(f":{salt}")

    def test_random_salt_when_missing(self):
        assert create_password_hash("pw") != create_password_hash("pw")

    def test_verify(self):
        password_hash = create_password_hash("correct password")
        assert verify_password_hash("correct password", password_hash) is True
        assert verify_password_hash("wrong password", password_hash) is False

    def test_verify_empty_password(self):
        password_hash = create_password_hash("")
        assert verify_password_hash("", password_hash) is True
        assert verify_password_hash("not empty", password_hash) is False

    @pytest.mark.parametrize("bad", ["", None, "malformed-hash", "abc:zz", "abc:00"])
    def test_verify_malformed(self, bad):
        assert verify_password_hash("password", bad) is False

    def test_encryption_key(self):
        password_hash = create_password_hash("secret")
        key = create_encryption_key("secret", password_hash)
        salt = bytes.fromhex(password_hash.split(":")[1])
        assert key == derive_key("secret", salt)
        assert len(key) == 32

    def test_encryption_key_wrong_password(self):
        password_hash = create_password_hash("correct password")
        with pytest.raises(InvalidPasswordError, match="Invalid password provided"):
            create_encryption_key("wrong password", password_hash)

    def test_encryption_key_malformed_hash(self):
        with pytest.raises(InvalidPasswordError):
            create_encryption_key("test", "invalidhashformat")


# =============================================================================
# FileKeystore Tests
# =============================================================================


class TestFileKeystore:
    """文件 keystore 的持久化测试。"""

    def test_missing_file_is_empty(self, keystore_path: Path):
        keystore = FileKeystore(keystore_path).load()
        assert len(keystore) == 0
        assert keystore.get("x") is None

    def test_save_and_reload(self, keystore_path: Path):
        keystore = FileKeystore(keystore_path)
        keystore.set("A", StoredSecret(salt="00" * 16, value="dmFsdWU=", hash="ab"))
        keystore.save()

        reloaded = FileKeystore(keystore_path).load()
        assert reloaded.names() == ["A"]
        assert reloaded.get("A") == StoredSecret(salt="00" * 16, value="dmFsdWU=", hash="ab")

    def test_file_format(self, keystore_path: Path):
        keystore = FileKeystore(keystore_path)
        keystore.set("A", StoredSecret(salt="11" * 16, value="dg==", hash="cd"))
        keystore.save()

        data = json.loads(keystore_path.read_text())
        assert data == {
            "version": 1,
            "secrets": {"A": {"salt": "11" * 16, "hash": "cd", "value": "dg=="}},
        }

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_mode(self, keystore_path: Path):
        keystore = FileKeystore(keystore_path)
        keystore.set("A", StoredSecret(salt="00" * 16, value="dg=="))
        keystore.save()
        assert stat.S_IMODE(keystore_path.stat().st_mode) == 0o600

    def test_delete(self, keystore_path: Path):
        keystore = FileKeystore(keystore_path)
        keystore.set("A", StoredSecret(salt="00" * 16, value="dg=="))
        assert keystore.delete("A") is True
        assert keystore.delete("A") is False
        assert "A" not in keystore

    def test_corrupt_json(self, keystore_path: Path):
        keystore_path.parent.mkdir(parents=True)
        keystore_path.write_text("{not json")
        with pytest.raises(KeystoreError):
            FileKeystore(keystore_path).load()

    def test_invalid_record(self, keystore_path: Path):
        keystore_path.parent.mkdir(parents=True)
        keystore_path.write_text(json.dumps({"secrets": {"A": {"salt": "00"}}}))
        with pytest.raises(KeystoreError, match="Invalid secret 'A'"):
            FileKeystore(keystore_path).load()


# =============================================================================
# FileKeystoreProvider Tests
# =============================================================================


class TestFileKeystoreProvider:
    """加密文件提供者测试。"""

    def test_set_and_get(self, keystore_path: Path):
        provider = make_provider(keystore_path)
        provider.set("DB_PASSWORD", "s3cret")

        assert provider.get("DB_PASSWORD") == "s3cret"
        assert make_provider(keystore_path).get("DB_PASSWORD") == "s3cret"

    def test_value_not_stored_in_plaintext(self, keystore_path: Path):
        make_provider(keystore_path).set("TOKEN", "plain-text-token")
        assert "plain-text-token" not in keystore_path.read_text()

    def test_get_missing_returns_default(self, keystore_path: Path):
        provider = make_provider(keystore_path)
        assert provider.get("missing") is None
        assert provider.get("missing", "fallback") == "fallback"

    def test_overwrite_reencrypts_with_new_salt_and_iv(self, keystore_path: Path):
        provider = make_provider(keystore_path)
        provider.set("A", "one")
        first = provider.keystore.get("A")
        provider.set("A", "two")
        second = provider.keystore.get("A")

        assert first.salt != second.salt
        assert first.value[:16] != second.value[:16]
        assert provider.get("A") == "two"

    def test_record_is_password_hash(self, keystore_path: Path):
        """记录的 hash:salt 就是 create_password_hash 的格式，可直接派生解密密钥。"""
        make_provider(keystore_path, "pw").set("A", "value")
        stored = FileKeystore(keystore_path).load().get("A")
        password_hash = f"{stored.hash}:{stored.salt}"

        assert verify_password_hash("pw", password_hash)
        assert password_hash == create_password_hash("pw", stored.salt)
        key = create_encryption_key("pw", password_hash)
        assert SecretCipher(key).decrypt_value(stored.value) == "value"

    def test_get_derives_key_through_password_hash(self, keystore_path: Path):
        make_provider(keystore_path, "pw").set("A", "value")
        provider = make_provider(keystore_path, "pw")

        with mock.patch(
            "devctl.keystore.store.create_encryption_key",
            wraps=create_encryption_key,
        ) as create_key:
            assert provider.get("A") == "value"
        stored = provider.keystore.get("A")
        create_key.assert_called_once_with("pw", f"{stored.hash}:{stored.salt}")

    def test_record_without_hash_still_readable(self, keystore_path: Path):
        salt = os.urandom(16)
        blob = SecretCipher(derive_key("pw", salt)).encrypt_value("legacy")
        keystore = FileKeystore(keystore_path)
        keystore.set("OLD", StoredSecret(salt=salt.hex(), value=blob))
        keystore.save()

        assert make_provider(keystore_path, "pw").get("OLD") == "legacy"

    def test_each_secret_has_own_salt(self, keystore_path: Path):
        provider = make_provider(keystore_path)
        provider.set("A", "1")
        provider.set("B", "2")
        assert provider.keystore.get("A").salt != provider.keystore.get("B").salt

    def test_wrong_password_detected_by_fingerprint(self, keystore_path: Path):
        make_provider(keystore_path, "right").set("A", "value")

        with pytest.raises(InvalidPasswordError):
            make_provider(keystore_path, "wrong").get("A")

    def test_wrong_password_rejected_before_set(self, keystore_path: Path):
        make_provider(keystore_path, "right").set("A", "value")

        with pytest.raises(InvalidPasswordError):
            make_provider(keystore_path, "wrong").set("B", "value")
        assert FileKeystore(keystore_path).load().names() == ["A"]

    def test_tampered_value(self, keystore_path: Path):
        provider = make_provider(keystore_path)
        provider.set("A", "value")
        stored = provider.keystore.get("A")
        tampered = stored.value[:-4] + ("AAAA" if stored.value[-4:] != "AAAA" else "BBBB")
        provider.keystore.set("A", StoredSecret(salt=stored.salt, value=tampered, hash=stored.hash))

        with pytest.raises(AuthenticationError):
            provider.get("A")

    def test_password_asked_once(self, keystore_path: Path):
        source = mock.Mock(return_value="pw")
        provider = FileKeystoreProvider(FileKeystore(keystore_path), source)
        provider.set("A", "1")
        provider.set("B", "2")
        provider.get("A")
        assert source.call_count == 1

    def test_delete(self, keystore_path: Path):
        provider = make_provider(keystore_path)
        provider.set("A", "1")
        assert provider.delete("A") is True
        assert provider.delete("A") is False
        assert make_provider(keystore_path).get("A") is None

    def test_delete_does_not_need_password(self, keystore_path: Path):
        make_provider(keystore_path).set("A", "1")
        source = mock.Mock(return_value="pw")
        provider = FileKeystoreProvider(FileKeystore(keystore_path), source)
        provider.delete("A")
        source.assert_not_called()


# =============================================================================
# KeystoreService Tests
# =============================================================================


class TestKeystoreService:
    """KeystoreService 测试。"""

    def test_default_file_provider(self, keystore_path: Path):
        service = KeystoreService(keystore_path, lambda: "pw")
        assert service.has_provider("file")
        assert isinstance(service.provider(), FileKeystoreProvider)

    def test_provider_instance_reused(self, keystore_path: Path):
        service = KeystoreService(keystore_path, lambda: "pw")
        assert service.provider() is service.provider("file")

    def test_unknown_provider(self, keystore_path: Path):
        service = KeystoreService(keystore_path, lambda: "pw")
        assert not service.has_provider("keytar")
        with pytest.raises(KeystoreError, match='Unknown keystore provider "keytar"'):
            service.provider("keytar")

    def test_unknown_default_provider(self, keystore_path: Path):
        service = KeystoreService(keystore_path, lambda: "pw", default_provider="vault")
        with pytest.raises(KeystoreError):
            service.get("A")

    def test_register_provider(self, keystore_path: Path):
        service = KeystoreService(keystore_path, lambda: "pw")
        memory = mock.Mock()
        service.register_provider("memory", lambda: memory)
        assert service.provider("memory") is memory

    def test_register_duplicate(self, keystore_path: Path):
        service = KeystoreService(keystore_path, lambda: "pw")
        with pytest.raises(KeystoreError, match="already registered"):
            service.register_provider("file", mock.Mock)

    def test_set_get_delete(self, keystore_path: Path):
        service = KeystoreService(keystore_path, lambda: "pw")
        service.set("A", "value")
        assert service.get("A") == "value"
        assert service.delete("A") is True
        assert service.get("A", "default") == "default"

    def test_get_first_of_keys(self, keystore_path: Path):
        service = KeystoreService(keystore_path, lambda: "pw")
        service.set("GH_TOKEN", "gh")
        assert service.get(["GITHUB_TOKEN", "GH_TOKEN"]) == "gh"
        assert service.get(["X", "Y"], "none") == "none"
