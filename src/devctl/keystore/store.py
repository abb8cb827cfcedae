"""文件 Keystore。

存储格式 (JSON):
    {
        "version": 1,
        "secrets": {
            "<name>": {"salt": "<hex>", "hash": "<hex>", "value": "<base64>"}
        }
    }

每个 secret 拥有独立的 salt，密钥由主密码 + salt 派生。
value 为 base64(iv || authTag || ciphertext)，格式变化会破坏已有数据的兼容性。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, Optional

from .cipher import SecretCipher, StoredSecret, derive_key
from .errors import InvalidPasswordError, KeystoreError, MalformedSecretError
from .password import create_encryption_key, create_password_hash, verify_password_hash

__all__ = ["FileKeystore", "FileKeystoreProvider", "PasswordSource", "KEYSTORE_VERSION"]

logger = logging.getLogger(__name__)

KEYSTORE_VERSION = 1

# 返回主密码的回调（交互式提示或环境变量）
PasswordSource = Callable[[], str]


def _password_hash(stored: StoredSecret) -> str:
    """记录中的 hash 与 salt 组成 "hash:salt" 指纹。"""
    return f"{stored.hash}:{stored.salt}"


class FileKeystore:
    """基于 JSON 文件的 secret 存储。

    只负责读写持久化记录，不做任何加解密。

    Attributes:
        path: keystore 文件路径
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._secrets: Dict[str, StoredSecret] = {}
        self._loaded = False

    def load(self) -> "FileKeystore":
        """从磁盘加载。文件不存在时视为空 keystore。

        Raises:
            KeystoreError: 文件内容不是合法的 keystore JSON
        """
        self._secrets = {}
        self._loaded = True

        if not self.path.exists():
            logger.debug(f"Keystore file not found, starting empty: {self.path}")
            return self

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise KeystoreError(f"Failed to read keystore {self.path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("secrets", {}), dict):
            raise KeystoreError(f"Invalid keystore format: {self.path}")

        for name, record in data.get("secrets", {}).items():
            try:
                self._secrets[name] = StoredSecret.from_dict(record)
            except MalformedSecretError as e:
                raise KeystoreError(f"Invalid secret {name!r} in {self.path}: {e}") from e

        logger.debug(f"Loaded keystore {self.path} ({len(self._secrets)} secret(s))")
        return self

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def save(self) -> None:
        """写回磁盘（临时文件 + 原子替换，权限 0600）。"""
        self._ensure_loaded()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": KEYSTORE_VERSION,
            "secrets": {name: s.to_dict() for name, s in sorted(self._secrets.items())},
        }

        fd, tmp_name = tempfile.mkstemp(prefix=".keystore-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4)
                f.write("\n")
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug(f"Saved keystore {self.path}")

    def get(self, name: str) -> Optional[StoredSecret]:
        self._ensure_loaded()
        return self._secrets.get(name)

    def set(self, name: str, secret: StoredSecret) -> None:
        self._ensure_loaded()
        self._secrets[name] = secret

    def delete(self, name: str) -> bool:
        self._ensure_loaded()
        return self._secrets.pop(name, None) is not None

    def names(self) -> list[str]:
        self._ensure_loaded()
        return sorted(self._secrets)

    def __contains__(self, name: str) -> bool:
        self._ensure_loaded()
        return name in self._secrets

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._secrets)


class FileKeystoreProvider:
    """加密的文件 keystore 提供者。

    - 主密码通过 password_source 获取，每个 provider 实例最多询问一次
    - 每次 set 都使用新的 salt 和新的 iv 完整重新加密
    - 记录的 hash 与 salt 组成 "hash:salt" 指纹，get 在解密前先校验，
      密码错误时抛出 InvalidPasswordError

    派生的密钥按 salt 缓存在实例内，实例不应在并发流程间共享。

    Example:
        ```python
        provider = FileKeystoreProvider(FileKeystore(path), lambda: "password")
        provider.set("DB_PASSWORD", "s3cret")
        assert provider.get("DB_PASSWORD") == "s3cret"
        ```
    """

    def __init__(self, keystore: FileKeystore, password_source: PasswordSource) -> None:
        self.keystore = keystore
        self._password_source = password_source
        self._password: Optional[str] = None
        self._keys: Dict[str, bytes] = {}

    def _get_password(self) -> str:
        if self._password is None:
            password = self._password_source()
            self._check_against_existing(password)
            self._password = password
        return self._password

    def _check_against_existing(self, password: str) -> None:
        """用已有 secret 的指纹校验新输入的密码。"""
        for name in self.keystore.names():
            stored = self.keystore.get(name)
            if stored is not None and stored.hash:
                if not verify_password_hash(password, _password_hash(stored)):
                    raise InvalidPasswordError("Invalid keystore password")
                return

    def _key_for(self, name: str, stored: StoredSecret) -> bytes:
        """返回 secret 的解密密钥，有指纹时先校验密码。"""
        if stored.salt not in self._keys:
            password = self._get_password()
            if stored.hash is None:
                key = derive_key(password, stored.salt_bytes)
            else:
                try:
                    key = create_encryption_key(password, _password_hash(stored))
                except InvalidPasswordError as e:
                    raise InvalidPasswordError(
                        f"Password does not match secret {name!r}"
                    ) from e
            self._keys[stored.salt] = key
        return self._keys[stored.salt]

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """读取并解密 secret，不存在时返回 default。

        Raises:
            InvalidPasswordError: 指纹不匹配
            AuthenticationError: 密文被篡改
        """
        stored = self.keystore.get(name)
        if stored is None or not stored.value:
            return default

        cipher = SecretCipher(self._key_for(name, stored))
        return cipher.decrypt_value(stored.value)

    def set(self, name: str, value: str) -> None:
        """加密并保存 secret（覆盖时完整重新加密）。"""
        password = self._get_password()
        digest, _, salt = create_password_hash(password).partition(":")
        stored = StoredSecret(salt=salt, value="", hash=digest)
        cipher = SecretCipher(self._key_for(name, stored))

        self.keystore.set(
            name,
            StoredSecret(salt=salt, value=cipher.encrypt_value(value), hash=digest),
        )
        self.keystore.save()
        logger.info(f"Stored secret {name!r}")

    def delete(self, name: str) -> bool:
        removed = self.keystore.delete(name)
        if removed:
            self.keystore.save()
            logger.info(f"Deleted secret {name!r}")
        return removed
