"""Keystore 模块。

提供 secret 的加密存储：
- cipher: AES-256-GCM 加解密与密钥派生
- password: 密码指纹
- store: 文件 keystore
- service: 提供者选择
"""

from __future__ import annotations

from .cipher import (
    EncryptedSecret,
    SecretCipher,
    StoredSecret,
    decode,
    decrypt,
    derive_key,
    encode,
    encrypt,
    generate_salt,
)
from .errors import (
    AuthenticationError,
    InvalidPasswordError,
    KeyLengthError,
    KeystoreError,
    MalformedSecretError,
)
from .password import create_encryption_key, create_password_hash, verify_password_hash
from .service import KeystoreService
from .store import FileKeystore, FileKeystoreProvider

__all__ = [
    "EncryptedSecret",
    "SecretCipher",
    "StoredSecret",
    "decode",
    "decrypt",
    "derive_key",
    "encode",
    "encrypt",
    "generate_salt",
    "AuthenticationError",
    "InvalidPasswordError",
    "KeyLengthError",
    "KeystoreError",
    "MalformedSecretError",
    "create_encryption_key",
    "create_password_hash",
    "verify_password_hash",
    "KeystoreService",
    "FileKeystore",
    "FileKeystoreProvider",
]
