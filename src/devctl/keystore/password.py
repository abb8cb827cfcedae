"""密码指纹与加密密钥派生。

指纹格式: "<hex(HMAC-SHA256(salt, password))>:<hex(salt)>"

指纹用于在解密前检测密码错误，本身不参与加密。
"""

from __future__ import annotations

import hashlib
import hmac

from .cipher import SALT_SIZE, derive_key, generate_salt
from .errors import InvalidPasswordError

__all__ = [
    "create_password_hash",
    "verify_password_hash",
    "create_encryption_key",
    "fingerprint",
]


def fingerprint(password: str, salt: bytes) -> str:
    """计算密码在给定 salt 下的 HMAC-SHA256 指纹（hex）。"""
    return hmac.new(salt, password.encode("utf-8"), hashlib.sha256).hexdigest()


def create_password_hash(password: str, salt: str | None = None) -> str:
    """生成 "hash:salt" 格式的密码指纹。

    Args:
        password: 密码
        salt: hex 编码的 salt，为空时随机生成 16 字节

    Returns:
        "hash:salt" 字符串
    """
    salt_bytes = bytes.fromhex(salt) if salt else generate_salt()
    return f"{fingerprint(password, salt_bytes)}:{salt_bytes.hex()}"


def _split_hash(password_hash: str | None) -> tuple[str, bytes] | None:
    """拆分 "hash:salt"，格式错误返回 None。"""
    if not password_hash or ":" not in password_hash:
        return None
    digest, _, salt = password_hash.partition(":")
    try:
        salt_bytes = bytes.fromhex(salt)
    except ValueError:
        return None
    if not digest or len(salt_bytes) != SALT_SIZE:
        return None
    return digest, salt_bytes


def verify_password_hash(password: str, password_hash: str | None) -> bool:
    """校验密码是否匹配指纹。

    格式错误或为空的指纹一律返回 False。
    """
    parts = _split_hash(password_hash)
    if parts is None:
        return False
    digest, salt_bytes = parts
    return hmac.compare_digest(digest, fingerprint(password, salt_bytes))


def create_encryption_key(password: str, password_hash: str) -> bytes:
    """校验密码后，使用指纹中的 salt 派生 32 字节密钥。

    Raises:
        InvalidPasswordError: 密码不匹配或指纹格式错误
    """
    if not verify_password_hash(password, password_hash):
        raise InvalidPasswordError("Invalid password provided")

    _, salt_bytes = password_hash.split(":", 1)
    return derive_key(password, bytes.fromhex(salt_bytes))
