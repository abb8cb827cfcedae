"""Keystore 模块异常类。

devctl keystore v0.1.0
"""

from __future__ import annotations

__all__ = [
    "KeystoreError",
    "KeyLengthError",
    "AuthenticationError",
    "MalformedSecretError",
    "InvalidPasswordError",
]


class KeystoreError(Exception):
    """Keystore 模块基础异常。"""
    pass


class KeyLengthError(KeystoreError):
    """密钥长度错误（AES-256 需要 32 字节）。

    Attributes:
        length: 实际传入的密钥长度
        expected: 期望的密钥长度
    """

    def __init__(self, length: int, expected: int = 32) -> None:
        self.length = length
        self.expected = expected
        super().__init__(f"Invalid key length: expected {expected} bytes, got {length}")


class AuthenticationError(KeystoreError):
    """认证标签校验失败（数据被篡改或密钥错误）。"""
    pass


class MalformedSecretError(KeystoreError):
    """密文格式错误（非 base64 或长度不足）。"""
    pass


class InvalidPasswordError(KeystoreError):
    """密码与存储的指纹不匹配。"""
    pass
