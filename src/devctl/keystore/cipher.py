"""Secret value encryption for the keystore.

devctl keystore v0.1.0

This module provides:
- AES-256-GCM encryption of single secret values (fresh 96-bit nonce per call)
- Tag verification before any plaintext is released
- The stable on-disk blob codec: base64(iv(12) || authTag(16) || ciphertext)
- Explicit password-based key derivation (scrypt, N=2^14 r=8 p=1)

Key derivation is never performed implicitly by encrypt/decrypt; callers
derive a key once and pass it in.
"""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import AuthenticationError, KeyLengthError, MalformedSecretError

__all__ = [
    "EncryptedSecret",
    "StoredSecret",
    "SecretCipher",
    "encrypt",
    "decrypt",
    "encode",
    "decode",
    "derive_key",
    "generate_salt",
    "KEY_SIZE",
    "IV_SIZE",
    "TAG_SIZE",
    "SALT_SIZE",
]

KEY_SIZE = 32
IV_SIZE = 12
TAG_SIZE = 16
SALT_SIZE = 16

# scrypt cost parameters; changing them makes existing keystores unreadable
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


@dataclass(frozen=True)
class EncryptedSecret:
    """One encrypted secret value.

    Attributes:
        iv: 12-byte nonce, unique per encryption
        auth_tag: 16-byte GCM tag
        ciphertext: Encrypted payload (same length as the plaintext bytes)
    """

    iv: bytes
    auth_tag: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.iv + self.auth_tag + self.ciphertext

    def to_value(self) -> str:
        """Render the combined base64 blob."""
        return base64.b64encode(self.to_bytes()).decode("ascii")

    @classmethod
    def from_value(cls, value: str) -> "EncryptedSecret":
        """Parse a combined base64 blob.

        Raises:
            MalformedSecretError: If the value is not base64 or too short
        """
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise MalformedSecretError(f"Secret value is not valid base64: {e}") from e

        if len(raw) < IV_SIZE + TAG_SIZE:
            raise MalformedSecretError(
                f"Secret value too short: {len(raw)} bytes, "
                f"need at least {IV_SIZE + TAG_SIZE}"
            )

        return cls(
            iv=raw[:IV_SIZE],
            auth_tag=raw[IV_SIZE:IV_SIZE + TAG_SIZE],
            ciphertext=raw[IV_SIZE + TAG_SIZE:],
        )


@dataclass(frozen=True)
class StoredSecret:
    """Persisted keystore record ``{salt, hash?, value}``.

    Attributes:
        salt: Hex-encoded 16-byte salt for key derivation
        value: base64(iv || authTag || ciphertext)
        hash: Optional key fingerprint used to detect a wrong password
    """

    salt: str
    value: str
    hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"salt": self.salt}
        if self.hash is not None:
            data["hash"] = self.hash
        data["value"] = self.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredSecret":
        try:
            salt = data["salt"]
            value = data["value"]
        except (KeyError, TypeError) as e:
            raise MalformedSecretError(f"Stored secret is missing field: {e}") from e
        if not isinstance(salt, str) or not isinstance(value, str):
            raise MalformedSecretError("Stored secret fields must be strings")
        return cls(salt=salt, value=value, hash=data.get("hash"))

    @property
    def salt_bytes(self) -> bytes:
        try:
            return bytes.fromhex(self.salt)
        except ValueError as e:
            raise MalformedSecretError(f"Stored salt is not hex: {e}") from e


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise KeyLengthError(len(key), KEY_SIZE)


def generate_salt() -> bytes:
    """Return 16 random bytes for a new secret."""
    return os.urandom(SALT_SIZE)


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 32-byte key from a password and salt.

    Same password and salt always give the same key.
    """
    kdf = Scrypt(salt=salt, length=KEY_SIZE, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(password.encode("utf-8"))


def encrypt(plaintext: str, key: bytes) -> EncryptedSecret:
    """Encrypt a string with AES-256-GCM under a fresh random nonce.

    Raises:
        KeyLengthError: If key is not 32 bytes
    """
    _check_key(key)

    iv = os.urandom(IV_SIZE)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)

    # AESGCM appends the tag to the ciphertext
    return EncryptedSecret(
        iv=iv,
        auth_tag=sealed[-TAG_SIZE:],
        ciphertext=sealed[:-TAG_SIZE],
    )


def decrypt(secret: EncryptedSecret, key: bytes) -> str:
    """Verify and decrypt one secret.

    Raises:
        KeyLengthError: If key is not 32 bytes
        AuthenticationError: If the tag does not verify
        MalformedSecretError: If iv or tag have the wrong size
    """
    _check_key(key)

    if len(secret.iv) != IV_SIZE or len(secret.auth_tag) != TAG_SIZE:
        raise MalformedSecretError(
            f"Invalid iv/tag size: iv={len(secret.iv)} tag={len(secret.auth_tag)}"
        )

    try:
        data = AESGCM(key).decrypt(secret.iv, secret.ciphertext + secret.auth_tag, None)
    except InvalidTag as e:
        raise AuthenticationError(
            "Unable to authenticate secret (tampered data or wrong key)"
        ) from e

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedSecretError(f"Decrypted value is not UTF-8: {e}") from e


def encode(secret: EncryptedSecret) -> str:
    return secret.to_value()


def decode(value: str) -> EncryptedSecret:
    return EncryptedSecret.from_value(value)


class SecretCipher:
    """Cipher bound to one 32-byte key.

    Example:
        cipher = SecretCipher(derive_key(password, salt))
        blob = cipher.encrypt_value("s3cret")
        assert cipher.decrypt_value(blob) == "s3cret"
    """

    def __init__(self, key: bytes) -> None:
        _check_key(key)
        self._key = bytes(key)

    @classmethod
    def from_password(cls, password: str, salt: bytes) -> "SecretCipher":
        return cls(derive_key(password, salt))

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        return encrypt(plaintext, self._key)

    def decrypt(self, secret: EncryptedSecret) -> str:
        return decrypt(secret, self._key)

    def encrypt_value(self, plaintext: str) -> str:
        return encode(self.encrypt(plaintext))

    def decrypt_value(self, value: str) -> str:
        return self.decrypt(decode(value))

    def __repr__(self) -> str:
        return "SecretCipher(key=<redacted>)"
