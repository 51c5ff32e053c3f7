"""AES-256-GCM encryption for credential payloads.

Payloads are stored as three base64 strings: ciphertext, a fresh 12-byte IV
per encryption, and the 16-byte GCM authentication tag. The tag is split off
the sealed output on encrypt and appended back to the ciphertext on decrypt.

Nothing in this module logs plaintext, keys or derived material.
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from broker.config import Settings

KEY_SIZE = 32
NONCE_SIZE = 12  # 96-bit nonce for GCM
TAG_SIZE = 16  # 128-bit tag


class CipherError(Exception):
    """Raised when a payload cannot be encrypted or decrypted."""

    pass


class CipherConfigurationError(CipherError):
    """Raised when the master key is missing or malformed."""

    def __init__(self, message: str, setting: str | None = None):
        self.setting = setting
        super().__init__(message)


@dataclass(frozen=True)
class EncryptedPayload:
    """Base64 encoded ciphertext, IV and tag, always stored together."""

    ciphertext: str
    iv: str
    tag: str


def load_key(key_b64: str) -> bytes:
    """Decode a base64 master key.

    Accepts standard or URL-safe alphabets, with or without padding.

    Raises:
        CipherConfigurationError: If the key is not base64 or not 256 bits.
    """
    normalized = key_b64.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        key = base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError):
        raise CipherConfigurationError("Encryption key is not valid base64") from None
    if len(key) != KEY_SIZE:
        raise CipherConfigurationError("Encryption key must decode to 32 bytes")
    return key


def _b64decode(value: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise CipherError(f"Malformed base64 in {field_name}") from None


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode()


def encrypt(plaintext: str, key_b64: str) -> EncryptedPayload:
    """Encrypt a string with AES-256-GCM under a fresh random IV.

    Args:
        plaintext: The value to encrypt.
        key_b64: Base64-encoded 256-bit key.

    Returns:
        The ciphertext, IV and tag, each base64-encoded.
    """
    key = load_key(key_b64)
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode(), None)
    return EncryptedPayload(
        ciphertext=_b64encode(sealed[:-TAG_SIZE]),
        iv=_b64encode(nonce),
        tag=_b64encode(sealed[-TAG_SIZE:]),
    )


def decrypt(ciphertext: str, iv: str, tag: str, key_b64: str) -> str:
    """Decrypt a payload produced by :func:`encrypt`.

    Raises:
        CipherError: On tag mismatch (tampered data or wrong key) or
            malformed input. Callers must treat this as a hard failure.
    """
    key = load_key(key_b64)
    nonce = _b64decode(iv, "iv")
    tag_bytes = _b64decode(tag, "tag")
    body = _b64decode(ciphertext, "ciphertext")

    if len(nonce) != NONCE_SIZE:
        raise CipherError("IV must be 12 bytes")
    if len(tag_bytes) != TAG_SIZE:
        raise CipherError("Authentication tag must be 16 bytes")

    try:
        plaintext = AESGCM(key).decrypt(nonce, body + tag_bytes, None)
    except InvalidTag:
        raise CipherError("Payload authentication failed") from None

    try:
        return plaintext.decode()
    except UnicodeDecodeError:
        raise CipherError("Decrypted payload is not UTF-8") from None


class CredentialCipher:
    """Encrypts and decrypts JSON token bundles under one master key."""

    def __init__(self, key_b64: str):
        # Validate eagerly so a bad key fails before any row is touched
        load_key(key_b64)
        self._key_b64 = key_b64

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialCipher":
        """Build a cipher from the configured master key.

        Raises:
            CipherConfigurationError: If CREDENTIAL_ENCRYPTION_KEY is unset or invalid.
        """
        if not settings.credential_encryption_key:
            raise CipherConfigurationError(
                "Encryption key not configured",
                setting="CREDENTIAL_ENCRYPTION_KEY",
            )
        try:
            return cls(settings.credential_encryption_key)
        except CipherConfigurationError as e:
            raise CipherConfigurationError(str(e), setting="CREDENTIAL_ENCRYPTION_KEY") from None

    def encrypt_bundle(self, bundle: dict[str, Any]) -> EncryptedPayload:
        """Serialize and encrypt a token bundle."""
        return encrypt(json.dumps(bundle), self._key_b64)

    def decrypt_bundle(self, ciphertext: str, iv: str, tag: str) -> dict[str, Any]:
        """Decrypt and parse a token bundle.

        Raises:
            CipherError: If decryption fails or the plaintext is not a JSON object.
        """
        plaintext = decrypt(ciphertext, iv, tag, self._key_b64)
        try:
            bundle = json.loads(plaintext)
        except ValueError:
            raise CipherError("Decrypted payload is not JSON") from None
        if not isinstance(bundle, dict):
            raise CipherError("Decrypted payload is not a JSON object")
        return bundle
