"""Tests for AES-256-GCM credential encryption."""

import base64
import unittest

from broker.config import Settings
from broker.services.cipher import (
    CipherConfigurationError,
    CipherError,
    CredentialCipher,
    decrypt,
    encrypt,
    load_key,
)
from tests.base import TEST_ENCRYPTION_KEY


def _flip_first_bit(value_b64: str) -> str:
    raw = bytearray(base64.b64decode(value_b64))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode()


class TestEncryptDecrypt(unittest.TestCase):
    """Round-trip and tamper detection."""

    def test_round_trip(self):
        for plaintext in ["", "hello", '{"access_token": "a"}', "ünïcödé ✓"]:
            payload = encrypt(plaintext, TEST_ENCRYPTION_KEY)
            self.assertEqual(
                decrypt(payload.ciphertext, payload.iv, payload.tag, TEST_ENCRYPTION_KEY),
                plaintext,
            )

    def test_iv_and_tag_sizes(self):
        payload = encrypt("secret", TEST_ENCRYPTION_KEY)
        self.assertEqual(len(base64.b64decode(payload.iv)), 12)
        self.assertEqual(len(base64.b64decode(payload.tag)), 16)
        # Ciphertext carries no tag bytes
        self.assertEqual(len(base64.b64decode(payload.ciphertext)), len("secret"))

    def test_same_plaintext_gets_fresh_iv(self):
        first = encrypt("same value", TEST_ENCRYPTION_KEY)
        second = encrypt("same value", TEST_ENCRYPTION_KEY)
        self.assertNotEqual(first.iv, second.iv)
        self.assertNotEqual(first.ciphertext, second.ciphertext)

    def test_tampered_ciphertext_fails(self):
        payload = encrypt("do not touch", TEST_ENCRYPTION_KEY)
        with self.assertRaises(CipherError):
            decrypt(_flip_first_bit(payload.ciphertext), payload.iv, payload.tag, TEST_ENCRYPTION_KEY)

    def test_tampered_tag_fails(self):
        payload = encrypt("do not touch", TEST_ENCRYPTION_KEY)
        with self.assertRaises(CipherError):
            decrypt(payload.ciphertext, payload.iv, _flip_first_bit(payload.tag), TEST_ENCRYPTION_KEY)

    def test_tampered_iv_fails(self):
        payload = encrypt("do not touch", TEST_ENCRYPTION_KEY)
        with self.assertRaises(CipherError):
            decrypt(payload.ciphertext, _flip_first_bit(payload.iv), payload.tag, TEST_ENCRYPTION_KEY)

    def test_wrong_key_fails(self):
        payload = encrypt("secret", TEST_ENCRYPTION_KEY)
        other_key = base64.b64encode(b"\x01" * 32).decode()
        with self.assertRaises(CipherError):
            decrypt(payload.ciphertext, payload.iv, payload.tag, other_key)

    def test_malformed_base64_fails(self):
        payload = encrypt("secret", TEST_ENCRYPTION_KEY)
        with self.assertRaises(CipherError):
            decrypt("not base64!!", payload.iv, payload.tag, TEST_ENCRYPTION_KEY)


class TestKeyLoading(unittest.TestCase):
    """Master key decoding."""

    def test_url_safe_key_is_normalized(self):
        # 0xfb 0xff produce '+' and '/' in the standard alphabet
        raw = bytes([0xFB, 0xFF] * 16)
        standard = base64.b64encode(raw).decode()
        url_safe = base64.urlsafe_b64encode(raw).decode().rstrip("=")
        self.assertNotEqual(standard, url_safe)
        self.assertEqual(load_key(url_safe), raw)

        payload = encrypt("interchangeable", standard)
        self.assertEqual(
            decrypt(payload.ciphertext, payload.iv, payload.tag, url_safe),
            "interchangeable",
        )

    def test_short_key_rejected(self):
        with self.assertRaises(CipherConfigurationError):
            load_key(base64.b64encode(b"too short").decode())

    def test_non_base64_key_rejected(self):
        with self.assertRaises(CipherConfigurationError):
            load_key("%%%not-a-key%%%")


class TestCredentialCipher(unittest.TestCase):
    """JSON bundle encryption."""

    def test_bundle_round_trip(self):
        cipher = CredentialCipher(TEST_ENCRYPTION_KEY)
        bundle = {"access_token": "a", "refresh_token": "r", "expires_in": 3600}
        payload = cipher.encrypt_bundle(bundle)
        self.assertEqual(cipher.decrypt_bundle(payload.ciphertext, payload.iv, payload.tag), bundle)

    def test_non_object_plaintext_rejected(self):
        cipher = CredentialCipher(TEST_ENCRYPTION_KEY)
        payload = encrypt("[1, 2, 3]", TEST_ENCRYPTION_KEY)
        with self.assertRaises(CipherError):
            cipher.decrypt_bundle(payload.ciphertext, payload.iv, payload.tag)

    def test_from_settings_requires_key(self):
        with self.assertRaises(CipherConfigurationError) as ctx:
            CredentialCipher.from_settings(Settings(_env_file=None, credential_encryption_key=None))
        self.assertEqual(ctx.exception.setting, "CREDENTIAL_ENCRYPTION_KEY")

    def test_from_settings_rejects_bad_key(self):
        with self.assertRaises(CipherConfigurationError) as ctx:
            CredentialCipher.from_settings(
                Settings(_env_file=None, credential_encryption_key="c2hvcnQ=")
            )
        self.assertEqual(ctx.exception.setting, "CREDENTIAL_ENCRYPTION_KEY")


if __name__ == "__main__":
    unittest.main()
