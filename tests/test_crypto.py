"""
Tests for cipher primitives.
"""

from __future__ import annotations

import dataclasses

import pytest

from classified_envelope import (
    AesGcmCipher,
    CbcHmacCipher,
    CryptoError,
    DecryptionError,
    SecureKey,
)


@pytest.fixture
def key() -> SecureKey:
    return SecureKey.generate()


class TestSecureKey:
    def test_generate(self, key):
        assert len(key) == 32
        assert key.as_bytes() != SecureKey.generate().as_bytes()

    def test_repr_is_redacted(self, key):
        assert repr(key) == "SecureKey([REDACTED])"

    def test_wipe(self, key):
        key.wipe()
        assert key.is_wiped
        assert len(key) == 0
        with pytest.raises(CryptoError):
            key.as_bytes()

    def test_rejects_non_bytes(self):
        with pytest.raises(CryptoError):
            SecureKey("not bytes")


class TestCbcHmacCipher:
    def test_round_trip(self, key):
        sealed = CbcHmacCipher.encrypt(key, b"payload", b"aad")
        assert len(sealed.iv) == 16
        assert len(sealed.tag) == 32
        assert len(sealed.ciphertext) % 16 == 0
        assert CbcHmacCipher.decrypt(key, sealed, b"aad") == b"payload"

    def test_empty_plaintext(self, key):
        sealed = CbcHmacCipher.encrypt(key, b"")
        assert len(sealed.ciphertext) == 16
        assert CbcHmacCipher.decrypt(key, sealed) == b""

    def test_fresh_iv_per_call(self, key):
        first = CbcHmacCipher.encrypt(key, b"same")
        second = CbcHmacCipher.encrypt(key, b"same")
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_wrong_aad_fails(self, key):
        sealed = CbcHmacCipher.encrypt(key, b"payload", b"aad")
        with pytest.raises(DecryptionError):
            CbcHmacCipher.decrypt(key, sealed, b"other")

    def test_wrong_key_fails(self, key):
        sealed = CbcHmacCipher.encrypt(key, b"payload")
        with pytest.raises(DecryptionError):
            CbcHmacCipher.decrypt(SecureKey.generate(), sealed)

    def test_tampered_ciphertext_fails(self, key):
        sealed = CbcHmacCipher.encrypt(key, b"payload" * 10)
        flipped = bytearray(sealed.ciphertext)
        flipped[-1] ^= 0x80
        with pytest.raises(DecryptionError):
            CbcHmacCipher.decrypt(
                key, dataclasses.replace(sealed, ciphertext=bytes(flipped))
            )

    def test_truncated_ciphertext_fails(self, key):
        sealed = CbcHmacCipher.encrypt(key, b"payload")
        with pytest.raises(DecryptionError):
            CbcHmacCipher.decrypt(
                key, dataclasses.replace(sealed, ciphertext=sealed.ciphertext[:-1])
            )

    def test_short_iv_fails(self, key):
        sealed = CbcHmacCipher.encrypt(key, b"payload")
        with pytest.raises(DecryptionError) as exc_info:
            CbcHmacCipher.decrypt(key, dataclasses.replace(sealed, iv=sealed.iv[:8]))
        assert exc_info.value.field == "iv"

    def test_invalid_key_size(self):
        with pytest.raises(CryptoError):
            CbcHmacCipher.encrypt(SecureKey(b"short"), b"payload")


class TestAesGcmCipher:
    def test_round_trip_with_aad(self, key):
        encrypted = AesGcmCipher.encrypt(key, b"payload", b"aad")
        assert AesGcmCipher.decrypt(key, encrypted, b"aad") == b"payload"

    def test_wrong_aad_fails(self, key):
        encrypted = AesGcmCipher.encrypt(key, b"payload", b"aad")
        with pytest.raises(DecryptionError):
            AesGcmCipher.decrypt(key, encrypted, b"other")
