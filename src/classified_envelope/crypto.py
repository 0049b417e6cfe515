"""
Cryptographic primitives for classified envelope encryption.

This module provides:
- SecureKey: Key wrapper with redacted repr and explicit wiping
- CbcHmacCipher: AES-256-CBC with HMAC-SHA256 (encrypt-then-MAC) for DEK-protected tiers
- AesGcmCipher: AES-256-GCM, used by the local root key service
- SealedData / EncryptedData: Cipher outputs
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import CryptoError, DecryptionError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits
CBC_IV_SIZE: int = 16  # AES block size
HMAC_TAG_SIZE: int = 32  # SHA-256 digest
GCM_NONCE_SIZE: int = 12  # 96 bits (standard for AES-GCM)
GCM_TAG_SIZE: int = 16

_SUBKEY_INFO = b"classified-envelope/aes-256-cbc+hmac-sha256"


class SecureKey:
    """
    Key material holder that never shows its bytes in repr.

    Backed by a bytearray so the material can be zeroed when the owner
    (normally the DEK cache) is done with it. Python may still hold copies
    handed out by as_bytes(), so wiping is best-effort.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise CryptoError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls) -> SecureKey:
        """Generate a random 32-byte key."""
        return cls(secrets.token_bytes(AES_256_KEY_SIZE))

    def as_bytes(self) -> bytes:
        if self.is_wiped:
            raise CryptoError("Key material has been wiped")
        return bytes(self._bytes)

    @property
    def is_wiped(self) -> bool:
        return len(self._bytes) == 0

    def wipe(self) -> None:
        """Zero and drop the key material."""
        for i in range(len(self._bytes)):
            self._bytes[i] = 0
        self._bytes = bytearray()

    def __len__(self) -> int:
        return len(self._bytes)

    def __repr__(self) -> str:
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        if hasattr(self, "_bytes"):
            for i in range(len(self._bytes)):
                self._bytes[i] = 0


def _check_key(key: SecureKey) -> None:
    if len(key) != AES_256_KEY_SIZE:
        raise CryptoError(
            f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}"
        )


@dataclass(frozen=True)
class SealedData:
    """Output of CbcHmacCipher: IV, ciphertext and the HMAC tag over both."""

    iv: bytes  # 16 bytes
    ciphertext: bytes  # PKCS7-padded AES-256-CBC output
    tag: bytes  # 32 bytes


class CbcHmacCipher:
    """
    AES-256-CBC with HMAC-SHA256, encrypt-then-MAC.

    Independent encryption and MAC subkeys are derived from the 32-byte
    data key with HKDF-SHA256. The tag covers the IV, the ciphertext and
    any associated data, and is checked before anything is decrypted.
    """

    @staticmethod
    def _subkeys(key: SecureKey) -> tuple:
        _check_key(key)
        okm = HKDF(
            algorithm=hashes.SHA256(),
            length=2 * AES_256_KEY_SIZE,
            salt=None,
            info=_SUBKEY_INFO,
        ).derive(key.as_bytes())
        return okm[:AES_256_KEY_SIZE], okm[AES_256_KEY_SIZE:]

    @staticmethod
    def _mac(mac_key: bytes, iv: bytes, ciphertext: bytes, aad: bytes) -> hmac.HMAC:
        h = hmac.HMAC(mac_key, hashes.SHA256())
        h.update(iv)
        h.update(ciphertext)
        h.update(aad)
        # Length suffix keeps (ciphertext, aad) boundaries unambiguous
        h.update(struct.pack(">Q", len(aad)))
        return h

    @classmethod
    def encrypt(
        cls,
        key: SecureKey,
        plaintext: bytes,
        aad: Optional[bytes] = None,
    ) -> SealedData:
        """
        Encrypt plaintext under a fresh random IV.

        Args:
            key: 32-byte data encryption key
            plaintext: Data to encrypt
            aad: Optional associated data bound into the tag

        Returns:
            SealedData with iv, ciphertext and tag

        Raises:
            CryptoError: If the key size is invalid
        """
        enc_key, mac_key = cls._subkeys(key)
        iv = secrets.token_bytes(CBC_IV_SIZE)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()

        encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        tag = cls._mac(mac_key, iv, ciphertext, aad or b"").finalize()
        return SealedData(iv=iv, ciphertext=ciphertext, tag=tag)

    @classmethod
    def decrypt(
        cls,
        key: SecureKey,
        sealed: SealedData,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Verify the tag, then decrypt.

        Raises:
            DecryptionError: On a bad IV, bad tag or bad padding
        """
        enc_key, mac_key = cls._subkeys(key)

        if len(sealed.iv) != CBC_IV_SIZE:
            raise DecryptionError(
                f"Invalid IV size: expected {CBC_IV_SIZE}, got {len(sealed.iv)}",
                field="iv",
            )
        if not sealed.ciphertext or len(sealed.ciphertext) % CBC_IV_SIZE:
            raise DecryptionError("Invalid ciphertext length", field="encryptedBlob")

        try:
            cls._mac(mac_key, sealed.iv, sealed.ciphertext, aad or b"").verify(
                sealed.tag
            )
        except InvalidSignature:
            raise DecryptionError("Decryption failed", field="authTag") from None

        decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(sealed.iv)).decryptor()
        padded = decryptor.update(sealed.ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise DecryptionError("Decryption failed", field="encryptedBlob") from None


@dataclass(frozen=True)
class EncryptedData:
    """AES-GCM output; ciphertext includes the 16-byte authentication tag."""

    nonce: bytes  # 12 bytes
    ciphertext: bytes

    def to_aead_blob(self) -> bytes:
        """nonce || ciphertext || tag"""
        return self.nonce + self.ciphertext

    @classmethod
    def from_aead_blob(cls, blob: bytes) -> EncryptedData:
        """
        Parse from nonce || ciphertext || tag.

        Raises:
            DecryptionError: If the blob is too small
        """
        min_size = GCM_NONCE_SIZE + GCM_TAG_SIZE
        if len(blob) < min_size:
            raise DecryptionError(
                f"AEAD blob too small: expected at least {min_size} bytes, got {len(blob)}"
            )
        return cls(nonce=blob[:GCM_NONCE_SIZE], ciphertext=blob[GCM_NONCE_SIZE:])


class AesGcmCipher:
    """AES-256-GCM authenticated encryption with optional AAD."""

    @staticmethod
    def encrypt(
        key: SecureKey,
        plaintext: bytes,
        aad: Optional[bytes] = None,
    ) -> EncryptedData:
        _check_key(key)
        nonce = secrets.token_bytes(GCM_NONCE_SIZE)
        ciphertext = AESGCM(key.as_bytes()).encrypt(nonce, plaintext, aad)
        return EncryptedData(nonce=nonce, ciphertext=ciphertext)

    @staticmethod
    def decrypt(
        key: SecureKey,
        encrypted: EncryptedData,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Decrypt and authenticate.

        Raises:
            DecryptionError: If the tag does not verify (wrong key, AAD or data)
        """
        _check_key(key)
        try:
            return AESGCM(key.as_bytes()).decrypt(encrypted.nonce, encrypted.ciphertext, aad)
        except InvalidTag:
            # Generic error to prevent oracle attacks
            raise DecryptionError("Decryption failed") from None


def generate_random_bytes(length: int) -> bytes:
    """Generate cryptographically secure random bytes."""
    return secrets.token_bytes(length)
