"""
Exception classes for classified envelope encryption.

Every error carries a short ``kind`` string and, where one applies, the
name of the offending field, so callers can log failures without ever
touching plaintext payloads or key material.
"""

from __future__ import annotations

from typing import Optional


class EnvelopeError(Exception):
    """Base exception for all classified envelope operations."""

    kind = "envelope_error"
    retryable = False

    def __init__(self, message: str = "", *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        """Structured detail safe for logs and API error bodies."""
        detail = {"kind": self.kind, "message": str(self)}
        if self.field is not None:
            detail["field"] = self.field
        return detail


class ConfigError(EnvelopeError):
    """Configuration error."""

    kind = "config_error"


class CryptoError(EnvelopeError):
    """Cryptographic operation failed (encryption, key handling)."""

    kind = "crypto_error"


class DecryptionError(CryptoError):
    """Cipher-level failure: bad padding, bad tag, tampered ciphertext."""

    kind = "decryption_error"


class SerializationError(EnvelopeError):
    """Payload or envelope could not be serialized."""

    kind = "serialization_error"


class DeserializationError(SerializationError):
    """Decrypted bytes do not deserialize to the expected payload shape."""

    kind = "deserialization_error"


class UnsupportedClassificationError(EnvelopeError):
    """Caller supplied a classification outside the known tiers."""

    kind = "unsupported_classification"


class KeyNotFoundError(EnvelopeError):
    """Data key not resolvable from the cache or any fallback."""

    kind = "key_not_found"


class ContextMismatchError(EnvelopeError):
    """Encryption context supplied at unwrap differs from the one bound at wrap."""

    kind = "context_mismatch"


class TokenizationError(EnvelopeError):
    """Token could not be resolved back to its value."""

    kind = "tokenization_error"


class StorageError(EnvelopeError):
    """Storage backend error (database, in-memory, etc.)."""

    kind = "storage_error"


class RemoteServiceError(EnvelopeError):
    """Failure reported by the key management or secret store boundary."""

    kind = "remote_error"

    def __init__(
        self,
        message: str = "",
        *,
        field: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message, field=field)
        self.code = code


class TransientRemoteError(RemoteServiceError):
    """Network, throttling or timeout failure; safe to retry with backoff."""

    kind = "transient_remote_error"
    retryable = True


class PermissionDeniedError(RemoteServiceError):
    """Caller is not allowed to use the key or secret, or it is disabled."""

    kind = "permission_denied"


class RemoteNotFoundError(RemoteServiceError):
    """Key or secret does not exist on the remote service."""

    kind = "remote_not_found"
