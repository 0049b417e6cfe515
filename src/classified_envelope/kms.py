"""
Root key service boundary.

This module provides:
- RootKeyClient: Async interface to a key management service holding root keys
- AwsKmsRootKeyClient: AWS KMS implementation (boto3)
- LocalRootKeyClient: In-process implementation for development and tests
- GeneratedDataKey / KeyMetadata: Results of root key operations

Every wrap/unwrap/generate call is bound to an encryption context; the same
context must be supplied on unwrap or the call fails with ContextMismatchError.
"""

from __future__ import annotations

import logging
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional
from uuid import uuid4

import boto3

from .aws import call_aws
from .config import Settings
from .crypto import (
    AES_256_KEY_SIZE,
    AesGcmCipher,
    EncryptedData,
    SecureKey,
    generate_random_bytes,
)
from .envelope import canonical_context
from .errors import (
    ContextMismatchError,
    DecryptionError,
    PermissionDeniedError,
    RemoteNotFoundError,
    RemoteServiceError,
)

logger = logging.getLogger(__name__)

KEY_STATE_ENABLED: str = "Enabled"
KEY_STATE_DISABLED: str = "Disabled"
KEY_USAGE_ENCRYPT_DECRYPT: str = "ENCRYPT_DECRYPT"


@dataclass(frozen=True)
class GeneratedDataKey:
    """Plaintext and root-key-wrapped forms of a data key, produced together."""

    plaintext: bytes = field(repr=False)
    wrapped: bytes


@dataclass(frozen=True)
class KeyMetadata:
    """Root key description."""

    key_id: str
    state: str
    creation_date: Optional[datetime]
    description: str = ""
    usage: str = ""
    rotation_enabled: Optional[bool] = None


class RootKeyClient(ABC):
    """
    Abstract root key service.

    Implementations raise TransientRemoteError for retryable failures,
    PermissionDeniedError / RemoteNotFoundError for fatal ones, and
    ContextMismatchError when unwrap is given the wrong context.
    """

    @abstractmethod
    async def wrap(
        self, key_id: str, plaintext: bytes, context: Mapping[str, str]
    ) -> bytes:
        """Encrypt a small plaintext under the root key."""
        ...

    @abstractmethod
    async def unwrap(self, ciphertext: bytes, context: Mapping[str, str]) -> bytes:
        """Decrypt a ciphertext produced by wrap or generate_data_key."""
        ...

    @abstractmethod
    async def generate_data_key(
        self, key_id: str, context: Mapping[str, str]
    ) -> GeneratedDataKey:
        """Generate a 256-bit data key, returning plaintext and wrapped forms."""
        ...

    @abstractmethod
    async def describe_key(self, key_id: str) -> KeyMetadata:
        """Describe a root key."""
        ...

    @abstractmethod
    async def enable_rotation(self, key_id: str) -> None:
        """Turn on automatic rotation for a root key."""
        ...


class AwsKmsRootKeyClient(RootKeyClient):
    """
    AWS KMS root key client.

    The boto3 client is injected so tests can stub it; use from_settings()
    to build one for the configured region.
    """

    def __init__(self, client) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> AwsKmsRootKeyClient:
        return cls(boto3.client("kms", region_name=settings.region))

    async def wrap(
        self, key_id: str, plaintext: bytes, context: Mapping[str, str]
    ) -> bytes:
        response = await call_aws(
            self._client.encrypt,
            "Encrypt",
            KeyId=key_id,
            Plaintext=plaintext,
            EncryptionContext=dict(context),
        )
        return response["CiphertextBlob"]

    async def unwrap(self, ciphertext: bytes, context: Mapping[str, str]) -> bytes:
        response = await call_aws(
            self._client.decrypt,
            "Decrypt",
            CiphertextBlob=ciphertext,
            EncryptionContext=dict(context),
        )
        return response["Plaintext"]

    async def generate_data_key(
        self, key_id: str, context: Mapping[str, str]
    ) -> GeneratedDataKey:
        response = await call_aws(
            self._client.generate_data_key,
            "GenerateDataKey",
            KeyId=key_id,
            KeySpec="AES_256",
            EncryptionContext=dict(context),
        )
        plaintext = response.get("Plaintext")
        wrapped = response.get("CiphertextBlob")
        if not plaintext or not wrapped:
            raise RemoteServiceError("GenerateDataKey returned an incomplete key")
        return GeneratedDataKey(plaintext=plaintext, wrapped=wrapped)

    async def describe_key(self, key_id: str) -> KeyMetadata:
        response = await call_aws(self._client.describe_key, "DescribeKey", KeyId=key_id)
        metadata = response.get("KeyMetadata")
        if not metadata:
            raise RemoteNotFoundError("DescribeKey returned no key metadata")
        return KeyMetadata(
            key_id=metadata.get("KeyId", key_id),
            state=metadata.get("KeyState", ""),
            creation_date=metadata.get("CreationDate"),
            description=metadata.get("Description", ""),
            usage=metadata.get("KeyUsage", ""),
        )

    async def enable_rotation(self, key_id: str) -> None:
        await call_aws(self._client.enable_key_rotation, "EnableKeyRotation", KeyId=key_id)
        logger.info("Automatic rotation enabled for root key %s", key_id)


@dataclass
class _LocalRootKey:
    key_id: str
    material: SecureKey
    created_at: datetime
    description: str = ""
    enabled: bool = True
    rotation_enabled: bool = False


class LocalRootKeyClient(RootKeyClient):
    """
    In-process root key service.

    Root key material never leaves this object. Ciphertexts embed the key id
    (like KMS ciphertext blobs) and are sealed with AES-256-GCM using the
    key id and canonical encryption context as AAD.

    Ciphertext layout: key_id_len (2 bytes, big-endian) || key_id || nonce || ct || tag
    """

    def __init__(self) -> None:
        self._keys: Dict[str, _LocalRootKey] = {}

    def create_key(self, key_id: Optional[str] = None, description: str = "") -> str:
        """Create a root key and return its id."""
        key_id = key_id or str(uuid4())
        if key_id in self._keys:
            raise ValueError(f"Root key already exists: {key_id}")
        self._keys[key_id] = _LocalRootKey(
            key_id=key_id,
            material=SecureKey.generate(),
            created_at=datetime.now(timezone.utc),
            description=description,
        )
        logger.info("Created local root key %s", key_id)
        return key_id

    def disable_key(self, key_id: str) -> None:
        self._usable_key(key_id).enabled = False

    def _lookup(self, key_id: str) -> _LocalRootKey:
        key = self._keys.get(key_id)
        if key is None:
            raise RemoteNotFoundError(f"Root key not found: {key_id}")
        return key

    def _usable_key(self, key_id: str) -> _LocalRootKey:
        key = self._lookup(key_id)
        if not key.enabled:
            raise PermissionDeniedError(f"Root key is disabled: {key_id}")
        return key

    @staticmethod
    def _aad(key_id: str, context: Mapping[str, str]) -> bytes:
        return key_id.encode("utf-8") + b"\x00" + canonical_context(context)

    async def wrap(
        self, key_id: str, plaintext: bytes, context: Mapping[str, str]
    ) -> bytes:
        key = self._usable_key(key_id)
        sealed = AesGcmCipher.encrypt(key.material, plaintext, self._aad(key_id, context))
        encoded_id = key_id.encode("utf-8")
        return struct.pack(">H", len(encoded_id)) + encoded_id + sealed.to_aead_blob()

    async def unwrap(self, ciphertext: bytes, context: Mapping[str, str]) -> bytes:
        try:
            (id_len,) = struct.unpack(">H", ciphertext[:2])
            key_id = ciphertext[2 : 2 + id_len].decode("utf-8")
            sealed = EncryptedData.from_aead_blob(ciphertext[2 + id_len :])
        except (struct.error, UnicodeDecodeError, DecryptionError):
            raise ContextMismatchError(
                "Decrypt failed: invalid ciphertext", field="encryptedBlob"
            ) from None

        # The embedded key id is unauthenticated until the tag checks out
        if key_id not in self._keys:
            raise ContextMismatchError(
                "Decrypt failed: invalid ciphertext", field="encryptedBlob"
            )
        key = self._usable_key(key_id)
        try:
            return AesGcmCipher.decrypt(key.material, sealed, self._aad(key_id, context))
        except DecryptionError:
            raise ContextMismatchError(
                "Decrypt failed: invalid ciphertext or encryption context",
                field="encryptionContext",
            ) from None

    async def generate_data_key(
        self, key_id: str, context: Mapping[str, str]
    ) -> GeneratedDataKey:
        plaintext = generate_random_bytes(AES_256_KEY_SIZE)
        wrapped = await self.wrap(key_id, plaintext, context)
        return GeneratedDataKey(plaintext=plaintext, wrapped=wrapped)

    async def describe_key(self, key_id: str) -> KeyMetadata:
        key = self._lookup(key_id)
        return KeyMetadata(
            key_id=key.key_id,
            state=KEY_STATE_ENABLED if key.enabled else KEY_STATE_DISABLED,
            creation_date=key.created_at,
            description=key.description,
            usage=KEY_USAGE_ENCRYPT_DECRYPT,
            rotation_enabled=key.rotation_enabled,
        )

    async def enable_rotation(self, key_id: str) -> None:
        self._usable_key(key_id).rotation_enabled = True
        logger.info("Automatic rotation enabled for root key %s", key_id)
