"""
Classification-driven envelope encryption service.

This module provides:
- ClassifiedEnvelopeService: Encrypts payloads with the strategy their
  sensitivity tier calls for, and reverses it from the envelope alone

Strategies:
- PUBLIC: base64 encoding only, no key
- INTERNAL: root key encrypts the payload directly (bound to the encryption context)
- CONFIDENTIAL: fresh DEK from the cache, AES-256-CBC + HMAC-SHA256 locally
- RESTRICTED: tokenize first, then the CONFIDENTIAL path on the token

Decrypt dispatches on ``envelope.classification`` and nothing else. A DEK
that has left the cache is recovered from the wrapped-key store when one is
configured; otherwise decrypt fails with KeyNotFoundError.
"""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

from .classification import (
    ALGORITHM_AES_256_CBC,
    ALGORITHM_BASE64,
    ALGORITHM_ROOT_KMS,
    NO_KEY_ID,
    SensitivityTier,
)
from .config import Settings
from .crypto import CbcHmacCipher, SealedData, SecureKey
from .envelope import (
    EncryptionEnvelope,
    canonical_context,
    deserialize_payload,
    serialize_payload,
)
from .errors import DecryptionError, EnvelopeError, KeyNotFoundError
from .key_cache import DekCache
from .kms import AwsKmsRootKeyClient, KeyMetadata, RootKeyClient
from .storage import StoredWrappedKey, WrappedKeyStore
from .tokenizer import Tokenizer

logger = logging.getLogger(__name__)

def _b64decode(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise DecryptionError(f"{field} is not valid base64", field=field) from None


def _hexdecode(value: Optional[str], field: str) -> bytes:
    if not value:
        raise DecryptionError(f"{field} is missing", field=field)
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise DecryptionError(f"{field} is not valid hex", field=field) from None


class ClassifiedEnvelopeService:
    """
    Classification-driven envelope encryption.

    All collaborators are injected; the service holds no global state.

    Args:
        settings: Root key id, cache TTL and encryption context fields
        root_key_client: Root key service
        key_cache: DEK cache (default: one built from settings)
        tokenizer: Tokenizer for the restricted tier (default: in-band tokens)
        key_store: Optional durable store for wrapped DEKs
    """

    def __init__(
        self,
        settings: Settings,
        root_key_client: RootKeyClient,
        *,
        key_cache: Optional[DekCache] = None,
        tokenizer: Optional[Tokenizer] = None,
        key_store: Optional[WrappedKeyStore] = None,
    ) -> None:
        self._settings = settings
        self._client = root_key_client
        self._root_key_id = settings.root_key_id
        self._context = settings.encryption_context()
        if key_cache is None:
            key_cache = DekCache(
                root_key_client, settings.root_key_id, ttl=settings.cache_ttl
            )
        self._key_cache = key_cache
        self._tokenizer = tokenizer if tokenizer is not None else Tokenizer()
        self._key_store = key_store

    @classmethod
    async def new(
        cls,
        settings: Optional[Settings] = None,
        root_key_client: Optional[RootKeyClient] = None,
        **kwargs: Any,
    ) -> ClassifiedEnvelopeService:
        """
        Build a service from the environment (async factory method).

        Args:
            settings: Settings (default: Settings.from_env())
            root_key_client: Root key client (default: AWS KMS in the configured region)
            **kwargs: Passed through to the constructor

        Returns:
            ClassifiedEnvelopeService instance
        """
        settings = settings or Settings.from_env()
        if root_key_client is None:
            root_key_client = AwsKmsRootKeyClient.from_settings(settings)
        logger.info(
            "Envelope service initialized (root key %s, region %s)",
            settings.root_key_id,
            settings.region,
        )
        return cls(settings, root_key_client, **kwargs)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def key_cache(self) -> DekCache:
        return self._key_cache

    @property
    def encryption_context(self) -> Dict[str, str]:
        return dict(self._context)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def encrypt(
        self, payload: Any, classification: Union[SensitivityTier, str]
    ) -> EncryptionEnvelope:
        """
        Protect a payload according to its classification.

        Args:
            payload: Any JSON-representable value
            classification: Sensitivity tier (or its string value)

        Returns:
            EncryptionEnvelope carrying everything decrypt needs

        Raises:
            UnsupportedClassificationError: Unknown tier
            SerializationError: Payload is not JSON-representable
            RemoteServiceError: Root key service failure (see subclasses)
        """
        tier = SensitivityTier.parse(classification)
        data = serialize_payload(payload)
        timestamp = datetime.now(timezone.utc)
        encrypt = _STRATEGIES[tier][0]

        try:
            envelope = await encrypt(self, data, timestamp)
        except EnvelopeError as e:
            logger.warning("Encryption failed (tier=%s, kind=%s)", tier, e.kind)
            raise

        logger.debug(
            "Encrypted payload (tier=%s, algorithm=%s, key=%s)",
            tier,
            envelope.algorithm,
            envelope.data_key_id,
        )
        return envelope

    async def decrypt(
        self, envelope: EncryptionEnvelope, expected_type: Optional[type] = None
    ) -> Any:
        """
        Reverse the strategy recorded in the envelope.

        Args:
            envelope: Envelope produced by encrypt()
            expected_type: Optional type the payload must deserialize to

        Returns:
            The original payload

        Raises:
            ContextMismatchError: INTERNAL envelope with a different encryption context
            KeyNotFoundError: DEK no longer cached and no wrapped-key store has it
            DecryptionError: Tampered blob, IV or tag
            DeserializationError: Payload shape does not match
        """
        tier = SensitivityTier.parse(envelope.classification)
        decrypt = _STRATEGIES[tier][1]

        try:
            data = await decrypt(self, envelope)
            payload = deserialize_payload(data, expected_type)
        except EnvelopeError as e:
            logger.warning(
                "Decryption failed (tier=%s, key=%s, kind=%s)",
                tier,
                envelope.data_key_id,
                e.kind,
            )
            raise

        logger.debug("Decrypted payload (tier=%s, key=%s)", tier, envelope.data_key_id)
        return payload

    async def rotate_keys(self) -> int:
        """
        Enable automatic rotation of the root key and drop every cached DEK.

        Returns:
            Number of DEKs evicted from the cache
        """
        await self._client.enable_rotation(self._root_key_id)
        evicted = self._key_cache.clear()
        logger.info("Key rotation enabled; %d cached data keys evicted", evicted)
        return evicted

    async def get_key_metadata(self, key_id: Optional[str] = None) -> KeyMetadata:
        """Describe a root key (default: the configured one)."""
        return await self._client.describe_key(key_id or self._root_key_id)

    def close(self) -> None:
        self._key_cache.close()

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _envelope(self, tier: SensitivityTier, timestamp: datetime, **fields: Any) -> EncryptionEnvelope:
        return EncryptionEnvelope(
            encryption_context=dict(self._context),
            classification=tier,
            timestamp=timestamp,
            **fields,
        )

    async def _encrypt_public(self, data: bytes, timestamp: datetime) -> EncryptionEnvelope:
        return self._envelope(
            SensitivityTier.PUBLIC,
            timestamp,
            encrypted_blob=base64.standard_b64encode(data).decode("ascii"),
            data_key_id=NO_KEY_ID,
            algorithm=ALGORITHM_BASE64,
        )

    async def _decrypt_public(self, envelope: EncryptionEnvelope) -> bytes:
        return _b64decode(envelope.encrypted_blob, "encryptedBlob")

    async def _encrypt_internal(self, data: bytes, timestamp: datetime) -> EncryptionEnvelope:
        ciphertext = await self._client.wrap(self._root_key_id, data, self._context)
        return self._envelope(
            SensitivityTier.INTERNAL,
            timestamp,
            encrypted_blob=base64.standard_b64encode(ciphertext).decode("ascii"),
            data_key_id=self._root_key_id,
            algorithm=ALGORITHM_ROOT_KMS,
        )

    async def _decrypt_internal(self, envelope: EncryptionEnvelope) -> bytes:
        ciphertext = _b64decode(envelope.encrypted_blob, "encryptedBlob")
        return await self._client.unwrap(ciphertext, envelope.encryption_context)

    async def _encrypt_confidential(
        self, data: bytes, timestamp: datetime
    ) -> EncryptionEnvelope:
        return await self._seal(SensitivityTier.CONFIDENTIAL, data, timestamp)

    async def _decrypt_confidential(self, envelope: EncryptionEnvelope) -> bytes:
        return await self._open(envelope)

    async def _encrypt_restricted(self, data: bytes, timestamp: datetime) -> EncryptionEnvelope:
        token = await self._tokenizer.tokenize(data)
        return await self._seal(SensitivityTier.RESTRICTED, token.encode("utf-8"), timestamp)

    async def _decrypt_restricted(self, envelope: EncryptionEnvelope) -> bytes:
        token_bytes = await self._open(envelope)
        try:
            token = token_bytes.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted token is not text", field="encryptedBlob") from None
        return await self._tokenizer.detokenize(token)

    # ------------------------------------------------------------------
    # DEK-protected tiers
    # ------------------------------------------------------------------

    @staticmethod
    def _aad(tier: SensitivityTier, key_id: str, context: Mapping[str, str]) -> bytes:
        # Binds tier, key id and context into the tag
        header = f"{tier.value}\x00{key_id}\x00".encode("utf-8")
        return header + canonical_context(context)

    async def _seal(
        self, tier: SensitivityTier, data: bytes, timestamp: datetime
    ) -> EncryptionEnvelope:
        dek = await self._key_cache.issue(self._context)
        sealed = CbcHmacCipher.encrypt(
            dek.plaintext_key, data, self._aad(tier, dek.key_id, self._context)
        )

        if self._key_store is not None:
            try:
                await self._key_store.put(
                    StoredWrappedKey(
                        key_id=dek.key_id,
                        root_key_id=dek.root_key_id,
                        wrapped_key=dek.wrapped_key,
                        encryption_context=dek.encryption_context,
                        created_at=dek.created_at,
                    )
                )
            except BaseException:
                # A DEK without a durable wrapped form must not outlive this call
                self._key_cache.evict(dek.key_id)
                raise

        return self._envelope(
            tier,
            timestamp,
            encrypted_blob=sealed.ciphertext.hex(),
            data_key_id=dek.key_id,
            algorithm=ALGORITHM_AES_256_CBC,
            iv=sealed.iv.hex(),
            auth_tag=sealed.tag.hex(),
        )

    async def _open(self, envelope: EncryptionEnvelope) -> bytes:
        sealed = SealedData(
            iv=_hexdecode(envelope.iv, "iv"),
            ciphertext=_hexdecode(envelope.encrypted_blob, "encryptedBlob"),
            tag=_hexdecode(envelope.auth_tag, "authTag"),
        )
        aad = self._aad(envelope.classification, envelope.data_key_id, envelope.encryption_context)

        cached = self._key_cache.get(envelope.data_key_id)
        if cached is not None:
            return CbcHmacCipher.decrypt(cached.plaintext_key, sealed, aad)

        key = await self._recover_key(envelope.data_key_id)
        try:
            return CbcHmacCipher.decrypt(key, sealed, aad)
        finally:
            key.wipe()

    async def _recover_key(self, key_id: str) -> SecureKey:
        """Unwrap a DEK that is no longer cached from its stored wrapped form."""
        if self._key_store is None:
            raise KeyNotFoundError(
                f"Data key {key_id} is not cached and no key store is configured",
                field="dataKeyId",
            )

        stored = await self._key_store.get(key_id)
        if stored is None:
            raise KeyNotFoundError(f"Data key {key_id} not found", field="dataKeyId")

        plaintext = await self._client.unwrap(stored.wrapped_key, stored.encryption_context)
        logger.info("Recovered data key %s from wrapped-key store", key_id)
        return SecureKey(plaintext)


_Encrypt = Callable[[ClassifiedEnvelopeService, bytes, datetime], Awaitable[EncryptionEnvelope]]
_Decrypt = Callable[[ClassifiedEnvelopeService, EncryptionEnvelope], Awaitable[bytes]]

# tier -> (encrypt, decrypt)
_STRATEGIES: Dict[SensitivityTier, Tuple[_Encrypt, _Decrypt]] = {
    SensitivityTier.PUBLIC: (
        ClassifiedEnvelopeService._encrypt_public,
        ClassifiedEnvelopeService._decrypt_public,
    ),
    SensitivityTier.INTERNAL: (
        ClassifiedEnvelopeService._encrypt_internal,
        ClassifiedEnvelopeService._decrypt_internal,
    ),
    SensitivityTier.CONFIDENTIAL: (
        ClassifiedEnvelopeService._encrypt_confidential,
        ClassifiedEnvelopeService._decrypt_confidential,
    ),
    SensitivityTier.RESTRICTED: (
        ClassifiedEnvelopeService._encrypt_restricted,
        ClassifiedEnvelopeService._decrypt_restricted,
    ),
}

_unhandled = set(SensitivityTier) - set(_STRATEGIES)
if _unhandled:
    raise TypeError(f"No encryption strategy for tiers: {sorted(map(str, _unhandled))}")
