"""
Classified Envelope Encryption Library

Encrypts payloads with a strategy chosen by their sensitivity tier, using a
root key held by a key management service and short-lived data encryption
keys (DEKs).

Overview
--------
- **PUBLIC**: base64 encoding only
- **INTERNAL**: the root key encrypts the payload directly, bound to an
  encryption context
- **CONFIDENTIAL**: envelope encryption; a fresh DEK (cached for 15 minutes)
  protects the payload with AES-256-CBC + HMAC-SHA256
- **RESTRICTED**: the payload is tokenized, then the token takes the
  CONFIDENTIAL path

Quick Start
-----------
```python
import asyncio
from classified_envelope import (
    ClassifiedEnvelopeService,
    LocalRootKeyClient,
    SensitivityTier,
    Settings,
)

async def main():
    kms = LocalRootKeyClient()
    settings = Settings(root_key_id=kms.create_key())
    service = ClassifiedEnvelopeService(settings, kms)

    envelope = await service.encrypt(
        {"transactionId": "TXN-001", "amount": 1500.00, "currency": "USD"},
        SensitivityTier.RESTRICTED,
    )
    payload = await service.decrypt(envelope)

asyncio.run(main())
```

Production setups use AwsKmsRootKeyClient (or ClassifiedEnvelopeService.new(),
which reads Settings from the environment) and a PostgresWrappedKeyStore so
DEK-protected envelopes stay decryptable after their key leaves the cache.

Modules
-------
- `service`: Classification dispatcher
- `envelope`: Envelope data model and canonical payload encoding
- `key_cache`: DEK cache
- `tokenizer`: Restricted-tier tokenization
- `kms`: Root key service boundary
- `secret_store`: Application secret store boundary
- `storage` / `postgres_storage`: Wrapped DEK storage
- `crypto`: Cipher primitives
- `errors`: Error types and exception classes
"""

__version__ = "0.1.0"

# =============================================================================
# Classification Exports
# =============================================================================

from .classification import (
    ALGORITHM_AES_256_CBC,
    ALGORITHM_BASE64,
    ALGORITHM_ROOT_KMS,
    NO_KEY_ID,
    SensitivityTier,
    algorithm_for,
)

# =============================================================================
# Config Exports
# =============================================================================

from .config import DEFAULT_CACHE_TTL, Settings

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    AesGcmCipher,
    CbcHmacCipher,
    SealedData,
    SecureKey,
    generate_random_bytes,
)

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    ConfigError,
    ContextMismatchError,
    CryptoError,
    DecryptionError,
    DeserializationError,
    EnvelopeError,
    KeyNotFoundError,
    PermissionDeniedError,
    RemoteNotFoundError,
    RemoteServiceError,
    SerializationError,
    StorageError,
    TokenizationError,
    TransientRemoteError,
    UnsupportedClassificationError,
)

# =============================================================================
# Envelope Exports
# =============================================================================

from .envelope import EncryptionEnvelope, deserialize_payload, serialize_payload

# =============================================================================
# Key Management Exports
# =============================================================================

from .key_cache import DataEncryptionKey, DekCache
from .kms import (
    AwsKmsRootKeyClient,
    GeneratedDataKey,
    KeyMetadata,
    LocalRootKeyClient,
    RootKeyClient,
)

# =============================================================================
# Storage Exports
# =============================================================================

from .postgres_storage import PostgresWrappedKeyStore
from .storage import InMemoryWrappedKeyStore, StoredWrappedKey, WrappedKeyStore

# =============================================================================
# Service Exports (Primary API)
# =============================================================================

from .retry import RetryPolicy, retry_transient
from .secret_store import AwsSecretsClient, InMemorySecretsClient, SecretsClient
from .service import ClassifiedEnvelopeService
from .tokenizer import InMemoryTokenVault, Tokenizer, TokenVault

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Classification
    "SensitivityTier",
    "algorithm_for",
    "ALGORITHM_BASE64",
    "ALGORITHM_ROOT_KMS",
    "ALGORITHM_AES_256_CBC",
    "NO_KEY_ID",
    # Config
    "Settings",
    "DEFAULT_CACHE_TTL",
    # Crypto
    "AES_256_KEY_SIZE",
    "AesGcmCipher",
    "CbcHmacCipher",
    "SealedData",
    "SecureKey",
    "generate_random_bytes",
    # Errors
    "EnvelopeError",
    "ConfigError",
    "CryptoError",
    "DecryptionError",
    "SerializationError",
    "DeserializationError",
    "UnsupportedClassificationError",
    "KeyNotFoundError",
    "ContextMismatchError",
    "TokenizationError",
    "StorageError",
    "RemoteServiceError",
    "TransientRemoteError",
    "PermissionDeniedError",
    "RemoteNotFoundError",
    # Envelope
    "EncryptionEnvelope",
    "serialize_payload",
    "deserialize_payload",
    # Key management
    "DataEncryptionKey",
    "DekCache",
    "RootKeyClient",
    "AwsKmsRootKeyClient",
    "LocalRootKeyClient",
    "GeneratedDataKey",
    "KeyMetadata",
    # Storage
    "WrappedKeyStore",
    "StoredWrappedKey",
    "InMemoryWrappedKeyStore",
    "PostgresWrappedKeyStore",
    # Service (Primary API)
    "ClassifiedEnvelopeService",
    "Tokenizer",
    "TokenVault",
    "InMemoryTokenVault",
    "SecretsClient",
    "AwsSecretsClient",
    "InMemorySecretsClient",
    "RetryPolicy",
    "retry_transient",
]
