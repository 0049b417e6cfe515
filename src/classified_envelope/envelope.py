"""
Encryption envelope data model and canonical payload encoding.

This module provides:
- EncryptionEnvelope: Immutable record of how a payload was protected
- serialize_payload / deserialize_payload: Canonical JSON bytes for payloads
- canonical_context: Canonical bytes for an encryption context

The envelope's ``classification`` is the only thing decrypt dispatches on;
nothing is inferred from the blob itself.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .classification import SensitivityTier
from .errors import DeserializationError, SerializationError

_WIRE_FIELDS = (
    "encryptedBlob",
    "dataKeyId",
    "encryptionContext",
    "algorithm",
    "classification",
    "timestamp",
)


def _check_keys(payload: Any) -> None:
    pending = [payload]
    seen = set()
    while pending:
        value = pending.pop()
        if isinstance(value, (dict, list, tuple)):
            # Circular references are left for json.dumps to report
            if id(value) in seen:
                continue
            seen.add(id(value))
        if isinstance(value, dict):
            for key, item in value.items():
                if not isinstance(key, str):
                    raise SerializationError(
                        f"Payload keys must be strings, got {type(key).__name__}",
                        field="payload",
                    )
                pending.append(item)
        elif isinstance(value, (list, tuple)):
            pending.extend(value)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name}")


def serialize_payload(payload: Any) -> bytes:
    """
    Encode a payload as canonical JSON bytes.

    Keys are sorted and separators compact so equal payloads always
    produce equal bytes. Mapping keys must be strings; JSON would
    silently turn any other key into a string.

    Raises:
        SerializationError: If the payload is not JSON-representable
    """
    _check_keys(payload)
    try:
        text = json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Payload is not serializable: {type(e).__name__}", field="payload"
        ) from None
    return text.encode("utf-8")


def deserialize_payload(data: bytes, expected_type: Optional[type] = None) -> Any:
    """
    Decode canonical JSON bytes back into a payload.

    Args:
        data: Bytes produced by serialize_payload
        expected_type: Optional type the decoded payload must be an instance of

    Raises:
        DeserializationError: On invalid UTF-8/JSON or a shape mismatch
    """
    try:
        payload = json.loads(data.decode("utf-8"), parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError):
        # Never echo the decrypted bytes
        raise DeserializationError(
            "Decrypted data is not a valid payload", field="payload"
        ) from None

    if expected_type is not None and not isinstance(payload, expected_type):
        raise DeserializationError(
            f"Expected {expected_type.__name__}, got {type(payload).__name__}",
            field="payload",
        )
    return payload


def canonical_context(context: Mapping[str, str]) -> bytes:
    """Canonical bytes for an encryption context (sorted JSON)."""
    for key, value in context.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise SerializationError(
                "Encryption context must map strings to strings",
                field="encryptionContext",
            )
    return json.dumps(dict(context), sort_keys=True, separators=(",", ":")).encode(
        "utf-8"
    )


@dataclass(frozen=True)
class EncryptionEnvelope:
    """
    Everything needed to decrypt a protected payload.

    ``encrypted_blob`` is text: base64 for PUBLIC and INTERNAL, hex for the
    DEK-protected tiers. ``iv`` and ``auth_tag`` are set only for those tiers.
    A string ``classification`` is parsed into its SensitivityTier.
    """

    encrypted_blob: str
    data_key_id: str
    encryption_context: Dict[str, str]
    algorithm: str
    classification: SensitivityTier
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    iv: Optional[str] = None
    auth_tag: Optional[str] = None

    def __post_init__(self) -> None:
        # Detach from the caller's dict so the envelope stays immutable
        object.__setattr__(self, "encryption_context", dict(self.encryption_context))
        object.__setattr__(
            self, "classification", SensitivityTier.parse(self.classification)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation using the API layer's field names."""
        data: Dict[str, Any] = {
            "encryptedBlob": self.encrypted_blob,
            "dataKeyId": self.data_key_id,
            "encryptionContext": dict(self.encryption_context),
            "algorithm": self.algorithm,
            "classification": self.classification.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.iv is not None:
            data["iv"] = self.iv
        if self.auth_tag is not None:
            data["authTag"] = self.auth_tag
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EncryptionEnvelope:
        """
        Rebuild an envelope from its wire representation.

        Raises:
            SerializationError: If a field is missing or malformed
            UnsupportedClassificationError: If the classification is unknown
        """
        for name in _WIRE_FIELDS:
            if name not in data:
                raise SerializationError(f"Missing envelope field: {name}", field=name)

        context = data["encryptionContext"]
        if not isinstance(context, Mapping):
            raise SerializationError(
                "encryptionContext must be an object", field="encryptionContext"
            )
        canonical_context(context)

        for name in ("encryptedBlob", "dataKeyId", "algorithm"):
            if not isinstance(data[name], str):
                raise SerializationError(f"{name} must be a string", field=name)
        for name in ("iv", "authTag"):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise SerializationError(f"{name} must be a string", field=name)

        try:
            timestamp = datetime.fromisoformat(data["timestamp"])
        except (TypeError, ValueError):
            raise SerializationError(
                "timestamp is not an ISO-8601 string", field="timestamp"
            ) from None

        return cls(
            encrypted_blob=data["encryptedBlob"],
            data_key_id=data["dataKeyId"],
            encryption_context=dict(context),
            algorithm=data["algorithm"],
            classification=SensitivityTier.parse(data["classification"]),
            timestamp=timestamp,
            iv=data.get("iv"),
            auth_tag=data.get("authTag"),
        )

    def to_json(self) -> str:
        """Serialize envelope to a JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> EncryptionEnvelope:
        """Deserialize envelope from a JSON string."""
        try:
            data = json.loads(json_str)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Failed to parse envelope: {e}") from None
        if not isinstance(data, dict):
            raise SerializationError("Envelope JSON must be an object")
        return cls.from_dict(data)
