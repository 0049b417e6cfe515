"""
Sensitivity tiers and the algorithm tags recorded for each of them.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Union

from .errors import UnsupportedClassificationError

# Algorithm tags written into every envelope
ALGORITHM_BASE64: str = "base64"
ALGORITHM_ROOT_KMS: str = "root-kms"
ALGORITHM_AES_256_CBC: str = "aes-256-cbc"

# Data key id recorded for tiers that use no key at all
NO_KEY_ID: str = "public"


class SensitivityTier(Enum):
    """Data classification, ordered by required protection strength."""

    PUBLIC = "public"  # Encoding only
    INTERNAL = "internal"  # Root key encrypts the payload directly
    CONFIDENTIAL = "confidential"  # Envelope encryption with a cached DEK
    RESTRICTED = "restricted"  # Tokenization, then the confidential path

    def __str__(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SensitivityTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, SensitivityTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, SensitivityTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, SensitivityTier):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Union[SensitivityTier, str]) -> SensitivityTier:
        """
        Parse a tier from an enum member or its string value.

        Raises:
            UnsupportedClassificationError: If the value names no tier
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise UnsupportedClassificationError(
            f"Unsupported data classification: {value!r}",
            field="classification",
        )


_RANKS: Dict[SensitivityTier, int] = {
    tier: rank for rank, tier in enumerate(SensitivityTier)
}

_ALGORITHMS: Dict[SensitivityTier, str] = {
    SensitivityTier.PUBLIC: ALGORITHM_BASE64,
    SensitivityTier.INTERNAL: ALGORITHM_ROOT_KMS,
    SensitivityTier.CONFIDENTIAL: ALGORITHM_AES_256_CBC,
    SensitivityTier.RESTRICTED: ALGORITHM_AES_256_CBC,
}


def algorithm_for(tier: SensitivityTier) -> str:
    """Return the algorithm tag recorded for envelopes of this tier."""
    return _ALGORITHMS[tier]
