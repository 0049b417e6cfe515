"""
Storage for wrapped data keys.

This module provides:
- StoredWrappedKey: A DEK's wrapped form plus what is needed to unwrap it
- WrappedKeyStore: Abstract protocol for wrapped-key storage backends
- InMemoryWrappedKeyStore: asyncio-safe in-memory implementation for testing

Only wrapped (root-key-encrypted) DEKs are stored. Persisting them lets a
DEK-protected envelope be decrypted after its key has left the cache.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional


@dataclass(frozen=True)
class StoredWrappedKey:
    """Wrapped DEK and the context it was bound to."""

    key_id: str
    root_key_id: str
    wrapped_key: bytes = field(repr=False)
    encryption_context: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class WrappedKeyStore(ABC):
    """
    Abstract storage interface for wrapped data keys.

    All methods are async to support both in-memory and database backends.
    """

    @abstractmethod
    async def put(self, key: StoredWrappedKey) -> None:
        """Store a wrapped key (replaces any entry with the same id)."""
        ...

    @abstractmethod
    async def get(self, key_id: str) -> Optional[StoredWrappedKey]:
        """Get a wrapped key by DEK id."""
        ...

    @abstractmethod
    async def delete(self, key_id: str) -> bool:
        """Delete a wrapped key; returns whether it existed."""
        ...

    @abstractmethod
    async def list_key_ids(self) -> List[str]:
        """List all stored DEK ids."""
        ...


class InMemoryWrappedKeyStore(WrappedKeyStore):
    """
    In-memory wrapped-key store for testing.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self) -> None:
        self._keys: Dict[str, StoredWrappedKey] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: StoredWrappedKey) -> None:
        async with self._lock:
            self._keys[key.key_id] = key

    async def get(self, key_id: str) -> Optional[StoredWrappedKey]:
        async with self._lock:
            return self._keys.get(key_id)

    async def delete(self, key_id: str) -> bool:
        async with self._lock:
            return self._keys.pop(key_id, None) is not None

    async def list_key_ids(self) -> List[str]:
        async with self._lock:
            return list(self._keys.keys())
