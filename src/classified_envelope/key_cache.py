"""
Time-bounded cache of data encryption keys (DEKs).

This module provides:
- DataEncryptionKey: A generated DEK with its wrapped form and lifetime
- DekCache: Issues DEKs through the root key service and evicts them at expiry

The cache is the sole owner of DEK plaintext. Eviction wipes the plaintext;
the wrapped form stays on the DataEncryptionKey object for whoever kept it.

Concurrency model: the cache lives on one event loop. The remote
generate_data_key call is the only suspension point in issue(); the entry is
registered in a single synchronous step after it returns, so a cancelled
issue() registers nothing and concurrent issues never wait on each other.
get() and evict() never suspend, which makes each of them atomic with
respect to every other cache operation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Mapping, Optional
from uuid import uuid4

from .config import DEFAULT_CACHE_TTL
from .crypto import SecureKey
from .kms import RootKeyClient

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DataEncryptionKey:
    """Ephemeral DEK. plaintext_key must never be logged or serialized."""

    key_id: str
    plaintext_key: SecureKey = field(repr=False)
    wrapped_key: bytes = field(repr=False)
    root_key_id: str
    encryption_context: Dict[str, str]
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at


class DekCache:
    """
    Issues DEKs and keeps their plaintext for at most ``ttl``.

    Args:
        root_key_client: Root key service used to generate DEKs
        root_key_id: Root key that wraps every issued DEK
        ttl: Lifetime of an issued DEK (default 15 minutes)
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        root_key_client: RootKeyClient,
        root_key_id: str,
        ttl: timedelta = DEFAULT_CACHE_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self._client = root_key_client
        self._root_key_id = root_key_id
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[str, DataEncryptionKey] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def root_key_id(self) -> str:
        return self._root_key_id

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._entries

    async def issue(self, context: Mapping[str, str]) -> DataEncryptionKey:
        """
        Generate a DEK bound to ``context`` and register it.

        Plaintext and wrapped forms come from one generate_data_key call, so
        no plaintext key ever exists without its wrapped form.

        Returns:
            The registered DataEncryptionKey
        """
        generated = await self._client.generate_data_key(self._root_key_id, context)

        now = self._clock()
        dek = DataEncryptionKey(
            key_id=str(uuid4()),
            plaintext_key=SecureKey(generated.plaintext),
            wrapped_key=generated.wrapped,
            root_key_id=self._root_key_id,
            encryption_context=dict(context),
            created_at=now,
            expires_at=now + self._ttl,
        )
        self._register(dek)
        logger.info("Issued data key %s (expires %s)", dek.key_id, dek.expires_at.isoformat())
        return dek

    def _register(self, dek: DataEncryptionKey) -> None:
        self._entries[dek.key_id] = dek
        delay = max((dek.expires_at - self._clock()).total_seconds(), 0.0)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: expiry is still enforced lazily by get()
            return
        self._timers[dek.key_id] = loop.call_later(delay, self._expire, dek.key_id)

    def _expire(self, key_id: str) -> None:
        self._timers.pop(key_id, None)
        if self.evict(key_id):
            logger.debug("Data key %s expired", key_id)

    def get(self, key_id: str) -> Optional[DataEncryptionKey]:
        """
        Return the cached DEK, or None on a miss.

        An entry past its expiry is evicted and reported as a miss. A miss
        never creates a key.
        """
        dek = self._entries.get(key_id)
        if dek is None:
            return None
        if dek.is_expired(self._clock()):
            self.evict(key_id)
            return None
        return dek

    def evict(self, key_id: str) -> bool:
        """
        Remove a DEK and wipe its plaintext.

        Returns:
            True if an entry was removed
        """
        timer = self._timers.pop(key_id, None)
        if timer is not None:
            timer.cancel()
        dek = self._entries.pop(key_id, None)
        if dek is None:
            return False
        dek.plaintext_key.wipe()
        logger.debug("Evicted data key %s", key_id)
        return True

    def clear(self) -> int:
        """
        Evict every DEK.

        Returns:
            Number of entries evicted
        """
        evicted = 0
        for key_id in list(self._entries):
            if self.evict(key_id):
                evicted += 1
        if evicted:
            logger.info("Cleared %d data keys from cache", evicted)
        return evicted

    def close(self) -> None:
        """Cancel pending expiry timers and evict everything."""
        self.clear()
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
