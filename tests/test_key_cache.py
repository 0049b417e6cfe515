"""
Tests for the DEK cache.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from classified_envelope import (
    AES_256_KEY_SIZE,
    DekCache,
    GeneratedDataKey,
    LocalRootKeyClient,
)

CONTEXT = {"application": "test", "environment": "test"}


class ManualClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class TestIssue:
    async def test_issue_registers_key(self, kms, root_key_id):
        cache = DekCache(kms, root_key_id)
        try:
            dek = await cache.issue(CONTEXT)
            assert cache.get(dek.key_id) is dek
            assert len(dek.plaintext_key) == AES_256_KEY_SIZE
            assert dek.wrapped_key
            assert dek.root_key_id == root_key_id
            assert dek.encryption_context == CONTEXT
            assert dek.expires_at - dek.created_at == timedelta(minutes=15)
        finally:
            cache.close()

    async def test_wrapped_key_unwraps_to_plaintext(self, kms, root_key_id):
        cache = DekCache(kms, root_key_id)
        try:
            dek = await cache.issue(CONTEXT)
            unwrapped = await kms.unwrap(dek.wrapped_key, CONTEXT)
            assert unwrapped == dek.plaintext_key.as_bytes()
        finally:
            cache.close()

    async def test_repr_hides_key_material(self, kms, root_key_id):
        cache = DekCache(kms, root_key_id)
        try:
            dek = await cache.issue(CONTEXT)
            text = repr(dek)
            assert dek.plaintext_key.as_bytes().hex() not in text
            assert "wrapped_key" not in text
            assert "plaintext_key" not in text
        finally:
            cache.close()

    async def test_concurrent_issues_get_distinct_ids(self, kms, root_key_id):
        cache = DekCache(kms, root_key_id)
        try:
            deks = await asyncio.gather(*(cache.issue(CONTEXT) for _ in range(50)))
            assert len({d.key_id for d in deks}) == 50
            assert len(cache) == 50
        finally:
            cache.close()

    async def test_concurrent_issues_do_not_wait_on_each_other(self, root_key_id):
        started = 0
        release = asyncio.Event()

        class SlowKms(LocalRootKeyClient):
            async def generate_data_key(self, key_id, context):
                nonlocal started
                started += 1
                await release.wait()
                return GeneratedDataKey(plaintext=b"\x01" * 32, wrapped=b"wrapped")

        cache = DekCache(SlowKms(), root_key_id)
        try:
            tasks = [asyncio.ensure_future(cache.issue(CONTEXT)) for _ in range(3)]
            await asyncio.sleep(0.01)
            assert started == 3
            release.set()
            await asyncio.gather(*tasks)
            assert len(cache) == 3
        finally:
            cache.close()

    async def test_cancelled_issue_registers_nothing(self, root_key_id):
        class HangingKms(LocalRootKeyClient):
            async def generate_data_key(self, key_id, context):
                await asyncio.sleep(10)

        cache = DekCache(HangingKms(), root_key_id)
        try:
            task = asyncio.ensure_future(cache.issue(CONTEXT))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert len(cache) == 0
        finally:
            cache.close()

    def test_ttl_must_be_positive(self, kms, root_key_id):
        with pytest.raises(ValueError):
            DekCache(kms, root_key_id, ttl=timedelta(0))


class TestExpiry:
    async def test_key_absent_after_ttl(self, short_lived_cache):
        dek = await short_lived_cache.issue(CONTEXT)
        assert short_lived_cache.get(dek.key_id) is dek

        await asyncio.sleep(0.12)

        assert short_lived_cache.get(dek.key_id) is None
        assert len(short_lived_cache) == 0

    async def test_eviction_wipes_plaintext(self, short_lived_cache):
        dek = await short_lived_cache.issue(CONTEXT)
        await asyncio.sleep(0.12)
        assert dek.plaintext_key.is_wiped
        # Wrapped form stays with whoever kept the object
        assert dek.wrapped_key

    async def test_get_reports_expired_entry_as_miss(self, kms, root_key_id):
        clock = ManualClock()
        cache = DekCache(kms, root_key_id, ttl=timedelta(minutes=15), clock=clock)
        try:
            dek = await cache.issue(CONTEXT)
            clock.advance(timedelta(minutes=14, seconds=59))
            assert cache.get(dek.key_id) is dek

            clock.advance(timedelta(seconds=1))
            assert cache.get(dek.key_id) is None
            assert dek.key_id not in cache
            assert dek.plaintext_key.is_wiped
        finally:
            cache.close()

    async def test_get_never_creates_keys(self, kms, root_key_id):
        cache = DekCache(kms, root_key_id)
        try:
            assert cache.get("missing") is None
            assert len(cache) == 0
        finally:
            cache.close()


class TestEviction:
    async def test_evict(self, kms, root_key_id):
        cache = DekCache(kms, root_key_id)
        try:
            dek = await cache.issue(CONTEXT)
            assert cache.evict(dek.key_id) is True
            assert cache.evict(dek.key_id) is False
            assert cache.get(dek.key_id) is None
            assert dek.plaintext_key.is_wiped
        finally:
            cache.close()

    async def test_evict_leaves_other_keys(self, kms, root_key_id):
        cache = DekCache(kms, root_key_id)
        try:
            first = await cache.issue(CONTEXT)
            second = await cache.issue(CONTEXT)
            cache.evict(first.key_id)
            assert cache.get(second.key_id) is second
        finally:
            cache.close()

    async def test_clear(self, kms, root_key_id):
        cache = DekCache(kms, root_key_id)
        deks = [await cache.issue(CONTEXT) for _ in range(3)]
        assert cache.clear() == 3
        assert len(cache) == 0
        assert all(d.plaintext_key.is_wiped for d in deks)
        cache.close()
