"""
Tests for wrapped-key storage backends.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from classified_envelope import ClassifiedEnvelopeService, StoredWrappedKey


def _stored(key_id: str = "dek-1", **overrides) -> StoredWrappedKey:
    fields = dict(
        key_id=key_id,
        root_key_id="root",
        wrapped_key=b"\x00\x01wrapped",
        encryption_context={"application": "test", "environment": "test"},
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return StoredWrappedKey(**fields)


def test_repr_hides_wrapped_key():
    assert "wrapped_key" not in repr(_stored())


class StoreContract:
    """Behaviour every WrappedKeyStore must share."""

    @pytest.fixture
    def store(self):
        raise NotImplementedError

    async def test_put_get(self, store):
        key = _stored()
        await store.put(key)
        assert await store.get("dek-1") == key

    async def test_get_missing(self, store):
        assert await store.get("missing") is None

    async def test_put_replaces(self, store):
        await store.put(_stored())
        await store.put(_stored(wrapped_key=b"replacement"))
        assert (await store.get("dek-1")).wrapped_key == b"replacement"

    async def test_delete(self, store):
        await store.put(_stored())
        assert await store.delete("dek-1") is True
        assert await store.delete("dek-1") is False
        assert await store.get("dek-1") is None

    async def test_list_key_ids(self, store):
        await store.put(_stored("dek-1"))
        await store.put(_stored("dek-2"))
        assert sorted(await store.list_key_ids()) == ["dek-1", "dek-2"]


class TestInMemoryWrappedKeyStore(StoreContract):
    @pytest.fixture
    def store(self, memory_key_store):
        return memory_key_store


class TestPostgresWrappedKeyStore(StoreContract):
    @pytest.fixture
    def store(self, postgres_key_store):
        return postgres_key_store

    async def test_service_recovers_keys_from_database(
        self, settings, kms, postgres_key_store
    ):
        service = ClassifiedEnvelopeService(settings, kms, key_store=postgres_key_store)
        try:
            envelope = await service.encrypt({"iban": "SE45 5000"}, "restricted")
            service.key_cache.clear()
            assert await service.decrypt(envelope) == {"iban": "SE45 5000"}
        finally:
            service.close()
