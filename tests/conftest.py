"""
Pytest configuration and fixtures for classified envelope tests.
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import AsyncGenerator

import asyncpg
import boto3
import pytest
from dotenv import load_dotenv

from classified_envelope import (
    ClassifiedEnvelopeService,
    DekCache,
    InMemoryWrappedKeyStore,
    LocalRootKeyClient,
    PostgresWrappedKeyStore,
    Settings,
)


@pytest.fixture
def kms() -> LocalRootKeyClient:
    """In-process root key service."""
    return LocalRootKeyClient()


@pytest.fixture
def root_key_id(kms: LocalRootKeyClient) -> str:
    return kms.create_key(description="test root key")


@pytest.fixture
def settings(root_key_id: str) -> Settings:
    return Settings(
        root_key_id=root_key_id,
        region="eu-north-1",
        key_alias="EndCrypt",
        environment="test",
    )


@pytest.fixture
async def service(
    settings: Settings, kms: LocalRootKeyClient
) -> AsyncGenerator[ClassifiedEnvelopeService, None]:
    """Service without a wrapped-key store: DEKs live only in the cache."""
    svc = ClassifiedEnvelopeService(settings, kms)
    yield svc
    svc.close()


@pytest.fixture
def memory_key_store() -> InMemoryWrappedKeyStore:
    return InMemoryWrappedKeyStore()


@pytest.fixture
async def durable_service(
    settings: Settings, kms: LocalRootKeyClient, memory_key_store: InMemoryWrappedKeyStore
) -> AsyncGenerator[ClassifiedEnvelopeService, None]:
    """Service that persists wrapped DEKs, so decryption survives eviction."""
    svc = ClassifiedEnvelopeService(settings, kms, key_store=memory_key_store)
    yield svc
    svc.close()


@pytest.fixture
async def short_lived_cache(
    kms: LocalRootKeyClient, root_key_id: str
) -> AsyncGenerator[DekCache, None]:
    cache = DekCache(kms, root_key_id, ttl=timedelta(milliseconds=50))
    yield cache
    cache.close()


@pytest.fixture
def kms_boto_client():
    """Offline boto3 KMS client, meant to be wrapped in a Stubber."""
    return boto3.client(
        "kms",
        region_name="eu-north-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def secrets_boto_client():
    """Offline boto3 Secrets Manager client, meant to be wrapped in a Stubber."""
    return boto3.client(
        "secretsmanager",
        region_name="eu-north-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a PostgreSQL connection pool for testing."""
    # Load environment from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set, skipping PostgreSQL tests")

    pool = await asyncpg.create_pool(database_url)
    if pool is None:
        pytest.skip("Failed to create PostgreSQL connection pool")

    yield pool

    await pool.close()


@pytest.fixture
async def postgres_key_store(pg_pool: asyncpg.Pool) -> PostgresWrappedKeyStore:
    """Create a PostgreSQL wrapped-key store with an empty table."""
    store = PostgresWrappedKeyStore(pg_pool)
    await store.ensure_schema()
    await pg_pool.execute("TRUNCATE TABLE wrapped_data_keys")
    return store
