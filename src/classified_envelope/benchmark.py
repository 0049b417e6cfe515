"""
Classified Envelope Benchmark CLI.

Usage:
    classified-envelope-benchmark [COUNT]

Or run directly:
    python -m classified_envelope.benchmark

Backends:
    ENVELOPE_BACKEND=local (default): in-process root key service
    ENVELOPE_BACKEND=aws: AWS KMS, key from ENVELOPE_ROOT_KEY_ID / AWS_KMS_KEY_ID

If DATABASE_URL is set, wrapped DEKs are persisted to PostgreSQL and the
benchmark also measures decryption after the DEK cache has been cleared.
"""

from __future__ import annotations

import asyncio
import os
import sys
import time
from typing import List, Optional

import asyncpg
from dotenv import load_dotenv

from classified_envelope.classification import SensitivityTier
from classified_envelope.config import Settings
from classified_envelope.envelope import EncryptionEnvelope
from classified_envelope.kms import AwsKmsRootKeyClient, LocalRootKeyClient, RootKeyClient
from classified_envelope.postgres_storage import PostgresWrappedKeyStore
from classified_envelope.service import ClassifiedEnvelopeService
from classified_envelope.storage import WrappedKeyStore

SAMPLE_PAYLOAD = {"transactionId": "TXN-001", "amount": 1500.00, "currency": "USD"}


def _header(title: str) -> None:
    print("+" + "-" * 68 + "+")
    print(f"|  {title}".ljust(69) + "|")
    print("+" + "-" * 68 + "+")


def _rate(count: int, seconds: float) -> str:
    return f"{seconds * 1000:.3f}ms | Rate: {count / seconds:.2f} ops/sec"


def _build_client() -> tuple:
    backend = os.environ.get("ENVELOPE_BACKEND", "local").lower()
    if backend == "aws":
        settings = Settings.from_env()
        client: RootKeyClient = AwsKmsRootKeyClient.from_settings(settings)
        return settings, client

    local = LocalRootKeyClient()
    root_key_id = local.create_key(description="benchmark root key")
    settings = Settings.from_env({**os.environ, "ENVELOPE_ROOT_KEY_ID": root_key_id})
    return settings, local


async def run_benchmark(count: int) -> None:
    """Run the classified envelope benchmark."""
    print("=== Classified Envelope Benchmark ===\n")

    load_dotenv()
    settings, client = _build_client()

    pool: Optional[asyncpg.Pool] = None
    key_store: Optional[WrappedKeyStore] = None
    if settings.database_url:
        pool = await asyncpg.create_pool(settings.database_url)
        if pool is None:
            print("ERROR: Failed to create connection pool")
            sys.exit(1)
        postgres_store = PostgresWrappedKeyStore(pool)
        await postgres_store.ensure_schema()
        key_store = postgres_store
        print("[STARTUP] Wrapped keys persisted to PostgreSQL")

    service = ClassifiedEnvelopeService(settings, client, key_store=key_store)
    print(f"Testing with {count} payloads per tier\n")

    try:
        for tier in SensitivityTier:
            _header(f"Tier: {tier.value}")

            envelopes: List[EncryptionEnvelope] = []
            start = time.perf_counter()
            for _ in range(count):
                envelopes.append(await service.encrypt(SAMPLE_PAYLOAD, tier))
            encrypt_time = time.perf_counter() - start

            start = time.perf_counter()
            for envelope in envelopes:
                decrypted = await service.decrypt(envelope)
                if decrypted != SAMPLE_PAYLOAD:
                    print(f"[FAIL] Round trip mismatch for {tier.value}")
                    sys.exit(1)
            decrypt_time = time.perf_counter() - start

            print(f"[OK] {count} payloads round-tripped ({envelopes[0].algorithm})")
            print(f"[PERF] Encryption: {_rate(count, encrypt_time)}")
            print(f"[PERF] Decryption: {_rate(count, decrypt_time)}\n")

            if key_store is not None and tier >= SensitivityTier.CONFIDENTIAL:
                service.key_cache.clear()
                start = time.perf_counter()
                for envelope in envelopes:
                    await service.decrypt(envelope)
                recover_time = time.perf_counter() - start
                print(f"[PERF] Decryption after cache clear: {_rate(count, recover_time)}\n")
    finally:
        service.close()
        if pool is not None:
            await pool.close()

    print("=" * 70)
    print("                    BENCHMARK COMPLETE")
    print("=" * 70)


def main() -> None:
    """CLI entry point."""
    try:
        count = int(sys.argv[1]) if len(sys.argv) > 1 else 100
    except ValueError:
        count = 100
    asyncio.run(run_benchmark(max(count, 1)))


if __name__ == "__main__":
    main()
