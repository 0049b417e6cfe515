"""
PostgreSQL storage backend for wrapped data keys.

This module provides:
- PostgresWrappedKeyStore: asyncpg-backed WrappedKeyStore

Table layout (created by ensure_schema()):
- key_id: DEK id referenced by envelopes (dataKeyId)
- root_key_id: Root key that wrapped the DEK
- wrapped_key: Root-key ciphertext of the DEK (never the plaintext)
- encryption_context: Context the DEK was bound to (JSON text)
- created_at: Issue time
"""

from __future__ import annotations

import json
from typing import List, Optional

import asyncpg

from .errors import StorageError
from .storage import StoredWrappedKey, WrappedKeyStore

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS wrapped_data_keys (
        key_id TEXT PRIMARY KEY,
        root_key_id TEXT NOT NULL,
        wrapped_key BYTEA NOT NULL,
        encryption_context TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
"""


class PostgresWrappedKeyStore(WrappedKeyStore):
    """
    PostgreSQL storage backend for wrapped DEKs.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        """
        Initialize PostgreSQL storage.

        Args:
            pool: asyncpg connection pool
        """
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    async def ensure_schema(self) -> None:
        """Create the wrapped_data_keys table if it does not exist."""
        try:
            await self._pool.execute(SCHEMA_SQL)
        except Exception as e:
            raise StorageError(f"Failed to create schema: {e}") from e

    async def put(self, key: StoredWrappedKey) -> None:
        query = """
            INSERT INTO wrapped_data_keys
                (key_id, root_key_id, wrapped_key, encryption_context, created_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (key_id) DO UPDATE SET
                root_key_id = EXCLUDED.root_key_id,
                wrapped_key = EXCLUDED.wrapped_key,
                encryption_context = EXCLUDED.encryption_context,
                created_at = EXCLUDED.created_at
        """
        try:
            await self._pool.execute(
                query,
                key.key_id,
                key.root_key_id,
                key.wrapped_key,
                json.dumps(key.encryption_context, sort_keys=True),
                key.created_at,
            )
        except Exception as e:
            raise StorageError(f"Failed to store wrapped key: {e}") from e

    async def get(self, key_id: str) -> Optional[StoredWrappedKey]:
        query = """
            SELECT key_id, root_key_id, wrapped_key, encryption_context, created_at
            FROM wrapped_data_keys
            WHERE key_id = $1
        """
        try:
            row = await self._pool.fetchrow(query, key_id)
        except Exception as e:
            raise StorageError(f"Failed to get wrapped key: {e}") from e
        if row is None:
            return None
        return self._row_to_stored_key(row)

    async def delete(self, key_id: str) -> bool:
        query = "DELETE FROM wrapped_data_keys WHERE key_id = $1 RETURNING key_id"
        try:
            row = await self._pool.fetchrow(query, key_id)
        except Exception as e:
            raise StorageError(f"Failed to delete wrapped key: {e}") from e
        return row is not None

    async def list_key_ids(self) -> List[str]:
        query = "SELECT key_id FROM wrapped_data_keys ORDER BY created_at"
        try:
            rows = await self._pool.fetch(query)
        except Exception as e:
            raise StorageError(f"Failed to list wrapped keys: {e}") from e
        return [row["key_id"] for row in rows]

    @staticmethod
    def _row_to_stored_key(row: asyncpg.Record) -> StoredWrappedKey:
        """Convert database row to StoredWrappedKey."""
        try:
            context = json.loads(row["encryption_context"])
        except ValueError as e:
            raise StorageError(f"Corrupt encryption context for {row['key_id']}") from e
        return StoredWrappedKey(
            key_id=row["key_id"],
            root_key_id=row["root_key_id"],
            wrapped_key=bytes(row["wrapped_key"]),
            encryption_context=context,
            created_at=row["created_at"],
        )
