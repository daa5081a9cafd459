"""Embedding cache — content hash → embedding, kept in SQLite.

Avoids calling the provider again for content it has already embedded.
A miss is not an error; ``get`` just returns None.
"""

from __future__ import annotations

from datetime import datetime

from artcade.store.connection import connect
from artcade.store.vectors import decode_embedding, encode_embedding


class EmbeddingCache:
    def __init__(self, db_path: str, busy_timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout

    def _connect(self):
        return connect(self._db_path, self._busy_timeout, label="Embedding cache")

    async def initialize(self) -> None:
        async with self._connect() as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS embedding_cache (
                    content_hash TEXT PRIMARY KEY,
                    embedding TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            await db.commit()

    async def get(self, key: str) -> list[float] | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT embedding FROM embedding_cache WHERE content_hash = ?", (key,)
            )
            row = await cursor.fetchone()
        return decode_embedding(row[0]) if row else None

    async def set(self, key: str, value: list[float]) -> None:
        encoded = encode_embedding(value)
        async with self._connect() as db:
            await db.execute(
                "INSERT OR REPLACE INTO embedding_cache (content_hash, embedding, created_at) "
                "VALUES (?, ?, ?)",
                (key, encoded, datetime.utcnow().isoformat()),
            )
            await db.commit()

    async def delete(self, key: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM embedding_cache WHERE content_hash = ?", (key,)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def count(self) -> int:
        async with self._connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM embedding_cache")
            row = await cursor.fetchone()
        return row[0]
