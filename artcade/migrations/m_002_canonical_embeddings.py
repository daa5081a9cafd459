"""Migration 002: Rewrite legacy embeddings into the canonical JSON array form.

Older databases hold some embeddings double-encoded, i.e. a JSON string
whose value is itself a JSON array (``"\"[0.1, 0.2]\""``). Those rows are
decoded and written back as a plain array. Rows that cannot be parsed
are cleared to NULL so the store recomputes them on the next write.
"""

from __future__ import annotations

import json
import logging

import aiosqlite

logger = logging.getLogger(__name__)

TABLES = ("patterns", "prompt_embeddings")


def normalize(raw: str) -> str | None:
    """Canonical form of one stored embedding, or None if unrecoverable."""
    try:
        value = json.loads(raw)
        while isinstance(value, str):
            value = json.loads(value)
    except (TypeError, ValueError):
        return None
    if not isinstance(value, list) or not all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in value
    ):
        return None
    return json.dumps([float(v) for v in value])


async def upgrade(db: aiosqlite.Connection) -> None:
    for table in TABLES:
        cursor = await db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        )
        if await cursor.fetchone() is None:
            continue

        cursor = await db.execute(
            f"SELECT id, embedding FROM {table} WHERE embedding IS NOT NULL"
        )
        rows = await cursor.fetchall()
        fixed = 0
        for row_id, raw in rows:
            canonical = normalize(raw)
            if canonical == raw:
                continue
            if canonical is None and table == "prompt_embeddings":
                # NOT NULL column; an empty array marks it unusable
                canonical = "[]"
            await db.execute(
                f"UPDATE {table} SET embedding = ? WHERE id = ?", (canonical, row_id)
            )
            fixed += 1
        if fixed:
            logger.info("Normalized %d embeddings in %s", fixed, table)
