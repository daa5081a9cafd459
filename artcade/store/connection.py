"""SQLite connection helper shared by the pattern store and the embedding cache."""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from artcade.exceptions import StorageError


@asynccontextmanager
async def connect(
    db_path: str, timeout: float = 30.0, label: str = "Pattern store"
) -> AsyncIterator[aiosqlite.Connection]:
    """Open a connection with ``Row`` rows; sqlite3 failures become StorageError."""
    try:
        async with aiosqlite.connect(db_path, timeout=timeout) as db:
            db.row_factory = aiosqlite.Row
            yield db
    except sqlite3.Error as exc:
        raise StorageError(f"{label} error: {exc}") from exc
