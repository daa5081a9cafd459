"""Baseline: the tables ``VectorDatabase.initialize`` creates are schema version 1."""

from __future__ import annotations

import aiosqlite


async def upgrade(db: aiosqlite.Connection) -> None:
    """Nothing to change; later migrations assume the initialize() schema."""
