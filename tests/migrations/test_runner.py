"""Tests for the database migration runner and migrations."""

import json
import os
import tempfile

import aiosqlite
import pytest

from artcade.migrations.m_002_canonical_embeddings import normalize
from artcade.migrations.runner import apply_migrations, discover_migrations, get_schema_version


@pytest.fixture
def db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    os.unlink(path)


@pytest.mark.asyncio
async def test_get_schema_version_empty_db(db_path):
    assert await get_schema_version(db_path) == 0


def test_discover_migrations_in_order():
    versions = [v for v, _ in discover_migrations()]
    assert versions == sorted(versions)
    assert versions[:2] == [1, 2]


@pytest.mark.asyncio
async def test_apply_migrations_fresh_db(db_path):
    applied = await apply_migrations(db_path)
    assert applied[:2] == [1, 2]
    assert await get_schema_version(db_path) == applied[-1]


@pytest.mark.asyncio
async def test_apply_migrations_is_idempotent(db_path):
    await apply_migrations(db_path)
    assert await apply_migrations(db_path) == []


@pytest.mark.asyncio
async def test_canonicalizes_legacy_embeddings(db_path):
    async with aiosqlite.connect(db_path) as db:
        await db.execute("CREATE TABLE patterns (id TEXT PRIMARY KEY, embedding TEXT)")
        await db.executemany("INSERT INTO patterns VALUES (?, ?)", [
            ("canonical", json.dumps([0.5, 0.25])),
            ("double", json.dumps(json.dumps([0.1, 0.2]))),
            ("broken", "not-json"),
            ("empty", None),
        ])
        await db.commit()

    await apply_migrations(db_path)

    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("SELECT id, embedding FROM patterns")
        rows = dict(await cursor.fetchall())

    assert json.loads(rows["canonical"]) == [0.5, 0.25]
    assert json.loads(rows["double"]) == [0.1, 0.2]
    assert rows["broken"] is None
    assert rows["empty"] is None


def test_normalize():
    assert normalize("[1, 2]") == "[1.0, 2.0]"
    assert normalize(json.dumps("[0.5]")) == "[0.5]"
    assert normalize('{"a": 1}') is None
    assert normalize('["x"]') is None
