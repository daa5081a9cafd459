"""Shared test fixtures — FakeEmbeddingProvider for testing without API calls."""

from __future__ import annotations

import hashlib
import os
import re
import tempfile

import pytest
import pytest_asyncio

from artcade.embeddings.provider import BaseEmbeddingProvider
from artcade.events.bus import EventBus
from artcade.exceptions import EmbeddingProviderError
from artcade.staging import PatternStaging
from artcade.store.database import VectorDatabase
from artcade.types import Pattern, PatternContent, PatternType


class FakeEmbeddingProvider(BaseEmbeddingProvider):
    """Hashed bag-of-words embeddings. Deterministic, no network.

    Texts sharing words get similar vectors, so similarity search
    behaves sensibly on realistic snippets.
    """

    def __init__(self, dimension: int = 64):
        self.dimension = dimension
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise EmbeddingProviderError("Text cannot be empty", retryable=False)
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for token in re.findall(r"\w+", text.lower()):
            digest = hashlib.sha256(token.encode()).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimension] += 1.0
        return vector


def unit_vector(dimension: int, *weights: float) -> list[float]:
    """Vector whose first components are ``weights`` and the rest zero."""
    return list(weights) + [0.0] * (dimension - len(weights))


@pytest.fixture
def db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def bus():
    return EventBus()


@pytest_asyncio.fixture
async def store(db_path, provider, bus):
    db = VectorDatabase(db_path, provider, event_bus=bus)
    await db.initialize()
    return db


@pytest.fixture
def staging(store):
    return PatternStaging(store)


@pytest.fixture
def vec():
    """Build a store-dimension vector from leading components."""
    def _vec(*weights: float) -> list[float]:
        return unit_vector(64, *weights)
    return _vec


@pytest.fixture
def make_pattern():
    def _factory(
        name: str = "bouncing-ball",
        type: PatternType = PatternType.ANIMATION,
        html: str = '<div class="ball"></div><style>.ball { animation: bounce 1s infinite; }</style>',
        **kwargs,
    ) -> Pattern:
        content = kwargs.pop("content", None) or PatternContent(html=html)
        return Pattern(type=type, name=name, content=content, **kwargs)
    return _factory
