"""Embedding encoding and vector math.

Embeddings are persisted in exactly one representation: a JSON array of
floats in a TEXT column. ``encode_embedding`` is the only way onto the
write path and ``decode_embedding`` refuses anything else on the way
back, so a double-encoded string can never be written or silently read.
"""

from __future__ import annotations

import hashlib
import json
import math
from numbers import Real
from typing import Sequence

from artcade.exceptions import StorageError, ValidationError


def content_hash(text: str) -> str:
    """Stable key for the embedding cache."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def encode_embedding(values: Sequence[float], dimension: int | None = None) -> str:
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ValidationError("Embedding must be a sequence of numbers", ["embedding"])
    if dimension is not None and len(values) != dimension:
        raise ValidationError(
            f"Embedding must have {dimension} dimensions, got {len(values)}",
            ["embedding"],
        )
    floats: list[float] = []
    for v in values:
        if isinstance(v, bool) or not isinstance(v, Real) or not math.isfinite(v):
            raise ValidationError(f"Embedding contains a non-numeric value: {v!r}", ["embedding"])
        floats.append(float(v))
    return json.dumps(floats)


def decode_embedding(raw: str | None) -> list[float] | None:
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise StorageError(f"Corrupt embedding column: {exc}") from exc
    if not isinstance(data, list):
        raise StorageError(
            f"Embedding column is not a JSON array (got {type(data).__name__})"
        )
    return [float(v) for v in data]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two dense vectors; 0.0 if either is empty or zero."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    mag_a = math.sqrt(sum(x * x for x in a))
    mag_b = math.sqrt(sum(y * y for y in b))
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return dot / (mag_a * mag_b)
