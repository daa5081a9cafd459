"""Fitness — how good an individual is relative to the seed it evolved from."""

from __future__ import annotations

from pydantic import BaseModel, Field

from artcade.store.vectors import cosine_similarity
from artcade.types import Pattern, PatternFeatures

_COUNTED = ("element_count", "style_count", "script_count", "color_count")
_FLAGS = ("has_animations", "has_user_input", "has_game_logic")


class FitnessWeights(BaseModel):
    effectiveness: float = Field(default=0.4, ge=0.0)
    coverage: float = Field(default=0.3, ge=0.0)
    similarity: float = Field(default=0.3, ge=0.0)


def clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def feature_coverage(candidate: PatternFeatures, seed: PatternFeatures) -> float:
    """Fraction of the seed's structure the candidate still has.

    Each counted feature scores min(candidate / seed, 1); each flag the
    seed has scores 1 if the candidate keeps it. Features absent from
    the seed score 1.
    """
    scores: list[float] = []
    for name in _COUNTED:
        want = getattr(seed, name)
        have = getattr(candidate, name)
        scores.append(1.0 if want == 0 else min(have / want, 1.0))

    want_listeners = set(seed.event_listeners)
    if want_listeners:
        scores.append(len(want_listeners & set(candidate.event_listeners)) / len(want_listeners))
    else:
        scores.append(1.0)

    for name in _FLAGS:
        scores.append(1.0 if not getattr(seed, name) or getattr(candidate, name) else 0.0)

    return clamp(sum(scores) / len(scores))


def compute_fitness(
    effectiveness: float,
    coverage: float,
    similarity: float,
    weights: FitnessWeights | None = None,
) -> float:
    """Weighted mean of the three factors, each clamped to [0, 1]."""
    w = weights or FitnessWeights()
    total = w.effectiveness + w.coverage + w.similarity
    if total == 0:
        return 0.0
    score = (
        w.effectiveness * clamp(effectiveness)
        + w.coverage * clamp(coverage)
        + w.similarity * clamp(similarity)
    )
    return clamp(score / total)


def pattern_fitness(
    pattern: Pattern,
    features: PatternFeatures,
    seed: Pattern,
    seed_features: PatternFeatures,
    weights: FitnessWeights | None = None,
) -> float:
    similarity = (
        cosine_similarity(pattern.embedding, seed.embedding)
        if pattern.embedding and seed.embedding
        else 0.0
    )
    return compute_fitness(
        pattern.effectiveness_score,
        feature_coverage(features, seed_features),
        similarity,
        weights,
    )
