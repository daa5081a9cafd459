"""Tests for the PatternEvolution engine."""

import asyncio
import random

import pytest

from artcade.evolution.engine import EvolutionConfig, PatternEvolution
from artcade.exceptions import EvolutionError, ValidationError
from artcade.types import PatternContent, PatternType

SEED_HTML = """<div class="arena"><div class="player"></div><div class="score">0</div></div>
<style>.player { background: #0f0; transition: left 0.2s; }</style>
<script>let score = 0; document.addEventListener('keydown', e => move(e));</script>"""


@pytest.fixture
def engine(store, staging, bus):
    return PatternEvolution(store, staging, event_bus=bus, rng=random.Random(1234))


@pytest.fixture
def seed_pattern(make_pattern):
    return make_pattern(
        name="arena",
        type=PatternType.GAME_MECHANIC,
        content=PatternContent(html=SEED_HTML),
        effectiveness_score=0.5,
    )


def _config(**overrides):
    values = dict(
        population_size=6,
        generation_limit=3,
        mutation_rate=0.6,
        crossover_rate=0.7,
        elitism_count=2,
        similarity_threshold=0.5,
        fitness_threshold=1.0,
    )
    values.update(overrides)
    return EvolutionConfig(**values)


# ── Config ──────────────────────────────────────────────────────


def test_config_defaults():
    config = EvolutionConfig()
    assert config.population_size == 10
    assert config.generation_limit == 50
    assert config.mutation_rate == 0.3
    assert config.crossover_rate == 0.7
    assert config.elitism_count == 2
    assert config.similarity_threshold == 0.85
    assert config.fitness_threshold == 0.7
    assert config.tournament_size == 3


def test_config_rejects_elitism_not_below_population():
    with pytest.raises(ValidationError) as exc:
        EvolutionConfig(population_size=2, elitism_count=2)
    assert exc.value.fields == ["elitism_count"]


def test_config_rejects_out_of_range_rates():
    with pytest.raises(ValidationError) as exc:
        EvolutionConfig(mutation_rate=1.5, crossover_rate=-0.1)
    assert set(exc.value.fields) == {"mutation_rate", "crossover_rate"}


# ── Runs ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_population_size_is_constant(engine, store, seed_pattern):
    seed = await store.store_pattern(seed_pattern)
    result = await engine.evolve_pattern(seed, _config())

    assert len(result.history) == 4
    assert all(g.population_size == 6 for g in result.history)
    assert [g.generation for g in result.history] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_best_fitness_never_decreases(engine, store, seed_pattern):
    seed = await store.store_pattern(seed_pattern)
    result = await engine.evolve_pattern(seed, _config(generation_limit=5))

    best = [g.best_fitness for g in result.history]
    assert all(b >= a for a, b in zip(best, best[1:]))
    assert result.fitness == pytest.approx(max(best))


@pytest.mark.asyncio
async def test_elite_survive_into_next_generation(engine, store, seed_pattern):
    seen: list[list[str]] = []
    select = engine._select_parents

    def recording_select(population, config):
        ids = [ind.pattern.id for ind in population]
        if not seen or seen[-1] != ids:
            seen.append(ids)
        return select(population, config)

    engine._select_parents = recording_select
    seed = await store.store_pattern(seed_pattern)
    await engine.evolve_pattern(seed, _config(generation_limit=4, mutation_rate=1.0))

    assert len(seen) >= 2
    for previous, current in zip(seen, seen[1:]):
        assert set(previous[:2]) <= set(current)


@pytest.mark.asyncio
async def test_offspring_are_stored_with_lineage(engine, store, seed_pattern):
    seed = await store.store_pattern(seed_pattern)
    result = await engine.evolve_pattern(seed, _config(mutation_rate=1.0))

    assert sum(g.offspring_admitted for g in result.history) > 0
    stored = await store.list_patterns(limit=500)
    offspring = [p for p in stored if p.id != seed.id]
    assert offspring
    for child in offspring:
        assert child.parent_id is not None
        assert await store.get_pattern(child.parent_id) is not None
        assert child.embedding is not None


@pytest.mark.asyncio
async def test_stops_when_threshold_reached(engine, store, seed_pattern):
    seed = await store.store_pattern(seed_pattern)
    result = await engine.evolve_pattern(seed, _config(fitness_threshold=0.5))

    assert result.generation == 0
    assert len(result.history) == 1
    assert result.fitness >= 0.5
    assert await store.count_patterns() == 1


@pytest.mark.asyncio
async def test_animation_seed_scenario(engine, store, make_pattern):
    seed = await store.store_pattern(make_pattern(name="glow", effectiveness_score=0.8))
    config = EvolutionConfig(
        population_size=4, generation_limit=2, mutation_rate=0.1, crossover_rate=0.5,
        elitism_count=1, similarity_threshold=0.7, fitness_threshold=0.8,
    )

    result = await engine.evolve_pattern(seed, config)

    assert result.pattern.type == PatternType.ANIMATION
    assert result.generation <= 2
    assert isinstance(result.fitness, float)
    assert 0.0 <= result.fitness <= 1.0


@pytest.mark.asyncio
async def test_seed_without_embedding(engine, store, seed_pattern):
    result = await engine.evolve_pattern(seed_pattern, _config(generation_limit=1))
    assert result.history[0].population_size == 6


@pytest.mark.asyncio
async def test_neighbours_join_initial_population(engine, store, seed_pattern, make_pattern):
    seed = await store.store_pattern(seed_pattern)
    neighbour = await store.store_pattern(make_pattern(
        name="neighbour", type=PatternType.GAME_MECHANIC, embedding=seed.embedding,
        content=PatternContent(html=SEED_HTML + "<p>bonus</p>"), effectiveness_score=0.9,
    ))

    result = await engine.evolve_pattern(seed, _config(fitness_threshold=0.8))

    assert result.pattern.id == neighbour.id
    assert result.generation == 0


@pytest.mark.asyncio
async def test_cancel_before_start(engine, store, seed_pattern):
    seed = await store.store_pattern(seed_pattern)
    cancel = asyncio.Event()
    cancel.set()

    result = await engine.evolve_pattern(seed, _config(), cancel_event=cancel)

    assert result.cancelled
    assert len(result.history) == 1


@pytest.mark.asyncio
async def test_cancel_between_generations(engine, store, bus, seed_pattern):
    seed = await store.store_pattern(seed_pattern)
    cancel = asyncio.Event()

    async def stop_after_first(event):
        cancel.set()

    bus.subscribe("evolution.generation_completed", stop_after_first)
    result = await engine.evolve_pattern(seed, _config(generation_limit=10), cancel_event=cancel)

    assert result.cancelled
    assert len(result.history) == 2


@pytest.mark.asyncio
async def test_emits_lifecycle_events(engine, store, bus, seed_pattern):
    seed = await store.store_pattern(seed_pattern)
    await engine.evolve_pattern(seed, _config(generation_limit=2))

    topics = [e.topic for e in reversed(bus.history("evolution.*", limit=100))]
    assert topics[0] == "evolution.started"
    assert topics.count("evolution.generation_completed") == 2
    assert topics[-1] == "evolution.completed"


@pytest.mark.asyncio
async def test_too_many_rejections_raise(store, seed_pattern):
    class RejectingStaging:
        async def admit(self, candidate, parent_id=None):
            raise ValidationError("rejected", ["content.html"])

    engine = PatternEvolution(store, RejectingStaging(), rng=random.Random(0))
    seed = await store.store_pattern(seed_pattern)

    with pytest.raises(EvolutionError):
        await engine.evolve_pattern(seed, _config(mutation_rate=1.0, max_admission_retries=2))
