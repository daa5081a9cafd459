"""PatternEvolution — genetic search over a seed pattern's neighbourhood.

One run:
  1. Seed the population: the seed, its nearest neighbours of the same
     type, then clones of the seed until the population is full
  2. Score every individual (effectiveness, structural coverage of the
     seed, embedding similarity to the seed)
  3. Carry the elite over unchanged
  4. Fill the rest by tournament selection, crossover and mutation;
     every changed offspring is admitted through staging into the store
  5. Stop at the generation limit, when the best fitness reaches the
     threshold, or when cancelled

Generations run strictly one after another; the loop yields to the
event loop between offspring.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any

import structlog
from pydantic import BaseModel, Field, model_validator

from artcade.config import settings
from artcade.events.bus import EventBus
from artcade.evolution.crossover import crossover
from artcade.evolution.fitness import FitnessWeights, pattern_fitness
from artcade.evolution.operators import apply_mutation
from artcade.exceptions import EvolutionError, ValidationError
from artcade.staging import PatternStaging
from artcade.store.database import VectorDatabase
from artcade.store.features import extract_pattern_features
from artcade.types import Pattern, PatternContent, PatternFeatures, new_id

logger = structlog.get_logger()


class EvolutionConfig(BaseModel):
    population_size: int = 10
    generation_limit: int = 50
    mutation_rate: float = 0.3
    crossover_rate: float = 0.7
    elitism_count: int = 2
    similarity_threshold: float = 0.85
    fitness_threshold: float = 0.7
    tournament_size: int = 3
    max_admission_retries: int = 10

    @model_validator(mode="after")
    def _check_ranges(self) -> EvolutionConfig:
        bad: list[str] = []
        if self.population_size < 1:
            bad.append("population_size")
        if self.generation_limit < 0:
            bad.append("generation_limit")
        for name in ("mutation_rate", "crossover_rate", "similarity_threshold", "fitness_threshold"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                bad.append(name)
        if self.elitism_count < 0 or self.elitism_count >= self.population_size:
            bad.append("elitism_count")
        if self.tournament_size < 1:
            bad.append("tournament_size")
        if self.max_admission_retries < 0:
            bad.append("max_admission_retries")
        if bad:
            raise ValidationError(f"Invalid evolution config: {', '.join(bad)}", bad)
        return self

    @classmethod
    def from_settings(cls, **overrides: Any) -> EvolutionConfig:
        values = {
            "population_size": settings.evolution_population_size,
            "generation_limit": settings.evolution_generation_limit,
            "mutation_rate": settings.evolution_mutation_rate,
            "crossover_rate": settings.evolution_crossover_rate,
            "elitism_count": settings.evolution_elitism_count,
            "similarity_threshold": settings.evolution_similarity_threshold,
            "fitness_threshold": settings.evolution_fitness_threshold,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class GenerationSummary(BaseModel):
    generation: int
    best_fitness: float
    mean_fitness: float
    population_size: int
    offspring_admitted: int = 0
    rejections: int = 0


class EvolutionResult(BaseModel):
    pattern: Pattern
    generation: int = 0
    fitness: float = 0.0
    parent_ids: list[str] = Field(default_factory=list)
    history: list[GenerationSummary] = Field(default_factory=list)
    cancelled: bool = False


class _Individual:
    __slots__ = ("pattern", "fitness", "parent_ids")

    def __init__(self, pattern: Pattern, fitness: float, parent_ids: list[str]) -> None:
        self.pattern = pattern
        self.fitness = fitness
        self.parent_ids = parent_ids


class PatternEvolution:
    """Evolves a seed pattern with selection, crossover and mutation."""

    def __init__(
        self,
        store: VectorDatabase,
        staging: PatternStaging,
        event_bus: EventBus | None = None,
        rng: random.Random | None = None,
        weights: FitnessWeights | None = None,
    ) -> None:
        self._store = store
        self._staging = staging
        self._event_bus = event_bus
        self._rng = rng or random.Random()
        self._weights = weights or FitnessWeights()

    async def evolve_pattern(
        self,
        seed: Pattern,
        config: EvolutionConfig | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> EvolutionResult:
        """Run one evolution and return the fittest pattern seen."""
        config = config or EvolutionConfig()
        if seed.embedding is None:
            seed = seed.model_copy(update={"embedding": await self._store.ensure_embedding(seed)})

        run_id = new_id()
        seed_features = extract_pattern_features(seed.content.html)
        features: dict[str, PatternFeatures] = {seed.id: seed_features}
        # clone id -> stored ancestor, for parent_id on offspring
        lineage: dict[str, str] = {}

        def evaluate(pattern: Pattern, parent_ids: list[str]) -> _Individual:
            if pattern.id not in features:
                features[pattern.id] = extract_pattern_features(pattern.content.html)
            fitness = pattern_fitness(
                pattern, features[pattern.id], seed, seed_features, self._weights
            )
            return _Individual(pattern, fitness, parent_ids)

        population = [
            evaluate(p, [lineage[p.id]] if p.id in lineage else [])
            for p in await self._seed_population(seed, config, lineage)
        ]
        population.sort(key=lambda ind: ind.fitness, reverse=True)
        best, best_generation = population[0], 0
        history = [self._summarize(0, population)]

        logger.info(
            "evolution_started",
            run_id=run_id,
            seed_id=seed.id,
            population=len(population),
            best_fitness=best.fitness,
        )
        await self._emit("evolution.started", {
            "run_id": run_id,
            "seed_id": seed.id,
            "population_size": len(population),
        })

        cancelled = False
        generation = 0
        while best.fitness < config.fitness_threshold and generation < config.generation_limit:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break
            generation += 1

            next_population = population[: config.elitism_count]
            admitted = rejections = 0
            while len(next_population) < config.population_size:
                parents = self._select_parents(population, config)
                while True:
                    content, changed = self._vary(parents, config)
                    if not changed:
                        next_population.append(parents[0])
                        break
                    primary = parents[0].pattern
                    child = Pattern(
                        type=primary.type,
                        name=f"{seed.name}_gen{generation}_{len(next_population)}",
                        content=content,
                        effectiveness_score=sum(
                            p.pattern.effectiveness_score for p in parents
                        ) / len(parents),
                    )
                    try:
                        stored = await self._staging.admit(
                            child, parent_id=lineage.get(primary.id, primary.id)
                        )
                    except ValidationError as e:
                        rejections += 1
                        logger.warning(
                            "evolution_offspring_rejected",
                            run_id=run_id,
                            generation=generation,
                            fields=e.fields,
                        )
                        if rejections > config.max_admission_retries:
                            raise EvolutionError(
                                f"Generation {generation} exceeded "
                                f"{config.max_admission_retries} admission retries"
                            ) from e
                        continue
                    next_population.append(evaluate(
                        stored, [lineage.get(p.pattern.id, p.pattern.id) for p in parents]
                    ))
                    admitted += 1
                    break
                await asyncio.sleep(0)

            population = sorted(next_population, key=lambda ind: ind.fitness, reverse=True)
            if population[0].fitness > best.fitness:
                best, best_generation = population[0], generation

            summary = self._summarize(generation, population, admitted, rejections)
            history.append(summary)
            logger.info(
                "evolution_generation_completed",
                run_id=run_id,
                generation=generation,
                best_fitness=summary.best_fitness,
                admitted=admitted,
            )
            await self._emit("evolution.generation_completed", {
                "run_id": run_id,
                **summary.model_dump(),
            })

        result = EvolutionResult(
            pattern=best.pattern,
            generation=best_generation,
            fitness=best.fitness,
            parent_ids=best.parent_ids,
            history=history,
            cancelled=cancelled,
        )
        logger.info(
            "evolution_completed",
            run_id=run_id,
            best_id=best.pattern.id,
            fitness=best.fitness,
            generations=generation,
            cancelled=cancelled,
        )
        await self._emit("evolution.completed", {
            "run_id": run_id,
            "pattern_id": best.pattern.id,
            "fitness": best.fitness,
            "generation": best_generation,
            "cancelled": cancelled,
        })
        return result

    async def _seed_population(
        self,
        seed: Pattern,
        config: EvolutionConfig,
        lineage: dict[str, str],
    ) -> list[Pattern]:
        population = [seed]
        if config.population_size > 1:
            neighbours = await self._store.find_similar_patterns(
                seed.embedding,
                type=seed.type,
                threshold=config.similarity_threshold,
                limit=config.population_size - 1,
                exclude_ids={seed.id},
            )
            population.extend(n.pattern for n in neighbours)

        while len(population) < config.population_size:
            clone = seed.model_copy(update={
                "id": new_id(),
                "name": f"{seed.name}_variant_{len(population)}",
                "parent_id": seed.id,
                "usage_count": 0,
            })
            lineage[clone.id] = seed.id
            population.append(clone)
        return population

    def _tournament(self, population: list[_Individual], size: int) -> _Individual:
        contenders = self._rng.sample(population, min(size, len(population)))
        return max(contenders, key=lambda ind: ind.fitness)

    def _select_parents(
        self, population: list[_Individual], config: EvolutionConfig
    ) -> list[_Individual]:
        first = self._tournament(population, config.tournament_size)
        if self._rng.random() < config.crossover_rate:
            return [first, self._tournament(population, config.tournament_size)]
        return [first]

    def _vary(
        self, parents: list[_Individual], config: EvolutionConfig
    ) -> tuple[PatternContent, bool]:
        primary = parents[0].pattern
        content = primary.content
        if len(parents) > 1:
            content = crossover(content, parents[1].pattern.content, self._rng)
        if self._rng.random() < config.mutation_rate:
            content, _ = apply_mutation(content, primary.type, self._rng)
        return content, content != primary.content

    @staticmethod
    def _summarize(
        generation: int,
        population: list[_Individual],
        admitted: int = 0,
        rejections: int = 0,
    ) -> GenerationSummary:
        return GenerationSummary(
            generation=generation,
            best_fitness=population[0].fitness,
            mean_fitness=sum(ind.fitness for ind in population) / len(population),
            population_size=len(population),
            offspring_admitted=admitted,
            rejections=rejections,
        )

    async def _emit(self, topic: str, data: dict) -> None:
        if self._event_bus:
            await self._event_bus.emit(topic, data, source="pattern_evolution")
