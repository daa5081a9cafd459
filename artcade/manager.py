"""PatternEngine — unified access to the pattern library.

The single entry point for callers outside the package: the CLI, and
any service that wants to retrieve patterns for a prompt, report which
ones it used, or evolve a pattern. Wires the store, staging and the
evolution engine around one embedding provider, and feeds extracted or
reviewer-rated snippets into staging.
"""

from __future__ import annotations

import asyncio
import logging
import random

from pydantic import BaseModel, Field

from artcade.config import ArtcadeSettings, settings
from artcade.embeddings.provider import BaseEmbeddingProvider, HttpEmbeddingProvider
from artcade.events.bus import EventBus
from artcade.evolution.engine import EvolutionConfig, EvolutionResult, PatternEvolution
from artcade.exceptions import PatternNotFoundError
from artcade.learning import HtmlFeedback, LearningOutcome, PatternLearning
from artcade.staging import PatternStaging
from artcade.store.database import VectorDatabase
from artcade.types import (
    Pattern,
    PatternType,
    PromptEmbeddingRecord,
    SimilarPattern,
    UsageContext,
    UsageStats,
    UsageTrackingReport,
)

logger = logging.getLogger(__name__)

PROMPT_MATCH_THRESHOLD = 0.6


class PromptMatches(BaseModel):
    """Patterns retrieved for a prompt, plus the record to report back against."""

    record_id: str
    matches: list[SimilarPattern] = Field(default_factory=list)


class PatternEngine:
    """Store, staging and evolution behind one interface."""

    def __init__(
        self,
        db_path: str,
        provider: BaseEmbeddingProvider,
        event_bus: EventBus | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._provider = provider
        self.event_bus = event_bus or EventBus()
        self.store = VectorDatabase(db_path, provider, event_bus=self.event_bus)
        self.staging = PatternStaging(self.store)
        self.learning = PatternLearning(self.staging)
        self.evolution = PatternEvolution(
            self.store, self.staging, event_bus=self.event_bus, rng=rng
        )

    @classmethod
    def from_settings(cls, config: ArtcadeSettings | None = None) -> PatternEngine:
        cfg = config or settings
        cfg.db_path.parent.mkdir(parents=True, exist_ok=True)
        provider = HttpEmbeddingProvider(
            base_url=cfg.embedding_url,
            api_key=cfg.embedding_api_key,
            model=cfg.embedding_model,
            dimension=cfg.embedding_dimension,
            timeout_seconds=cfg.embedding_timeout_seconds,
            max_retries=cfg.embedding_max_retries,
            retry_base_delay=cfg.embedding_retry_base_delay,
            max_concurrency=cfg.embedding_max_concurrency,
        )
        return cls(str(cfg.db_path), provider)

    async def initialize(self) -> None:
        await self.store.initialize()
        if isinstance(self._provider, HttpEmbeddingProvider):
            await self._provider.connect()

    async def close(self) -> None:
        if isinstance(self._provider, HttpEmbeddingProvider):
            await self._provider.close()

    async def __aenter__(self) -> PatternEngine:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Library ──────────────────────────────────────────────────

    async def store_pattern(self, candidate: Pattern | dict) -> Pattern:
        """Validate and store a pattern."""
        return await self.staging.admit(candidate)

    async def find_similar_patterns(
        self,
        embedding: list[float],
        type: PatternType | str | None = None,
        threshold: float = 0.85,
        limit: int = 5,
    ) -> list[SimilarPattern]:
        return await self.store.find_similar_patterns(
            embedding, type=type, threshold=threshold, limit=limit
        )

    async def find_patterns_for_prompt(
        self,
        prompt: str,
        type: PatternType | str | None = None,
        threshold: float = PROMPT_MATCH_THRESHOLD,
        limit: int = 5,
        user_id: str = "",
        session_id: str = "",
        project_context: str = "",
    ) -> PromptMatches:
        """Embed a prompt, search the library, and record the request."""
        embedding = await self.store.embed_text(prompt)
        matches = await self.store.find_similar_patterns(
            embedding, type=type, threshold=threshold, limit=limit
        )
        record = PromptEmbeddingRecord(
            prompt_text=prompt,
            embedding=embedding,
            user_id=user_id,
            session_id=session_id,
            project_context=project_context,
            matched_pattern_ids=[m.pattern.id for m in matches],
        )
        await self.store.store_prompt_embedding(record)
        logger.info("Prompt matched %d patterns (record %s)", len(matches), record.id)
        return PromptMatches(record_id=record.id, matches=matches)

    async def record_selection(
        self,
        record_id: str,
        pattern_id: str | None,
        success_score: float | None = None,
    ) -> PromptEmbeddingRecord:
        return await self.store.update_prompt_usage(record_id, pattern_id, success_score)

    # ── Evolution & feedback ─────────────────────────────────────

    async def evolve_pattern(
        self,
        seed: Pattern | str,
        config: EvolutionConfig | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> EvolutionResult:
        """Evolve a pattern, given as a ``Pattern`` or a stored pattern id."""
        if isinstance(seed, str):
            found = await self.store.get_pattern(seed)
            if found is None:
                raise PatternNotFoundError(f"Pattern {seed} not found")
            seed = found
        return await self.evolution.evolve_pattern(seed, config, cancel_event)

    async def track_usage(self, context: UsageContext) -> UsageTrackingReport:
        return await self.store.track_usage(context)

    async def get_pattern_usage_stats(self, pattern_id: str) -> UsageStats:
        return await self.store.get_pattern_usage_stats(pattern_id)

    # ── Curation ─────────────────────────────────────────────────

    def extract_patterns(
        self, html: str, types: list[PatternType | str] | None = None
    ) -> list[str]:
        """Stage every candidate found in a full HTML document. Returns staging ids."""
        return self.staging.stage_document(html, types)

    async def learn_from_feedback(self, feedback: HtmlFeedback) -> LearningOutcome:
        return await self.learning.learn_from_feedback(feedback)
