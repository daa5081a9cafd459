"""Effectiveness Feedback Recorder — turns usage observations into score writes.

When a consuming agent reports that it used some patterns to answer a
prompt, every matched pattern gets one audit entry and a fresh
effectiveness score. The score update and the audit append for one
pattern are a single atomic unit (see ``VectorDatabase.apply_usage``);
different patterns in the same report are independent, so one failure
never blocks the rest.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Callable

from artcade.exceptions import ArtcadeError
from artcade.types import (
    EffectivenessAuditEntry,
    QualityAssessment,
    UsageContext,
    UsageTrackingReport,
)

if TYPE_CHECKING:
    from artcade.store.database import VectorDatabase

logger = logging.getLogger(__name__)

ScorePolicy = Callable[[float, QualityAssessment], float]

STOP_WORDS = frozenset({
    "the", "and", "with", "for", "from", "that", "this", "have", "will",
    "are", "was", "you", "your", "into", "but", "not", "can", "all",
})
MIN_KEYWORD_LENGTH = 3
MAX_KEYWORDS = 10

_SPLIT_RE = re.compile(r"[\s,.!?;:()\[\]{}'\"]+")


def extract_keywords(prompt: str) -> list[str]:
    """Lower-cased unique tokens of a prompt, stop-words and short words removed."""
    keywords: list[str] = []
    for word in _SPLIT_RE.split(prompt.lower()):
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS:
            continue
        if word not in keywords:
            keywords.append(word)
    return keywords[:MAX_KEYWORDS]


def overwrite_score(previous: float, quality: QualityAssessment) -> float:
    """Mean of the four quality components. The previous score is discarded."""
    return (
        quality.visual + quality.interactive + quality.functional + quality.performance
    ) / 4


class FeedbackRecorder:
    """Applies a usage report to the Pattern Store.

    ``score_policy`` receives the pattern's previous score and the
    quality assessment; swap it to blend with history instead of
    overwriting.
    """

    def __init__(
        self,
        store: VectorDatabase,
        score_policy: ScorePolicy = overwrite_score,
    ) -> None:
        self._store = store
        self._score_policy = score_policy

    async def track_usage(self, context: UsageContext) -> UsageTrackingReport:
        report = UsageTrackingReport()
        keywords = extract_keywords(context.prompt)

        for match in context.matched_patterns:
            entry = EffectivenessAuditEntry(
                pattern_id=match.pattern_id,
                embedding_similarity=match.similarity,
                prompt_keywords=keywords,
                features_used=match.features_used,
                quality_scores=context.quality_assessment,
            )
            try:
                await self._store.apply_usage(
                    entry,
                    lambda previous: self._score_policy(previous, context.quality_assessment),
                )
                report.updated.append(match.pattern_id)
            except ArtcadeError as e:
                logger.warning("Failed to track usage for pattern %s: %s", match.pattern_id, e)
                report.failed[match.pattern_id] = str(e)

        return report
