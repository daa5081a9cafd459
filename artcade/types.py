"""Core types shared across all artcade subsystems."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, TypeAlias

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# ── ID Types ──────────────────────────────────────────────────────────────────

PatternId: TypeAlias = str
Embedding: TypeAlias = list[float]


def new_id() -> str:
    return uuid.uuid4().hex


# ── Pattern Types ────────────────────────────────────────────────────────────


class PatternType(str, Enum):
    ANIMATION = "animation"
    LAYOUT = "layout"
    INTERACTION = "interaction"
    STYLE = "style"
    GAME_MECHANIC = "game_mechanic"

    @classmethod
    def values(cls) -> list[str]:
        return [t.value for t in cls]


# ── Patterns ─────────────────────────────────────────────────────────────────


class PatternContent(BaseModel):
    """The snippet itself. CSS and JS may live inside ``html`` or alongside it."""

    html: str
    css: str = ""
    js: str = ""
    context: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class Pattern(BaseModel):
    """A stored, reusable HTML/CSS/JS snippet."""

    model_config = ConfigDict(populate_by_name=True)

    id: PatternId = Field(default_factory=new_id)
    type: PatternType
    name: str = Field(validation_alias=AliasChoices("name", "pattern_name"))
    content: PatternContent
    embedding: Embedding | None = None
    effectiveness_score: float = Field(default=0.0, ge=0.0, le=1.0)
    usage_count: int = Field(default=0, ge=0)
    parent_id: PatternId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_used: datetime | None = None
    retired: bool = False

    def embedding_text(self) -> str:
        """Text handed to the embedding provider.

        Derived from ``type`` and ``content`` only, so renaming a pattern
        (or cloning it) reuses the cached embedding.
        """
        parts = [
            f"Type: {self.type.value}",
            f"Description: {self.content.context}",
            f"HTML: {self.content.html}",
        ]
        if self.content.css:
            parts.append(f"CSS: {self.content.css}")
        if self.content.js:
            parts.append(f"JS: {self.content.js}")
        parts.append(f"Metadata: {json.dumps(self.content.metadata, sort_keys=True, default=str)}")
        return "\n".join(parts)


class SimilarPattern(BaseModel):
    """A search hit: the pattern plus its cosine similarity to the query."""

    pattern: Pattern
    similarity: float


# ── Retrieval audit ──────────────────────────────────────────────────────────


class PromptEmbeddingRecord(BaseModel):
    """One retrieval request, kept for audit and learning."""

    id: str = Field(default_factory=new_id)
    prompt_text: str
    embedding: Embedding
    user_id: str = ""
    session_id: str = ""
    project_context: str = ""
    matched_pattern_ids: list[PatternId] = Field(default_factory=list)
    selected_pattern_id: PatternId | None = None
    success_score: float | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ── Effectiveness feedback ───────────────────────────────────────────────────


class QualityAssessment(BaseModel):
    visual: float = Field(ge=0.0, le=1.0)
    interactive: float = Field(ge=0.0, le=1.0)
    functional: float = Field(ge=0.0, le=1.0)
    performance: float = Field(ge=0.0, le=1.0)


class MatchedPattern(BaseModel):
    pattern_id: PatternId
    similarity: float = 0.0
    features_used: list[str] = Field(default_factory=list)


class UsageContext(BaseModel):
    """A consuming agent used some patterns to answer a prompt."""

    prompt: str
    generated_html: str = ""
    matched_patterns: list[MatchedPattern] = Field(default_factory=list)
    quality_assessment: QualityAssessment


class EffectivenessAuditEntry(BaseModel):
    """Append-only record of one usage event for one matched pattern."""

    id: str = Field(default_factory=new_id)
    pattern_id: PatternId
    embedding_similarity: float = 0.0
    prompt_keywords: list[str] = Field(default_factory=list)
    features_used: list[str] = Field(default_factory=list)
    quality_scores: QualityAssessment
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class UsageStats(BaseModel):
    total_uses: int = 0
    successful_uses: int = 0
    average_similarity: float = 0.0
    last_used: datetime | None = None


class UsageTrackingReport(BaseModel):
    """Outcome of one ``track_usage`` call, per matched pattern."""

    updated: list[PatternId] = Field(default_factory=list)
    failed: dict[PatternId, str] = Field(default_factory=dict)


# ── Structural features ──────────────────────────────────────────────────────


class PatternFeatures(BaseModel):
    """Cheap, deterministic structural summary of a snippet's HTML."""

    element_count: int = 0
    style_count: int = 0
    script_count: int = 0
    inline_style_count: int = 0
    max_depth: int = 0
    event_listeners: list[str] = Field(default_factory=list)
    color_count: int = 0
    has_animations: bool = False
    has_user_input: bool = False
    has_game_logic: bool = False
    layout_type: str = "standard"  # "flex", "grid", "standard"
    complexity: float = 0.0
