"""Staging Validator — the gate every pattern passes before the store.

Candidates arrive from the evolution engine or from human curation as
either ``Pattern`` objects or raw dicts. ``validate_pattern`` checks the
structural contract (recognised type, non-empty name, content with
non-empty HTML) and either returns a normalised ``Pattern`` or raises
``ValidationError`` naming every offending field. Nothing is stored on
failure.

Candidates can also be held for review: ``stage_pattern`` parks a
validated candidate in memory, ``approve_pattern`` forwards it into the
store, ``reject_pattern`` drops it. ``stage_document`` stages every
candidate extracted from a full HTML page. Staged state is process-local.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

import pydantic
from pydantic import BaseModel, Field

from artcade.exceptions import ValidationError
from artcade.extraction import extract_patterns
from artcade.types import Pattern, PatternType, new_id

if TYPE_CHECKING:
    from artcade.store.database import VectorDatabase

logger = logging.getLogger(__name__)


class StagingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StagingHistoryEntry(BaseModel):
    action: str  # "created", "approved", "rejected"
    reason: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class StagedPattern(BaseModel):
    id: str = Field(default_factory=new_id)
    pattern: Pattern
    source: str = "manual"
    status: StagingStatus = StagingStatus.PENDING
    history: list[StagingHistoryEntry] = Field(default_factory=list)


class PatternStaging:
    """Validates candidates and forwards the valid ones into the Pattern Store."""

    def __init__(self, store: VectorDatabase) -> None:
        self._store = store
        self._staged: dict[str, StagedPattern] = {}

    # ── Validation ───────────────────────────────────────────────

    def validate_pattern(self, candidate: Pattern | dict[str, Any]) -> Pattern:
        """Return the candidate as a ``Pattern`` or raise ``ValidationError``."""
        if isinstance(candidate, Pattern):
            data = candidate.model_dump()
        elif isinstance(candidate, dict):
            data = dict(candidate)
        else:
            raise ValidationError(
                f"Candidate must be a Pattern or a dict, got {type(candidate).__name__}",
                ["pattern"],
            )

        fields: list[str] = []

        ptype = data.get("type")
        if isinstance(ptype, PatternType):
            ptype = ptype.value
        if ptype not in PatternType.values():
            fields.append("type")

        name = data.get("pattern_name", data.get("name"))
        if not isinstance(name, str) or not name.strip():
            fields.append("pattern_name")

        content = data.get("content")
        if isinstance(content, BaseModel):
            content = content.model_dump()
        if not isinstance(content, dict):
            fields.append("content")
        else:
            html = content.get("html")
            if not isinstance(html, str) or not html.strip():
                fields.append("content.html")

        if fields:
            raise ValidationError(f"Invalid pattern: {', '.join(fields)}", fields)

        try:
            return Pattern.model_validate(data)
        except pydantic.ValidationError as e:
            bad = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            raise ValidationError(f"Invalid pattern: {', '.join(bad)}", bad) from e

    async def admit(
        self,
        candidate: Pattern | dict[str, Any],
        parent_id: str | None = None,
    ) -> Pattern:
        """Validate then store. Returns the stored pattern."""
        pattern = self.validate_pattern(candidate)
        if parent_id is not None:
            pattern = pattern.model_copy(update={"parent_id": parent_id})
        return await self._store.store_pattern(pattern)

    # ── Review queue ─────────────────────────────────────────────

    def stage_pattern(self, candidate: Pattern | dict[str, Any], source: str = "manual") -> str:
        """Validate and hold a candidate for review. Returns the staging id."""
        pattern = self.validate_pattern(candidate)
        staged = StagedPattern(
            pattern=pattern,
            source=source,
            history=[StagingHistoryEntry(action="created", reason=f"Staged from {source}")],
        )
        self._staged[staged.id] = staged
        logger.info("Staged pattern %s as %s (source=%s)", pattern.name, staged.id, source)
        return staged.id

    def stage_document(
        self,
        html: str,
        types: Iterable[PatternType | str] | None = None,
        source: str = "extractor",
    ) -> list[str]:
        """Extract candidates from a full HTML document and stage each one."""
        candidates = extract_patterns(html, types)
        staged = [self.stage_pattern(candidate, source) for candidate in candidates]
        logger.info("Extracted %d candidate patterns from document", len(staged))
        return staged

    async def approve_pattern(self, staging_id: str, reason: str = "") -> Pattern:
        staged = self._require_pending(staging_id)
        stored = await self._store.store_pattern(staged.pattern)
        staged.status = StagingStatus.APPROVED
        staged.history.append(StagingHistoryEntry(action="approved", reason=reason))
        logger.info("Approved staged pattern %s -> %s", staging_id, stored.id)
        return stored

    def reject_pattern(self, staging_id: str, reason: str = "") -> None:
        staged = self._require_pending(staging_id)
        staged.status = StagingStatus.REJECTED
        staged.history.append(StagingHistoryEntry(action="rejected", reason=reason))
        logger.info("Rejected staged pattern %s: %s", staging_id, reason)

    def list_staged(self, status: StagingStatus | None = StagingStatus.PENDING) -> list[StagedPattern]:
        return [
            s for s in self._staged.values()
            if status is None or s.status == status
        ]

    def get_staged(self, staging_id: str) -> StagedPattern | None:
        return self._staged.get(staging_id)

    def get_history(self, staging_id: str) -> list[StagingHistoryEntry]:
        staged = self._staged.get(staging_id)
        return list(staged.history) if staged else []

    def clear(self) -> None:
        self._staged.clear()

    def _require_pending(self, staging_id: str) -> StagedPattern:
        staged = self._staged.get(staging_id)
        if staged is None:
            raise ValidationError(f"No staged pattern {staging_id}", ["staging_id"])
        if staged.status != StagingStatus.PENDING:
            raise ValidationError(
                f"Staged pattern {staging_id} is already {staged.status.value}",
                ["staging_id"],
            )
        return staged
