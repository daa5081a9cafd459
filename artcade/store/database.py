"""Pattern Store — patterns, their embeddings, and everything learned about them.

SQLite-backed (WAL mode, so similarity searches read committed data
while feedback writes are in flight). Embeddings are computed through
the provider only on a cache miss and persisted as JSON arrays (see
``artcade.store.vectors``). Similarity search is a cosine scan over
the stored vectors.

Writes to one pattern's score and usage count are serialized per
pattern id and applied in a single transaction together with the
matching audit row.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable

import aiosqlite

from artcade.embeddings.cache import EmbeddingCache
from artcade.embeddings.provider import BaseEmbeddingProvider
from artcade.events.bus import EventBus
from artcade.exceptions import PatternNotFoundError, StorageError, ValidationError
from artcade.feedback import FeedbackRecorder, ScorePolicy, overwrite_score
from artcade.migrations.runner import apply_migrations
from artcade.store.connection import connect
from artcade.store.features import extract_pattern_features
from artcade.store.vectors import (
    content_hash,
    cosine_similarity,
    decode_embedding,
    encode_embedding,
)
from artcade.types import (
    EffectivenessAuditEntry,
    Pattern,
    PatternContent,
    PatternFeatures,
    PatternType,
    PromptEmbeddingRecord,
    QualityAssessment,
    SimilarPattern,
    UsageContext,
    UsageStats,
    UsageTrackingReport,
)

logger = logging.getLogger(__name__)


class _PatternLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class VectorDatabase:
    """Embedding-indexed pattern store."""

    def __init__(
        self,
        db_path: str,
        provider: BaseEmbeddingProvider,
        dimension: int | None = None,
        cache: EmbeddingCache | None = None,
        event_bus: EventBus | None = None,
        score_policy: ScorePolicy = overwrite_score,
        busy_timeout: float = 30.0,
    ) -> None:
        self._db_path = db_path
        self._provider = provider
        self.dimension = dimension or provider.dimension
        self.cache = cache or EmbeddingCache(db_path, busy_timeout)
        self._event_bus = event_bus
        self._busy_timeout = busy_timeout
        self._locks: dict[str, _PatternLock] = {}
        self.feedback = FeedbackRecorder(self, score_policy)

    async def initialize(self) -> None:
        """Create tables if needed and apply pending migrations."""
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS patterns (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    content TEXT NOT NULL,
                    embedding TEXT,
                    effectiveness_score REAL DEFAULT 0,
                    usage_count INTEGER DEFAULT 0,
                    parent_id TEXT,
                    created_at TEXT NOT NULL,
                    last_used TEXT,
                    retired INTEGER DEFAULT 0
                )
            """)
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_patterns_type ON patterns(type)"
            )
            await db.execute("""
                CREATE TABLE IF NOT EXISTS prompt_embeddings (
                    id TEXT PRIMARY KEY,
                    prompt_text TEXT NOT NULL,
                    embedding TEXT NOT NULL,
                    user_id TEXT DEFAULT '',
                    session_id TEXT DEFAULT '',
                    project_context TEXT DEFAULT '',
                    matched_pattern_ids TEXT DEFAULT '[]',
                    selected_pattern_id TEXT,
                    success_score REAL,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS effectiveness_audit (
                    id TEXT PRIMARY KEY,
                    pattern_id TEXT NOT NULL,
                    embedding_similarity REAL DEFAULT 0,
                    prompt_keywords TEXT DEFAULT '[]',
                    features_used TEXT DEFAULT '[]',
                    quality_scores TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
            """)
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_pattern "
                "ON effectiveness_audit(pattern_id, timestamp)"
            )
            await db.commit()
        await self.cache.initialize()
        await apply_migrations(self._db_path)

    # ── Patterns ─────────────────────────────────────────────────

    async def store_pattern(self, pattern: Pattern) -> Pattern:
        """Persist a pattern, embedding its content first if needed.

        Re-storing an existing id updates its name, content, embedding
        and retired flag only. Score, usage count and creation time
        belong to the existing row. Returns the pattern as persisted.
        """
        self._check_pattern(pattern)
        if pattern.embedding is None:
            pattern = pattern.model_copy(
                update={"embedding": await self.ensure_embedding(pattern)}
            )
        encoded = encode_embedding(pattern.embedding, self.dimension)

        async with self._pattern_lock(pattern.id):
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO patterns "
                    "(id, type, name, content, embedding, effectiveness_score, "
                    "usage_count, parent_id, created_at, last_used, retired) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET name = excluded.name, "
                    "content = excluded.content, embedding = excluded.embedding, "
                    "retired = excluded.retired",
                    (
                        pattern.id,
                        pattern.type.value,
                        pattern.name,
                        pattern.content.model_dump_json(),
                        encoded,
                        pattern.effectiveness_score,
                        pattern.usage_count,
                        pattern.parent_id,
                        pattern.created_at.isoformat(),
                        pattern.last_used.isoformat() if pattern.last_used else None,
                        int(pattern.retired),
                    ),
                )
                await db.commit()
                cursor = await db.execute("SELECT * FROM patterns WHERE id = ?", (pattern.id,))
                row = await cursor.fetchone()
        stored = self._row_to_pattern(row)

        logger.debug("Stored pattern %s (%s)", stored.id, stored.type.value)
        await self._emit("pattern.stored", {
            "pattern_id": stored.id,
            "type": stored.type.value,
            "parent_id": stored.parent_id,
        })
        return stored

    async def update_content(self, pattern_id: str, content: PatternContent) -> Pattern:
        """Replace a pattern's content and recompute its embedding.

        The embedding is computed first; only the content and embedding
        columns are written, under the pattern's lock.
        """
        pattern = await self.get_pattern(pattern_id)
        if pattern is None:
            raise PatternNotFoundError(f"Pattern {pattern_id} not found")
        candidate = pattern.model_copy(update={"content": content, "embedding": None})
        self._check_pattern(candidate)
        encoded = encode_embedding(await self.ensure_embedding(candidate), self.dimension)

        async with self._pattern_lock(pattern_id):
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE patterns SET content = ?, embedding = ? WHERE id = ?",
                    (content.model_dump_json(), encoded, pattern_id),
                )
                await db.commit()
                if cursor.rowcount == 0:
                    raise PatternNotFoundError(f"Pattern {pattern_id} not found")
                cursor = await db.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,))
                row = await cursor.fetchone()
        return self._row_to_pattern(row)

    async def ensure_embedding(self, pattern: Pattern) -> list[float]:
        """Embedding for the pattern's content, from the cache when possible."""
        text = pattern.embedding_text()
        key = content_hash(text)
        cached = await self.cache.get(key)
        if cached is not None and len(cached) == self.dimension:
            return cached

        embedding = await self._provider.embed(text)
        encode_embedding(embedding, self.dimension)  # validates before caching
        await self.cache.set(key, embedding)
        return embedding

    async def embed_text(self, text: str) -> list[float]:
        """Embed free text (e.g. a prompt), cached like pattern content."""
        key = content_hash(text)
        cached = await self.cache.get(key)
        if cached is not None and len(cached) == self.dimension:
            return cached
        embedding = await self._provider.embed(text)
        encode_embedding(embedding, self.dimension)
        await self.cache.set(key, embedding)
        return embedding

    async def get_pattern(self, pattern_id: str) -> Pattern | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,))
            row = await cursor.fetchone()
        return self._row_to_pattern(row) if row else None

    async def list_patterns(
        self,
        type: PatternType | str | None = None,
        limit: int = 50,
        include_retired: bool = False,
    ) -> list[Pattern]:
        conditions = []
        params: list = []
        if type is not None:
            conditions.append("type = ?")
            params.append(PatternType(type).value)
        if not include_retired:
            conditions.append("retired = 0")
        where = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT * FROM patterns WHERE {where} ORDER BY created_at DESC LIMIT ?",
                params,
            )
            rows = await cursor.fetchall()
        return [self._row_to_pattern(r) for r in rows]

    async def count_patterns(self) -> int:
        async with self._connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM patterns")
            row = await cursor.fetchone()
        return row[0]

    async def retire_pattern(self, pattern_id: str) -> bool:
        """Soft-delete: the row stays, but searches skip it."""
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE patterns SET retired = 1 WHERE id = ?", (pattern_id,)
            )
            await db.commit()
            return cursor.rowcount > 0

    # ── Similarity search ────────────────────────────────────────

    async def find_similar_patterns(
        self,
        embedding: list[float],
        type: PatternType | str | None = None,
        threshold: float = 0.85,
        limit: int = 5,
        exclude_ids: set[str] | None = None,
        prefilter: Callable[[PatternFeatures], bool] | None = None,
    ) -> list[SimilarPattern]:
        """Patterns with cosine similarity >= threshold, best first.

        Ties are broken by higher effectiveness, then by newer creation.
        ``prefilter`` runs on the structural features of each candidate's
        HTML before any vector math. Nothing qualifying is an empty list.
        """
        if len(embedding) != self.dimension:
            raise ValidationError(
                f"Query embedding must have {self.dimension} dimensions, got {len(embedding)}",
                ["embedding"],
            )
        if limit <= 0:
            return []

        conditions = ["embedding IS NOT NULL", "retired = 0"]
        params: list = []
        if type is not None:
            conditions.append("type = ?")
            params.append(PatternType(type).value)
        sql = f"SELECT * FROM patterns WHERE {' AND '.join(conditions)}"

        exclude = exclude_ids or set()
        scored: list[SimilarPattern] = []
        async with self._connect() as db:
            async with db.execute(sql, params) as cursor:
                async for row in cursor:
                    if row["id"] in exclude:
                        continue
                    if prefilter is not None:
                        html = json.loads(row["content"]).get("html", "")
                        if not prefilter(extract_pattern_features(html)):
                            continue
                    stored = decode_embedding(row["embedding"])
                    similarity = cosine_similarity(embedding, stored)
                    if similarity >= threshold:
                        scored.append(SimilarPattern(
                            pattern=self._row_to_pattern(row, stored),
                            similarity=similarity,
                        ))

        scored.sort(
            key=lambda s: (s.similarity, s.pattern.effectiveness_score, s.pattern.created_at),
            reverse=True,
        )
        return scored[:limit]

    def extract_pattern_features(self, html: str) -> PatternFeatures:
        return extract_pattern_features(html)

    # ── Effectiveness & usage ────────────────────────────────────

    async def track_claude_usage(self, context: UsageContext) -> UsageTrackingReport:
        """Record that a consuming agent used the matched patterns."""
        report = await self.feedback.track_usage(context)
        await self._emit("usage.tracked", {
            "updated": report.updated,
            "failed": list(report.failed),
        })
        return report

    track_usage = track_claude_usage

    async def apply_usage(
        self,
        entry: EffectivenessAuditEntry,
        score_for: Callable[[float], float],
    ) -> float:
        """Atomically rescore a pattern, bump its usage count and append the audit row.

        ``score_for`` maps the current score to the new one and runs
        inside the transaction. Returns the new score.
        """
        async with self._pattern_lock(entry.pattern_id):
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await db.execute(
                        "SELECT effectiveness_score FROM patterns WHERE id = ?",
                        (entry.pattern_id,),
                    )
                    row = await cursor.fetchone()
                    if row is None:
                        raise PatternNotFoundError(f"Pattern {entry.pattern_id} not found")
                    score = min(1.0, max(0.0, score_for(row[0])))

                    await db.execute(
                        "UPDATE patterns SET effectiveness_score = ?, "
                        "usage_count = usage_count + 1, last_used = ? WHERE id = ?",
                        (score, entry.timestamp.isoformat(), entry.pattern_id),
                    )
                    await db.execute(
                        "INSERT INTO effectiveness_audit "
                        "(id, pattern_id, embedding_similarity, prompt_keywords, "
                        "features_used, quality_scores, timestamp) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (
                            entry.id,
                            entry.pattern_id,
                            entry.embedding_similarity,
                            json.dumps(entry.prompt_keywords),
                            json.dumps(entry.features_used),
                            entry.quality_scores.model_dump_json(),
                            entry.timestamp.isoformat(),
                        ),
                    )
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
        return score

    async def update_effectiveness_score(self, pattern_id: str, score: float) -> None:
        if not 0.0 <= score <= 1.0:
            raise ValidationError("Effectiveness score must be in [0, 1]", ["effectiveness_score"])
        async with self._pattern_lock(pattern_id):
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE patterns SET effectiveness_score = ? WHERE id = ?",
                    (score, pattern_id),
                )
                await db.commit()
                updated = cursor.rowcount
        if updated == 0:
            raise PatternNotFoundError(f"Pattern {pattern_id} not found")

    async def increment_usage_count(self, pattern_id: str) -> None:
        async with self._pattern_lock(pattern_id):
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE patterns SET usage_count = usage_count + 1, last_used = ? "
                    "WHERE id = ?",
                    (datetime.utcnow().isoformat(), pattern_id),
                )
                await db.commit()
                updated = cursor.rowcount
        if updated == 0:
            raise PatternNotFoundError(f"Pattern {pattern_id} not found")

    async def get_pattern_usage_stats(self, pattern_id: str) -> UsageStats:
        """Usage totals derived from the audit log. No rows means zeros."""
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT COUNT(*), AVG(embedding_similarity), MAX(timestamp) "
                "FROM effectiveness_audit WHERE pattern_id = ?",
                (pattern_id,),
            )
            total, avg_similarity, last_used = await cursor.fetchone()
        return UsageStats(
            total_uses=total,
            successful_uses=total,
            average_similarity=avg_similarity or 0.0,
            last_used=datetime.fromisoformat(last_used) if last_used else None,
        )

    async def get_audit_entries(
        self, pattern_id: str, limit: int = 50
    ) -> list[EffectivenessAuditEntry]:
        """Audit rows for a pattern, most recent first."""
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM effectiveness_audit WHERE pattern_id = ? "
                "ORDER BY timestamp DESC LIMIT ?",
                (pattern_id, limit),
            )
            rows = await cursor.fetchall()
        return [
            EffectivenessAuditEntry(
                id=r["id"],
                pattern_id=r["pattern_id"],
                embedding_similarity=r["embedding_similarity"],
                prompt_keywords=json.loads(r["prompt_keywords"]),
                features_used=json.loads(r["features_used"]),
                quality_scores=QualityAssessment.model_validate_json(r["quality_scores"]),
                timestamp=datetime.fromisoformat(r["timestamp"]),
            )
            for r in rows
        ]

    # ── Prompt embeddings ────────────────────────────────────────

    async def store_prompt_embedding(self, record: PromptEmbeddingRecord) -> str:
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO prompt_embeddings "
                "(id, prompt_text, embedding, user_id, session_id, project_context, "
                "matched_pattern_ids, selected_pattern_id, success_score, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.prompt_text,
                    encode_embedding(record.embedding, self.dimension),
                    record.user_id,
                    record.session_id,
                    record.project_context,
                    json.dumps(record.matched_pattern_ids),
                    record.selected_pattern_id,
                    record.success_score,
                    record.created_at.isoformat(),
                ),
            )
            await db.commit()
        return record.id

    async def get_prompt_record(self, record_id: str) -> PromptEmbeddingRecord | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM prompt_embeddings WHERE id = ?", (record_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return PromptEmbeddingRecord(
            id=row["id"],
            prompt_text=row["prompt_text"],
            embedding=decode_embedding(row["embedding"]),
            user_id=row["user_id"],
            session_id=row["session_id"],
            project_context=row["project_context"],
            matched_pattern_ids=json.loads(row["matched_pattern_ids"]),
            selected_pattern_id=row["selected_pattern_id"],
            success_score=row["success_score"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def update_prompt_usage(
        self,
        record_id: str,
        selected_pattern_id: str | None,
        success_score: float | None = None,
    ) -> PromptEmbeddingRecord:
        """Record which match (if any) the caller used. Allowed once per record.

        The write is conditional on the record still being unset, so of
        two concurrent reports exactly one wins.
        """
        record = await self.get_prompt_record(record_id)
        if record is None:
            raise ValidationError(f"Prompt record {record_id} not found", ["record_id"])
        if record.selected_pattern_id is not None or record.success_score is not None:
            raise ValidationError(
                f"Prompt record {record_id} already has a selection", ["record_id"]
            )
        if selected_pattern_id is not None and selected_pattern_id not in record.matched_pattern_ids:
            raise ValidationError(
                f"Pattern {selected_pattern_id} was not among the matches",
                ["selected_pattern_id"],
            )

        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE prompt_embeddings SET selected_pattern_id = ?, success_score = ? "
                "WHERE id = ? AND selected_pattern_id IS NULL AND success_score IS NULL",
                (selected_pattern_id, success_score, record_id),
            )
            await db.commit()
            updated = cursor.rowcount
        if updated == 0:
            raise ValidationError(
                f"Prompt record {record_id} already has a selection", ["record_id"]
            )
        return record.model_copy(update={
            "selected_pattern_id": selected_pattern_id,
            "success_score": success_score,
        })

    # ── Housekeeping ─────────────────────────────────────────────

    async def health_check(self) -> bool:
        try:
            async with self._connect() as db:
                await db.execute("SELECT 1 FROM patterns LIMIT 1")
            return True
        except StorageError as e:
            logger.warning("Pattern store health check failed: %s", e)
            return False

    # ── Internal helpers ─────────────────────────────────────────

    def _connect(self):
        return connect(self._db_path, self._busy_timeout)

    @asynccontextmanager
    async def _pattern_lock(self, pattern_id: str) -> AsyncIterator[None]:
        """Serialize writes to one pattern; the entry is dropped once unused."""
        entry = self._locks.get(pattern_id)
        if entry is None:
            entry = self._locks[pattern_id] = _PatternLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[pattern_id]

    @staticmethod
    def _check_pattern(pattern: Pattern) -> None:
        if not isinstance(pattern.type, PatternType):
            raise ValidationError(f"Unknown pattern type: {pattern.type!r}", ["type"])
        if not pattern.content.html or not pattern.content.html.strip():
            raise ValidationError("Pattern content.html must not be empty", ["content.html"])

    @staticmethod
    def _row_to_pattern(row: aiosqlite.Row, embedding: list[float] | None = None) -> Pattern:
        return Pattern(
            id=row["id"],
            type=PatternType(row["type"]),
            name=row["name"],
            content=PatternContent.model_validate_json(row["content"]),
            embedding=embedding if embedding is not None else decode_embedding(row["embedding"]),
            effectiveness_score=row["effectiveness_score"],
            usage_count=row["usage_count"],
            parent_id=row["parent_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_used=datetime.fromisoformat(row["last_used"]) if row["last_used"] else None,
            retired=bool(row["retired"]),
        )

    async def _emit(self, topic: str, data: dict) -> None:
        if self._event_bus:
            await self._event_bus.emit(topic, data, source="pattern_store")
