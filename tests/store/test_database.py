"""Tests for the Pattern Store (VectorDatabase)."""

import asyncio
import json
from datetime import datetime, timedelta

import aiosqlite
import pytest

from artcade.exceptions import PatternNotFoundError, ValidationError
from artcade.types import (
    MatchedPattern,
    PatternContent,
    PatternType,
    PromptEmbeddingRecord,
    QualityAssessment,
    UsageContext,
)


# ── Storing ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_store_and_get(store, make_pattern):
    stored = await store.store_pattern(make_pattern())

    fetched = await store.get_pattern(stored.id)
    assert fetched is not None
    assert fetched.name == "bouncing-ball"
    assert fetched.type == PatternType.ANIMATION
    assert fetched.embedding == stored.embedding
    assert len(fetched.embedding) == store.dimension


@pytest.mark.asyncio
async def test_get_missing_returns_none(store):
    assert await store.get_pattern("nope") is None


@pytest.mark.asyncio
async def test_storing_same_content_twice_hits_cache(store, provider, make_pattern):
    """Idempotent storage: one provider call, one cache row, equal embeddings."""
    first = await store.store_pattern(make_pattern(name="a"))
    second = await store.store_pattern(make_pattern(name="b"))

    assert first.id != second.id
    assert first.embedding == second.embedding
    assert len(provider.calls) == 1
    assert await store.cache.count() == 1


@pytest.mark.asyncio
async def test_store_rejects_empty_html(store, make_pattern):
    with pytest.raises(ValidationError) as exc:
        await store.store_pattern(make_pattern(html="   "))
    assert "content.html" in exc.value.fields
    assert await store.count_patterns() == 0


@pytest.mark.asyncio
async def test_store_rejects_wrong_dimension(store, make_pattern):
    with pytest.raises(ValidationError):
        await store.store_pattern(make_pattern(embedding=[0.1, 0.2, 0.3]))


@pytest.mark.asyncio
async def test_restore_replaces_by_id(store, make_pattern):
    stored = await store.store_pattern(make_pattern())
    await store.store_pattern(stored.model_copy(update={"name": "renamed"}))

    assert await store.count_patterns() == 1
    assert (await store.get_pattern(stored.id)).name == "renamed"


@pytest.mark.asyncio
async def test_update_content_recomputes_embedding(store, provider, make_pattern):
    stored = await store.store_pattern(make_pattern())
    updated = await store.update_content(
        stored.id, PatternContent(html="<canvas id='board'></canvas><script>score = 0;</script>")
    )

    assert updated.id == stored.id
    assert updated.embedding != stored.embedding
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_update_content_missing_pattern(store):
    with pytest.raises(PatternNotFoundError):
        await store.update_content("missing", PatternContent(html="<p>x</p>"))


@pytest.mark.asyncio
async def test_list_patterns_filters_type(store, make_pattern):
    await store.store_pattern(make_pattern(name="anim"))
    await store.store_pattern(make_pattern(name="grid", type=PatternType.LAYOUT, html="<div class='grid'></div>"))

    layouts = await store.list_patterns(type=PatternType.LAYOUT)
    assert [p.name for p in layouts] == ["grid"]
    assert len(await store.list_patterns()) == 2


# ── Similarity search ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_find_similar_orders_by_similarity(store, make_pattern, vec):
    await store.store_pattern(make_pattern(name="far", embedding=vec(1.0, 1.0)))
    await store.store_pattern(make_pattern(name="near", embedding=vec(1.0, 0.1)))
    await store.store_pattern(make_pattern(name="exact", embedding=vec(1.0, 0.0)))

    hits = await store.find_similar_patterns(vec(1.0, 0.0), threshold=0.5, limit=5)

    assert [h.pattern.name for h in hits] == ["exact", "near", "far"]
    assert hits[0].similarity == pytest.approx(1.0)
    assert all(a.similarity >= b.similarity for a, b in zip(hits, hits[1:]))


@pytest.mark.asyncio
async def test_find_similar_threshold_monotonic(store, make_pattern, vec):
    """Raising the threshold can only shrink the result set."""
    for i, weight in enumerate([0.0, 0.2, 0.5, 1.0, 2.0]):
        await store.store_pattern(make_pattern(name=f"p{i}", embedding=vec(1.0, weight)))

    previous = None
    for threshold in [0.0, 0.5, 0.8, 0.9, 0.99, 1.0]:
        ids = {h.pattern.id for h in await store.find_similar_patterns(
            vec(1.0, 0.0), threshold=threshold, limit=100
        )}
        if previous is not None:
            assert ids <= previous
        previous = ids


@pytest.mark.asyncio
async def test_find_similar_tie_break(store, make_pattern, vec):
    now = datetime.utcnow()
    await store.store_pattern(make_pattern(
        name="old-good", embedding=vec(1.0), effectiveness_score=0.9, created_at=now - timedelta(days=1)
    ))
    await store.store_pattern(make_pattern(
        name="new-good", embedding=vec(1.0), effectiveness_score=0.9, created_at=now
    ))
    await store.store_pattern(make_pattern(
        name="weak", embedding=vec(1.0), effectiveness_score=0.1, created_at=now
    ))

    hits = await store.find_similar_patterns(vec(1.0), threshold=0.9, limit=3)
    assert [h.pattern.name for h in hits] == ["new-good", "old-good", "weak"]


@pytest.mark.asyncio
async def test_find_similar_limit_and_type(store, make_pattern, vec):
    for i in range(4):
        await store.store_pattern(make_pattern(name=f"a{i}", embedding=vec(1.0, 0.01 * i)))
    await store.store_pattern(make_pattern(
        name="layout", type=PatternType.LAYOUT, embedding=vec(1.0)
    ))

    assert len(await store.find_similar_patterns(vec(1.0), threshold=0.5, limit=2)) == 2
    assert await store.find_similar_patterns(vec(1.0), threshold=0.5, limit=0) == []

    layouts = await store.find_similar_patterns(vec(1.0), type="layout", threshold=0.5)
    assert [h.pattern.name for h in layouts] == ["layout"]


@pytest.mark.asyncio
async def test_find_similar_empty_is_not_error(store, vec):
    assert await store.find_similar_patterns(vec(1.0), threshold=0.1) == []


@pytest.mark.asyncio
async def test_find_similar_rejects_wrong_dimension(store):
    with pytest.raises(ValidationError):
        await store.find_similar_patterns([1.0, 0.0], threshold=0.5)


@pytest.mark.asyncio
async def test_retired_patterns_are_not_returned(store, make_pattern, vec):
    stored = await store.store_pattern(make_pattern(embedding=vec(1.0)))
    assert await store.retire_pattern(stored.id)

    assert await store.find_similar_patterns(vec(1.0), threshold=0.5) == []
    assert (await store.get_pattern(stored.id)).retired


@pytest.mark.asyncio
async def test_find_similar_prefilter(store, make_pattern, vec):
    await store.store_pattern(make_pattern(
        name="scripted", embedding=vec(1.0), html="<div></div><script>let x;</script>"
    ))
    await store.store_pattern(make_pattern(name="static", embedding=vec(1.0), html="<div></div>"))

    hits = await store.find_similar_patterns(
        vec(1.0), threshold=0.5, prefilter=lambda f: f.script_count > 0
    )
    assert [h.pattern.name for h in hits] == ["scripted"]


# ── Usage & feedback ────────────────────────────────────────────


def _usage(pattern_ids, scores=(0.8, 0.6, 0.9, 0.7), prompt="make a bouncing ball game"):
    visual, interactive, functional, performance = scores
    return UsageContext(
        prompt=prompt,
        generated_html="<div></div>",
        matched_patterns=[MatchedPattern(pattern_id=pid, similarity=0.9) for pid in pattern_ids],
        quality_assessment=QualityAssessment(
            visual=visual, interactive=interactive,
            functional=functional, performance=performance,
        ),
    )


@pytest.mark.asyncio
async def test_usage_stats_empty(store, make_pattern):
    stored = await store.store_pattern(make_pattern())
    stats = await store.get_pattern_usage_stats(stored.id)
    assert stats.total_uses == 0
    assert stats.average_similarity == 0.0
    assert stats.last_used is None


@pytest.mark.asyncio
async def test_track_usage_overwrites_score(store, make_pattern):
    stored = await store.store_pattern(make_pattern(effectiveness_score=0.2))

    report = await store.track_claude_usage(_usage([stored.id], (1.0, 1.0, 1.0, 1.0)))
    assert report.updated == [stored.id]
    assert (await store.get_pattern(stored.id)).effectiveness_score == pytest.approx(1.0)

    await store.track_claude_usage(_usage([stored.id], (0.8, 0.6, 0.9, 0.7)))
    after = await store.get_pattern(stored.id)
    assert after.effectiveness_score == pytest.approx(0.75)
    assert after.usage_count == 2
    assert after.last_used is not None


@pytest.mark.asyncio
async def test_track_usage_writes_audit_and_stats(store, make_pattern):
    stored = await store.store_pattern(make_pattern())
    await store.track_usage(_usage([stored.id]))

    entries = await store.get_audit_entries(stored.id)
    assert len(entries) == 1
    assert entries[0].prompt_keywords == ["make", "bouncing", "ball", "game"]
    assert entries[0].embedding_similarity == pytest.approx(0.9)

    stats = await store.get_pattern_usage_stats(stored.id)
    assert stats.total_uses == stats.successful_uses == 1
    assert stats.average_similarity == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_concurrent_usage_counts_exactly(store, make_pattern):
    """N concurrent reports -> usage_count == N and N audit rows."""
    stored = await store.store_pattern(make_pattern())
    n = 25

    reports = await asyncio.gather(*(store.track_usage(_usage([stored.id])) for _ in range(n)))

    assert all(r.updated == [stored.id] for r in reports)
    assert (await store.get_pattern(stored.id)).usage_count == n
    assert (await store.get_pattern_usage_stats(stored.id)).total_uses == n


@pytest.mark.asyncio
async def test_track_usage_isolates_missing_pattern(store, make_pattern):
    stored = await store.store_pattern(make_pattern())

    report = await store.track_usage(_usage(["ghost", stored.id]))

    assert report.updated == [stored.id]
    assert "ghost" in report.failed
    assert (await store.get_pattern(stored.id)).usage_count == 1
    assert await store.get_audit_entries("ghost") == []


@pytest.mark.asyncio
async def test_track_usage_emits_event(store, bus, make_pattern):
    stored = await store.store_pattern(make_pattern())
    await store.track_usage(_usage([stored.id]))

    events = bus.history("usage.*")
    assert events and events[0].data["updated"] == [stored.id]


@pytest.mark.asyncio
async def test_restore_keeps_score_and_usage(store, make_pattern):
    stored = await store.store_pattern(make_pattern())
    await store.track_usage(_usage([stored.id], scores=(1.0, 1.0, 1.0, 1.0)))

    again = await store.store_pattern(stored.model_copy(update={"name": "renamed"}))

    after = await store.get_pattern(stored.id)
    assert after.name == "renamed"
    assert after.usage_count == 1
    assert after.effectiveness_score == pytest.approx(1.0)
    assert again.usage_count == 1
    assert after.created_at == stored.created_at


@pytest.mark.asyncio
async def test_update_content_does_not_lose_concurrent_usage(db_path, bus, make_pattern):
    from artcade.store.database import VectorDatabase

    class _Slow:
        dimension = 64

        async def embed(self, text):
            await asyncio.sleep(0.2)
            return [float(len(text) % 7 + 1)] + [0.5] * 63

    db = VectorDatabase(db_path, _Slow(), event_bus=bus)
    await db.initialize()
    stored = await db.store_pattern(make_pattern(embedding=[1.0] * 64))

    await asyncio.gather(
        db.update_content(stored.id, PatternContent(html="<canvas></canvas>")),
        db.track_usage(_usage([stored.id])),
    )

    after = await db.get_pattern(stored.id)
    assert after.usage_count == 1
    assert after.content.html == "<canvas></canvas>"
    assert after.effectiveness_score == pytest.approx(0.75)


@pytest.mark.asyncio
async def test_pattern_locks_are_released(store, make_pattern):
    stored = await store.store_pattern(make_pattern())
    await asyncio.gather(*(store.track_usage(_usage([stored.id])) for _ in range(5)))
    await store.increment_usage_count(stored.id)

    assert store._locks == {}
    assert (await store.get_pattern(stored.id)).usage_count == 6


@pytest.mark.asyncio
async def test_unreachable_database_raises_storage_error(provider, make_pattern):
    from artcade.exceptions import StorageError
    from artcade.store.database import VectorDatabase

    db = VectorDatabase("/nonexistent_dir/artcade.db", provider)
    with pytest.raises(StorageError):
        await db.store_pattern(make_pattern())
    assert provider.calls == []


@pytest.mark.asyncio
async def test_update_effectiveness_and_increment(store, make_pattern):
    stored = await store.store_pattern(make_pattern())
    await store.update_effectiveness_score(stored.id, 0.4)
    await store.increment_usage_count(stored.id)

    after = await store.get_pattern(stored.id)
    assert after.effectiveness_score == pytest.approx(0.4)
    assert after.usage_count == 1

    with pytest.raises(ValidationError):
        await store.update_effectiveness_score(stored.id, 1.5)
    with pytest.raises(PatternNotFoundError):
        await store.increment_usage_count("missing")


# ── Prompt embeddings ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_prompt_usage_updates_once(store, vec):
    record = PromptEmbeddingRecord(
        prompt_text="space shooter", embedding=vec(1.0), matched_pattern_ids=["p1", "p2"]
    )
    await store.store_prompt_embedding(record)

    updated = await store.update_prompt_usage(record.id, "p2", 0.9)
    assert updated.selected_pattern_id == "p2"
    assert (await store.get_prompt_record(record.id)).success_score == pytest.approx(0.9)

    with pytest.raises(ValidationError):
        await store.update_prompt_usage(record.id, "p1", 0.5)


@pytest.mark.asyncio
async def test_concurrent_prompt_usage_has_one_winner(store, vec):
    record = PromptEmbeddingRecord(
        prompt_text="space shooter", embedding=vec(1.0), matched_pattern_ids=["p1"]
    )
    await store.store_prompt_embedding(record)

    results = await asyncio.gather(
        store.update_prompt_usage(record.id, "p1", 0.9),
        store.update_prompt_usage(record.id, None, 0.1),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, ValidationError)]
    assert len(winners) == 1 and len(losers) == 1
    persisted = await store.get_prompt_record(record.id)
    assert persisted.selected_pattern_id == winners[0].selected_pattern_id
    assert persisted.success_score == pytest.approx(winners[0].success_score)


@pytest.mark.asyncio
async def test_prompt_usage_rejects_unmatched_pattern(store, vec):
    record = PromptEmbeddingRecord(prompt_text="x", embedding=vec(1.0), matched_pattern_ids=["p1"])
    await store.store_prompt_embedding(record)

    with pytest.raises(ValidationError) as exc:
        await store.update_prompt_usage(record.id, "p9")
    assert exc.value.fields == ["selected_pattern_id"]


# ── Representation ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_only_json_arrays_are_persisted(store, db_path, make_pattern, vec):
    await store.store_pattern(make_pattern(name="given", embedding=vec(0.5, 0.5)))
    await store.store_pattern(make_pattern(name="computed"))
    await store.store_prompt_embedding(PromptEmbeddingRecord(prompt_text="x", embedding=vec(1.0)))

    async with aiosqlite.connect(db_path) as db:
        for table in ("patterns", "prompt_embeddings", "embedding_cache"):
            cursor = await db.execute(f"SELECT typeof(embedding), embedding FROM {table}")
            for kind, raw in await cursor.fetchall():
                assert kind == "text"
                assert raw.startswith("[")
                assert isinstance(json.loads(raw), list)


@pytest.mark.asyncio
async def test_full_dimension_round_trip(db_path, make_pattern):
    from artcade.store.database import VectorDatabase

    class _Fixed:
        dimension = 1536

        async def embed(self, text):
            return [((i % 97) - 48) / 97 for i in range(1536)]

    db = VectorDatabase(db_path, _Fixed())
    await db.initialize()
    stored = await db.store_pattern(make_pattern())
    fetched = await db.get_pattern(stored.id)

    assert len(fetched.embedding) == 1536
    assert fetched.embedding == stored.embedding


@pytest.mark.asyncio
async def test_health_check(store):
    assert await store.health_check()
