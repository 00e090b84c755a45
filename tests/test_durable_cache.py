# tests/test_durable_cache.py
import pytest
from caching.content_types import CONTENT_TYPE_POLICIES, ContentTypePolicy
from caching.durable_cache import (
    CHAPTER_TYPE,
    FOUNDATION_TYPE,
    DurableCache,
    assess_plot_complexity,
    extract_themes,
)
from caching.keys import generate_foundation_fingerprint
from caching.store import DurableStore
from models.cache_models import MatchKind

TAGS = [f"tag{i}" for i in range(10)]

FOUNDATION = {
    "title": "Salt and Ash",
    "themes": ["love", "betrayal"],
    "main_characters": [{"name": "Ada"}, {"name": "Bo"}],
    "setting": {"time": "medieval", "place": "Vell"},
    "plot_structure": {"inciting_incident": "fire", "climax": "siege"},
}


def test_extract_themes_matches_word_forms():
    assert extract_themes("Two sisters, a war, and many betrayals") == ["betrayal", "war"]
    assert extract_themes("") == []


def test_plot_complexity_buckets():
    assert assess_plot_complexity(None) == "simple"
    assert assess_plot_complexity({str(i): i for i in range(5)}) == "moderate"
    assert assess_plot_complexity({str(i): i for i in range(7)}) == "complex"


@pytest.mark.asyncio
async def test_exact_hit_counts_and_saves(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        record = await cache.put("setting", "u1", {"place": "Vell"}, {"name": "harbor"})

        found = await cache.lookup("setting", "u1", {"name": "harbor"})
        assert found.kind is MatchKind.EXACT
        assert found.content == {"place": "Vell"}
        assert found.token_savings == CONTENT_TYPE_POLICIES["setting"].token_cost
        assert (await store.get(record.id)).hit_count == 1


@pytest.mark.asyncio
async def test_similarity_threshold_depends_on_content_type(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        for content_type in ("setting", "improvement_general"):
            await cache.put(content_type, "u1", {"text": "stored"}, {"name": "a", "tags": TAGS})

        # 7 shared tags out of 10 gives a similarity of 0.7.
        setting = await cache.lookup("setting", "u1", {"name": "b"}, features=TAGS[:7])
        assert setting.kind is MatchKind.SIMILAR
        assert setting.similarity == pytest.approx(0.7)
        assert setting.token_savings == pytest.approx(1.5 * 0.8)
        assert setting.content["_cache_adapted"] is True
        assert setting.content["_original_cache_id"] == setting.record.id

        improvement = await cache.lookup(
            "improvement_general", "u1", {"name": "b"}, features=TAGS[:7]
        )
        assert improvement.kind is MatchKind.MISS


@pytest.mark.asyncio
async def test_similar_hit_does_not_modify_stored_record(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        record = await cache.put("themes", "u1", {"text": "orig"}, {"tags": ["a", "b"]})
        found = await cache.lookup(
            "themes", "u1", {"other": 1}, features=["a", "b"], overrides={"text": "new"}
        )
        assert found.content["text"] == "new"
        assert (await store.get(record.id)).content == {"text": "orig"}


@pytest.mark.asyncio
async def test_corrupt_record_reads_as_miss(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        record = await cache.put("general", "u1", {"n": 1}, {"k": "v"})
        await store.conn.execute(
            "UPDATE cache_records SET metadata = ? WHERE id = ?", ("[1, 2]", record.id)
        )
        await store.conn.commit()

        found = await cache.lookup("general", "u1", {"k": "v"})
        assert found.kind is MatchKind.MISS
        assert await store.get(record.id) is None


@pytest.mark.asyncio
async def test_full_partition_evicts_least_valuable(tmp_path, monkeypatch):
    monkeypatch.setitem(CONTENT_TYPE_POLICIES, "tiny", ContentTypePolicy(1, 1, 0.5, 2))
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        kept = await cache.put("tiny", "u1", {"n": 1}, {"k": 1})
        dropped = await cache.put("tiny", "u1", {"n": 2}, {"k": 2})
        await store.increment_hit(kept.id)
        newest = await cache.put("tiny", "u1", {"n": 3}, {"k": 3})

        assert await store.count("tiny", "u1") == 2
        assert await store.get(dropped.id) is None
        assert await store.get(kept.id) is not None
        assert await store.get(newest.id) is not None


@pytest.mark.asyncio
async def test_dependency_invalidation_cascades(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        await cache.put("story_foundation", "u1", {"n": 0}, {"k": 0}, fingerprint="root")
        await cache.put(
            "chapter_outline", "u1", {"n": 1}, {"k": 1},
            dependency_fingerprint="root", fingerprint="outline",
        )
        await cache.put("chapter_content", "u1", {"n": 2}, {"k": 2}, dependency_fingerprint="outline")
        await cache.put("chapter_content", "u1", {"n": 3}, {"k": 3}, dependency_fingerprint="other")

        assert await cache.invalidate_foundation("root") == 3
        assert (await store.stats())["total_entries"] == 1


@pytest.mark.asyncio
async def test_foundation_lookup_strategies(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        premise = "A tale of love and betrayal"
        await cache.cache_foundation("fantasy", premise, FOUNDATION, "u1")

        exact = await cache.get_foundation("fantasy", premise, "u1")
        assert exact.kind is MatchKind.EXACT
        assert exact.token_savings == 8

        themed = await cache.get_foundation(
            "fantasy", "Another story of love and betrayal", "u1", title="Embers"
        )
        assert themed.strategy == "theme-similar"
        assert themed.token_savings == 6
        assert themed.content["premise"] == "Another story of love and betrayal"
        assert themed.content["title"] == "Embers"

        unthemed = await cache.get_foundation("fantasy", "A quiet voyage", "u1")
        assert unthemed.kind is MatchKind.MISS

        other_genre = await cache.get_foundation("scifi", premise, "u1")
        assert other_genre.kind is MatchKind.MISS


@pytest.mark.asyncio
async def test_proven_foundation_is_reused_for_genre(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        record = await cache.put(
            FOUNDATION_TYPE, "u1", FOUNDATION, {"genre": "fantasy", "premise_hash": "x"},
            reuse_score=8.0,
        )
        await store.increment_hit(record.id)
        await store.increment_hit(record.id)

        found = await cache.get_foundation("fantasy", "A quiet voyage", "u1")
        assert found.strategy == "genre-similar"
        assert found.token_savings == 4
        assert found.content["title"] == "Untitled Story"
        assert found.content["premise"] == "A quiet voyage"


@pytest.mark.asyncio
async def test_chapter_lookup_strategies(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        await cache.cache_chapter(
            1, {"title": "Chapter 1: Dawn", "text": "..."}, "story-1",
            "fp", "prev-a", "fantasy", 2000, "u1",
        )
        exact = await cache.get_chapter(1, "fp", "prev-a", "fantasy", 2000, "u1")
        assert exact.kind is MatchKind.EXACT
        assert exact.token_savings == 5

        # Default chapter reuse score is too low for approximate reuse.
        assert (await cache.get_chapter(1, "fp", "prev-b", "fantasy", 2000, "u1")).kind is MatchKind.MISS

        await cache.put(
            CHAPTER_TYPE, "u1", {"title": "Chapter 1: Dusk", "id": "c9"},
            {
                "genre": "fantasy",
                "chapter_number": 2,
                "foundation_fingerprint": "fp",
                "previous_chapters_hash": "prev-a",
                "word_count": 2000,
            },
            reuse_score=6.5,
        )
        adapted = await cache.get_chapter(2, "fp", "prev-z", "fantasy", 2200, "u1", "Tidewater")
        assert adapted.strategy == "foundation-adapted"
        assert adapted.token_savings == 3
        assert adapted.content["title"] == "Chapter 2: Dusk"
        assert adapted.content["word_count"] == 2200
        assert adapted.content["_original_chapter_id"] == "c9"
        assert adapted.content["_story_title"] == "Tidewater"

        far = await cache.get_chapter(2, "fp", "prev-z", "fantasy", 2400, "u1")
        assert far.kind is MatchKind.MISS


@pytest.mark.asyncio
async def test_chapters_are_invalidated_with_their_foundation(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        await cache.cache_foundation("fantasy", "p", FOUNDATION, "u1")
        fingerprint = generate_foundation_fingerprint({**FOUNDATION, "genre": "fantasy"})
        await cache.cache_chapter(1, {"title": "Chapter 1"}, "s", fingerprint, "h", "fantasy", 2000, "u1")

        assert await cache.invalidate_foundation(fingerprint) == 2


@pytest.mark.asyncio
async def test_wrap_generation_generates_once(tmp_path):
    calls = []

    async def generate():
        calls.append(1)
        return {"text": "fresh"}

    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        first = await cache.wrap_generation(generate, "tone", "u1", {"story": "s"})
        second = await cache.wrap_generation(generate, "tone", "u1", {"story": "s"})

        assert not first.from_cache
        assert second.from_cache
        assert second.result == {"text": "fresh"}
        assert second.tokens_saved == 0.5
        assert second.cache_type == "exact"
        assert len(calls) == 1

        stats = await cache.stats()
        assert stats["lookups"] == 2
        assert stats["exact_hits"] == 1
        assert stats["misses"] == 1


@pytest.mark.asyncio
async def test_wrap_foundation_generation(tmp_path):
    async def generate():
        return dict(FOUNDATION)

    async with DurableStore(str(tmp_path / "cache.db")) as store:
        cache = DurableCache(store)
        first = await cache.wrap_foundation_generation(generate, "fantasy", "p", "u1")
        second = await cache.wrap_foundation_generation(generate, "fantasy", "p", "u1")
        assert not first.from_cache
        assert second.from_cache
        assert second.tokens_saved == 8
