# tests/test_cache_manager.py
import pytest
from caching.cache_manager import CacheManager, content_type_for
from caching.durable_cache import DurableCache
from caching.hot_cache import HotCache
from caching.store import DurableStore
from core.usage import TokenUsage
from core.llm_interface import GenerationResult
from models.batch_models import BatchOperation, OperationState, OperationType
from orchestration.batch_scheduler import BatchScheduler


def test_content_type_mapping():
    assert content_type_for("chapter") == "chapter_content"
    assert content_type_for("content_analysis") == "analysis_comprehensive"
    assert content_type_for(None) == "general"
    assert content_type_for("unheard_of") == "general"


@pytest.mark.asyncio
async def test_stale_version_write_is_rejected():
    manager = CacheManager(HotCache(max_size=8))
    old = manager.reserve("k")
    new = manager.reserve("k")

    assert not await manager.store("k", old, "late", TokenUsage(1, 1), "m")
    assert manager.rejected_writes == 1
    assert await manager.lookup("k") is None

    assert await manager.store("k", new, "fresh", TokenUsage(1, 1), "m")
    assert (await manager.lookup("k")).content == "fresh"


@pytest.mark.asyncio
async def test_abandoned_reservation_cannot_write():
    manager = CacheManager(HotCache(max_size=8))
    version = manager.reserve("k")
    manager.abandon("k", version)
    assert manager.current_version("k") == version + 1
    assert not await manager.store("k", version, "late", TokenUsage(), "m")


@pytest.mark.asyncio
async def test_invalidate_drops_entry_and_pending_writes():
    manager = CacheManager(HotCache(max_size=8))
    version = manager.reserve("k")
    assert await manager.store("k", version, "v", TokenUsage(), "m")
    pending = manager.reserve("k")
    manager.invalidate("k")
    assert await manager.lookup("k") is None
    assert not await manager.store("k", pending, "v2", TokenUsage(), "m")


@pytest.mark.asyncio
async def test_durable_record_is_promoted_to_hot(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        durable = DurableCache(store)
        writer = CacheManager(HotCache(max_size=8), durable)
        version = writer.reserve("key-1")
        await writer.store(
            "key-1", version, "chapter text", TokenUsage(10, 40), "m",
            operation="chapter", params={"owner_id": "u1"},
        )

        reader_hot = HotCache(max_size=8)
        reader = CacheManager(reader_hot, durable)
        entry = await reader.lookup("key-1", "chapter", "u1")
        assert entry is not None
        assert entry.content == "chapter text"
        assert entry.usage.output_tokens == 40
        assert reader_hot.has("key-1")

        other = CacheManager(HotCache(max_size=8), durable)
        assert await other.lookup("key-1", "chapter", "someone-else") is None


@pytest.mark.asyncio
async def test_cache_stats_shape(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        manager = CacheManager(HotCache(max_size=8), DurableCache(store))
        version = manager.reserve("k")
        await manager.store("k", version, "v", TokenUsage(), "m")
        stats = await manager.get_cache_stats()
        assert stats["hot"]["size"] == 1
        assert stats["durable"]["total_entries"] == 1
        assert stats["rejected_writes"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"content": "hi", "usage": {"bogus": 1}},
        {"content": "hi", "usage": {"input_tokens": "many"}},
        {"content": "hi", "usage": ["not", "a", "mapping"]},
        {"content": "hi", "model": 42},
        {"content": "hi", "cost": "free"},
    ],
)
async def test_corrupt_durable_payload_is_deleted_and_missed(tmp_path, payload):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        durable = DurableCache(store)
        record = await durable.put("general", "anonymous", payload, {"cache_key": "k"})
        manager = CacheManager(HotCache(max_size=8), durable)

        async def executor(op):
            return GenerationResult(content="fresh")

        scheduler = BatchScheduler(executor, manager)
        op_id = await scheduler.submit(
            BatchOperation(id="op", type=OperationType.GENERAL, params={}, cache_key="k")
        )
        assert scheduler.get_state(op_id) is OperationState.QUEUED
        assert await store.get(record.id) is None
        assert await manager.lookup("k", "general") is None
        await scheduler.shutdown(drain=False)


@pytest.mark.asyncio
async def test_promoted_entry_keeps_cost_and_durable_expiry(tmp_path, clock):
    async with DurableStore(str(tmp_path / "cache.db"), clock=clock) as store:
        durable = DurableCache(store)
        writer = CacheManager(HotCache(max_size=8), durable)
        version = writer.reserve("k")
        await writer.store("k", version, "text", TokenUsage(10, 10), "m", cost=0.25)

        # One day of TTL for general content; leave 100 seconds of it.
        clock.advance(24 * 60 * 60 - 100)
        hot_clock = type(clock)(start=0.0)
        reader_hot = HotCache(max_size=8, default_ttl=10 * 24 * 60 * 60, clock=hot_clock)
        entry = await CacheManager(reader_hot, durable).lookup("k", "general")

        assert entry.cost == 0.25
        assert entry.expires_at - entry.created_at == pytest.approx(100)
        hot_clock.advance(101)
        assert not reader_hot.has("k")


@pytest.mark.asyncio
async def test_tagged_request_reuses_similar_durable_record(tmp_path):
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        durable = DurableCache(store)
        writer = CacheManager(HotCache(max_size=8), durable)
        version = writer.reserve("a")
        await writer.store(
            "a", version, "noir analysis", TokenUsage(5, 5), "m",
            operation="content_analysis", params={"tags": ["Noir", "rain"]},
        )

        reader = CacheManager(HotCache(max_size=8), durable)
        entry = await reader.lookup(
            "b", "content_analysis", params={"tags": ["rain", "noir"]}
        )
        assert entry.content == "noir analysis"
        assert entry.metadata["match"] == "similar"
        assert entry.metadata["adapted"]["_cache_adapted"] is True

        assert await reader.lookup("c", "content_analysis", params={"tags": ["sun"]}) is None


@pytest.mark.asyncio
async def test_chapter_requests_use_foundation_fingerprint(tmp_path):
    params = {
        "state": {
            "genre": "fantasy",
            "foundation": {"title": "Salt and Ash", "premise": "A war of sisters"},
            "previous_chapters": [{"number": 1, "summary": "The siege begins."}],
        },
        "plan": {"chapter_number": 2, "title": "Embers"},
    }
    async with DurableStore(str(tmp_path / "cache.db")) as store:
        durable = DurableCache(store)
        writer = CacheManager(HotCache(max_size=8), durable)
        version = writer.reserve("c1")
        await writer.store(
            "c1", version, "chapter two text", TokenUsage(5, 50), "m",
            operation="chapter", params=params,
        )
        stored = await store.query("chapter_content", "anonymous", {"chapter_number": 2})
        assert stored[0].metadata["genre"] == "fantasy"
        assert stored[0].content["title"] == "Embers"

        reader = CacheManager(HotCache(max_size=8), durable)
        entry = await reader.lookup("c2", "chapter", params=params)
        assert entry.content == "chapter two text"
        assert entry.metadata["match"] == "exact"
