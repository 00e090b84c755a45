# caching/hot_cache.py
"""In-process cache with per-entry TTL and strict LRU eviction."""

from __future__ import annotations

import asyncio
import contextlib
import json
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

import structlog

from config import settings
from core.errors import CapacityError
from core.llm_interface import GenerationResult
from core.usage import TokenUsage, calculate_cost
from models.cache_models import CacheEntry

from .keys import fact_key, generate_cache_key

logger = structlog.get_logger(__name__)


class FactLevel(str, Enum):
    UNIVERSE = "universe"
    SERIES = "series"
    BOOK = "book"
    CHAPTER = "chapter"


FACT_LEVEL_TTLS: dict[FactLevel, float] = {
    FactLevel.UNIVERSE: 30 * 24 * 60 * 60,
    FactLevel.SERIES: 14 * 24 * 60 * 60,
    FactLevel.BOOK: 7 * 24 * 60 * 60,
    FactLevel.CHAPTER: 24 * 60 * 60,
}

FACT_MODEL = "fact-cache"


class HotCache:
    """Fixed-capacity TTL cache.

    Expiry is checked on every ``get``/``has``, so an expired entry is never
    returned even if no sweep has run. Reads count as use for LRU ordering.
    All public methods are safe to call from several threads.
    """

    def __init__(
        self,
        max_size: int = settings.HOT_CACHE_MAX_SIZE,
        default_ttl: float = settings.HOT_CACHE_DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise CapacityError(f"Hot cache capacity must be at least 1, got {max_size}")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        # Ordered oldest access first.
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _live_entry(self, key: str, now: float) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._entries[key]
            return None
        entry.last_accessed = now
        self._entries.move_to_end(key)
        return entry

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key, self._clock()) is not None

    def get(self, key: str) -> CacheEntry | None:
        """Return a copy of the live entry for ``key`` or ``None``."""
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                self._misses += 1
                logger.debug("Hot cache miss", key=key)
                return None
            self._hits += 1
            logger.debug("Hot cache hit", key=key)
            return entry.copy_for_read()

    def set(
        self,
        key: str,
        content: str,
        usage: TokenUsage,
        model: str,
        ttl: float | None = None,
        operation: str | None = None,
        owner_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        cost: float | None = None,
    ) -> None:
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.info("Evicted least recently used entry", key=evicted_key)

            entry_metadata: dict[str, Any] = dict(metadata or {})
            entry_metadata["operation"] = operation or entry_metadata.get(
                "operation", "general"
            )
            if owner_id:
                entry_metadata["owner_id"] = owner_id

            usage = TokenUsage(usage.input_tokens, usage.output_tokens, usage.total_tokens)
            entry = CacheEntry(
                key=key,
                content=content,
                usage=usage,
                cost=(
                    calculate_cost(usage.input_tokens, usage.output_tokens)
                    if cost is None
                    else cost
                ),
                model=model,
                created_at=now,
                expires_at=now + (self.default_ttl if ttl is None else ttl),
                last_accessed=now,
                metadata=entry_metadata,
            )
            self._entries[key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Remove every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("Hot cache cleanup removed expired entries", count=len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        """Read-only snapshot; does not refresh access times."""
        with self._lock:
            now = self._clock()
            entries = list(self._entries.values())
            hits, misses, evictions = self._hits, self._misses, self._evictions
        lookups = hits + misses
        top = sorted(entries, key=lambda e: e.cost, reverse=True)[:10]
        return {
            "size": len(entries),
            "max_size": self.max_size,
            "hits": hits,
            "misses": misses,
            "hit_rate": hits / lookups if lookups else 0.0,
            "evictions": evictions,
            "total_cost": sum(e.cost for e in entries),
            "entries": [
                {
                    "key": f"{e.key[:8]}...",
                    "operation": e.metadata.get("operation", "unknown"),
                    "cost": e.cost,
                    "age": int(now - e.created_at),
                    "expires_in": int(e.expires_at - now),
                }
                for e in top
            ],
        }

    # -- request-level helpers ------------------------------------------------

    def cache_response(
        self,
        prompt: str,
        response: GenerationResult,
        operation: str | None = None,
        owner_id: str | None = None,
        ttl: float | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        system_prompt: str | None = None,
    ) -> str:
        """Store a generation result under the key of its normalized request."""
        key = generate_cache_key(
            prompt, model, max_tokens, temperature, system_prompt, operation
        )
        self.set(
            key,
            response.content,
            response.usage,
            response.model,
            ttl=ttl,
            operation=operation,
            owner_id=owner_id,
        )
        return key

    def get_cached_response(
        self,
        prompt: str,
        operation: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        system_prompt: str | None = None,
    ) -> CacheEntry | None:
        key = generate_cache_key(
            prompt, model, max_tokens, temperature, system_prompt, operation
        )
        return self.get(key)

    # -- hierarchical facts ---------------------------------------------------

    def cache_hierarchical_facts(
        self, story_id: str, facts: Mapping[str, Any], level: FactLevel | str
    ) -> str:
        level = FactLevel(level)
        key = fact_key(level.value, story_id)
        self.set(
            key,
            json.dumps(facts, sort_keys=True),
            TokenUsage(),
            FACT_MODEL,
            ttl=FACT_LEVEL_TTLS[level],
            operation=f"fact_cache_{level.value}",
            owner_id=facts.get("user_id"),
        )
        return key

    def get_facts_by_level(
        self, story_id: str, level: FactLevel | str
    ) -> dict[str, Any] | None:
        """Return cached facts, deleting the entry if its payload is corrupt."""
        key = fact_key(FactLevel(level).value, story_id)
        entry = self.get(key)
        if entry is None:
            return None
        try:
            return json.loads(entry.content)
        except json.JSONDecodeError as exc:
            logger.warning("Corrupt fact cache entry removed", key=key, error=str(exc))
            self.delete(key)
            return None

    def get_optimized_fact_context(self, story_id: str) -> dict[str, dict[str, Any] | None]:
        return {
            level.value: self.get_facts_by_level(story_id, level) for level in FactLevel
        }

    def invalidate_story_facts(self, story_id: str) -> int:
        return sum(
            1 for level in FactLevel if self.delete(fact_key(level.value, story_id))
        )

    def prewarm_fact_cache(
        self, story_id: str, hierarchy: Mapping[str, Mapping[str, Any] | None]
    ) -> int:
        warmed = 0
        valid_levels = {level.value for level in FactLevel}
        for level, facts in hierarchy.items():
            if facts and level in valid_levels:
                self.cache_hierarchical_facts(story_id, facts, level)
                warmed += 1
        return warmed

    def fact_cache_stats(self) -> dict[str, Any]:
        with self._lock:
            now = self._clock()
            fact_entries = [
                (k, e) for k, e in self._entries.items() if k.startswith("facts:")
            ]
        by_level = {level.value: 0 for level in FactLevel}
        oldest: tuple[str, float] | None = None
        for key, entry in fact_entries:
            level = key.split(":")[1]
            if level in by_level:
                by_level[level] += 1
            if oldest is None or entry.created_at < oldest[1]:
                oldest = (level, entry.created_at)
        return {
            "total_fact_entries": len(fact_entries),
            "fact_entries_by_level": by_level,
            "total_fact_cache_size": sum(len(e.content) for _, e in fact_entries),
            "oldest_fact_entry": (
                {"level": oldest[0], "age": int(now - oldest[1])} if oldest else None
            ),
        }

    def cleanup_fact_cache(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [
                k
                for k, e in self._entries.items()
                if k.startswith("facts:") and e.is_expired(now)
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    # -- background sweep -----------------------------------------------------

    def start_sweeper(self, interval: float = settings.HOT_CACHE_CLEANUP_INTERVAL) -> None:
        """Run :meth:`cleanup` every ``interval`` seconds on the running loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return

        async def _sweep() -> None:
            while True:
                await asyncio.sleep(interval)
                self.cleanup()

        self._sweeper = asyncio.create_task(_sweep())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
