# caching/durable_cache.py
"""
Durable, similarity-searchable cache built on :class:`caching.store.DurableStore`.

Lookups run exact match first, then similarity-ranked approximate match above
the content type's threshold, then miss. Approximate hits are returned as an
adapted shallow copy; the stored record is never edited. Storage failures and
corrupt payloads degrade to a miss rather than failing the caller.
"""

from __future__ import annotations

import copy
import math
import re
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

import aiosqlite
import structlog

from config import settings
from core.errors import CacheCorruptionError
from models.cache_models import CacheLookup, CacheRecord, MatchKind, WrappedGeneration
from utils.similarity import tag_overlap

from .content_types import get_policy
from .keys import generate_foundation_fingerprint, premise_hash, record_id, semantic_hash
from .store import DurableStore

logger = structlog.get_logger(__name__)

SimilarityFn = Callable[[Iterable[str], Iterable[str]], float]

COMMON_THEMES: tuple[str, ...] = (
    "love", "revenge", "redemption", "coming-of-age", "sacrifice", "betrayal",
    "power", "friendship", "family", "survival", "identity", "justice",
    "freedom", "loyalty", "honor", "forgiveness", "corruption", "transformation",
    "war", "peace", "loss", "hope", "fear", "courage", "destiny", "fate",
)

FOUNDATION_TYPE = "story_foundation"
CHAPTER_TYPE = "chapter_content"
DEFAULT_CHAPTER_WORD_COUNT = 2000

_CHAPTER_TITLE_RE = re.compile(r"Chapter \d+")


def extract_themes(premise: str) -> list[str]:
    """Common themes mentioned in ``premise`` (plural and gerund forms count)."""
    text = (premise or "").lower()
    return [
        theme
        for theme in COMMON_THEMES
        if theme in text or f"{theme}s" in text or f"{theme}ing" in text
    ]


def assess_plot_complexity(plot_structure: Mapping[str, Any] | None) -> str:
    event_count = len(plot_structure or {})
    if event_count <= 3:
        return "simple"
    if event_count <= 6:
        return "moderate"
    return "complex"


class DurableCache:
    def __init__(
        self,
        store: DurableStore,
        similarity_fn: SimilarityFn = tag_overlap,
        candidate_limit: int = settings.DURABLE_CACHE_CANDIDATE_LIMIT,
        similar_savings_ratio: float = settings.DURABLE_SIMILAR_SAVINGS_RATIO,
    ) -> None:
        self.store = store
        self.similarity_fn = similarity_fn
        self.candidate_limit = candidate_limit
        self.similar_savings_ratio = similar_savings_ratio
        self._counters = {"lookups": 0, "exact_hits": 0, "similar_hits": 0, "misses": 0}

    # -- generic record API ---------------------------------------------------

    async def put(
        self,
        content_type: str,
        owner_id: str,
        content: Mapping[str, Any],
        metadata: Mapping[str, Any],
        prompt: str = "",
        dependency_fingerprint: str | None = None,
        fingerprint: str | None = None,
        reuse_score: float | None = None,
    ) -> CacheRecord:
        """Insert or replace the record for (type, owner, metadata, prompt).

        A full (type, owner) partition gives up its least valuable entries
        to make room.
        """
        policy = get_policy(content_type)
        if await self.store.count(content_type, owner_id) >= policy.max_entries:
            evicted = await self.store.evict_least_valuable(
                content_type, owner_id, keep=policy.max_entries - 1
            )
            logger.info(
                "Evicted durable cache records",
                content_type=content_type,
                owner_id=owner_id,
                count=evicted,
            )

        now = self.store.now()
        record = CacheRecord(
            id=record_id(content_type, owner_id, metadata, prompt),
            content_type=content_type,
            owner_id=owner_id,
            content=dict(content),
            metadata=dict(metadata),
            dependency_fingerprint=dependency_fingerprint,
            similarity_hash=semantic_hash(
                prompt, metadata.get("genre"), metadata.get("target_audience")
            ),
            reuse_score=min(10.0, max(0.0, policy.reuse_score if reuse_score is None else reuse_score)),
            hit_count=0,
            token_cost_saved=0.0,
            created_at=now,
            last_accessed=now,
            expires_at=now + policy.ttl_seconds,
            fingerprint=fingerprint,
        )
        await self.store.upsert(record)
        logger.debug("Durable cache record stored", content_type=content_type, id=record.id[:12])
        return record

    async def get_exact(
        self,
        content_type: str,
        owner_id: str,
        metadata_filter: Mapping[str, Any],
        touch: bool = True,
    ) -> CacheRecord | None:
        matches = await self.store.query(content_type, owner_id, metadata_filter, limit=1)
        if not matches:
            return None
        record = matches[0]
        if touch:
            await self._record_hit(record, get_policy(content_type).token_cost)
        return record

    async def get_similar(
        self,
        content_type: str,
        owner_id: str,
        features: Iterable[str],
        candidate_filter: Mapping[str, Any] | None = None,
        limit: int = 10,
    ) -> list[tuple[CacheRecord, float]]:
        """Candidates ranked by similarity, then hit count, then reuse score."""
        wanted = list(features)
        candidates = await self.store.query(
            content_type, owner_id, candidate_filter, limit=self.candidate_limit
        )
        scored = [(record, self.similarity_fn(wanted, record.tags())) for record in candidates]
        scored.sort(key=lambda pair: (pair[1], pair[0].hit_count, pair[0].reuse_score), reverse=True)
        return scored[:limit]

    async def lookup(
        self,
        content_type: str,
        owner_id: str,
        metadata: Mapping[str, Any],
        features: Iterable[str] | None = None,
        candidate_filter: Mapping[str, Any] | None = None,
        overrides: Mapping[str, Any] | None = None,
        threshold: float | None = None,
    ) -> CacheLookup:
        """Exact match, then adapted similar match, then miss."""
        policy = get_policy(content_type)
        limit = policy.similarity_threshold if threshold is None else threshold
        self._counters["lookups"] += 1
        try:
            record = await self.get_exact(content_type, owner_id, metadata)
            if record is not None:
                self._counters["exact_hits"] += 1
                return CacheLookup(
                    kind=MatchKind.EXACT,
                    content=copy.deepcopy(record.content),
                    record=record,
                    similarity=1.0,
                    token_savings=policy.token_cost,
                    strategy="exact",
                )

            if features is not None:
                ranked = await self.get_similar(
                    content_type, owner_id, features, candidate_filter, limit=1
                )
                if ranked and ranked[0][1] > limit:
                    best, similarity = ranked[0]
                    savings = policy.token_cost * self.similar_savings_ratio
                    await self._record_hit(best, savings)
                    self._counters["similar_hits"] += 1
                    return CacheLookup(
                        kind=MatchKind.SIMILAR,
                        content=self._adapt(best, overrides),
                        record=best,
                        similarity=similarity,
                        token_savings=savings,
                        strategy="similar",
                    )
        except (aiosqlite.Error, CacheCorruptionError) as exc:
            logger.warning(
                "Durable cache lookup failed; treating as miss",
                content_type=content_type,
                error=str(exc),
            )

        self._counters["misses"] += 1
        return CacheLookup.miss()

    async def invalidate_dependency(self, fingerprint: str) -> int:
        """Delete everything derived from ``fingerprint``, transitively."""
        removed = 0
        seen: set[str] = set()
        pending = deque([fingerprint])
        while pending:
            current = pending.popleft()
            if current in seen:
                continue
            seen.add(current)
            count, children = await self.store.delete_by_dependency(current)
            removed += count
            pending.extend(children)
        if removed:
            logger.info("Invalidated dependent cache records", fingerprint=fingerprint, count=removed)
        return removed

    async def invalidate_foundation(self, fingerprint: str) -> int:
        removed = await self.store.delete_by_fingerprint(fingerprint)
        return removed + await self.invalidate_dependency(fingerprint)

    async def cleanup(self) -> int:
        removed = await self.store.delete_expired()
        if removed:
            logger.info("Durable cache cleanup removed expired records", count=removed)
        return removed

    async def stats(self) -> dict[str, Any]:
        snapshot = await self.store.stats()
        snapshot.update(self._counters)
        return snapshot

    async def _record_hit(self, record: CacheRecord, tokens_saved: float) -> None:
        await self.store.increment_hit(record.id, tokens_saved)
        record.hit_count += 1
        record.token_cost_saved += tokens_saved

    @staticmethod
    def _adapt(record: CacheRecord, overrides: Mapping[str, Any] | None) -> dict[str, Any]:
        adapted = dict(record.content)
        adapted.update(overrides or {})
        adapted["_cache_adapted"] = True
        adapted["_original_cache_id"] = record.id
        return adapted

    # -- story foundations ------------------------------------------------------

    async def get_foundation(
        self, genre: str, premise: str, owner_id: str, title: str | None = None
    ) -> CacheLookup:
        """Find a reusable foundation for ``premise``.

        Tries the exact premise, then the closest themed foundation of the same
        genre, then a proven foundation of the same genre.
        """
        policy = get_policy(FOUNDATION_TYPE)
        self._counters["lookups"] += 1
        try:
            exact = await self.get_exact(
                FOUNDATION_TYPE, owner_id, {"genre": genre, "premise_hash": premise_hash(premise)}
            )
            if exact is not None:
                self._counters["exact_hits"] += 1
                logger.debug("Exact foundation hit", genre=genre)
                return CacheLookup(
                    kind=MatchKind.EXACT,
                    content=copy.deepcopy(exact.content),
                    record=exact,
                    similarity=1.0,
                    token_savings=policy.token_cost,
                    strategy="exact",
                )

            themes = extract_themes(premise)
            genre_matches = await self.store.query(
                FOUNDATION_TYPE, owner_id, {"genre": genre}, limit=self.candidate_limit
            )

            if genre_matches and themes:
                best, best_similarity = None, 0.0
                for record in genre_matches:
                    similarity = self.similarity_fn(themes, record.content.get("themes") or [])
                    if similarity > best_similarity:
                        best, best_similarity = record, similarity
                if best is not None and best_similarity > policy.similarity_threshold:
                    overrides: dict[str, Any] = {"premise": premise, "themes": themes}
                    if title is not None:
                        overrides["title"] = title
                    return await self._similar_hit(
                        best, overrides, best_similarity, math.floor(policy.token_cost * 0.8), "theme-similar"
                    )

            proven = next(
                (r for r in genre_matches if r.reuse_score >= 7.0 and r.hit_count >= 2), None
            )
            if proven is not None:
                overrides = {"title": title if title is not None else "Untitled Story", "premise": premise}
                if themes:
                    overrides["themes"] = themes
                return await self._similar_hit(
                    proven, overrides, 0.0, math.floor(policy.token_cost * 0.6), "genre-similar"
                )
        except (aiosqlite.Error, CacheCorruptionError) as exc:
            logger.warning("Foundation cache lookup failed; treating as miss", error=str(exc))

        self._counters["misses"] += 1
        logger.debug("No foundation cache hit", genre=genre)
        return CacheLookup.miss()

    async def cache_foundation(
        self,
        genre: str,
        premise: str,
        foundation: Mapping[str, Any],
        owner_id: str,
        title: str | None = None,
        prompt: str | None = None,
    ) -> CacheRecord | None:
        setting = foundation.get("setting") or {}
        metadata = {
            "genre": genre,
            "premise_hash": premise_hash(premise),
            "character_count": len(foundation.get("main_characters") or []),
            "theme_count": len(foundation.get("themes") or []),
            "setting_period": setting.get("time", "modern") if isinstance(setting, Mapping) else "modern",
            "target_audience": foundation.get("target_audience") or "general",
            "plot_complexity": assess_plot_complexity(foundation.get("plot_structure")),
        }
        if title:
            metadata["title"] = title
        try:
            return await self.put(
                FOUNDATION_TYPE,
                owner_id,
                foundation,
                metadata,
                prompt=prompt or f"{genre} story: {premise}",
                fingerprint=generate_foundation_fingerprint({**foundation, "genre": genre}),
            )
        except aiosqlite.Error as exc:
            logger.error("Failed to cache story foundation", genre=genre, error=str(exc))
            return None

    # -- chapters -------------------------------------------------------------

    async def get_chapter(
        self,
        chapter_number: int,
        foundation_fingerprint: str,
        previous_chapters_hash: str,
        genre: str,
        target_word_count: int,
        owner_id: str,
        story_title: str = "Unknown Story",
    ) -> CacheLookup:
        """Find a reusable chapter, loosening the match one step at a time."""
        cost = get_policy(CHAPTER_TYPE).token_cost
        self._counters["lookups"] += 1

        def word_gap(record: CacheRecord) -> int:
            return abs(int(record.metadata.get("word_count") or DEFAULT_CHAPTER_WORD_COUNT) - target_word_count)

        def adapt(record: CacheRecord) -> dict[str, Any]:
            return self.adapt_chapter_content(record.content, chapter_number, target_word_count, story_title)

        try:
            exact = await self.get_exact(
                CHAPTER_TYPE,
                owner_id,
                {
                    "genre": genre,
                    "chapter_number": chapter_number,
                    "foundation_fingerprint": foundation_fingerprint,
                    "previous_chapters_hash": previous_chapters_hash,
                },
            )
            if exact is not None:
                self._counters["exact_hits"] += 1
                return CacheLookup(
                    kind=MatchKind.EXACT,
                    content=copy.deepcopy(exact.content),
                    record=exact,
                    similarity=1.0,
                    token_savings=cost,
                    strategy="exact",
                )

            same_foundation = await self.store.query(
                CHAPTER_TYPE,
                owner_id,
                {"genre": genre, "chapter_number": chapter_number, "foundation_fingerprint": foundation_fingerprint},
                limit=10,
            )
            match = next((r for r in same_foundation if word_gap(r) < 300), None)
            if match is not None and match.reuse_score >= 6.0:
                return await self._chapter_hit(match, adapt(match), math.floor(cost * 0.7), "foundation-adapted")

            same_structure = await self.store.query(
                CHAPTER_TYPE, owner_id, {"genre": genre, "chapter_number": chapter_number}, limit=15
            )
            match = next(
                (r for r in same_structure if word_gap(r) < 500 and r.reuse_score >= 7.0 and r.hit_count >= 1),
                None,
            )
            if match is not None:
                return await self._chapter_hit(match, adapt(match), math.floor(cost * 0.5), "structure-similar")

            if chapter_number <= 3:
                same_genre = await self.store.query(
                    CHAPTER_TYPE, owner_id, {"genre": genre}, limit=self.candidate_limit
                )
                match = next(
                    (
                        r
                        for r in same_genre
                        if r.metadata.get("chapter_number") == chapter_number
                        and r.reuse_score >= 8.0
                        and r.hit_count >= 2
                    ),
                    None,
                )
                if match is not None:
                    return await self._chapter_hit(match, adapt(match), math.floor(cost * 0.4), "genre-adapted")
        except (aiosqlite.Error, CacheCorruptionError) as exc:
            logger.warning("Chapter cache lookup failed; treating as miss", error=str(exc))

        self._counters["misses"] += 1
        return CacheLookup.miss()

    async def cache_chapter(
        self,
        chapter_number: int,
        content: Mapping[str, Any],
        story_id: str,
        foundation_fingerprint: str,
        previous_chapters_hash: str,
        genre: str,
        target_word_count: int,
        owner_id: str,
        story_title: str = "Unknown Story",
    ) -> CacheRecord | None:
        metadata = {
            "genre": genre,
            "chapter_number": chapter_number,
            "target_word_count": target_word_count,
            "word_count": content.get("word_count") or target_word_count,
            "foundation_fingerprint": foundation_fingerprint,
            "previous_chapters_hash": previous_chapters_hash,
            "story_id": story_id,
        }
        try:
            return await self.put(
                CHAPTER_TYPE,
                owner_id,
                content,
                metadata,
                prompt=f"Chapter {chapter_number} for {genre} story: {story_title}",
                dependency_fingerprint=foundation_fingerprint,
            )
        except aiosqlite.Error as exc:
            logger.error("Failed to cache chapter", chapter=chapter_number, error=str(exc))
            return None

    def adapt_chapter_content(
        self,
        original: Mapping[str, Any],
        chapter_number: int,
        target_word_count: int,
        story_title: str,
    ) -> dict[str, Any]:
        title = original.get("title")
        adapted = dict(original)
        adapted.update(
            {
                "title": (
                    _CHAPTER_TITLE_RE.sub(f"Chapter {chapter_number}", title, count=1)
                    if title
                    else f"Chapter {chapter_number}"
                ),
                "word_count": target_word_count,
                "_cache_adapted": True,
                "_original_chapter_id": original.get("id"),
                "_adapted_at": self.store.now(),
                "_target_word_count": target_word_count,
                "_story_title": story_title,
            }
        )
        return adapted

    async def _similar_hit(
        self,
        record: CacheRecord,
        overrides: Mapping[str, Any],
        similarity: float,
        savings: float,
        strategy: str,
    ) -> CacheLookup:
        await self._record_hit(record, savings)
        self._counters["similar_hits"] += 1
        logger.debug("Approximate durable cache hit", strategy=strategy, id=record.id[:12])
        return CacheLookup(
            kind=MatchKind.SIMILAR,
            content=self._adapt(record, overrides),
            record=record,
            similarity=similarity,
            token_savings=savings,
            strategy=strategy,
        )

    async def _chapter_hit(
        self, record: CacheRecord, content: dict[str, Any], savings: float, strategy: str
    ) -> CacheLookup:
        await self._record_hit(record, savings)
        self._counters["similar_hits"] += 1
        logger.debug("Adapted chapter cache hit", strategy=strategy, id=record.id[:12])
        return CacheLookup(
            kind=MatchKind.SIMILAR,
            content=content,
            record=record,
            token_savings=savings,
            strategy=strategy,
        )

    # -- wrappers ---------------------------------------------------------------

    async def wrap_generation(
        self,
        generate: Callable[[], Awaitable[Mapping[str, Any]]],
        content_type: str,
        owner_id: str,
        metadata: Mapping[str, Any],
        features: Iterable[str] | None = None,
        prompt: str = "",
    ) -> WrappedGeneration:
        """Serve from the cache when possible, otherwise generate and store."""
        found = await self.lookup(content_type, owner_id, metadata, features)
        if found.hit:
            return WrappedGeneration(found.content, True, found.token_savings, found.strategy)
        result = await generate()
        try:
            await self.put(content_type, owner_id, result, metadata, prompt=prompt)
        except aiosqlite.Error as exc:
            logger.error("Failed to cache generated content", content_type=content_type, error=str(exc))
        return WrappedGeneration(result, False)

    async def wrap_foundation_generation(
        self,
        generate: Callable[[], Awaitable[Mapping[str, Any]]],
        genre: str,
        premise: str,
        owner_id: str,
        title: str | None = None,
    ) -> WrappedGeneration:
        found = await self.get_foundation(genre, premise, owner_id, title)
        if found.hit and found.content:
            return WrappedGeneration(found.content, True, found.token_savings, found.strategy)
        result = await generate()
        await self.cache_foundation(genre, premise, result, owner_id, title)
        return WrappedGeneration(result, False)

    async def wrap_chapter_generation(
        self,
        generate: Callable[[], Awaitable[Mapping[str, Any]]],
        chapter_number: int,
        story_id: str,
        foundation_fingerprint: str,
        previous_chapters_hash: str,
        genre: str,
        target_word_count: int,
        owner_id: str,
        story_title: str = "Unknown Story",
    ) -> WrappedGeneration:
        found = await self.get_chapter(
            chapter_number,
            foundation_fingerprint,
            previous_chapters_hash,
            genre,
            target_word_count,
            owner_id,
            story_title,
        )
        if found.hit and found.content:
            return WrappedGeneration(found.content, True, found.token_savings, found.strategy)
        result = await generate()
        await self.cache_chapter(
            chapter_number,
            result,
            story_id,
            foundation_fingerprint,
            previous_chapters_hash,
            genre,
            target_word_count,
            owner_id,
            story_title,
        )
        return WrappedGeneration(result, False)
