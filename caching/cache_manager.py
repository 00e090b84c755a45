# caching/cache_manager.py
"""Facade over the hot and durable cache layers with versioned write-through."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

import aiosqlite
import structlog
from pydantic import BaseModel

from core.errors import CacheCorruptionError
from core.usage import TokenUsage, calculate_cost
from models.cache_models import CacheEntry, CacheLookup, MatchKind

from .content_types import OPERATION_CONTENT_TYPES
from .durable_cache import DEFAULT_CHAPTER_WORD_COUNT, DurableCache, extract_themes
from .hot_cache import HotCache
from .keys import generate_foundation_fingerprint, generate_previous_chapters_hash

logger = structlog.get_logger(__name__)

ANONYMOUS_OWNER = "anonymous"

# Keys of a durable payload that make up the cached generation itself.
_PAYLOAD_FIELDS = frozenset({"content", "model", "usage", "cost"})


def content_type_for(operation: str | None) -> str:
    return OPERATION_CONTENT_TYPES.get(operation or "general", "general")


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def _foundation_fields(params: Mapping[str, Any]) -> tuple[str, str, str | None] | None:
    genre, premise = params.get("genre"), params.get("premise")
    if not (isinstance(genre, str) and genre and isinstance(premise, str) and premise):
        return None
    title = params.get("title")
    return genre, premise, title if isinstance(title, str) else None


def _chapter_fields(params: Mapping[str, Any]) -> dict[str, Any] | None:
    """Lookup fields for a chapter operation; ``None`` without a foundation."""
    state = _as_dict(params.get("state"))
    foundation = _as_dict(state.get("foundation"))
    if not foundation:
        return None
    plan = _as_dict(params.get("plan"))
    genre = state.get("genre") or "unknown"
    try:
        chapter_number = int(plan.get("chapter_number") or 1)
        target_word_count = int(params.get("target_word_count") or DEFAULT_CHAPTER_WORD_COUNT)
    except (TypeError, ValueError):
        return None
    return {
        "chapter_number": chapter_number,
        "foundation_fingerprint": generate_foundation_fingerprint({**foundation, "genre": genre}),
        "previous_chapters_hash": generate_previous_chapters_hash(
            [_as_dict(chapter) for chapter in state.get("previous_chapters") or []]
        ),
        "genre": genre,
        "target_word_count": target_word_count,
        "story_title": params.get("story_title") or foundation.get("title") or "Unknown Story",
    }


def _decode_payload(
    record_id: str, payload: Mapping[str, Any]
) -> tuple[str, TokenUsage, str, float | None]:
    """Split a durable payload into content, usage, model and cost.

    Raises:
        CacheCorruptionError: the payload does not hold a usable generation.
    """
    content = payload.get("content")
    if not isinstance(content, str):
        raise CacheCorruptionError(record_id, "no text content")
    raw_usage = payload.get("usage") or {}
    if not isinstance(raw_usage, Mapping):
        raise CacheCorruptionError(record_id, "usage is not an object")
    model = payload.get("model") or ""
    if not isinstance(model, str):
        raise CacheCorruptionError(record_id, "model is not a string")
    try:
        usage = TokenUsage(**{k: int(v) for k, v in raw_usage.items()})
        cost = None if payload.get("cost") is None else float(payload["cost"])
    except (TypeError, ValueError) as exc:
        raise CacheCorruptionError(record_id, str(exc)) from exc
    return content, usage, model, cost


class CacheManager:
    """Reads check the hot layer, then the durable layer. Writes go to both.

    Every write is guarded by a per-key version. A writer first calls
    :meth:`reserve`; :meth:`store` only lands if no newer reservation or
    :meth:`abandon` happened in between, so a generation that finishes after
    its operation timed out cannot overwrite the cache.

    Durable reads follow the operation: story foundations go through the
    premise and theme lookup, chapters through the foundation-fingerprint
    lookup, and anything else through an exact key match, then a tag-similar
    match when the operation carries ``tags``.
    """

    def __init__(self, hot: HotCache, durable: DurableCache | None = None) -> None:
        self.hot = hot
        self.durable = durable
        self._versions: dict[str, int] = {}
        self._lock = threading.Lock()
        self.rejected_writes = 0

    def reserve(self, key: str) -> int:
        with self._lock:
            version = self._versions.get(key, 0) + 1
            self._versions[key] = version
            return version

    def abandon(self, key: str, version: int) -> None:
        """Invalidate ``version`` so a late write under it is rejected."""
        with self._lock:
            if self._versions.get(key) == version:
                self._versions[key] = version + 1

    def current_version(self, key: str) -> int:
        with self._lock:
            return self._versions.get(key, 0)

    async def lookup(
        self,
        key: str,
        operation: str | None = None,
        owner_id: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> CacheEntry | None:
        entry = self.hot.get(key)
        if entry is not None or self.durable is None:
            return entry

        owner = owner_id or ANONYMOUS_OWNER
        try:
            found = await self._durable_lookup(key, operation, owner, params or {})
        except (aiosqlite.Error, CacheCorruptionError) as exc:
            logger.warning("Durable cache read failed; treating as miss", key=key, error=str(exc))
            return None
        if not found.hit or found.record is None or found.content is None:
            return None

        record = found.record
        if not isinstance(found.content.get("content"), str):
            # Records from the wrap_* helpers carry no generated text.
            logger.debug("Durable match holds no generated text", key=key, id=record.id[:12])
            return None
        try:
            content, usage, model, cost = _decode_payload(record.id, found.content)
        except CacheCorruptionError as exc:
            logger.warning("Corrupt durable cache record; removing", key=key, error=str(exc))
            await self._discard(record.id)
            return None

        remaining = record.expires_at - self.durable.store.now()
        if remaining <= 0:
            return None

        metadata: dict[str, Any] = {
            "promoted_from": "durable",
            "match": found.strategy,
            "similarity": found.similarity,
            "token_savings": found.token_savings,
        }
        if found.kind is MatchKind.SIMILAR:
            metadata["adapted"] = {
                k: v for k, v in found.content.items() if k not in _PAYLOAD_FIELDS
            }
        self.hot.set(
            key,
            content,
            usage,
            model,
            ttl=min(self.hot.default_ttl, remaining),
            operation=operation,
            owner_id=owner_id,
            metadata=metadata,
            cost=cost,
        )
        logger.debug("Promoted durable cache record to hot cache", key=key, match=found.strategy)
        return self.hot.get(key)

    async def _durable_lookup(
        self, key: str, operation: str | None, owner: str, params: Mapping[str, Any]
    ) -> CacheLookup:
        if operation == "story_foundation":
            foundation = _foundation_fields(params)
            if foundation is not None:
                genre, premise, title = foundation
                return await self.durable.get_foundation(genre, premise, owner, title)
        elif operation == "chapter":
            chapter = _chapter_fields(params)
            if chapter is not None:
                return await self.durable.get_chapter(owner_id=owner, **chapter)

        tags = params.get("tags")
        return await self.durable.lookup(
            content_type_for(operation),
            owner,
            {"cache_key": key},
            features=list(tags) if tags else None,
        )

    async def _discard(self, record_id: str) -> None:
        try:
            await self.durable.store.delete(record_id)
        except aiosqlite.Error as exc:
            logger.error("Failed to delete corrupt cache record", id=record_id[:12], error=str(exc))

    async def store(
        self,
        key: str,
        version: int,
        content: str,
        usage: TokenUsage,
        model: str,
        cost: float | None = None,
        ttl: float | None = None,
        operation: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        """Write through both layers if ``version`` is still current."""
        params = params or {}
        owner_id = params.get("owner_id") or ANONYMOUS_OWNER
        if cost is None:
            cost = calculate_cost(usage.input_tokens, usage.output_tokens)
        with self._lock:
            if self._versions.get(key) != version:
                self.rejected_writes += 1
                logger.info("Rejected stale cache write", key=key, version=version)
                return False
            self.hot.set(
                key,
                content,
                usage,
                model,
                ttl=ttl,
                operation=operation,
                owner_id=owner_id,
                cost=cost,
            )

        if self.durable is not None:
            payload = {"content": content, "model": model, "usage": usage.to_dict(), "cost": cost}
            try:
                await self._write_durable(key, operation, owner_id, params, payload)
            except aiosqlite.Error as exc:
                logger.error("Durable cache write failed", key=key, error=str(exc))
        return True

    async def _write_durable(
        self,
        key: str,
        operation: str | None,
        owner_id: str,
        params: Mapping[str, Any],
        payload: dict[str, Any],
    ) -> None:
        if operation == "story_foundation":
            foundation = _foundation_fields(params)
            if foundation is not None:
                genre, premise, title = foundation
                payload.update({"premise": premise, "themes": extract_themes(premise)})
                if title:
                    payload["title"] = title
                await self.durable.cache_foundation(genre, premise, payload, owner_id, title, prompt=key)
                return
        elif operation == "chapter":
            chapter = _chapter_fields(params)
            if chapter is not None:
                plan = _as_dict(params.get("plan"))
                payload.update(
                    {
                        "title": plan.get("title") or f"Chapter {chapter['chapter_number']}",
                        "word_count": len(payload["content"].split()),
                    }
                )
                await self.durable.cache_chapter(
                    content=payload,
                    story_id=str(params.get("story_id") or chapter["story_title"]),
                    owner_id=owner_id,
                    **chapter,
                )
                return

        metadata: dict[str, Any] = {"cache_key": key, "operation": operation or "general"}
        tags = params.get("tags")
        if tags:
            metadata["tags"] = sorted({str(tag).lower() for tag in tags})
        if params.get("genre"):
            metadata["genre"] = params["genre"]
        await self.durable.put(content_type_for(operation), owner_id, payload, metadata, prompt=key)

    def invalidate(self, key: str) -> None:
        self.hot.delete(key)
        with self._lock:
            self._versions[key] = self._versions.get(key, 0) + 1

    async def get_cache_stats(self) -> dict[str, Any]:
        durable_stats: dict[str, Any] | None = None
        if self.durable is not None:
            try:
                durable_stats = await self.durable.stats()
            except aiosqlite.Error as exc:
                logger.warning("Durable cache stats unavailable", error=str(exc))
        return {
            "hot": self.hot.stats(),
            "durable": durable_stats,
            "rejected_writes": self.rejected_writes,
        }
