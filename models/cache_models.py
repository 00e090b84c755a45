# models/cache_models.py
"""Records held by the hot and durable cache layers."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from core.usage import TokenUsage


@dataclass
class CacheEntry:
    """An entry in the in-process hot cache."""

    key: str
    content: str
    usage: TokenUsage
    cost: float
    model: str
    created_at: float
    expires_at: float
    last_accessed: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def copy_for_read(self) -> CacheEntry:
        """Return a detached copy flagged as a cache hit."""
        entry = copy.deepcopy(self)
        entry.metadata["cache_hit"] = True
        return entry


@dataclass
class CacheRecord:
    """A persisted, similarity-searchable cache record."""

    id: str
    content_type: str
    owner_id: str
    content: dict[str, Any]
    metadata: dict[str, Any]
    dependency_fingerprint: str | None
    similarity_hash: str | None
    reuse_score: float
    hit_count: int
    token_cost_saved: float
    created_at: float
    last_accessed: float
    expires_at: float
    fingerprint: str | None = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def tags(self) -> set[str]:
        raw = self.metadata.get("tags") or self.content.get("themes") or []
        return {str(tag).lower() for tag in raw}


class MatchKind(str, Enum):
    EXACT = "exact"
    SIMILAR = "similar"
    MISS = "miss"


@dataclass
class CacheLookup:
    """Result of a durable lookup: what matched and what it saved."""

    kind: MatchKind
    content: dict[str, Any] | None = None
    record: CacheRecord | None = None
    similarity: float = 0.0
    token_savings: float = 0.0
    strategy: str = ""

    @property
    def hit(self) -> bool:
        return self.kind is not MatchKind.MISS

    @classmethod
    def miss(cls) -> CacheLookup:
        return cls(kind=MatchKind.MISS)


@dataclass
class WrappedGeneration:
    """Outcome of a cache-wrapped generation call."""

    result: Any
    from_cache: bool
    tokens_saved: float = 0.0
    cache_type: str = "none"
