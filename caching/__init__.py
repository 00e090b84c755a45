"""Two-tier caching: in-process hot cache and durable similarity cache."""

from .cache_manager import CacheManager
from .content_types import CONTENT_TYPE_POLICIES, ContentTypePolicy, get_policy
from .durable_cache import DurableCache, extract_themes
from .hot_cache import FactLevel, HotCache
from .keys import (
    generate_cache_key,
    generate_foundation_fingerprint,
    generate_previous_chapters_hash,
)
from .store import DurableStore

__all__ = [
    "CacheManager",
    "CONTENT_TYPE_POLICIES",
    "ContentTypePolicy",
    "get_policy",
    "DurableCache",
    "extract_themes",
    "FactLevel",
    "HotCache",
    "generate_cache_key",
    "generate_foundation_fingerprint",
    "generate_previous_chapters_hash",
    "DurableStore",
]
