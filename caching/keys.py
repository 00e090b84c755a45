# caching/keys.py
"""Stable keys and fingerprints for cached artifacts."""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from config import settings

CACHE_KEY_LENGTH = 16


def _canonical(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def generate_cache_key(
    prompt: str,
    model: str | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
    system_prompt: str | None = None,
    operation: str | None = None,
) -> str:
    """Hash a normalized generation request into a short hot-cache key.

    The prompt is trimmed and lower-cased; unset options fall back to fixed
    defaults so that logically identical requests hash identically.
    """
    normalized = {
        "prompt": (prompt or "").strip().lower(),
        "model": model or "default",
        "max_tokens": max_tokens or settings.DEFAULT_MAX_TOKENS,
        "temperature": (
            temperature if temperature is not None else settings.DEFAULT_TEMPERATURE
        ),
        "system_prompt": system_prompt or "",
        "operation": operation or "general",
    }
    digest = hashlib.sha256(_canonical(normalized).encode("utf-8")).hexdigest()
    return digest[:CACHE_KEY_LENGTH]


def record_id(
    content_type: str, owner_id: str, metadata: Mapping[str, Any], prompt: str = ""
) -> str:
    """Identity of a durable record: same type, owner, metadata and prompt upsert."""
    key_data = f"{content_type}_{owner_id}_{prompt}_{_canonical(dict(metadata))}"
    return hashlib.sha256(key_data.encode("utf-8")).hexdigest()


def semantic_hash(prompt: str, genre: str | None = None, audience: str | None = None) -> str:
    normalized = re.sub(r"[^\w\s]", "", (prompt or "").lower())
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return md5_hex(f"{normalized}_{genre or ''}_{audience or ''}")


def premise_hash(premise: str) -> str:
    return md5_hex(premise or "")


def generate_foundation_fingerprint(foundation: Mapping[str, Any]) -> str:
    """Fingerprint of the parts of a foundation that chapters depend on."""
    characters = foundation.get("main_characters") or []
    setting = foundation.get("setting") or {}
    key_elements = {
        "genre": foundation.get("genre"),
        "main_characters": [
            c.get("name") if isinstance(c, Mapping) else str(c) for c in characters
        ],
        "plot_structure": list((foundation.get("plot_structure") or {}).keys()),
        "themes": list(foundation.get("themes") or []),
        "setting": setting.get("place", "unknown") if isinstance(setting, Mapping) else "unknown",
    }
    return md5_hex(_canonical(key_elements))


def generate_previous_chapters_hash(chapters: Iterable[Mapping[str, Any]]) -> str:
    context_data = [
        {
            "summary": chapter.get("summary", ""),
            "content_preview": (chapter.get("content") or "")[:200],
        }
        for chapter in chapters
    ]
    return md5_hex(_canonical(context_data))


def fact_key(level: str, story_id: str) -> str:
    return f"facts:{level}:{story_id}"
