# models/context_models.py
"""Data models for compressed generation context."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any

from models.complexity_models import ContextTier


@dataclass
class SettingFacts:
    location: str = "unknown_location"
    atmosphere: str = "neutral"
    current_condition: str = "normal"
    key_features: list[str] = field(default_factory=list)


@dataclass
class CharacterEssential:
    name: str
    current_goal: str = "advance plot"
    key_trait: str = "complex"
    current_emotion: str = "focused"
    relevant_relationship: str = "none active"


@dataclass
class CompressedChapterSummary:
    number: int
    key_event: str = "story continues"
    character_development: str = "continues arc"
    plot_advancement: str = "story progresses"
    consequences: str = "sets up future events"


@dataclass
class CoreFacts:
    genre: str = "unknown"
    protagonist: str = "protagonist"
    central_conflict: str = "internal struggle"
    setting: SettingFacts | None = None


@dataclass
class ChapterGoals:
    primary_goal: str = "advance story"
    secondary_goal: str = "develop characters"
    plot_advancement: str = "continue narrative"


def _prune(value: Any) -> Any:
    """Drop empty containers and ``None`` values recursively."""
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items()}
        return {k: v for k, v in pruned.items() if v not in (None, "", [], {})}
    if isinstance(value, list):
        return [_prune(item) for item in value]
    return value


@dataclass
class OptimizedContext:
    """Tier-bounded snapshot of narrative state sent with a request."""

    tier: ContextTier
    core_facts: CoreFacts
    active_characters: list[CharacterEssential] = field(default_factory=list)
    recent_events: list[CompressedChapterSummary] = field(default_factory=list)
    chapter_goals: ChapterGoals = field(default_factory=ChapterGoals)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["tier"] = self.tier.value
        return _prune(data)

    def to_json(self) -> str:
        """Compact, key-ordered JSON. Identical contexts give identical bytes."""
        return json.dumps(
            self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )


@dataclass
class TokenReductionReport:
    before_optimization: int
    after_optimization: int
    compression_ratio: float
    cost_savings_usd: float


@dataclass
class ExtractedFacts:
    characters: list[CharacterEssential]
    world: dict[str, Any]
    plot: dict[str, str]
    timeline: list[dict[str, Any]]


@dataclass
class AdaptiveContextResult:
    tier: ContextTier
    context: OptimizedContext
    token_estimate: int
    token_budget: int
    reasoning: str
    optimizations: list[str]
    fallback_tier: ContextTier


@dataclass
class LearningRecord:
    """Outcome of one generation, fed back into tier selection."""

    signature: str
    tier: ContextTier
    actual_tokens: int
    quality_score: float
    success: bool
    user_feedback: str | None = None
