# models/complexity_models.py
"""Complexity flags and context tiers for a unit of work."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field

from config import settings


class ContextTier(str, Enum):
    """How much narrative context to send with a generation request."""

    MINIMAL = "minimal"
    STANDARD = "standard"
    DETAILED = "detailed"
    FULL = "full"

    @property
    def token_budget(self) -> int:
        return settings.CONTEXT_TIER_BUDGETS[self.value]

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [
    ContextTier.MINIMAL,
    ContextTier.STANDARD,
    ContextTier.DETAILED,
    ContextTier.FULL,
]


class EmotionalIntensity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConflictLevel(str, Enum):
    MINOR = "minor"
    MAJOR = "major"
    CLIMACTIC = "climactic"


class SceneComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class DialogueIntensity(str, Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


class ActionLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NarrativeImportance(str, Enum):
    FILLER = "filler"
    DEVELOPMENT = "development"
    CRITICAL = "critical"
    FINALE = "finale"


@dataclass(frozen=True)
class ChapterComplexity:
    """Signals describing how demanding a chapter is to write.

    Defaults are the minimum value of every flag.
    """

    has_new_characters: bool = False
    is_plot_turning_point: bool = False
    is_climactic_moment: bool = False
    requires_world_building: bool = False
    emotional_intensity: EmotionalIntensity = EmotionalIntensity.LOW
    conflict_level: ConflictLevel = ConflictLevel.MINOR
    character_count: int = 0
    scene_complexity: SceneComplexity = SceneComplexity.SIMPLE
    dialogue_intensity: DialogueIntensity = DialogueIntensity.LIGHT
    action_level: ActionLevel = ActionLevel.LOW
    narrative_importance: NarrativeImportance = NarrativeImportance.FILLER

    def signature(self) -> str:
        """Coarse key used by the tier learning table."""
        return (
            f"{self.conflict_level.value}_{self.emotional_intensity.value}_"
            f"{self.narrative_importance.value}_{self.character_count}"
        )


class ChapterPlan(BaseModel):
    """Plan for the chapter (unit of work) about to be generated."""

    chapter_number: int = 1
    title: str = ""
    summary: str = ""
    purpose: str = ""
    key_events: list[str] = []
    introduces: list[str] = Field(default_factory=list)
    series_role: str = ""
    plot_advancement: str = ""

    def plan_text(self) -> str:
        """Lower-cased summary, purpose and key events joined for keyword scans."""
        return " ".join(
            [self.summary.lower(), self.purpose.lower()]
            + [event.lower() for event in self.key_events]
        )
