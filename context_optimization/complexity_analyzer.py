# context_optimization/complexity_analyzer.py
"""Scores a chapter plan and picks the context tier to send with it."""

from __future__ import annotations

import structlog

from models.complexity_models import (
    ActionLevel,
    ChapterComplexity,
    ChapterPlan,
    ConflictLevel,
    ContextTier,
    DialogueIntensity,
    EmotionalIntensity,
    NarrativeImportance,
    SceneComplexity,
)

from .learning import TierLearningTable

logger = structlog.get_logger(__name__)

TURNING_POINT_KEYWORDS = (
    "discover", "reveal", "realize", "twist", "betray", "death", "attack",
    "decision", "choose", "sacrifice", "breakthrough", "escape",
)
CLIMACTIC_KEYWORDS = (
    "final", "ultimate", "decisive", "climax", "showdown", "confrontation",
    "resolution", "ending", "conclusion", "victory", "defeat",
)
WORLD_BUILDING_KEYWORDS = (
    "world", "society", "culture", "history", "politics", "magic system",
    "technology", "geography", "rules", "law", "custom", "tradition",
)
HIGH_EMOTION_WORDS = ("love", "hate", "rage", "terror", "grief", "joy", "despair")
MEDIUM_EMOTION_WORDS = ("angry", "sad", "happy", "worried", "excited", "nervous")
CLIMACTIC_CONFLICT_WORDS = ("war", "battle", "final fight", "duel", "showdown")
MAJOR_CONFLICT_WORDS = ("fight", "conflict", "struggle", "oppose", "challenge")
COMPLEX_SCENE_WORDS = ("multiple", "several", "various", "complex", "intricate")
MODERATE_SCENE_WORDS = ("both", "two", "different", "change")
HEAVY_DIALOGUE_WORDS = ("conversation", "discuss", "argue", "debate", "negotiate")
MODERATE_DIALOGUE_WORDS = ("talk", "speak", "say", "tell", "ask")
HIGH_ACTION_WORDS = ("fight", "chase", "battle", "escape", "attack", "flee")
MEDIUM_ACTION_WORDS = ("move", "run", "search", "follow", "pursue")
CHARACTER_INDICATORS = ("and", "with", "meet", "talk", "speak")

MAX_ESTIMATED_CHARACTERS = 8
MAX_SCORED_CHARACTERS = 4

_LEVEL_SCORES = {
    EmotionalIntensity.LOW: 1,
    EmotionalIntensity.MEDIUM: 2,
    EmotionalIntensity.HIGH: 3,
    DialogueIntensity.LIGHT: 1,
    DialogueIntensity.MODERATE: 2,
    DialogueIntensity.HEAVY: 3,
    ActionLevel.LOW: 1,
    ActionLevel.MEDIUM: 2,
    ActionLevel.HIGH: 3,
    SceneComplexity.SIMPLE: 1,
    SceneComplexity.MODERATE: 2,
    SceneComplexity.COMPLEX: 3,
}
_CONFLICT_SCORES = {
    ConflictLevel.MINOR: 1,
    ConflictLevel.MAJOR: 3,
    ConflictLevel.CLIMACTIC: 5,
}
_IMPORTANCE_SCORES = {
    NarrativeImportance.FILLER: 0,
    NarrativeImportance.DEVELOPMENT: 1,
    NarrativeImportance.CRITICAL: 3,
    NarrativeImportance.FINALE: 5,
}

_STRATEGIES = {
    ContextTier.MINIMAL: [
        "Focus on immediate scene only",
        "Single character perspective",
        "Minimal world context",
    ],
    ContextTier.STANDARD: [
        "Include relevant character backgrounds",
        "Reference recent events only",
        "Standard world context",
    ],
    ContextTier.DETAILED: [
        "Include character relationships",
        "Reference plot threads",
        "Enhanced world context",
    ],
    ContextTier.FULL: [
        "Full character development context",
        "Complete plot thread awareness",
        "Comprehensive world state",
    ],
}

_FALLBACKS = {
    ContextTier.FULL: ContextTier.DETAILED,
    ContextTier.DETAILED: ContextTier.STANDARD,
    ContextTier.STANDARD: ContextTier.MINIMAL,
    ContextTier.MINIMAL: ContextTier.MINIMAL,
}


def _mentions(text: str, words: tuple[str, ...]) -> bool:
    return any(word in text for word in words)


class ComplexityAnalyzer:
    """Turns a chapter plan into complexity flags, a score and a tier.

    With an identical plan and identical learning-table contents the result
    is always the same; the analyzer itself holds no mutable state.
    """

    def __init__(self, learning_table: TierLearningTable | None = None) -> None:
        self.learning_table = learning_table

    def analyze(self, plan: ChapterPlan) -> ChapterComplexity:
        text = plan.plan_text()
        return ChapterComplexity(
            has_new_characters=self._detect_new_characters(plan),
            is_plot_turning_point=_mentions(text, TURNING_POINT_KEYWORDS),
            is_climactic_moment=_mentions(text, CLIMACTIC_KEYWORDS),
            requires_world_building=_mentions(text, WORLD_BUILDING_KEYWORDS),
            emotional_intensity=self._emotional_intensity(text),
            conflict_level=self._conflict_level(text),
            character_count=self._estimate_character_count(plan),
            scene_complexity=self._scene_complexity(text),
            dialogue_intensity=self._dialogue_intensity(text),
            action_level=self._action_level(text),
            narrative_importance=self._narrative_importance(plan),
        )

    @staticmethod
    def _detect_new_characters(plan: ChapterPlan) -> bool:
        summary = plan.summary.lower()
        return bool(plan.introduces) or "meet" in summary or "introduce" in summary

    @staticmethod
    def _emotional_intensity(text: str) -> EmotionalIntensity:
        if _mentions(text, HIGH_EMOTION_WORDS):
            return EmotionalIntensity.HIGH
        if _mentions(text, MEDIUM_EMOTION_WORDS):
            return EmotionalIntensity.MEDIUM
        return EmotionalIntensity.LOW

    @staticmethod
    def _conflict_level(text: str) -> ConflictLevel:
        if _mentions(text, CLIMACTIC_CONFLICT_WORDS):
            return ConflictLevel.CLIMACTIC
        if _mentions(text, MAJOR_CONFLICT_WORDS):
            return ConflictLevel.MAJOR
        return ConflictLevel.MINOR

    @staticmethod
    def _estimate_character_count(plan: ChapterPlan) -> int:
        text = " ".join([plan.summary] + plan.key_events).lower()
        count = 1 + sum(text.count(word) for word in CHARACTER_INDICATORS)
        return min(count, MAX_ESTIMATED_CHARACTERS)

    @staticmethod
    def _scene_complexity(text: str) -> SceneComplexity:
        if _mentions(text, COMPLEX_SCENE_WORDS):
            return SceneComplexity.COMPLEX
        if _mentions(text, MODERATE_SCENE_WORDS):
            return SceneComplexity.MODERATE
        return SceneComplexity.SIMPLE

    @staticmethod
    def _dialogue_intensity(text: str) -> DialogueIntensity:
        if _mentions(text, HEAVY_DIALOGUE_WORDS):
            return DialogueIntensity.HEAVY
        if _mentions(text, MODERATE_DIALOGUE_WORDS):
            return DialogueIntensity.MODERATE
        return DialogueIntensity.LIGHT

    @staticmethod
    def _action_level(text: str) -> ActionLevel:
        if _mentions(text, HIGH_ACTION_WORDS):
            return ActionLevel.HIGH
        if _mentions(text, MEDIUM_ACTION_WORDS):
            return ActionLevel.MEDIUM
        return ActionLevel.LOW

    @staticmethod
    def _narrative_importance(plan: ChapterPlan) -> NarrativeImportance:
        text = f"{plan.purpose} {plan.series_role}".lower()
        if _mentions(text, ("finale", "end", "conclusion")):
            return NarrativeImportance.FINALE
        if _mentions(text, ("critical", "important", "key")):
            return NarrativeImportance.CRITICAL
        if _mentions(text, ("develop", "advance", "progress")):
            return NarrativeImportance.DEVELOPMENT
        return NarrativeImportance.FILLER

    @staticmethod
    def score(complexity: ChapterComplexity) -> int:
        """Weighted sum of the complexity signals."""
        total = 0
        if complexity.has_new_characters:
            total += 2
        if complexity.is_plot_turning_point:
            total += 3
        if complexity.is_climactic_moment:
            total += 4
        if complexity.requires_world_building:
            total += 2
        total += _LEVEL_SCORES[complexity.emotional_intensity]
        total += _CONFLICT_SCORES[complexity.conflict_level]
        total += min(max(complexity.character_count, 0), MAX_SCORED_CHARACTERS)
        total += _LEVEL_SCORES[complexity.scene_complexity]
        total += _LEVEL_SCORES[complexity.dialogue_intensity]
        total += _LEVEL_SCORES[complexity.action_level]
        total += _IMPORTANCE_SCORES[complexity.narrative_importance]
        return total

    @staticmethod
    def tier_for_score(score: int) -> ContextTier:
        if score <= 5:
            return ContextTier.MINIMAL
        if score <= 10:
            return ContextTier.STANDARD
        if score <= 16:
            return ContextTier.DETAILED
        return ContextTier.FULL

    def select_tier(self, target: ChapterPlan | ChapterComplexity) -> ContextTier:
        """Pick the tier for a plan (or already-analyzed complexity).

        A climactic moment in a climactic conflict always gets FULL context.
        Otherwise a learned tier for the complexity signature wins over the
        computed score.
        """
        complexity = (
            self.analyze(target) if isinstance(target, ChapterPlan) else target
        )
        if (
            complexity.is_climactic_moment
            and complexity.conflict_level is ConflictLevel.CLIMACTIC
        ):
            return ContextTier.FULL

        if self.learning_table is not None:
            learned = self.learning_table.lookup(complexity.signature())
            if learned is not None:
                logger.debug(
                    "Using learned context tier",
                    signature=complexity.signature(),
                    tier=learned.value,
                )
                return learned

        return self.tier_for_score(self.score(complexity))

    @staticmethod
    def explain(complexity: ChapterComplexity, tier: ContextTier) -> str:
        factors = []
        if complexity.is_climactic_moment:
            factors.append("climactic moment detected")
        if complexity.is_plot_turning_point:
            factors.append("plot turning point")
        if complexity.has_new_characters:
            factors.append("new characters introduced")
        if complexity.requires_world_building:
            factors.append("world building required")
        if complexity.emotional_intensity is EmotionalIntensity.HIGH:
            factors.append("high emotional intensity")
        if complexity.conflict_level is ConflictLevel.CLIMACTIC:
            factors.append("climactic conflict")
        if complexity.character_count > 3:
            factors.append("multiple characters")
        reasons = ", ".join(factors) or "standard complexity"
        return f"Selected {tier.value} context due to: {reasons}"

    @staticmethod
    def optimization_strategies(tier: ContextTier) -> list[str]:
        return list(_STRATEGIES[tier])

    @staticmethod
    def fallback_tier(tier: ContextTier) -> ContextTier:
        return _FALLBACKS[tier]
