# context_optimization/context_compressor.py
"""Builds a token-bounded context object from accumulated narrative state.

Extraction is keyword and pattern based. Any extraction miss falls back to a
fixed default string, and the compressor never raises: on unexpected input it
degrades to a generic context rather than failing the request.
"""

from __future__ import annotations

import copy
import dataclasses
import re
from collections import Counter
from collections.abc import Sequence

import structlog

from config import settings
from core.tokens import TokenEstimator, get_token_estimator
from models.complexity_models import ChapterPlan, ContextTier
from models.context_models import (
    ChapterGoals,
    CharacterEssential,
    CompressedChapterSummary,
    CoreFacts,
    ExtractedFacts,
    OptimizedContext,
    SettingFacts,
    TokenReductionReport,
)
from models.narrative_models import CharacterProfile, Foundation, NarrativeState, PriorChapter

logger = structlog.get_logger(__name__)

# (active characters, recent chapter summaries, setting features)
TIER_CAPS: dict[ContextTier, tuple[int, int, int]] = {
    ContextTier.MINIMAL: (1, 0, 0),
    ContextTier.STANDARD: (3, 1, 1),
    ContextTier.DETAILED: (3, 2, 2),
    ContextTier.FULL: (3, 3, 3),
}

RECENT_CHAPTER_WINDOW = 3
MAX_FEATURE_LENGTH = 30

_LOCATION_RE = re.compile(r"\b(?:in|at|located)\s+([^,.\n]+)", re.IGNORECASE)
_ATMOSPHERE_RE = re.compile(
    r"(?:atmosphere|mood|feeling|tone).*?(?:is|:|of)\s+([^,.\n]+)", re.IGNORECASE
)
_CONDITION_RE = re.compile(
    r"(?:currently|now|present|today).*?(?:is|:|are)\s+([^,.\n]+)", re.IGNORECASE
)
_FEATURE_RES = (
    re.compile(r"(?:features?|includes?|contains?|has)\s+([^.]+)", re.IGNORECASE),
    re.compile(r"(?:notable|significant|important|key)\s+([^.]+)", re.IGNORECASE),
    re.compile(r"(?:filled with|dominated by|characterized by)\s+([^.]+)", re.IGNORECASE),
)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_TIMELINE_RE = re.compile(
    r"(?:chapter|ch\.?)\s*(\d+)|(?:after|before|during)\s+([^.]+)", re.IGNORECASE
)
_NAME_RE = re.compile(r"^[A-Z][a-z]+$")

TRAIT_KEYWORDS = (
    "determined", "cautious", "bold", "analytical",
    "emotional", "logical", "impulsive", "patient",
)
EMOTION_KEYWORDS = (
    "determined", "anxious", "hopeful", "conflicted",
    "angry", "calm", "excited", "worried",
)
GOAL_ACTION_WORDS = ("wants", "needs", "seeks", "tries", "attempts", "hopes")
EVENT_INDICATORS = ("suddenly", "then", "but", "however", "when", "as", "after")
DEVELOPMENT_WORDS = ("realizes", "learns", "discovers", "understands", "changes", "grows")
PLOT_WORDS = ("reveals", "leads to", "causes", "results in", "advances", "moves toward")
CONSEQUENCE_WORDS = (
    "therefore", "thus", "as a result", "consequently", "this means", "now",
)
STAKE_WORDS = (
    "at stake", "risk", "danger", "consequence", "lose", "gain", "win", "fail",
)


def _sentences(text: str) -> list[str]:
    return _SENTENCE_SPLIT_RE.split(text or "")


def _first_sentence_with(text: str, words: Sequence[str], limit: int) -> str | None:
    for sentence in _sentences(text):
        lowered = sentence.lower()
        if any(word in lowered for word in words):
            stripped = sentence.strip()
            if stripped:
                return stripped[:limit]
    return None


def _truncate_strings(obj: object, max_len: int) -> None:
    """Truncate every string field of a (nested) dataclass in place."""
    for f in dataclasses.fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if isinstance(value, str):
            setattr(obj, f.name, value[:max_len])
        elif dataclasses.is_dataclass(value):
            _truncate_strings(value, max_len)
        elif isinstance(value, list):
            new_items = []
            for item in value:
                if isinstance(item, str):
                    new_items.append(item[:max_len])
                else:
                    if dataclasses.is_dataclass(item):
                        _truncate_strings(item, max_len)
                    new_items.append(item)
            setattr(obj, f.name, new_items)


class ContextCompressor:
    """Compresses narrative state into an :class:`OptimizedContext` per tier."""

    def __init__(self, estimator: TokenEstimator | None = None) -> None:
        self.estimator = estimator or get_token_estimator("chars")

    # -- public API -------------------------------------------------------

    def compress(
        self, tier: ContextTier, state: NarrativeState, plan: ChapterPlan
    ) -> OptimizedContext:
        """Build the context for ``tier`` and trim it to the tier's token budget."""
        if tier is ContextTier.MINIMAL:
            context = self._build_minimal(state, plan)
        else:
            try:
                context = self.select_relevant_context(state, plan, tier)
            except Exception as exc:  # extraction must never fail a request
                logger.warning(
                    "Context extraction failed; using generic context",
                    tier=tier.value,
                    error=str(exc),
                )
                context = self._build_minimal(state, plan)
                context.tier = tier
        return self.fit_to_budget(context, tier.token_budget)

    def estimate_tokens(self, text: str) -> int:
        return self.estimator.estimate(text)

    def estimate_context_tokens(self, context: OptimizedContext) -> int:
        return self.estimator.estimate(context.to_json())

    def select_relevant_context(
        self, state: NarrativeState, plan: ChapterPlan, tier: ContextTier
    ) -> OptimizedContext:
        max_characters, max_events, max_features = TIER_CAPS[tier]
        setting = self.compress_setting(state.setting_description, max_features)
        characters = self.extract_character_essentials(state.characters, plan)
        events = self.compress_previous_chapters(state.previous_chapters)
        return OptimizedContext(
            tier=tier,
            core_facts=CoreFacts(
                genre=state.genre or "unknown",
                protagonist=state.protagonist_name(),
                central_conflict=self.extract_central_conflict(state.foundation),
                setting=setting,
            ),
            active_characters=characters[:max_characters],
            recent_events=events[-max_events:] if max_events else [],
            chapter_goals=self._chapter_goals(plan),
        )

    def compress_setting(self, description: str, max_features: int = 3) -> SettingFacts:
        """Collapse a prose setting description into a few fixed fields."""
        description = description or ""
        location = _LOCATION_RE.search(description)
        atmosphere = _ATMOSPHERE_RE.search(description)
        condition = _CONDITION_RE.search(description)

        features: list[str] = []
        for pattern in _FEATURE_RES:
            for match in pattern.finditer(description):
                feature = match.group(1).strip().lower()
                if feature and len(feature) < MAX_FEATURE_LENGTH:
                    features.append(feature)

        return SettingFacts(
            location=(location.group(1).strip() if location else "") or "unknown_location",
            atmosphere=(atmosphere.group(1).strip() if atmosphere else "") or "neutral",
            current_condition=(condition.group(1).strip() if condition else "") or "normal",
            key_features=features[:max_features],
        )

    def extract_character_essentials(
        self, characters: Sequence[CharacterProfile], plan: ChapterPlan
    ) -> list[CharacterEssential]:
        relevant = self._relevant_characters(characters, plan)
        plan_text = f"{plan.summary} {plan.purpose}"
        return [
            CharacterEssential(
                name=character.name,
                current_goal=self._character_goal(character.name, plan_text),
                key_trait=self._primary_trait(character),
                current_emotion=self._current_emotion(plan_text),
                relevant_relationship=self._relevant_relationship(character, plan),
            )
            for character in relevant
        ]

    def compress_previous_chapters(
        self, chapters: Sequence[PriorChapter]
    ) -> list[CompressedChapterSummary]:
        """One-line summaries of the most recent chapters, oldest first."""
        recent = list(chapters)[-RECENT_CHAPTER_WINDOW:]
        summaries = []
        for chapter in recent:
            text = chapter.source_text()
            summaries.append(
                CompressedChapterSummary(
                    number=chapter.number,
                    key_event=self._key_event(text),
                    character_development=_first_sentence_with(
                        text, DEVELOPMENT_WORDS, 80
                    )
                    or "continues arc",
                    plot_advancement=_first_sentence_with(text, PLOT_WORDS, 80)
                    or "story progresses",
                    consequences=_first_sentence_with(text, CONSEQUENCE_WORDS, 80)
                    or "sets up future events",
                )
            )
        return summaries

    @staticmethod
    def extract_central_conflict(foundation: Foundation | None) -> str:
        if foundation is None:
            return "internal struggle"
        if foundation.plot_structure and foundation.plot_structure.inciting_incident:
            return foundation.plot_structure.inciting_incident[:50]
        return foundation.premise[:50] or "character vs obstacle"

    def fit_to_budget(self, context: OptimizedContext, budget: int) -> OptimizedContext:
        """Return a copy of ``context`` whose serialized estimate fits ``budget``.

        Drops the oldest summaries first, then extra characters, then setting
        features and the setting itself, then shortens every string field.
        """
        fitted = copy.deepcopy(context)

        def over() -> bool:
            return self.estimate_context_tokens(fitted) > budget

        while over() and fitted.recent_events:
            fitted.recent_events.pop(0)
        while over() and len(fitted.active_characters) > 1:
            fitted.active_characters.pop()
        setting = fitted.core_facts.setting
        while over() and setting is not None and setting.key_features:
            setting.key_features.pop()
        if over() and setting is not None:
            fitted.core_facts.setting = None

        max_len = 64
        while over():
            _truncate_strings(fitted, max_len)
            if max_len == 0:
                break
            max_len //= 2

        if fitted != context:
            logger.debug(
                "Trimmed context to fit budget",
                tier=context.tier.value,
                budget=budget,
                tokens=self.estimate_context_tokens(fitted),
            )
        return fitted

    def analyze_token_reduction(
        self, original_text: str, context: OptimizedContext
    ) -> TokenReductionReport:
        before = self.estimate_tokens(original_text)
        after = self.estimate_context_tokens(context)
        ratio = after / before if before else 1.0
        return TokenReductionReport(
            before_optimization=before,
            after_optimization=after,
            compression_ratio=ratio,
            cost_savings_usd=(before - after) * settings.INPUT_TOKEN_COST,
        )

    def extract_story_facts(
        self, content: str, characters: Sequence[CharacterProfile] = ()
    ) -> ExtractedFacts:
        """Pull world, plot, stakes and timeline facts out of generated prose."""
        setting = self.compress_setting(content)
        names = self._recurring_names(content)
        timeline = [
            {"event": match.group(0).strip(), "impact": "moderate", "affected_characters": names}
            for match in _TIMELINE_RE.finditer(content or "")
        ]
        return ExtractedFacts(
            characters=self.extract_character_essentials(characters, ChapterPlan()),
            world={
                "locations": [setting.location],
                "conditions": [setting.current_condition],
                "atmosphere": setting.atmosphere,
                "features": setting.key_features,
            },
            plot={
                "current_thread": self._key_event(content),
                "advancement": _first_sentence_with(content, CONSEQUENCE_WORDS, 80)
                or "sets up future events",
                "stakes": _first_sentence_with(content, STAKE_WORDS, 100)
                or "character development",
            },
            timeline=timeline,
        )

    # -- helpers ------------------------------------------------------------

    def _build_minimal(self, state: NarrativeState, plan: ChapterPlan) -> OptimizedContext:
        protagonist = state.protagonist_name()
        return OptimizedContext(
            tier=ContextTier.MINIMAL,
            core_facts=CoreFacts(
                genre=state.genre or "unknown",
                protagonist=protagonist,
                central_conflict="immediate challenge",
            ),
            active_characters=[
                CharacterEssential(
                    name=protagonist,
                    current_goal=plan.purpose or "advance plot",
                    key_trait="determined",
                    current_emotion="focused",
                    relevant_relationship="none",
                )
            ],
            chapter_goals=ChapterGoals(
                primary_goal=plan.purpose or "advance story",
                secondary_goal=plan.key_events[0] if plan.key_events else "advance story",
                plot_advancement="incremental progress",
            ),
        )

    @staticmethod
    def _chapter_goals(plan: ChapterPlan) -> ChapterGoals:
        return ChapterGoals(
            primary_goal=plan.purpose or "advance story",
            secondary_goal=plan.key_events[0] if plan.key_events else "develop characters",
            plot_advancement=plan.plot_advancement or "continue narrative",
        )

    @staticmethod
    def _relevant_characters(
        characters: Sequence[CharacterProfile], plan: ChapterPlan
    ) -> list[CharacterProfile]:
        mentioned = [
            c
            for c in characters
            if c.name
            and (c.name in plan.summary or any(c.name in e for e in plan.key_events))
        ]
        return mentioned or list(characters[:3])

    @staticmethod
    def _character_goal(name: str, plan_text: str) -> str:
        if name and name in plan_text:
            sentence = next((s for s in _sentences(plan_text) if name in s), None)
            if sentence:
                for action in GOAL_ACTION_WORDS:
                    if action in sentence:
                        goal = sentence.split(action, 1)[1].strip()[:50]
                        return goal or "advance plot"
        return "advance plot"

    @staticmethod
    def _primary_trait(character: CharacterProfile) -> str:
        description = character.description.lower()
        return next((t for t in TRAIT_KEYWORDS if t in description), "complex")

    @staticmethod
    def _current_emotion(plan_text: str) -> str:
        lowered = plan_text.lower()
        return next((e for e in EMOTION_KEYWORDS if e in lowered), "focused")

    @staticmethod
    def _relevant_relationship(character: CharacterProfile, plan: ChapterPlan) -> str:
        plan_text = plan.summary or plan.purpose
        for rel in character.relationships:
            if rel.character and rel.character in plan_text:
                return f"{rel.character}: {rel.type}"
        return "none active"

    @staticmethod
    def _key_event(text: str) -> str:
        candidates = [s for s in _sentences(text) if len(s.strip()) > 20]
        for sentence in candidates:
            lowered = sentence.lower()
            if any(indicator in lowered for indicator in EVENT_INDICATORS):
                return sentence.strip()[:100]
        if candidates:
            return candidates[0].strip()[:100]
        return "story continues"

    @staticmethod
    def _recurring_names(content: str) -> list[str]:
        counts = Counter(w for w in (content or "").split() if _NAME_RE.match(w))
        return [word for word, n in counts.items() if n > 1][:5]
