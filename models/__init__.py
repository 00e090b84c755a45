"""Central package for pagewright data models."""

from .batch_models import (
    BatchOperation,
    BatchResult,
    OperationState,
    OperationType,
    SchedulerStats,
)
from .cache_models import (
    CacheEntry,
    CacheLookup,
    CacheRecord,
    MatchKind,
    WrappedGeneration,
)
from .complexity_models import (
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
from .context_models import (
    AdaptiveContextResult,
    ChapterGoals,
    CharacterEssential,
    CompressedChapterSummary,
    CoreFacts,
    ExtractedFacts,
    LearningRecord,
    OptimizedContext,
    SettingFacts,
    TokenReductionReport,
)
from .narrative_models import (
    CharacterProfile,
    Foundation,
    NarrativeState,
    PlotStructure,
    PriorChapter,
    RelationshipModel,
)

__all__ = [
    "ActionLevel",
    "AdaptiveContextResult",
    "BatchOperation",
    "BatchResult",
    "CacheEntry",
    "CacheLookup",
    "CacheRecord",
    "ChapterComplexity",
    "ChapterGoals",
    "ChapterPlan",
    "CharacterEssential",
    "CharacterProfile",
    "CompressedChapterSummary",
    "ConflictLevel",
    "ContextTier",
    "CoreFacts",
    "DialogueIntensity",
    "EmotionalIntensity",
    "ExtractedFacts",
    "Foundation",
    "LearningRecord",
    "MatchKind",
    "NarrativeImportance",
    "NarrativeState",
    "OperationState",
    "OperationType",
    "OptimizedContext",
    "PlotStructure",
    "PriorChapter",
    "RelationshipModel",
    "SceneComplexity",
    "SchedulerStats",
    "SettingFacts",
    "TokenReductionReport",
    "WrappedGeneration",
]
