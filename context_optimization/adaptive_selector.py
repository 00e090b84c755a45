# context_optimization/adaptive_selector.py
"""Chooses a context tier for a chapter and builds the matching context."""

from __future__ import annotations

from typing import Any

import structlog

from models.complexity_models import ChapterPlan, ContextTier
from models.context_models import AdaptiveContextResult, LearningRecord
from models.narrative_models import NarrativeState

from .complexity_analyzer import ComplexityAnalyzer
from .context_compressor import ContextCompressor
from .learning import TierLearningTable

logger = structlog.get_logger(__name__)


class AdaptiveContextSelector:
    """Glue between the analyzer, the compressor and the learning table."""

    def __init__(
        self,
        analyzer: ComplexityAnalyzer,
        compressor: ContextCompressor,
        learning_table: TierLearningTable | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.compressor = compressor
        self.learning_table = learning_table or analyzer.learning_table
        if self.analyzer.learning_table is None:
            self.analyzer.learning_table = self.learning_table

    def get_adaptive_context(
        self, state: NarrativeState, plan: ChapterPlan
    ) -> AdaptiveContextResult:
        complexity = self.analyzer.analyze(plan)
        tier = self.analyzer.select_tier(complexity)
        context = self.compressor.compress(tier, state, plan)
        token_estimate = self.compressor.estimate_context_tokens(context)
        logger.debug(
            "Adaptive context built",
            chapter=plan.chapter_number,
            tier=tier.value,
            score=self.analyzer.score(complexity),
            tokens=token_estimate,
        )
        return AdaptiveContextResult(
            tier=tier,
            context=context,
            token_estimate=token_estimate,
            token_budget=tier.token_budget,
            reasoning=self.analyzer.explain(complexity, tier),
            optimizations=self.analyzer.optimization_strategies(tier),
            fallback_tier=self.analyzer.fallback_tier(tier),
        )

    def learn_from_generation(
        self,
        plan: ChapterPlan,
        tier: ContextTier,
        actual_tokens: int,
        quality_score: float,
        success: bool,
        user_feedback: str | None = None,
    ) -> None:
        if self.learning_table is None:
            return
        record = LearningRecord(
            signature=self.analyzer.analyze(plan).signature(),
            tier=tier,
            actual_tokens=actual_tokens,
            quality_score=quality_score,
            success=success,
            user_feedback=user_feedback,
        )
        self.learning_table.record(record)

    def performance_analytics(self) -> dict[str, Any]:
        if self.learning_table is None:
            return {}
        return self.learning_table.performance_analytics()
