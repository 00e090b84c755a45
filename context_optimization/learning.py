# context_optimization/learning.py
"""Bounded table of context tiers that produced good outcomes."""

from __future__ import annotations

import threading
from collections import OrderedDict, deque
from typing import Any

import structlog

from config import settings
from models.complexity_models import ContextTier
from models.context_models import LearningRecord

logger = structlog.get_logger(__name__)


class TierLearningTable:
    """Maps a complexity signature to the tier that last worked well for it.

    The pattern map holds at most ``capacity`` signatures; when full, the
    signature learned longest ago is evicted. The outcome history is a ring
    buffer of ``history_size`` records used for trend analysis and analytics.
    """

    def __init__(
        self,
        capacity: int = settings.LEARNING_TABLE_CAPACITY,
        history_size: int = settings.LEARNING_HISTORY_SIZE,
        min_quality: float = settings.LEARNING_MIN_QUALITY,
        trend_window: int = settings.LEARNING_TREND_WINDOW,
        min_success_rate: float = settings.LEARNING_MIN_SUCCESS_RATE,
        min_avg_quality: float = settings.LEARNING_MIN_AVG_QUALITY,
    ) -> None:
        if capacity < 1:
            raise ValueError("Learning table capacity must be at least 1")
        self.capacity = capacity
        self.min_quality = min_quality
        self.trend_window = trend_window
        self.min_success_rate = min_success_rate
        self.min_avg_quality = min_avg_quality
        self._patterns: OrderedDict[str, ContextTier] = OrderedDict()
        self._history: deque[LearningRecord] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, signature: object) -> bool:
        return signature in self._patterns

    def lookup(self, signature: str) -> ContextTier | None:
        """Return the learned tier for ``signature`` without touching eviction order."""
        with self._lock:
            return self._patterns.get(signature)

    def record(self, record: LearningRecord) -> None:
        """Store an outcome and update learned patterns."""
        with self._lock:
            self._history.append(record)
            if record.success and record.quality_score >= self.min_quality:
                self._patterns.pop(record.signature, None)
                self._patterns[record.signature] = record.tier
                while len(self._patterns) > self.capacity:
                    evicted, _ = self._patterns.popitem(last=False)
                    logger.debug("Evicted learned tier pattern", signature=evicted)
            self._prune_underperformers()

    def forget(self, signature: str) -> bool:
        with self._lock:
            return self._patterns.pop(signature, None) is not None

    def history(self) -> list[LearningRecord]:
        with self._lock:
            return list(self._history)

    def _prune_underperformers(self) -> None:
        recent = list(self._history)[-self.trend_window :]
        totals: dict[str, list[float]] = {}
        for rec in recent:
            # [count, successes, quality sum]
            bucket = totals.setdefault(rec.signature, [0, 0, 0.0])
            bucket[0] += 1
            bucket[1] += 1 if rec.success else 0
            bucket[2] += rec.quality_score

        for signature, (count, successes, quality) in totals.items():
            if signature not in self._patterns:
                continue
            success_rate = successes / count
            avg_quality = quality / count
            if success_rate < self.min_success_rate or avg_quality < self.min_avg_quality:
                del self._patterns[signature]
                logger.info(
                    "Dropped underperforming tier pattern",
                    signature=signature,
                    success_rate=round(success_rate, 2),
                    avg_quality=round(avg_quality, 2),
                )

    def performance_analytics(self) -> dict[str, Any]:
        """Distribution, mean quality, mean tokens and success rate per tier."""
        history = self.history()
        distribution = {tier: 0 for tier in ContextTier}
        quality: dict[ContextTier, list[float]] = {tier: [] for tier in ContextTier}
        tokens: dict[ContextTier, list[int]] = {tier: [] for tier in ContextTier}
        successes: dict[ContextTier, list[int]] = {tier: [] for tier in ContextTier}

        for rec in history:
            distribution[rec.tier] += 1
            quality[rec.tier].append(rec.quality_score)
            tokens[rec.tier].append(rec.actual_tokens)
            successes[rec.tier].append(1 if rec.success else 0)

        def _mean(values: list[float] | list[int]) -> float:
            return sum(values) / len(values) if values else 0.0

        average_quality = {tier: _mean(quality[tier]) for tier in ContextTier}
        average_tokens = {tier: _mean(tokens[tier]) for tier in ContextTier}
        success_rate = {tier: _mean(successes[tier]) for tier in ContextTier}

        return {
            "tier_distribution": {t.value: n for t, n in distribution.items()},
            "average_quality": {t.value: q for t, q in average_quality.items()},
            "average_tokens": {t.value: n for t, n in average_tokens.items()},
            "success_rate": {t.value: r for t, r in success_rate.items()},
            "learned_patterns": len(self._patterns),
            "recommendations": self._recommendations(
                distribution, average_quality, average_tokens
            ),
        }

    @staticmethod
    def _recommendations(
        distribution: dict[ContextTier, int],
        quality: dict[ContextTier, float],
        tokens: dict[ContextTier, float],
    ) -> list[str]:
        total = sum(distribution.values())
        if total == 0:
            return ["No generation outcomes recorded yet"]

        recommendations: list[str] = []
        if distribution[ContextTier.MINIMAL] / total * 100 > 60:
            recommendations.append("Consider more detailed context for complex chapters")
        if distribution[ContextTier.FULL] / total * 100 > 30:
            recommendations.append("Optimize usage of FULL context - may be overused")

        avg_quality = sum(quality.values()) / len(quality)
        if quality[ContextTier.MINIMAL] > avg_quality + 1:
            recommendations.append(
                "MINIMAL context performing well - consider using more often"
            )
        if quality[ContextTier.FULL] < avg_quality - 1:
            recommendations.append(
                "FULL context underperforming - review complex chapter handling"
            )

        efficiencies = {
            tier: quality[tier] / tokens[tier] for tier in ContextTier if tokens[tier] > 0
        }
        if efficiencies:
            best = max(efficiencies, key=lambda tier: efficiencies[tier])
            recommendations.append(
                f"{best.value} context shows best quality/token ratio"
            )
        return recommendations
