# tests/test_tier_learning.py
import pytest
from context_optimization.learning import TierLearningTable
from models.complexity_models import ContextTier
from models.context_models import LearningRecord


def _record(signature: str, tier=ContextTier.STANDARD, quality=8.0, success=True, tokens=150):
    return LearningRecord(
        signature=signature,
        tier=tier,
        actual_tokens=tokens,
        quality_score=quality,
        success=success,
    )


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        TierLearningTable(capacity=0)


def test_oldest_pattern_is_evicted_at_capacity():
    table = TierLearningTable(capacity=2)
    table.record(_record("a"))
    table.record(_record("b"))
    table.record(_record("c"))
    assert len(table) == 2
    assert "a" not in table
    assert table.lookup("c") is ContextTier.STANDARD


def test_low_quality_outcome_is_not_learned():
    table = TierLearningTable()
    table.record(_record("a", quality=6.9))
    table.record(_record("b", quality=9.0, success=False))
    assert table.lookup("a") is None
    assert table.lookup("b") is None
    assert len(table.history()) == 2


def test_relearning_replaces_tier():
    table = TierLearningTable()
    table.record(_record("a", tier=ContextTier.MINIMAL))
    table.record(_record("a", tier=ContextTier.FULL))
    assert table.lookup("a") is ContextTier.FULL


def test_underperforming_pattern_is_pruned():
    table = TierLearningTable()
    table.record(_record("a", quality=8.0))
    assert table.lookup("a") is ContextTier.STANDARD
    table.record(_record("a", quality=2.0, success=False))
    assert table.lookup("a") is None


def test_history_is_bounded():
    table = TierLearningTable(history_size=3)
    for i in range(5):
        table.record(_record(f"s{i}"))
    assert [r.signature for r in table.history()] == ["s2", "s3", "s4"]


def test_analytics_with_no_history():
    analytics = TierLearningTable().performance_analytics()
    assert analytics["recommendations"] == ["No generation outcomes recorded yet"]
    assert analytics["tier_distribution"]["minimal"] == 0
    assert analytics["learned_patterns"] == 0


def test_analytics_summarize_outcomes():
    table = TierLearningTable()
    table.record(_record("a", tier=ContextTier.MINIMAL, quality=9.0, tokens=90))
    table.record(_record("b", tier=ContextTier.MINIMAL, quality=7.0, tokens=110))
    table.record(_record("c", tier=ContextTier.FULL, quality=8.0, success=False, tokens=700))

    analytics = table.performance_analytics()
    assert analytics["tier_distribution"] == {
        "minimal": 2,
        "standard": 0,
        "detailed": 0,
        "full": 1,
    }
    assert analytics["average_quality"]["minimal"] == pytest.approx(8.0)
    assert analytics["average_tokens"]["minimal"] == pytest.approx(100.0)
    assert analytics["success_rate"]["full"] == 0.0
    assert analytics["learned_patterns"] == 2
    assert "minimal context shows best quality/token ratio" in analytics["recommendations"]
