# tests/test_models.py
import pytest
from core.usage import TokenUsage
from models import (
    BatchOperation,
    ChapterComplexity,
    CharacterEssential,
    ContextTier,
    CoreFacts,
    NarrativeState,
    OperationState,
    OperationType,
    OptimizedContext,
)


def test_operation_ids_are_generated_and_unique():
    first = BatchOperation(type="chapter")
    second = BatchOperation(type=OperationType.CHAPTER)
    assert first.type is OperationType.CHAPTER
    assert first.id.startswith("chapter_")
    assert first.id != second.id
    assert BatchOperation(type="general", id="mine").id == "mine"


def test_unknown_operation_type_is_rejected():
    with pytest.raises(ValueError):
        BatchOperation(type="poetry")


def test_terminal_states():
    assert OperationState.SUCCESS.terminal
    assert OperationState.FAILED.terminal
    assert not OperationState.QUEUED.terminal
    assert not OperationState.PROCESSING.terminal


def test_token_usage_totals():
    assert TokenUsage(3, 4).total_tokens == 7
    usage = TokenUsage.from_api({"input_tokens": 2, "output_tokens": 5})
    usage.add({"input_tokens": 1, "output_tokens": 1, "total_tokens": 2})
    assert usage.to_dict() == {"input_tokens": 3, "output_tokens": 6, "total_tokens": 9}
    assert TokenUsage().get_if_used() is None


def test_tier_budgets_grow_with_rank():
    budgets = [tier.token_budget for tier in sorted(ContextTier, key=lambda t: t.rank)]
    assert budgets == sorted(budgets)
    assert ContextTier.MINIMAL.rank == 0


def test_complexity_signature():
    assert ChapterComplexity().signature() == "minor_low_filler_0"


def test_context_json_drops_empty_fields():
    context = OptimizedContext(
        tier=ContextTier.STANDARD,
        core_facts=CoreFacts(genre="noir"),
        active_characters=[CharacterEssential(name="Ada")],
    )
    data = context.to_dict()
    assert "recent_events" not in data
    assert "setting" not in data["core_facts"]
    assert context.to_json().startswith('{"active_characters":[{')


def test_narrative_state_protagonist_fallbacks():
    assert NarrativeState().protagonist_name() == "protagonist"
    state = NarrativeState.model_validate({"characters": [{"name": "Bo"}]})
    assert state.protagonist_name() == "Bo"
