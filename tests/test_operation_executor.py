# tests/test_operation_executor.py
import pytest
from context_optimization import (
    AdaptiveContextSelector,
    ComplexityAnalyzer,
    ContextCompressor,
)
from core.errors import GenerationErrorKind, NonRetryableGenerationError
from core.llm_interface import GenerationResult
from core.usage import TokenUsage
from models.batch_models import BatchOperation, OperationType
from orchestration.operation_executor import GenerationOperationExecutor


class FakeLLM:
    def __init__(self) -> None:
        self.requests: list[dict] = []

    async def generate(self, prompt, system_prompt=None, model=None, max_tokens=None, temperature=None):
        self.requests.append(
            {
                "prompt": prompt,
                "system_prompt": system_prompt,
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        return GenerationResult(
            content="generated", usage=TokenUsage(12, 34), cost=0.02, model=model or "m"
        )


def _selector() -> AdaptiveContextSelector:
    return AdaptiveContextSelector(ComplexityAnalyzer(), ContextCompressor())


@pytest.mark.asyncio
async def test_executor_forwards_params_and_records_usage():
    llm = FakeLLM()
    executor = GenerationOperationExecutor(llm)
    op = BatchOperation(
        type=OperationType.GENERAL,
        params={"prompt": "Name a ship", "model": "small", "max_tokens": 20, "temperature": 0.1},
    )

    result = await executor(op)
    assert result.content == "generated"
    request = llm.requests[0]
    assert request["prompt"] == "Name a ship"
    assert (request["model"], request["max_tokens"], request["temperature"]) == ("small", 20, 0.1)
    assert "long-form narrative" in request["system_prompt"]
    assert executor.accountant.get_operation_total(OperationType.GENERAL) == 34


def test_explicit_system_prompt_wins():
    executor = GenerationOperationExecutor(FakeLLM())
    op = BatchOperation(type="general", params={"prompt": "p", "system_prompt": "Be terse."})
    assert executor.build_prompt(op) == ("p", "Be terse.")


@pytest.mark.parametrize(
    "op_type, params",
    [
        (OperationType.STORY_FOUNDATION, {"genre": "fantasy"}),
        (OperationType.CONTENT_IMPROVEMENT, {"feedback": "shorter"}),
        (OperationType.CONTENT_ANALYSIS, {}),
        (OperationType.CHAPTER, {"plan": {"chapter_number": "not a number"}}),
    ],
)
def test_unusable_params_are_non_retryable(op_type, params):
    executor = GenerationOperationExecutor(FakeLLM())
    with pytest.raises(NonRetryableGenerationError) as info:
        executor.build_prompt(BatchOperation(type=op_type, params=params))
    assert info.value.kind is GenerationErrorKind.MALFORMED_REQUEST


def test_foundation_prompt_contains_premise():
    executor = GenerationOperationExecutor(FakeLLM())
    prompt, system_prompt = executor.build_prompt(
        BatchOperation(
            type=OperationType.STORY_FOUNDATION,
            params={"genre": "noir", "premise": "A detective loses her memory", "title": "Fog"},
        )
    )
    assert "A detective loses her memory" in prompt
    assert "Working title: Fog" in prompt
    assert "noir" in system_prompt


def test_chapter_prompt_uses_adaptive_context():
    executor = GenerationOperationExecutor(FakeLLM(), selector=_selector())
    op = BatchOperation(
        type=OperationType.CHAPTER,
        params={
            "state": {
                "genre": "fantasy",
                "protagonist": "Ada",
                "foundation": {"title": "Salt", "premise": "A scout hunts a traitor"},
            },
            "plan": {
                "chapter_number": 7,
                "summary": "The final battle for the harbor.",
                "purpose": "Conclude the war",
                "key_events": ["Ada duels the traitor"],
            },
            "target_word_count": 1500,
        },
    )
    prompt, _ = executor.build_prompt(op)
    assert "Write chapter 7" in prompt
    assert '"Salt"' in prompt
    assert "(full tier)" in prompt
    assert "- Ada duels the traitor" in prompt
    assert "about 1500 words" in prompt


def test_improvement_and_analysis_prompts():
    executor = GenerationOperationExecutor(FakeLLM())
    improve, _ = executor.build_prompt(
        BatchOperation(
            type=OperationType.CONTENT_IMPROVEMENT,
            params={"content": "It was dark.", "feedback": "More texture", "improvement_type": "style"},
        )
    )
    assert "with a focus on style" in improve
    assert "Reader feedback: More texture" in improve

    analysis, _ = executor.build_prompt(
        BatchOperation(type=OperationType.CONTENT_ANALYSIS, params={"content": "It was dark."})
    )
    assert "It was dark." in analysis
