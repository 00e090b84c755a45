# tests/test_batch_helpers.py
import pytest
from core.llm_interface import GenerationResult
from models.batch_models import BatchOperation, OperationType
from orchestration.batch_helpers import (
    batch_analyze_content,
    batch_generate_story_foundations,
    batch_improve_content,
)
from orchestration.batch_scheduler import BatchScheduler


class EchoExecutor:
    def __init__(self) -> None:
        self.ops: list[BatchOperation] = []

    async def __call__(self, op: BatchOperation) -> GenerationResult:
        self.ops.append(op)
        return GenerationResult(content=f"{op.type.value}:{op.id}")


@pytest.mark.asyncio
async def test_batch_generate_story_foundations():
    executor = EchoExecutor()
    scheduler = BatchScheduler(executor)
    results = await batch_generate_story_foundations(
        scheduler,
        [
            {"id": "s1", "genre": "fantasy", "premise": "A dragon", "owner_id": "u1"},
            {"id": "s2", "genre": "scifi", "premise": "A ship", "title": "Void"},
        ],
    )
    await scheduler.shutdown()

    assert list(results) == ["s1", "s2"]
    assert results["s1"].content == "story_foundation:s1"
    by_id = {op.id: op for op in executor.ops}
    assert by_id["s1"].params["owner_id"] == "u1"
    assert by_id["s1"].params["title"] == "Untitled Story"
    assert by_id["s2"].cache_key == "story_foundation_scifi_A ship"
    assert "owner_id" not in by_id["s2"].params


@pytest.mark.asyncio
async def test_batch_analyze_and_improve():
    executor = EchoExecutor()
    scheduler = BatchScheduler(executor)
    analyzed = await batch_analyze_content(scheduler, [{"id": "a1", "content": "Text"}])
    improved = await batch_improve_content(
        scheduler, [{"id": "i1", "content": "Text", "feedback": "Shorter"}]
    )
    await scheduler.shutdown()

    assert analyzed["a1"].success
    assert improved["i1"].success
    by_id = {op.id: op for op in executor.ops}
    assert by_id["a1"].type is OperationType.CONTENT_ANALYSIS
    assert by_id["i1"].params["improvement_type"] == "general"
    assert by_id["i1"].cache_key == "improve_Text_Shorter"
