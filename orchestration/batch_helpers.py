"""Convenience wrappers that submit a homogeneous batch and run it."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from models.batch_models import BatchOperation, BatchResult, OperationType

from .batch_scheduler import BatchScheduler


def _owner(item: Mapping[str, Any]) -> dict[str, Any]:
    return {"owner_id": item["owner_id"]} if item.get("owner_id") else {}


async def _run(
    scheduler: BatchScheduler, operations: list[BatchOperation]
) -> dict[str, BatchResult]:
    ids = await scheduler.submit_many(operations)
    results = await scheduler.run_all()
    return {op_id: results[op_id] for op_id in ids}


async def batch_generate_story_foundations(
    scheduler: BatchScheduler, stories: Iterable[Mapping[str, Any]]
) -> dict[str, BatchResult]:
    """Each story needs ``id``, ``genre`` and ``premise``; ``title`` is optional."""
    operations = [
        BatchOperation(
            id=story["id"],
            type=OperationType.STORY_FOUNDATION,
            params={
                "title": story.get("title") or "Untitled Story",
                "genre": story["genre"],
                "premise": story["premise"],
                **_owner(story),
            },
            cache_key=f"story_foundation_{story['genre']}_{story['premise'][:100]}",
        )
        for story in stories
    ]
    return await _run(scheduler, operations)


async def batch_analyze_content(
    scheduler: BatchScheduler, contents: Iterable[Mapping[str, Any]]
) -> dict[str, BatchResult]:
    operations = [
        BatchOperation(
            id=item["id"],
            type=OperationType.CONTENT_ANALYSIS,
            params={"content": item["content"], **_owner(item)},
            cache_key=f"analysis_{item['content'][:100]}",
        )
        for item in contents
    ]
    return await _run(scheduler, operations)


async def batch_improve_content(
    scheduler: BatchScheduler, improvements: Iterable[Mapping[str, Any]]
) -> dict[str, BatchResult]:
    operations = [
        BatchOperation(
            id=item["id"],
            type=OperationType.CONTENT_IMPROVEMENT,
            params={
                "content": item["content"],
                "feedback": item["feedback"],
                "improvement_type": item.get("improvement_type") or "general",
                **_owner(item),
            },
            cache_key=f"improve_{item['content'][:50]}_{item['feedback'][:50]}",
        )
        for item in improvements
    ]
    return await _run(scheduler, operations)
