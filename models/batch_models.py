# models/batch_models.py
"""Operations, results and statistics for the batch scheduler."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from core.usage import TokenUsage


class OperationType(str, Enum):
    STORY_FOUNDATION = "story_foundation"
    CHAPTER = "chapter"
    CONTENT_IMPROVEMENT = "content_improvement"
    CONTENT_ANALYSIS = "content_analysis"
    GENERAL = "general"


class OperationState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (OperationState.SUCCESS, OperationState.FAILED)


_op_counter = itertools.count(1)


def new_operation_id(op_type: OperationType) -> str:
    return f"{op_type.value}_{next(_op_counter)}"


@dataclass
class BatchOperation:
    type: OperationType
    params: dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    cache_key: str | None = None
    id: str = ""
    retry_count: int = 0

    def __post_init__(self) -> None:
        self.type = OperationType(self.type)
        if not self.id:
            self.id = new_operation_id(self.type)


@dataclass
class BatchResult:
    id: str
    success: bool
    content: str | None = None
    usage: TokenUsage | None = None
    cost: float = 0.0
    error: str | None = None
    cached: bool = False
    processing_time_ms: float = 0.0
    attempts: int = 0


@dataclass
class SchedulerStats:
    queued: int
    in_flight: int
    succeeded: int
    failed: int
    total_cost: float
    avg_latency_ms: float
    cache_hit_rate: float
