# orchestration/runtime.py
"""
Process-wide context object that owns every long-lived component.

Construct one :class:`PagewrightRuntime` at startup, ``await start()`` it (or
use it as an async context manager) and ``await shutdown()`` on exit. Nothing
in pagewright keeps module-level mutable singletons.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from caching.cache_manager import CacheManager
from caching.durable_cache import DurableCache
from caching.hot_cache import HotCache
from caching.store import DurableStore
from config import durable_cache_path, settings
from context_optimization.adaptive_selector import AdaptiveContextSelector
from context_optimization.complexity_analyzer import ComplexityAnalyzer
from context_optimization.context_compressor import ContextCompressor
from context_optimization.learning import TierLearningTable
from core.llm_interface import LLMService
from core.tokens import get_token_estimator
from utils.similarity import get_similarity_fn
from models.batch_models import BatchOperation, BatchResult, OperationType
from models.complexity_models import ChapterPlan, ContextTier

from .batch_scheduler import BatchScheduler, OperationExecutor
from .operation_executor import GenerationOperationExecutor
from .token_accountant import TokenAccountant

logger = structlog.get_logger(__name__)


class PagewrightRuntime:
    def __init__(
        self,
        llm: LLMService | None = None,
        executor: OperationExecutor | None = None,
        db_path: str | None = None,
        durable: bool = True,
        estimator: str | None = None,
        similarity: str | None = None,
        **scheduler_options: Any,
    ) -> None:
        self.llm = llm if llm is not None or executor is not None else LLMService()
        self.estimator = get_token_estimator(estimator)
        self.learning_table = TierLearningTable()
        self.analyzer = ComplexityAnalyzer(self.learning_table)
        self.compressor = ContextCompressor(self.estimator)
        self.selector = AdaptiveContextSelector(
            self.analyzer, self.compressor, self.learning_table
        )
        self.accountant = TokenAccountant()

        self.hot_cache = HotCache()
        self.store = DurableStore(db_path or durable_cache_path()) if durable else None
        self.durable_cache = (
            DurableCache(
                self.store,
                similarity_fn=get_similarity_fn(similarity or settings.DURABLE_SIMILARITY_METRIC),
            )
            if self.store is not None
            else None
        )
        self.cache = CacheManager(self.hot_cache, self.durable_cache)

        self.executor = executor or GenerationOperationExecutor(
            self.llm, self.selector, self.accountant
        )
        self.scheduler = BatchScheduler(self.executor, self.cache, **scheduler_options)
        self._started = False

    async def __aenter__(self) -> PagewrightRuntime:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown(drain=exc_type is None)

    async def start(self) -> None:
        if self._started:
            return
        if self.store is not None:
            await self.store.connect()
            await self.durable_cache.cleanup()
        self.hot_cache.start_sweeper(settings.HOT_CACHE_CLEANUP_INTERVAL)
        self.scheduler.start()
        self._started = True
        logger.info(
            "Pagewright runtime started",
            durable_cache=self.store.db_path if self.store is not None else None,
            max_concurrency=self.scheduler.max_concurrency,
        )

    async def submit_work(
        self,
        item: BatchOperation | OperationType | str,
        params: dict[str, Any] | None = None,
        priority: int = 0,
        cache_key: str | None = None,
    ) -> str:
        """Submit an operation (or build one from its parts) and return its id."""
        if not isinstance(item, BatchOperation):
            item = BatchOperation(
                type=OperationType(item),
                params=params or {},
                priority=priority,
                cache_key=cache_key,
            )
        return await self.scheduler.submit(item)

    async def run_all(self) -> dict[str, BatchResult]:
        return await self.scheduler.run_all()

    async def await_results(
        self, ids: Iterable[str], timeout: float = settings.AWAIT_RESULTS_TIMEOUT
    ) -> list[BatchResult]:
        return await self.scheduler.await_results(ids, timeout)

    async def get_cache_stats(self) -> dict[str, Any]:
        return await self.cache.get_cache_stats()

    def get_scheduler_stats(self) -> dict[str, Any]:
        stats = self.scheduler.stats()
        return {
            "queued": stats.queued,
            "in_flight": stats.in_flight,
            "succeeded": stats.succeeded,
            "failed": stats.failed,
            "total_cost": stats.total_cost,
            "avg_latency_ms": stats.avg_latency_ms,
            "cache_hit_rate": stats.cache_hit_rate,
        }

    def learn_from_generation(
        self,
        plan: ChapterPlan,
        tier: ContextTier,
        actual_tokens: int,
        quality_score: float,
        success: bool,
        user_feedback: str | None = None,
    ) -> None:
        self.selector.learn_from_generation(
            plan, tier, actual_tokens, quality_score, success, user_feedback
        )

    async def shutdown(self, drain: bool = True) -> None:
        """Drain (or abandon) the queue and release every resource."""
        await self.scheduler.shutdown(drain=drain)
        await self.hot_cache.stop_sweeper()
        if self.store is not None:
            await self.store.close()
        if self.llm is not None:
            await self.llm.aclose()
        self._started = False
        logger.info(
            "Pagewright runtime shut down",
            completion_tokens=self.accountant.total,
            cost=round(self.accountant.total_cost, 6),
        )
