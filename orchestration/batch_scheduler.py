# orchestration/batch_scheduler.py
"""
Priority batch scheduler for generation operations.

Operations move QUEUED -> PROCESSING -> SUCCESS | FAILED. A failed attempt
goes back to QUEUED (after a backoff delay) while it has retries left and the
failure is retryable. A fixed pool of ``max_concurrency`` workers pulls the
highest-priority queued operation (FIFO among equal priorities) as soon as a
slot frees up, so at most ``max_concurrency`` operations are ever PROCESSING.

Timeouts only stop the scheduler's bookkeeping for an operation. The
underlying call keeps running unless ``cancel_on_timeout`` is set; its late
result is dropped, and its cache write is rejected by the version check in
:class:`caching.cache_manager.CacheManager`.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import structlog

from caching.cache_manager import CacheManager
from config import settings
from core.errors import OperationTimeoutError, ResultsTimeoutError, is_retryable
from core.llm_interface import GenerationResult
from models.batch_models import (
    BatchOperation,
    BatchResult,
    OperationState,
    SchedulerStats,
)
from models.cache_models import CacheEntry

from .single_flight import SingleFlight

logger = structlog.get_logger(__name__)

OperationExecutor = Callable[[BatchOperation], Awaitable[GenerationResult]]


class BatchScheduler:
    def __init__(
        self,
        executor: OperationExecutor,
        cache: CacheManager | None = None,
        max_concurrency: int = settings.BATCH_MAX_CONCURRENCY,
        max_retries: int = settings.BATCH_MAX_RETRIES,
        retry_failed: bool = settings.BATCH_RETRY_FAILED,
        operation_timeout: float = settings.BATCH_OPERATION_TIMEOUT,
        retry_backoff: float = settings.BATCH_RETRY_BACKOFF_SECONDS,
        use_cache: bool = settings.BATCH_USE_CACHE,
        single_flight: bool = settings.BATCH_SINGLE_FLIGHT,
        cancel_on_timeout: bool = settings.BATCH_CANCEL_ON_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.executor = executor
        self.cache = cache
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.retry_failed = retry_failed
        self.operation_timeout = operation_timeout
        self.retry_backoff = retry_backoff
        self.use_cache = use_cache and cache is not None
        self.single_flight = single_flight
        self.cancel_on_timeout = cancel_on_timeout
        self._clock = clock

        # (-priority, sequence, op id): highest priority first, FIFO on ties.
        self._heap: list[tuple[int, int, str]] = []
        self._seq = itertools.count()
        self._ops: dict[str, BatchOperation] = {}
        self._states: dict[str, OperationState] = {}
        self._results: dict[str, BatchResult] = {}
        self._first_dispatch: dict[str, float] = {}
        self._in_flight: set[str] = set()
        self._delayed: dict[str, asyncio.Task[None]] = {}
        self._reservations: dict[str, tuple[str, int]] = {}
        self._orphans: set[asyncio.Task[Any]] = set()
        self._flights = SingleFlight()
        self._condition = asyncio.Condition()
        self._workers: list[asyncio.Task[None]] = []
        self._closed = False
        self.peak_in_flight = 0

    # -- submission -----------------------------------------------------------

    async def submit(self, op: BatchOperation) -> str:
        """Queue ``op`` and return its id.

        A cache hit is recorded immediately as a terminal, cached success and
        never enters the queue.
        """
        if self._closed:
            raise RuntimeError("Scheduler has been shut down")
        if op.id in self._ops:
            raise ValueError(f"Operation id '{op.id}' was already submitted")

        entry = await self._cache_lookup(op)
        async with self._condition:
            self._ops[op.id] = op
            if entry is not None:
                self._record_result(self._cached_result(op, entry))
                logger.debug("Operation served from cache", op_id=op.id)
            else:
                self._push(op)
                logger.debug("Operation queued", op_id=op.id, priority=op.priority)
            self._condition.notify_all()
        return op.id

    async def submit_many(self, ops: Iterable[BatchOperation]) -> list[str]:
        return [await self.submit(op) for op in ops]

    def _push(self, op: BatchOperation) -> None:
        self._states[op.id] = OperationState.QUEUED
        heapq.heappush(self._heap, (-op.priority, next(self._seq), op.id))

    # -- worker pool ------------------------------------------------------------

    def start(self) -> None:
        """Start the worker pool on the running event loop (idempotent)."""
        if self._closed:
            raise RuntimeError("Scheduler has been shut down")
        self._workers = [w for w in self._workers if not w.done()]
        while len(self._workers) < self.max_concurrency:
            index = len(self._workers)
            self._workers.append(
                asyncio.create_task(self._worker(index), name=f"batch-worker-{index}")
            )

    async def _worker(self, index: int) -> None:
        while True:
            async with self._condition:
                while not self._heap:
                    if self._closed:
                        return
                    await self._condition.wait()
                _, _, op_id = heapq.heappop(self._heap)
                self._states[op_id] = OperationState.PROCESSING
                self._in_flight.add(op_id)
                self._first_dispatch.setdefault(op_id, self._clock())
                self.peak_in_flight = max(self.peak_in_flight, len(self._in_flight))
            logger.debug("Operation dispatched", op_id=op_id, worker=index)
            await self._process(self._ops[op_id])

    async def _process(self, op: BatchOperation) -> None:
        try:
            entry = await self._cache_lookup(op)
            if entry is not None:
                await self._finish(self._cached_result(op, entry))
                return
            result, shared = await self._dispatch(op)
        except Exception as exc:
            await self._handle_failure(op, exc)
            return

        await self._finish(
            BatchResult(
                id=op.id,
                success=True,
                content=result.content,
                usage=result.usage,
                cost=result.cost,
                cached=shared,
                processing_time_ms=self._elapsed_ms(op.id),
                attempts=op.retry_count + 1,
            )
        )

    async def _dispatch(self, op: BatchOperation) -> tuple[GenerationResult, bool]:
        if self.single_flight and op.cache_key:
            call = self._flights.do(op.cache_key, lambda: self._generate(op), caller=op.id)
        else:
            call = self._generate_unshared(op)
        task = asyncio.ensure_future(call)
        done, _ = await asyncio.wait({task}, timeout=self.operation_timeout)
        if task in done:
            return task.result()

        reservation = self._reservations.pop(op.id, None)
        if reservation is not None and self.cache is not None:
            self.cache.abandon(*reservation)
        if self.single_flight and op.cache_key:
            # A retry must not join the call that just timed out.
            self._flights.forget(op.cache_key)
        if self.cancel_on_timeout:
            task.cancel()
        else:
            self._orphans.add(task)
            task.add_done_callback(self._discard_late_result)
        raise OperationTimeoutError(
            f"Operation {op.id} timed out after {self.operation_timeout:.2f}s"
        )

    async def _generate_unshared(self, op: BatchOperation) -> tuple[GenerationResult, bool]:
        return await self._generate(op), False

    async def _generate(self, op: BatchOperation) -> GenerationResult:
        reservation: tuple[str, int] | None = None
        if self.use_cache and op.cache_key:
            reservation = (op.cache_key, self.cache.reserve(op.cache_key))
            self._reservations[op.id] = reservation
        try:
            result = await self.executor(op)
            if reservation is not None:
                await self.cache.store(
                    op.cache_key,
                    reservation[1],
                    result.content,
                    result.usage,
                    result.model,
                    cost=result.cost,
                    operation=op.type.value,
                    params=op.params,
                )
            return result
        finally:
            if reservation is not None and self._reservations.get(op.id) == reservation:
                del self._reservations[op.id]

    def _discard_late_result(self, task: asyncio.Task[Any]) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.info("Timed-out generation later failed", error=str(exc))
        else:
            logger.info("Discarded late result of timed-out generation")

    async def _handle_failure(self, op: BatchOperation, exc: Exception) -> None:
        if self.retry_failed and op.retry_count < self.max_retries and is_retryable(exc):
            op.retry_count += 1
            delay = self._retry_delay(op.retry_count)
            logger.warning(
                "Operation failed; retrying",
                op_id=op.id,
                retry=op.retry_count,
                max_retries=self.max_retries,
                delay=round(delay, 3),
                error=str(exc),
            )
            async with self._condition:
                self._in_flight.discard(op.id)
                self._states[op.id] = OperationState.QUEUED
                self._delayed[op.id] = asyncio.create_task(self._requeue_after(op, delay))
                self._condition.notify_all()
            return

        logger.error(
            "Operation failed",
            op_id=op.id,
            attempts=op.retry_count + 1,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        await self._finish(
            BatchResult(
                id=op.id,
                success=False,
                error=str(exc) or type(exc).__name__,
                cost=0.0,
                processing_time_ms=self._elapsed_ms(op.id),
                attempts=op.retry_count + 1,
            )
        )

    def _retry_delay(self, retry: int) -> float:
        return min(
            self.retry_backoff * (2 ** (retry - 1)), settings.LLM_RETRY_MAX_DELAY_SECONDS
        )

    async def _requeue_after(self, op: BatchOperation, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._condition:
            self._delayed.pop(op.id, None)
            self._push(op)
            self._condition.notify_all()

    async def _finish(self, result: BatchResult) -> None:
        async with self._condition:
            self._in_flight.discard(result.id)
            self._record_result(result)
            self._condition.notify_all()

    def _record_result(self, result: BatchResult) -> None:
        self._results[result.id] = result
        self._states[result.id] = (
            OperationState.SUCCESS if result.success else OperationState.FAILED
        )

    def _elapsed_ms(self, op_id: str) -> float:
        started = self._first_dispatch.get(op_id)
        return 0.0 if started is None else (self._clock() - started) * 1000

    # -- cache ------------------------------------------------------------------

    async def _cache_lookup(self, op: BatchOperation) -> CacheEntry | None:
        if not (self.use_cache and op.cache_key):
            return None
        return await self.cache.lookup(
            op.cache_key, op.type.value, op.params.get("owner_id"), op.params
        )

    def _cached_result(self, op: BatchOperation, entry: CacheEntry) -> BatchResult:
        return BatchResult(
            id=op.id,
            success=True,
            content=entry.content,
            usage=entry.usage,
            cost=entry.cost,
            cached=True,
            processing_time_ms=0.0,
            attempts=op.retry_count,
        )

    # -- waiting and results ----------------------------------------------------

    def _idle(self) -> bool:
        return not self._heap and not self._delayed and not self._in_flight

    async def run_all(self) -> dict[str, BatchResult]:
        """Process everything submitted so far and return results by id.

        Individual failures never abort the batch.
        """
        self.start()
        async with self._condition:
            await self._condition.wait_for(self._idle)
        return dict(self._results)

    async def await_results(
        self, ids: Iterable[str], timeout: float = settings.AWAIT_RESULTS_TIMEOUT
    ) -> list[BatchResult]:
        """Wait until every id has a terminal result, in the order given.

        Raises:
            ResultsTimeoutError: some ids were still unresolved at ``timeout``.
        """
        wanted = list(ids)
        unknown = [op_id for op_id in wanted if op_id not in self._ops]
        if unknown:
            raise KeyError(f"Unknown operation ids: {unknown}")
        self.start()

        def resolved() -> bool:
            return all(op_id in self._results for op_id in wanted)

        try:
            async with self._condition:
                await asyncio.wait_for(self._condition.wait_for(resolved), timeout)
        except asyncio.TimeoutError as exc:
            missing = [op_id for op_id in wanted if op_id not in self._results]
            raise ResultsTimeoutError(missing, timeout) from exc
        return [self._results[op_id] for op_id in wanted]

    def get_state(self, op_id: str) -> OperationState | None:
        return self._states.get(op_id)

    def get_results(self, ids: Iterable[str] | None = None) -> dict[str, BatchResult]:
        if ids is None:
            return dict(self._results)
        return {op_id: self._results[op_id] for op_id in ids if op_id in self._results}

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def stats(self) -> SchedulerStats:
        """Read-only snapshot of queue depth, outcomes, cost and latency."""
        results = list(self._results.values())
        succeeded = sum(1 for r in results if r.success)
        cached = sum(1 for r in results if r.cached)
        return SchedulerStats(
            queued=len(self._heap) + len(self._delayed),
            in_flight=len(self._in_flight),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            total_cost=sum(r.cost for r in results if not r.cached),
            avg_latency_ms=(
                sum(r.processing_time_ms for r in results) / len(results) if results else 0.0
            ),
            cache_hit_rate=cached / len(results) if results else 0.0,
        )

    def clear(self) -> int:
        """Forget every operation that has reached a terminal state."""
        terminal = [op_id for op_id, state in self._states.items() if state.terminal]
        for op_id in terminal:
            self._ops.pop(op_id, None)
            self._states.pop(op_id, None)
            self._results.pop(op_id, None)
            self._first_dispatch.pop(op_id, None)
        return len(terminal)

    # -- shutdown ---------------------------------------------------------------

    async def shutdown(self, drain: bool = True) -> None:
        """Stop the worker pool.

        With ``drain`` the queue is processed to completion first; otherwise
        every queued or delayed operation is failed immediately.
        """
        if self._closed:
            return
        if drain and self._ops:
            await self.run_all()
        async with self._condition:
            for op_id, task in list(self._delayed.items()):
                task.cancel()
                self._heap.append((0, next(self._seq), op_id))
            self._delayed.clear()
            for _, _, op_id in self._heap:
                self._record_result(
                    BatchResult(
                        id=op_id,
                        success=False,
                        error="Scheduler shut down before the operation ran",
                        attempts=self._ops[op_id].retry_count,
                    )
                )
            self._heap.clear()
            self._closed = True
            self._condition.notify_all()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []
        for task in list(self._orphans):
            task.cancel()
        if self._orphans:
            await asyncio.gather(*self._orphans, return_exceptions=True)
        logger.info("Batch scheduler shut down", results=len(self._results))
