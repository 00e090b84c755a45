# orchestration/single_flight.py
"""Collapse concurrent identical requests into one in-flight call."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, TypeVar

import structlog

from core.errors import OperationTimeoutError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Per-key deduplication of concurrent async calls.

    The first caller for a key (the leader) runs ``fn``; callers arriving while
    it is running await the leader's outcome instead of calling ``fn`` again.
    A follower being cancelled never cancels the leader's call. Callers may
    identify themselves so that a result is only reported as shared when it
    came from somebody else's call.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, tuple[asyncio.Future[Any], Hashable | None]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def forget(self, key: str) -> bool:
        """Detach the in-flight call for ``key``.

        Callers already waiting keep waiting on it; the next caller for ``key``
        starts a fresh call.
        """
        return self._inflight.pop(key, None) is not None

    async def do(
        self, key: str, fn: Callable[[], Awaitable[T]], caller: Hashable | None = None
    ) -> tuple[T, bool]:
        """Run ``fn`` once per concurrent ``key``.

        Returns the result and whether it was shared from another caller's call.
        """
        existing = self._inflight.get(key)
        if existing is not None:
            pending, leader = existing
            logger.debug("Joining in-flight call", key=key)
            result = await asyncio.shield(pending)
            return result, caller is None or leader != caller

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[key] = (future, caller)
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.set_exception(
                OperationTimeoutError(f"In-flight call for '{key}' was cancelled")
            )
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Followers re-raise it; mark retrieved so an unawaited future stays quiet.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result, False
        finally:
            current = self._inflight.get(key)
            if current is not None and current[0] is future:
                del self._inflight[key]
