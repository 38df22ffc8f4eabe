from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from ..errors import QuotaExceededError
from ..models.dispatch import DispatchResult
from ..models.quota import SendQuota

"""Batch dispatcher for provider calls (text generation / email delivery).

dispatch():
- rejects the whole run up front when len(items) > quota.remaining
- runs items in fixed-size batches; every action in a batch is in flight at
  once and the batch is awaited as a barrier before the next one starts
- sleeps batch_delay between batches (never after the last one)
- reports progress after each batch as (completed, total)

dispatch_sequential():
- one action at a time, spaced by a FixedIntervalThrottle
- reports progress after each item

In both modes a failing item is captured in its DispatchResult and never stops
its siblings, and on_settled receives each result as soon as its item
finishes. Results are returned in input order. There are no automatic
retries: a retry is a new dispatch call.
"""

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_BATCH_DELAY",
    "DEFAULT_CALL_INTERVAL",
    "ProgressCallback",
    "SettledCallback",
    "FixedIntervalThrottle",
    "BatchDispatcher",
    "check_quota",
]

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY = 2.0  # seconds between batches
DEFAULT_CALL_INTERVAL = 1.0  # seconds between sequential calls

T = TypeVar("T")
ProgressCallback = Callable[[int, int], Any]
SettledCallback = Callable[[DispatchResult], Any]
Sleep = Callable[[float], Awaitable[Any]]


def check_quota(quota: SendQuota | None, requested: int) -> None:
    """Raise QuotaExceededError when ``requested`` items do not fit the quota."""
    if quota is None:
        return
    if requested > quota.remaining:
        raise QuotaExceededError(remaining=quota.remaining, requested=requested)


class FixedIntervalThrottle:
    """Space successive acquire() calls at least ``interval`` seconds apart.

    The first acquire() returns immediately. Callers are serialized through an
    asyncio.Lock so concurrent callers queue up instead of bursting.
    """

    def __init__(
        self,
        interval: float = DEFAULT_CALL_INTERVAL,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.interval = max(0.0, float(interval))
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last: float | None = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._last is not None:
                wait = (self._last + self.interval) - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last = self._clock()


class BatchDispatcher:
    """Drive an async per-item action over a list of items."""

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {batch_size})")
        self.batch_size = batch_size
        self.batch_delay = max(0.0, float(batch_delay))
        self._sleep = sleep

    @staticmethod
    async def _run_one(
        index: int,
        item: T,
        action: Callable[[T], Awaitable[Any]],
        on_settled: SettledCallback | None = None,
    ) -> DispatchResult:
        try:
            result = await action(item)
        except Exception as e:  # 1件の失敗で他の item を止めない
            message = str(e) or type(e).__name__
            logger.debug(f"item {index} failed: {message}")
            outcome = DispatchResult(index=index, item=item, success=False, error=message)
        else:
            outcome = DispatchResult(index=index, item=item, success=True, result=result)
        # バッチ全体の完了を待たずに通知する
        if on_settled is not None:
            on_settled(outcome)
        return outcome

    async def dispatch(
        self,
        items: Sequence[T],
        action: Callable[[T], Awaitable[Any]],
        *,
        quota: SendQuota | None = None,
        on_progress: ProgressCallback | None = None,
        on_settled: SettledCallback | None = None,
    ) -> list[DispatchResult]:
        """Run ``action`` over ``items`` in concurrent fixed-size batches.

        ``on_settled`` is called with each item's DispatchResult as soon as
        that item finishes, before the rest of its batch.

        Raises:
            QuotaExceededError: before any action runs, if items exceed quota.remaining
        """
        check_quota(quota, len(items))
        total = len(items)
        results: list[DispatchResult] = []
        for start in range(0, total, self.batch_size):
            batch = items[start:start + self.batch_size]
            logger.debug(f"dispatching batch {start // self.batch_size + 1} ({len(batch)} items)")
            batch_results = await asyncio.gather(
                *(self._run_one(start + offset, item, action, on_settled) for offset, item in enumerate(batch))
            )
            results.extend(batch_results)
            if on_progress is not None:
                on_progress(len(results), total)
            if start + self.batch_size < total and self.batch_delay > 0:
                await self._sleep(self.batch_delay)
        return results

    async def dispatch_sequential(
        self,
        items: Sequence[T],
        action: Callable[[T], Awaitable[Any]],
        *,
        throttle: FixedIntervalThrottle | None = None,
        quota: SendQuota | None = None,
        on_progress: ProgressCallback | None = None,
        on_settled: SettledCallback | None = None,
    ) -> list[DispatchResult]:
        """Run ``action`` over ``items`` one at a time, spaced by ``throttle``."""
        check_quota(quota, len(items))
        gate = throttle or FixedIntervalThrottle(DEFAULT_CALL_INTERVAL, sleep=self._sleep)
        total = len(items)
        results: list[DispatchResult] = []
        for index, item in enumerate(items):
            await gate.acquire()
            results.append(await self._run_one(index, item, action, on_settled))
            if on_progress is not None:
                on_progress(index + 1, total)
        return results
