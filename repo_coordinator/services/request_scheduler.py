"""
Cache & batch request scheduler.

Every remote read goes through `get`: cached results are served while their
TTL holds; misses are executed immediately unless the API category's
rate-limit window is inside its buffer, in which case the request is parked
in a priority queue and its caller awaits a future until a background drain
task resolves or rejects it.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

import structlog

from repo_coordinator.core.cache import CacheStore, cache_key
from repo_coordinator.core.errors import SchedulerClosedError
from repo_coordinator.core.rate_limit import (
    DEFAULT_CONCURRENCY,
    ApiCategory,
    RateLimitTracker,
    api_category_for,
)
from repo_coordinator.core.resilience import ResilientExecutor
from repo_coordinator.telemetry.metrics import (
    CACHE_LOOKUPS,
    REMOTE_CALLS,
    REQUEST_QUEUE_DEPTH,
)

logger = structlog.get_logger(__name__)

# Executor callback supplied by the provider integration
RemoteExecutor = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class RequestPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_PRIORITY_RANK = {
    RequestPriority.CRITICAL: 0,
    RequestPriority.HIGH: 1,
    RequestPriority.MEDIUM: 2,
    RequestPriority.LOW: 3,
}


class BatchStrategy(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    ADAPTIVE = "adaptive"


@dataclass
class BatchRequest:
    operation: str
    params: Dict[str, Any] = field(default_factory=dict)
    priority: RequestPriority = RequestPriority.MEDIUM
    ttl: Optional[float] = None

    @property
    def key(self) -> str:
        return cache_key(self.operation, self.params)

    @property
    def category(self) -> ApiCategory:
        return api_category_for(self.operation)


@dataclass
class BatchItemResult:
    index: int
    success: bool
    data: Any = None
    error: Optional[str] = None


@dataclass(order=True)
class _QueuedRequest:
    rank: int
    seq: int
    operation: str = field(compare=False)
    params: Dict[str, Any] = field(compare=False)
    executor: RemoteExecutor = field(compare=False)
    future: asyncio.Future = field(compare=False)
    category: ApiCategory = field(compare=False)
    key: Optional[str] = field(compare=False, default=None)  # None: do not cache
    ttl: Optional[float] = field(compare=False, default=None)


class RequestScheduler:
    """Deduplicates, caches, prioritizes and rate-limit-gates remote requests."""

    def __init__(
        self,
        cache: CacheStore,
        rate_limiter: RateLimitTracker,
        executor: Optional[ResilientExecutor] = None,
        concurrency_limits: Optional[Mapping[str, int]] = None,
    ):
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.executor = executor
        self.concurrency_limits: Dict[ApiCategory, int] = dict(DEFAULT_CONCURRENCY)
        for category, limit in (concurrency_limits or {}).items():
            self.concurrency_limits[ApiCategory(category)] = limit

        self._queue: List[_QueuedRequest] = []
        self._seq = itertools.count()
        self._drain_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    async def get(
        self,
        operation: str,
        params: Optional[Dict[str, Any]],
        executor: RemoteExecutor,
        ttl: Optional[float] = None,
        priority: RequestPriority = RequestPriority.MEDIUM,
        force_refresh: bool = False,
    ) -> Any:
        """Cached read: serve from cache, execute, or queue under rate-limit pressure"""
        self._ensure_open()
        params = params or {}
        key = cache_key(operation, params)

        if not force_refresh:
            hit, value = self.cache.lookup(key)
            _count_lookup(hit)
            if hit:
                return value

        category = api_category_for(operation)
        if self.rate_limiter.should_queue(category):
            return await self._enqueue(operation, params, executor, priority, category, key, ttl)

        data = await self._execute(operation, params, executor, category)
        self.cache.set(key, data, ttl)
        return data

    async def dispatch(
        self,
        operation: str,
        params: Optional[Dict[str, Any]],
        executor: RemoteExecutor,
        priority: RequestPriority = RequestPriority.MEDIUM,
        invalidate: Optional[str] = None,
    ) -> Any:
        """
        Uncached call (writes). On success, cache keys matching the regex
        `invalidate` are dropped.
        """
        self._ensure_open()
        params = params or {}
        category = api_category_for(operation)

        if self.rate_limiter.should_queue(category):
            data = await self._enqueue(operation, params, executor, priority, category, None, None)
        else:
            data = await self._execute(operation, params, executor, category)

        if invalidate:
            removed = self.cache.clear(invalidate)
            if removed:
                logger.debug(
                    "request_scheduler.invalidated", operation=operation, removed=removed
                )
        return data

    async def batch(
        self,
        requests: Sequence[BatchRequest],
        executor: RemoteExecutor,
        strategy: BatchStrategy = BatchStrategy.ADAPTIVE,
        max_concurrency: Optional[int] = None,
    ) -> List[BatchItemResult]:
        """
        Run `requests` through `get`. Identical (operation, params) pairs are
        executed once and the outcome is shared; results keep input order.
        """
        self._ensure_open()
        unique: List[BatchRequest] = []
        slot_of_key: Dict[str, int] = {}
        slots: List[int] = []
        for request in requests:
            key = request.key
            if key not in slot_of_key:
                slot_of_key[key] = len(unique)
                unique.append(request)
            slots.append(slot_of_key[key])

        if not unique:
            return []

        strategy = BatchStrategy(strategy)
        limit = max_concurrency or min(
            self.concurrency_limits.get(r.category, 1) for r in unique
        )
        if strategy == BatchStrategy.ADAPTIVE:
            if self.rate_limiter.is_critically_low():
                strategy, limit = BatchStrategy.SEQUENTIAL, 1
            else:
                core_remaining = self.rate_limiter.window(ApiCategory.CORE).remaining
                limit = max(1, min(limit, core_remaining // 10, len(unique)))
                strategy = BatchStrategy.PARALLEL
        elif strategy == BatchStrategy.SEQUENTIAL:
            limit = 1

        logger.info(
            "request_scheduler.batch",
            requests=len(requests),
            unique=len(unique),
            strategy=strategy.value,
            concurrency=limit,
        )

        outcomes: List[BatchItemResult] = []
        for start in range(0, len(unique), limit):
            chunk = unique[start:start + limit]
            outcomes.extend(
                await asyncio.gather(
                    *(
                        self._run_batch_item(start + offset, request, executor)
                        for offset, request in enumerate(chunk)
                    )
                )
            )

        return [
            BatchItemResult(
                index=index,
                success=outcomes[slot].success,
                data=outcomes[slot].data,
                error=outcomes[slot].error,
            )
            for index, slot in enumerate(slots)
        ]

    def update_rate_limits(self, operation: str, headers: Mapping[str, Any]) -> bool:
        return self.rate_limiter.update_from_headers(api_category_for(operation), headers)

    def get_rate_limit_status(self) -> Dict[str, Dict[str, Any]]:
        return self.rate_limiter.get_rate_limit_status()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_cache_stats()

    def clear_cache(self, pattern: Optional[str] = None) -> int:
        return self.cache.clear(pattern)

    def optimize_cache(self) -> Dict[str, int]:
        return self.cache.optimize()

    async def close(self) -> None:
        """Stop draining and reject everything still queued"""
        self._closed = True
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        pending, self._queue = self._queue, []
        for item in pending:
            if not item.future.done():
                item.future.set_exception(SchedulerClosedError("Request scheduler closed"))
        self._publish_depth()
        if pending:
            logger.info("request_scheduler.closed", rejected=len(pending))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_batch_item(
        self, index: int, request: BatchRequest, executor: RemoteExecutor
    ) -> BatchItemResult:
        try:
            data = await self.get(
                request.operation,
                request.params,
                executor,
                ttl=request.ttl,
                priority=request.priority,
            )
        except Exception as e:
            return BatchItemResult(index=index, success=False, error=str(e))
        return BatchItemResult(index=index, success=True, data=data)

    async def _execute(
        self,
        operation: str,
        params: Dict[str, Any],
        executor: RemoteExecutor,
        category: ApiCategory,
    ) -> Any:
        self.rate_limiter.consume(category)

        async def call():
            return await executor(operation, params)

        try:
            if self.executor is not None:
                data = await self.executor.execute(call, context=operation)
            else:
                data = await call()
        except Exception:
            _count_call(category, "failure")
            raise
        _count_call(category, "success")
        return data

    async def _enqueue(
        self,
        operation: str,
        params: Dict[str, Any],
        executor: RemoteExecutor,
        priority: RequestPriority,
        category: ApiCategory,
        key: Optional[str],
        ttl: Optional[float],
    ) -> Any:
        loop = asyncio.get_running_loop()
        item = _QueuedRequest(
            rank=_PRIORITY_RANK[RequestPriority(priority)],
            seq=next(self._seq),
            operation=operation,
            params=params,
            executor=executor,
            future=loop.create_future(),
            category=category,
            key=key,
            ttl=ttl,
        )
        heapq.heappush(self._queue, item)
        self._publish_depth()
        logger.info(
            "request_scheduler.queued",
            operation=operation,
            category=category.value,
            priority=RequestPriority(priority).value,
            depth=len(self._queue),
        )

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())
        return await item.future

    async def _drain(self) -> None:
        while self._queue:
            item = self._queue[0]
            if item.future.done():
                # Caller gave up
                heapq.heappop(self._queue)
                self._publish_depth()
                continue

            if self.rate_limiter.should_queue(item.category):
                await self.rate_limiter.wait_for_capacity(item.category)
                continue

            heapq.heappop(self._queue)
            self._publish_depth()

            if item.key is not None:
                hit, value = self.cache.lookup(item.key)
                if hit:
                    _count_lookup(True)
                    item.future.set_result(value)
                    continue

            try:
                data = await self._execute(item.operation, item.params, item.executor, item.category)
            except asyncio.CancelledError:
                if not item.future.done():
                    item.future.set_exception(SchedulerClosedError("Request scheduler closed"))
                raise
            except Exception as e:
                if not item.future.done():
                    item.future.set_exception(e)
                continue

            if item.key is not None:
                self.cache.set(item.key, data, item.ttl)
            if not item.future.done():
                item.future.set_result(data)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SchedulerClosedError("Request scheduler closed")

    def _publish_depth(self) -> None:
        try:
            REQUEST_QUEUE_DEPTH.set(len(self._queue))
        except Exception as e:
            logger.debug("request_scheduler.metrics_failed", error=str(e))


def _count_lookup(hit: bool) -> None:
    try:
        CACHE_LOOKUPS.labels(result="hit" if hit else "miss").inc()
    except Exception as e:
        logger.debug("request_scheduler.metrics_failed", error=str(e))


def _count_call(category: ApiCategory, status: str) -> None:
    try:
        REMOTE_CALLS.labels(category=category.value, status=status).inc()
    except Exception as e:
        logger.debug("request_scheduler.metrics_failed", error=str(e))
