"""
API optimizer on top of the request scheduler.

Adds request analytics, pressure-driven micro-batching of single requests,
grouped execution of request sets and optimization recommendations.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from repo_coordinator.core.cache import cache_key
from repo_coordinator.core.errors import RateLimitExceededError, SchedulerClosedError
from repo_coordinator.core.rate_limit import ApiCategory, api_category_for
from repo_coordinator.services.request_scheduler import (
    RemoteExecutor,
    RequestPriority,
    RequestScheduler,
)

logger = structlog.get_logger(__name__)


@dataclass
class ApiRequest:
    id: str
    operation: str
    params: Dict[str, Any] = field(default_factory=dict)
    priority: RequestPriority = RequestPriority.MEDIUM
    tags: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return cache_key(self.operation, self.params)


@dataclass
class RequestOutcome:
    id: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    from_cache: bool = False
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)


@dataclass
class _OperationStats:
    count: int = 0
    total_time: float = 0.0
    errors: int = 0


_PendingItem = Tuple[ApiRequest, RemoteExecutor, asyncio.Future]


class ApiOptimizer:
    """
    Routes requests through the scheduler and decides when single requests
    are worth holding back into a micro-batch.
    """

    def __init__(
        self,
        scheduler: RequestScheduler,
        max_batch_size: int = 10,
        max_wait: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scheduler = scheduler
        self.max_batch_size = max_batch_size
        self.max_wait = max_wait
        self._clock = clock
        self._stats: Dict[str, _OperationStats] = defaultdict(_OperationStats)
        self._rate_limit_hits = 0
        self._pending: Dict[str, List[_PendingItem]] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._flushes: set = set()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_optimized(self, request: ApiRequest, executor: RemoteExecutor) -> Any:
        """Execute now, or join a micro-batch when the category is under pressure"""
        category = api_category_for(request.operation)
        if self._should_batch(request, category):
            return await self._add_to_batch(request, executor, category)
        return await self._execute_single(request, executor)

    async def execute_multiple(
        self, requests: Sequence[ApiRequest], executor: RemoteExecutor
    ) -> List[RequestOutcome]:
        """
        Deduplicate, group by API category and run each group in chunks of the
        category's concurrency ceiling. Outcomes come back in input order.
        """
        unique: Dict[str, ApiRequest] = {}
        for request in requests:
            unique.setdefault(request.key, request)

        groups: Dict[ApiCategory, List[ApiRequest]] = defaultdict(list)
        for request in unique.values():
            groups[api_category_for(request.operation)].append(request)

        by_key: Dict[str, RequestOutcome] = {}
        for category, group in groups.items():
            items = [(request, executor) for request in group]
            for request, outcome in zip(group, await self._execute_group(items, category)):
                by_key[request.key] = outcome

        return [
            RequestOutcome(
                id=request.id,
                success=by_key[request.key].success,
                data=by_key[request.key].data,
                error=by_key[request.key].error,
                from_cache=by_key[request.key].from_cache,
            )
            for request in requests
        ]

    async def close(self) -> None:
        tasks = list(self._timers.values()) + list(self._flushes)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timers.clear()
        self._flushes.clear()

        pending, self._pending = self._pending, {}
        for items in pending.values():
            for _, _, future in items:
                if not future.done():
                    future.set_exception(SchedulerClosedError("API optimizer closed"))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_request_analytics(self) -> Dict[str, Any]:
        total = sum(s.count for s in self._stats.values())
        errors = sum(s.errors for s in self._stats.values())
        total_time = sum(s.total_time for s in self._stats.values())

        top = sorted(
            (
                {
                    "endpoint": name,
                    "count": s.count,
                    "avg_time": s.total_time / s.count if s.count else 0.0,
                }
                for name, s in self._stats.items()
            ),
            key=lambda e: e["count"],
            reverse=True,
        )[:10]

        return {
            "total_requests": total,
            "success_rate": (total - errors) / total * 100 if total else 100.0,
            "avg_response_time": total_time / total if total else 0.0,
            "rate_limit_hits": self._rate_limit_hits,
            "cache_hit_rate": self.scheduler.get_cache_stats()["hit_rate"] * 100,
            "top_endpoints": top,
        }

    def get_optimization_recommendations(self) -> Dict[str, Any]:
        analytics = self.get_request_analytics()
        has_traffic = analytics["total_requests"] > 0
        limiter = self.scheduler.rate_limiter
        core_pressure = limiter.pressure(ApiCategory.CORE)
        search_pressure = limiter.pressure(ApiCategory.SEARCH)

        suggestions: List[str] = []
        requests_reduced = 0
        time_saved = 0.0
        pressure_reduction = 0

        if has_traffic and analytics["cache_hit_rate"] < 80:
            suggestions.append(
                f"Improve caching strategy - current hit rate: {analytics['cache_hit_rate']:.1f}%"
            )
            requests_reduced += int(analytics["total_requests"] * 0.2)

        if core_pressure > 80:
            suggestions.append("High core API usage - consider request batching or caching")
            pressure_reduction += 20
        if search_pressure > 70:
            suggestions.append(
                "High search API usage - implement aggressive caching for search results"
            )
            pressure_reduction += 15

        slow = [e for e in analytics["top_endpoints"] if e["avg_time"] > 2.0][:3]
        if slow:
            suggestions.append(
                "Optimize slow endpoints: " + ", ".join(e["endpoint"] for e in slow)
            )
            time_saved += sum(e["avg_time"] * e["count"] for e in slow)

        rest_endpoints = [
            name
            for name in self._stats
            if api_category_for(name) != ApiCategory.GRAPHQL
        ]
        if len(rest_endpoints) > 5:
            suggestions.append(
                "Consider using GraphQL for complex queries to reduce request count"
            )
            requests_reduced += 1

        priority_actions: List[str] = []
        if analytics["success_rate"] < 95:
            priority_actions.append("Improve error handling and retry logic")
        if core_pressure > 90 or search_pressure > 90:
            priority_actions.append("Implement immediate rate limit throttling")
        if has_traffic and analytics["cache_hit_rate"] < 50:
            priority_actions.append("Implement comprehensive caching strategy")

        return {
            "suggestions": suggestions,
            "potential_savings": {
                "requests_reduced": requests_reduced,
                "time_saved": time_saved,
                "rate_limit_pressure_reduction": pressure_reduction,
            },
            "priority_actions": priority_actions,
        }

    def get_health(self) -> Dict[str, Any]:
        limiter = self.scheduler.rate_limiter
        core_pressure = limiter.pressure(ApiCategory.CORE)
        search_pressure = limiter.pressure(ApiCategory.SEARCH)
        analytics = self.get_request_analytics()

        issues: List[str] = []
        recommendations: List[str] = []
        if core_pressure > 90:
            issues.append(f"Core API rate limit at {core_pressure:.1f}%")
            recommendations.append("Implement rate limit throttling")
        if search_pressure > 80:
            issues.append(f"Search API rate limit at {search_pressure:.1f}%")
            recommendations.append("Cache search results more aggressively")
        if analytics["success_rate"] < 95:
            issues.append(f"Low success rate: {analytics['success_rate']:.1f}%")
            recommendations.append("Improve error handling and retry logic")
        if analytics["avg_response_time"] > 5.0:
            issues.append(
                f"High average response time: {analytics['avg_response_time'] * 1000:.0f}ms"
            )
            recommendations.append("Optimize slow operations")

        healthy = not issues
        return {
            "healthy": healthy,
            "status": "healthy" if healthy else "degraded",
            "issues": issues,
            "recommendations": recommendations,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _should_batch(self, request: ApiRequest, category: ApiCategory) -> bool:
        if RequestPriority(request.priority) == RequestPriority.CRITICAL:
            return False
        pressure = self.scheduler.rate_limiter.pressure(category)
        if pressure < 50:
            return False
        return pressure > 70 or bool(self._pending)

    async def _add_to_batch(
        self, request: ApiRequest, executor: RemoteExecutor, category: ApiCategory
    ) -> Any:
        loop = asyncio.get_running_loop()
        priority = RequestPriority(request.priority)
        key = f"{category.value}_{priority.value}"
        future = loop.create_future()
        batch = self._pending.setdefault(key, [])
        batch.append((request, executor, future))

        if priority == RequestPriority.HIGH or len(batch) >= self.max_batch_size:
            self._start_flush(key, category)
        elif key not in self._timers:
            self._timers[key] = loop.create_task(self._flush_later(key, category))

        return await future

    async def _flush_later(self, key: str, category: ApiCategory) -> None:
        await asyncio.sleep(self.max_wait)
        # From here on this task is a flush, tracked for close()
        self._timers.pop(key, None)
        task = asyncio.current_task()
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)
        await self._flush(key, category)

    def _start_flush(self, key: str, category: ApiCategory) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        task = asyncio.get_running_loop().create_task(self._flush(key, category))
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)

    async def _flush(self, key: str, category: ApiCategory) -> None:
        batch = self._pending.pop(key, [])
        if not batch:
            return
        logger.info("api_optimizer.batch", batch=key, size=len(batch))

        try:
            outcomes = await self._execute_group([(r, e) for r, e, _ in batch], category)
        except asyncio.CancelledError:
            for _, _, future in batch:
                if not future.done():
                    future.set_exception(SchedulerClosedError("API optimizer closed"))
            raise

        for (_, _, future), outcome in zip(batch, outcomes):
            if future.done():
                continue
            if outcome.success:
                future.set_result(outcome.data)
            else:
                future.set_exception(outcome.exception)

    async def _execute_group(
        self, items: Sequence[Tuple[ApiRequest, RemoteExecutor]], category: ApiCategory
    ) -> List[RequestOutcome]:
        limit = self.scheduler.concurrency_limits.get(category, 1)
        outcomes: List[RequestOutcome] = []
        for start in range(0, len(items), limit):
            chunk = items[start:start + limit]
            outcomes.extend(
                await asyncio.gather(
                    *(self._execute_outcome(request, executor) for request, executor in chunk)
                )
            )
        return outcomes

    async def _execute_outcome(
        self, request: ApiRequest, executor: RemoteExecutor
    ) -> RequestOutcome:
        from_cache = request.key in self.scheduler.cache
        try:
            data = await self._execute_single(request, executor)
        except Exception as e:
            return RequestOutcome(id=request.id, success=False, error=str(e), exception=e)
        return RequestOutcome(id=request.id, success=True, data=data, from_cache=from_cache)

    async def _execute_single(self, request: ApiRequest, executor: RemoteExecutor) -> Any:
        start = self._clock()
        try:
            data = await self.scheduler.get(
                request.operation, request.params, executor, priority=request.priority
            )
        except Exception as e:
            if isinstance(e, RateLimitExceededError):
                self._rate_limit_hits += 1
            self._record(request.operation, self._clock() - start, True)
            raise
        self._record(request.operation, self._clock() - start, False)
        return data

    def _record(self, operation: str, elapsed: float, is_error: bool) -> None:
        stats = self._stats[operation]
        stats.count += 1
        stats.total_time += elapsed
        if is_error:
            stats.errors += 1
