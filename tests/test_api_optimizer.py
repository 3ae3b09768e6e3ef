import asyncio

import pytest

from repo_coordinator.core.cache import CacheStore
from repo_coordinator.core.errors import SchedulerClosedError
from repo_coordinator.core.rate_limit import RateLimitTracker
from repo_coordinator.services import (
    ApiOptimizer,
    ApiRequest,
    RequestPriority,
    RequestScheduler,
)
from tests.conftest import CountingExecutor


@pytest.fixture
def scheduler(clock, fake_sleep):
    return RequestScheduler(
        CacheStore(clock=clock), RateLimitTracker(clock=clock, sleep=fake_sleep)
    )


def set_pressure(scheduler, category, percent):
    window = scheduler.rate_limiter.window(category)
    window.remaining = int(window.limit * (100 - percent) / 100)


@pytest.mark.asyncio
async def test_low_pressure_executes_immediately(scheduler, counting_executor):
    optimizer = ApiOptimizer(scheduler, max_wait=30)
    data = await optimizer.execute_optimized(
        ApiRequest("r1", "get_issue", {"id": 1}), counting_executor
    )
    assert data["params"] == {"id": 1}
    assert counting_executor.count == 1


@pytest.mark.asyncio
async def test_high_pressure_batches_until_full(scheduler, counting_executor):
    set_pressure(scheduler, "core", 80)
    optimizer = ApiOptimizer(scheduler, max_batch_size=3, max_wait=30)

    first = asyncio.ensure_future(
        optimizer.execute_optimized(ApiRequest("r1", "get_issue", {"id": 1}), counting_executor)
    )
    second = asyncio.ensure_future(
        optimizer.execute_optimized(ApiRequest("r2", "get_issue", {"id": 2}), counting_executor)
    )
    for _ in range(3):
        await asyncio.sleep(0)
    assert counting_executor.count == 0

    third = await optimizer.execute_optimized(
        ApiRequest("r3", "get_issue", {"id": 3}), counting_executor
    )
    assert third["params"] == {"id": 3}
    assert (await first)["params"] == {"id": 1}
    assert (await second)["params"] == {"id": 2}
    assert counting_executor.count == 3
    await optimizer.close()


@pytest.mark.asyncio
async def test_critical_requests_skip_batching(scheduler, counting_executor):
    set_pressure(scheduler, "core", 95)
    optimizer = ApiOptimizer(scheduler, max_wait=30)
    request = ApiRequest("r1", "get_issue", {"id": 1}, priority=RequestPriority.CRITICAL)

    await optimizer.execute_optimized(request, counting_executor)
    assert counting_executor.count == 1


@pytest.mark.asyncio
async def test_batched_failure_propagates_original_error(scheduler):
    set_pressure(scheduler, "core", 80)
    optimizer = ApiOptimizer(scheduler, max_wait=30)

    async def executor(operation, params):
        raise LookupError("no such issue")

    with pytest.raises(LookupError):
        await optimizer.execute_optimized(
            ApiRequest("r1", "get_issue", {"id": 1}, priority=RequestPriority.HIGH), executor
        )


@pytest.mark.asyncio
async def test_close_rejects_waiting_batch(scheduler, counting_executor):
    set_pressure(scheduler, "core", 80)
    optimizer = ApiOptimizer(scheduler, max_wait=30)
    waiting = asyncio.ensure_future(
        optimizer.execute_optimized(ApiRequest("r1", "get_issue", {"id": 1}), counting_executor)
    )
    for _ in range(3):
        await asyncio.sleep(0)

    await optimizer.close()
    with pytest.raises(SchedulerClosedError):
        await waiting
    assert counting_executor.count == 0


@pytest.mark.asyncio
async def test_close_cancels_timer_flush_in_progress(scheduler):
    set_pressure(scheduler, "core", 80)
    optimizer = ApiOptimizer(scheduler, max_wait=0.01)
    started = asyncio.Event()

    async def hanging(operation, params):
        started.set()
        await asyncio.Event().wait()

    waiting = asyncio.ensure_future(
        optimizer.execute_optimized(ApiRequest("r1", "get_issue", {"id": 1}), hanging)
    )
    await asyncio.wait_for(started.wait(), timeout=1)

    await optimizer.close()
    with pytest.raises(SchedulerClosedError):
        await asyncio.wait_for(waiting, timeout=1)


@pytest.mark.asyncio
async def test_execute_multiple_dedupes_and_keeps_order(scheduler, counting_executor):
    optimizer = ApiOptimizer(scheduler)
    requests = [
        ApiRequest("a", "search_issues", {"q": "bug"}),
        ApiRequest("b", "get_issue", {"id": 1}),
        ApiRequest("c", "search_issues", {"q": "bug"}),
        ApiRequest("d", "graphql_project_items", {"project": 3}),
    ]

    outcomes = await optimizer.execute_multiple(requests, counting_executor)

    assert [o.id for o in outcomes] == ["a", "b", "c", "d"]
    assert all(o.success for o in outcomes)
    assert outcomes[0].data == outcomes[2].data
    assert counting_executor.count == 3


@pytest.mark.asyncio
async def test_analytics_and_recommendations(scheduler):
    optimizer = ApiOptimizer(scheduler)
    good = CountingExecutor()
    bad = CountingExecutor(failures=1, error=ValueError("boom"))

    await optimizer.execute_optimized(ApiRequest("1", "get_issue", {"id": 1}), good)
    await optimizer.execute_optimized(ApiRequest("2", "get_issue", {"id": 1}), good)
    with pytest.raises(ValueError):
        await optimizer.execute_optimized(ApiRequest("3", "list_issues", {}), bad)

    analytics = optimizer.get_request_analytics()
    assert analytics["total_requests"] == 3
    assert analytics["success_rate"] == pytest.approx(200 / 3)
    assert analytics["top_endpoints"][0]["endpoint"] == "get_issue"
    assert analytics["top_endpoints"][0]["count"] == 2

    recommendations = optimizer.get_optimization_recommendations()
    assert "Improve error handling and retry logic" in recommendations["priority_actions"]
    assert any("caching strategy" in s for s in recommendations["suggestions"])

    health = optimizer.get_health()
    assert health["healthy"] is False
    assert health["status"] == "degraded"


def test_quiet_optimizer_is_healthy(scheduler):
    optimizer = ApiOptimizer(scheduler)
    assert optimizer.get_health()["healthy"] is True
    assert optimizer.get_optimization_recommendations()["suggestions"] == []
