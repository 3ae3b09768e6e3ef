import pytest

from repo_coordinator.core.rate_limit import ApiCategory, RateLimitTracker, api_category_for


@pytest.fixture
def tracker(clock, fake_sleep):
    return RateLimitTracker(buffer=0.1, max_wait=60.0, clock=clock, sleep=fake_sleep)


def test_operation_categories():
    assert api_category_for("search_issues") == ApiCategory.SEARCH
    assert api_category_for("graphql_query") == ApiCategory.GRAPHQL
    assert api_category_for("add_to_project") == ApiCategory.GRAPHQL
    assert api_category_for("create_issue") == ApiCategory.CORE


def test_queue_once_remaining_reaches_buffer(tracker):
    window = tracker.window("search")
    assert window.limit == 30

    # buffer 0.1 of 30 is 3
    for _ in range(26):
        tracker.consume("search")
    assert window.remaining == 4
    assert tracker.should_queue("search") is False

    tracker.consume("search")
    assert tracker.should_queue("search") is True
    assert tracker.pressure("search") == pytest.approx(90.0)


def test_consume_never_goes_negative(tracker):
    window = tracker.window(ApiCategory.SEARCH)
    for _ in range(40):
        tracker.consume(ApiCategory.SEARCH)
    assert window.remaining == 0
    assert window.used == 40


def test_headers_update_window(tracker):
    changed = tracker.update_from_headers(
        "core",
        {"X-RateLimit-Limit": "5000", "X-RateLimit-Remaining": "42", "X-RateLimit-Reset": "1700"},
    )
    window = tracker.window("core")
    assert changed is True
    assert (window.limit, window.remaining, window.reset_at, window.used) == (
        5000,
        42,
        1700.0,
        4958,
    )
    assert tracker.is_critically_low() is True


def test_malformed_or_missing_headers_are_ignored(tracker):
    assert tracker.update_from_headers("core", {"content-type": "application/json"}) is False
    assert tracker.update_from_headers("core", {"x-ratelimit-remaining": "lots"}) is False
    assert tracker.window("core").remaining == 5000


@pytest.mark.asyncio
async def test_wait_is_capped_and_replenishes_after_reset(tracker, clock, fake_sleep):
    tracker.update_from_headers(
        "search", {"x-ratelimit-remaining": "0", "x-ratelimit-reset": str(clock() + 90)}
    )

    await tracker.wait_for_capacity("search")
    assert fake_sleep.calls == [60.0]
    assert tracker.window("search").remaining == 0

    await tracker.wait_for_capacity("search")
    assert fake_sleep.calls == [60.0, 30.0]
    window = tracker.window("search")
    assert window.remaining == 30
    assert window.used == 0
    assert window.reset_at == clock() + 3600


@pytest.mark.asyncio
async def test_unknown_reset_replenishes_immediately(tracker, fake_sleep):
    tracker.window("core").remaining = 0
    await tracker.wait_for_capacity("core")
    assert fake_sleep.calls == []
    assert tracker.window("core").remaining == 5000


def test_status_is_a_copy(tracker):
    status = tracker.get_rate_limit_status()
    status["core"]["remaining"] = 0
    assert tracker.window("core").remaining == 5000
    assert set(status) == {"core", "search", "graphql"}
