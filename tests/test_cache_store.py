from repo_coordinator.core.cache import CacheStore, cache_key


def test_cache_key_is_independent_of_param_order():
    assert cache_key("list_issues", {"state": "open", "labels": ["bug"]}) == cache_key(
        "list_issues", {"labels": ["bug"], "state": "open"}
    )
    assert cache_key("list_issues", {}) != cache_key("get_issue", {})


def test_hit_before_ttl_and_miss_at_ttl(clock):
    store = CacheStore(clock=clock)
    store.set("k", {"id": 1}, ttl=10)

    clock.advance(9)
    hit, value = store.lookup("k")
    assert hit is True
    assert value == {"id": 1}
    assert store.peek("k").access_count == 2

    clock.advance(1)
    assert store.lookup("k") == (False, None)
    assert "k" not in store
    assert len(store) == 0


def test_default_ttl_applies(clock):
    store = CacheStore(default_ttl=5, clock=clock)
    store.set("k", "v")
    assert store.peek("k").ttl == 5


def test_eviction_keeps_new_entry_and_drops_lowest_score(clock):
    store = CacheStore(max_entries=2, clock=clock)
    store.set("cold", 1)
    store.set("hot", 2)
    clock.advance(10)
    for _ in range(5):
        store.get("hot")

    store.set("new", 3)

    assert len(store) == 2
    assert "cold" not in store
    assert "hot" in store
    assert "new" in store


def test_expired_entries_are_evicted_first(clock):
    store = CacheStore(max_entries=2, clock=clock)
    store.set("short", 1, ttl=1)
    store.set("long", 2, ttl=100)
    clock.advance(2)
    store.get("long")

    store.set("new", 3)
    assert store.peek("short") is None
    assert store.peek("long") is not None


def test_clear_by_pattern(clock):
    store = CacheStore(clock=clock)
    store.set(cache_key("list_issues", {"state": "open"}), [])
    store.set(cache_key("get_issue", {"id": 1}), {})
    store.set(cache_key("get_repo", {}), {})

    assert store.clear(r"^(list_issues|get_issue):") == 2
    assert len(store) == 1
    assert store.clear() == 1


def test_cleanup_and_optimize(clock):
    store = CacheStore(max_entries=10, clock=clock)
    for i in range(4):
        store.set(f"k{i}", i, ttl=1 if i % 2 else 100)
    clock.advance(5)

    assert store.cleanup_expired() == 2
    store.max_entries = 1
    assert store.optimize() == {"before": 2, "after": 1, "removed": 1}


def test_stats(clock):
    store = CacheStore(clock=clock)
    store.set("a", "x" * 600)
    clock.advance(1)
    store.set("b", "y")
    store.get("a")
    store.get("missing")

    stats = store.get_cache_stats()
    assert stats["size"] == 2
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5
    assert stats["memory_usage"].endswith("KB")
    assert stats["oldest_entry"] == 1000.0
    assert stats["newest_entry"] == 1001.0
