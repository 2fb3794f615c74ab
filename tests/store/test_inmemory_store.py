from __future__ import annotations

import pytest

from querykit import CacheEntry, InMemoryCacheStore


class _ManualClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _store(start: float = 0.0) -> tuple[InMemoryCacheStore, _ManualClock]:
    clock = _ManualClock(start)
    return InMemoryCacheStore(clock=clock), clock


def test_fresh_stale_then_evicted_timeline():
    store, clock = _store()
    store.set(["a"], 1, stale_time_ms=1000, gc_time_ms=5000)

    clock.now = 500
    entry = store.get(["a"])
    assert entry is not None
    assert entry.value == 1
    assert not entry.is_stale(clock.now)

    clock.now = 1500
    entry = store.get(["a"])
    assert entry is not None
    assert entry.value == 1
    assert entry.is_stale(clock.now)

    clock.now = 6000
    assert store.get(["a"]) is None
    assert len(store) == 0


def test_set_computes_horizons_and_keeps_invariant():
    store, clock = _store(100)
    entry = store.set(("k",), "v", stale_time_ms=1000, gc_time_ms=200)
    assert entry.fetched_at_ms == 100
    assert entry.fresh_until_ms == 1100
    # Collect horizon is clamped so it never precedes the fresh horizon.
    assert entry.collect_until_ms == 1100
    assert entry.collect_until_ms >= entry.fresh_until_ms >= entry.fetched_at_ms


def test_set_rejects_negative_durations():
    store, _ = _store()
    with pytest.raises(ValueError):
        store.set(["a"], 1, stale_time_ms=-1, gc_time_ms=10)


def test_set_twice_with_same_value_refreshes_timestamps():
    store, clock = _store()
    first = store.set(["a"], {"id": 1}, stale_time_ms=1000, gc_time_ms=5000)
    clock.now = 700
    second = store.set(["a"], {"id": 1}, stale_time_ms=1000, gc_time_ms=5000)

    current = store.get(["a"])
    assert current is second
    assert current.value == first.value
    assert current.fetched_at_ms == 700
    assert current.fresh_until_ms == 1700


def test_invalidate_prefix_marks_family_stale_only():
    store, clock = _store()
    for key in (
        ("admin", "articles", "all"),
        ("admin", "articles", "123"),
        ("admin", "categories"),
    ):
        store.set(key, key[-1], stale_time_ms=60_000, gc_time_ms=120_000)

    clock.now = 10
    marked = store.invalidate(["admin", "articles"])
    assert marked == 2

    assert store.get(("admin", "articles", "all")).is_stale(clock.now)
    assert store.get(("admin", "articles", "123")).is_stale(clock.now)
    assert not store.get(("admin", "categories")).is_stale(clock.now)
    # Values survive invalidation.
    assert store.get(("admin", "articles", "123")).value == "123"


def test_invalidate_exact_key_and_unknown_prefix():
    store, _ = _store()
    store.set(["a", "b"], 1, stale_time_ms=1000, gc_time_ms=2000)
    assert store.invalidate(["a", "b"]) == 1
    assert store.invalidate(["zzz"]) == 0
    assert store.invalidate(["a", "b", "c"]) == 0


def test_empty_prefix_invalidates_everything():
    store, _ = _store()
    store.set(["a"], 1, stale_time_ms=1000, gc_time_ms=2000)
    store.set(["b", 2], 2, stale_time_ms=1000, gc_time_ms=2000)
    assert store.invalidate([]) == 2


def test_invalidated_entry_keeps_horizon_invariant():
    store, clock = _store()
    store.set(["a"], 1, stale_time_ms=1000, gc_time_ms=2000)
    clock.now = 300
    store.invalidate(["a"])
    entry = store.get(["a"])
    assert entry.invalidated
    assert entry.fresh_until_ms == 300
    assert entry.collect_until_ms >= entry.fresh_until_ms >= entry.fetched_at_ms


def test_evict_expired_skips_subscribed_entries():
    store, clock = _store()
    store.set(["watched"], 1, stale_time_ms=10, gc_time_ms=100)
    store.set(["idle"], 2, stale_time_ms=10, gc_time_ms=100)
    store.subscribe(["watched"])

    assert store.evict_expired(now=50) == 0
    assert store.evict_expired(now=100) == 1
    assert ["idle"] not in store
    assert ["watched"] in store

    clock.now = 500
    assert store.get(["watched"]).value == 1

    store.unsubscribe(["watched"])
    assert store.subscriber_count(["watched"]) == 0
    assert store.get(["watched"]) is None


def test_subscriber_counts_nest():
    store, _ = _store()
    store.subscribe(["k"])
    store.subscribe(["k"])
    store.unsubscribe(["k"])
    assert store.subscriber_count(["k"]) == 1
    store.unsubscribe(["k"])
    store.unsubscribe(["k"])
    assert store.subscriber_count(["k"]) == 0


def test_remove_prunes_trie_and_keys_lists_family():
    store, _ = _store()
    store.set(["admin", "users", 1], "u1", stale_time_ms=10, gc_time_ms=10)
    store.set(["admin", "users", 2], "u2", stale_time_ms=10, gc_time_ms=10)
    store.set(["admin", "users"], "all", stale_time_ms=10, gc_time_ms=10)
    store.set(["public"], "p", stale_time_ms=10, gc_time_ms=10)

    assert ("admin", "users") in store.keys(["admin", "users"])
    assert len(store.keys(["admin"])) == 3

    assert store.remove(["admin", "users", 1]) == 1
    assert set(store.keys(["admin"])) == {("admin", "users"), ("admin", "users", 2)}

    assert store.remove(["admin"]) == 2
    assert store.keys() == [("public",)]
    # Re-inserting under a pruned branch works.
    store.set(["admin", "users", 1], "again", stale_time_ms=10, gc_time_ms=10)
    assert store.invalidate(["admin"]) == 1


def test_contains_accepts_sequences_only():
    store, _ = _store()
    store.set(["a"], 1, stale_time_ms=10, gc_time_ms=10)
    assert ("a",) in store
    assert "a" not in store
    assert 5 not in store


def test_hydrate_prefers_newer_entries():
    store, _ = _store()
    store.set(["a"], "current", stale_time_ms=10, gc_time_ms=10)
    older = CacheEntry(
        value="older", fetched_at_ms=-5, fresh_until_ms=5, collect_until_ms=5
    )
    newer = CacheEntry(
        value="newer", fetched_at_ms=5, fresh_until_ms=50, collect_until_ms=50
    )
    assert store.hydrate(["a"], older) is False
    assert store.get(["a"]).value == "current"
    assert store.hydrate(["a"], newer) is True
    assert store.get(["a"]).value == "newer"
    assert store.hydrate(["b"], older) is True
    assert dict(store.dehydrate())[("b",)] is older


def test_clear_empties_store():
    store, _ = _store()
    store.set(["a"], 1, stale_time_ms=10, gc_time_ms=10)
    store.clear()
    assert len(store) == 0
    assert store.keys() == []


def test_generation_grows_with_key_and_prefix_invalidation():
    store, _ = _store()
    assert store.generation(["admin", "articles", "all"]) == 0

    store.invalidate(["admin", "articles"])
    after_family = store.generation(["admin", "articles", "all"])
    assert after_family > 0
    assert store.generation(["admin", "categories"]) == 0

    store.invalidate([])
    assert store.generation(["admin", "articles", "all"]) > after_family
    assert store.generation(["admin", "categories"]) > 0


def test_set_with_outdated_generation_is_dropped():
    store, _ = _store()
    store.set(["a", 1], "old", stale_time_ms=1000, gc_time_ms=5000)
    token = store.generation(["a", 1])

    store.invalidate(["a"])

    assert store.set(
        ["a", 1], "pre-write", stale_time_ms=1000, gc_time_ms=5000, generation=token
    ) is None
    entry = store.get(["a", 1])
    assert entry.value == "old"
    assert entry.invalidated

    current = store.generation(["a", 1])
    written = store.set(
        ["a", 1], "post-write", stale_time_ms=1000, gc_time_ms=5000, generation=current
    )
    assert written is not None
    assert store.get(["a", 1]).value == "post-write"
