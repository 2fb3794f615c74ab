from __future__ import annotations

import asyncio

import pytest

from querykit import (
    InMemoryCacheStore,
    KeyFamily,
    PrometheusQueryMetrics,
    QueryClient,
    QueryClientSettings,
)


class _ManualClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def run_async(coro):
    return asyncio.run(coro)


def test_settings_defaults_match_application_configuration():
    settings = QueryClientSettings()
    assert settings.stale_time_ms == 5 * 60 * 1000
    assert settings.gc_time_ms == 30 * 60 * 1000
    assert settings.query_retries == 1
    options = settings.query_options()
    assert options.retry.max_retries == 1
    assert options.retry.backoff_ms == 1000
    assert options.timeout_ms is None


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("QUERYKIT_STALE_TIME_MS", "1000")
    monkeypatch.setenv("QUERYKIT_GC_TIME_MS", "5000")
    monkeypatch.setenv("QUERYKIT_QUERY_RETRIES", "3")
    monkeypatch.setenv("QUERYKIT_RETRY_DELAY_MS", "250")
    monkeypatch.setenv("QUERYKIT_RETRY_BACKOFF_MULTIPLIER", "2")
    monkeypatch.setenv("QUERYKIT_QUERY_TIMEOUT_MS", "1500")
    monkeypatch.delenv("QUERYKIT_MUTATION_TIMEOUT_MS", raising=False)
    monkeypatch.setenv("QUERYKIT_GC_INTERVAL_S", "5")

    settings = QueryClientSettings.from_env()
    assert settings.stale_time_ms == 1000
    assert settings.gc_time_ms == 5000
    assert settings.query_timeout_ms == 1500
    assert settings.mutation_timeout_ms is None
    assert settings.gc_interval_s == 5
    policy = settings.retry_policy()
    assert policy.max_retries == 3
    assert policy.backoff_ms == 250
    assert policy.backoff_multiplier == 2

    client = QueryClient.from_env()
    assert client.queries.defaults.stale_time_ms == 1000


def test_client_shares_one_store_between_runners():
    async def scenario() -> None:
        client = QueryClient()
        articles = KeyFamily(("admin", "articles"))
        calls = {"n": 0}

        async def fetch_articles() -> list[str]:
            calls["n"] += 1
            return ["a"] * calls["n"]

        await client.query(articles.all, fetch_articles)
        assert client.get_query_data(articles.all) == ["a"]

        async def create() -> str:
            return "created"

        result = await client.mutate(create, invalidate_keys=[articles.all])
        assert result.is_success
        assert client.store.get(articles.all).invalidated

        refreshed = await client.query(
            articles.all, fetch_articles, wait_for_refetch=True
        )
        assert refreshed.value == ["a", "a"]
        assert client.queries.store is client.store

    run_async(scenario())


def test_invalidate_and_remove_queries():
    async def scenario() -> None:
        client = QueryClient()

        async def fetch() -> int:
            return 1

        await client.query(["admin", "users", 1], fetch)
        await client.query(["admin", "users", 2], fetch)
        await client.query(["public", "poles"], fetch)

        assert client.invalidate_queries(["admin", "users"]) == 2
        assert client.remove_queries(["admin"]) == 2
        assert client.get_query_data(["admin", "users", 1]) is None
        assert client.get_query_data(["public", "poles"]) == 1

    run_async(scenario())


def test_options_override_client_defaults():
    client = QueryClient(settings=QueryClientSettings(stale_time_ms=42))
    options = client.options(enabled=False)
    assert options.enabled is False
    assert options.stale_time_ms == 42
    assert client.options() is client.queries.defaults


def test_gc_loop_evicts_expired_entries():
    async def scenario() -> None:
        clock = _ManualClock()
        store = InMemoryCacheStore(clock=clock)
        settings = QueryClientSettings(gc_interval_s=0.01)
        async with QueryClient(settings=settings, store=store) as client:
            assert client.running
            store.set(["k"], 1, stale_time_ms=10, gc_time_ms=100)
            clock.now = 200
            await asyncio.sleep(0.05)
            assert len(store) == 0
        assert not client.running

    run_async(scenario())


def test_start_twice_raises_and_shutdown_is_idempotent():
    async def scenario() -> None:
        client = QueryClient(settings=QueryClientSettings(gc_interval_s=1))
        await client.start()
        with pytest.raises(RuntimeError, match="already running"):
            await client.start()
        await client.shutdown()
        await client.shutdown()

    run_async(scenario())


def test_start_rejects_non_positive_gc_interval():
    async def scenario() -> None:
        client = QueryClient(settings=QueryClientSettings(gc_interval_s=0))
        with pytest.raises(ValueError, match="gc_interval_s"):
            await client.start()

    run_async(scenario())


def test_shutdown_cancels_in_flight_fetches():
    async def scenario() -> None:
        client = QueryClient(settings=QueryClientSettings(gc_interval_s=1))
        await client.start()

        async def slow() -> str:
            await asyncio.sleep(1)
            return "late"

        pending = asyncio.create_task(client.query(["k"], slow))
        await asyncio.sleep(0.01)
        await client.shutdown()
        result = await pending
        assert result.status == "error"
        assert result.error.kind == "Cancelled"

    run_async(scenario())


def test_prometheus_metrics_adapter_counts():
    prometheus_client = pytest.importorskip("prometheus_client")
    registry = prometheus_client.CollectorRegistry()
    metrics = PrometheusQueryMetrics(namespace="tests", registry=registry)

    async def scenario() -> None:
        client = QueryClient(metrics=metrics)

        async def fetch() -> str:
            return "v"

        await client.query(["k"], fetch)
        await client.query(["k"], fetch)

    run_async(scenario())
    metrics.incr("query_error_total", tags={"kind": "Timeout"})

    assert registry.get_sample_value("tests_query_cache_hit_total") == 1.0
    assert registry.get_sample_value("tests_query_cache_miss_total") == 1.0
    assert (
        registry.get_sample_value("tests_query_error_total", {"kind": "Timeout"})
        == 1.0
    )


def test_invalidate_queries_from_sync_code_with_open_observer():
    client = QueryClient()
    calls = {"n": 0}

    async def fetch() -> int:
        calls["n"] += 1
        return calls["n"]

    client.store.set(("k",), 0, stale_time_ms=60_000, gc_time_ms=60_000)
    observer = client.observe(("k",), fetch)

    assert client.invalidate_queries(("k",)) == 1
    assert client.store.get(("k",)).invalidated
    assert not client.queries.is_fetching(("k",))
    assert calls["n"] == 0

    refreshed = run_async(observer.refresh(wait_for_refetch=True))
    assert refreshed.value == 1
    observer.close()


class _DelegatingStore:
    """Store exposing only the protocol surface, backed by the in-memory one."""

    def __init__(self) -> None:
        self._inner = InMemoryCacheStore()

    def now(self):
        return self._inner.now()

    def get(self, key):
        return self._inner.get(key)

    def set(self, key, value, *, stale_time_ms, gc_time_ms, generation=None):
        return self._inner.set(
            key,
            value,
            stale_time_ms=stale_time_ms,
            gc_time_ms=gc_time_ms,
            generation=generation,
        )

    def invalidate(self, prefix):
        return self._inner.invalidate(prefix)

    def generation(self, key):
        return self._inner.generation(key)

    def remove(self, prefix):
        return self._inner.remove(prefix)

    def evict_expired(self, now=None):
        return self._inner.evict_expired(now)

    def subscribe(self, key):
        self._inner.subscribe(key)

    def unsubscribe(self, key):
        self._inner.unsubscribe(key)


def test_client_accepts_any_store_implementing_the_protocol():
    async def scenario() -> None:
        store = _DelegatingStore()
        client = QueryClient(store=store)
        assert client.store is store

        async def fetch() -> str:
            return "v"

        async def write() -> str:
            return "ok"

        assert (await client.query(["users", 1], fetch)).value == "v"
        assert (await client.mutate(write, [["users"]])).is_success
        assert client.get_query_data(["users", 1]) == "v"
        assert client.remove_queries(["users"]) == 1
        assert client.collect_garbage() == 0

    run_async(scenario())


def test_is_mutating_reflects_running_write():
    async def scenario() -> None:
        client = QueryClient()
        release = asyncio.Event()

        async def write() -> str:
            await release.wait()
            return "ok"

        assert client.is_mutating is False
        task = asyncio.create_task(client.mutate(write))
        await asyncio.sleep(0.01)
        assert client.is_mutating is True
        release.set()
        await task
        assert client.is_mutating is False

    run_async(scenario())
