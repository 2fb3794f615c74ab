"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Metrics adapters for query cache observability.

Counters emitted by the runners and the client:

- ``query_cache_hit_total`` / ``query_cache_miss_total`` / ``query_cache_stale_total``
- ``query_fetch_total``, ``query_dedup_total``, ``query_retry_total{kind}``
- ``query_error_total{kind}``
- ``mutation_success_total``, ``mutation_error_total{kind}``
- ``cache_invalidated_total``, ``cache_evicted_total``
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

_DESCRIPTIONS: dict[str, str] = {
    "query_cache_hit_total": "Queries answered from a fresh cache entry",
    "query_cache_miss_total": "Queries that had to await a fetch",
    "query_cache_stale_total": "Queries served stale data while refetching",
    "query_fetch_total": "Fetch executions started",
    "query_dedup_total": "Callers attached to an in-flight fetch",
    "query_retry_total": "Fetch attempts retried after a failure",
    "query_error_total": "Fetches that failed after exhausting retries",
    "mutation_success_total": "Mutations confirmed by the remote",
    "mutation_error_total": "Mutations that failed",
    "cache_invalidated_total": "Cache entries marked stale by invalidation",
    "cache_evicted_total": "Cache entries removed by garbage collection",
}


class QueryMetrics(Protocol):
    """Minimal metrics interface for cache instrumentation."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        """Increment a counter metric."""


class NoOpQueryMetrics:
    """Default metrics sink when no metrics backend is provided."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        _ = name
        _ = value
        _ = tags


class PrometheusQueryMetrics(QueryMetrics):
    """
    Prometheus counters for the query cache.

    One counter is registered per metric name and label set on first use.
    Pass a dedicated `registry` in tests to keep the global registry clean.
    """

    def __init__(self, *, namespace: str = "querykit", registry: Any = None) -> None:
        try:
            import prometheus_client
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "PrometheusQueryMetrics requires `prometheus_client` to be installed."
            ) from exc

        self._prometheus = prometheus_client
        self._namespace = namespace
        self._registry = registry or prometheus_client.REGISTRY
        self._counters: dict[tuple[str, tuple[str, ...]], Any] = {}

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        if value <= 0:
            return
        labels = dict(tags or {})
        counter = self._counter(name, tuple(sorted(labels)))
        if labels:
            counter = counter.labels(**{k: str(v) for k, v in labels.items()})
        counter.inc(value)

    def _counter(self, name: str, label_names: tuple[str, ...]) -> Any:
        key = (name, label_names)
        counter = self._counters.get(key)
        if counter is None:
            counter = self._prometheus.Counter(
                name,
                _DESCRIPTIONS.get(name, f"querykit counter {name}"),
                labelnames=label_names,
                namespace=self._namespace,
                registry=self._registry,
            )
            self._counters[key] = counter
        return counter
