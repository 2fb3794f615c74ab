"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Query client: the composition root owning one store and its runners.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import Any, TypeVar

from .metrics import NoOpQueryMetrics, QueryMetrics
from .mutation import MutationFn, MutationRunner
from .query import Fetcher, QueryObserver, QueryRunner
from .settings import QueryClientSettings
from .store.base import CacheStore
from .store.inmemory import InMemoryCacheStore
from .types import MutationResult, QueryOptions, QueryResult

T = TypeVar("T")

logger = logging.getLogger("querykit.client")


class QueryClient:
    """
    Wires one cache store to a query runner and a mutation runner.

    The store is constructed here and injected into both runners, so every
    component built from the same client shares the same cache. Call
    ``start()`` (or use ``async with``) to run periodic garbage collection.
    """

    def __init__(
        self,
        *,
        settings: QueryClientSettings | None = None,
        store: CacheStore | None = None,
        metrics: QueryMetrics | None = None,
    ) -> None:
        self.settings = settings or QueryClientSettings()
        self._metrics: QueryMetrics = metrics or NoOpQueryMetrics()
        self._store: CacheStore = (
            store if store is not None else InMemoryCacheStore()
        )
        self._queries = QueryRunner(
            self._store,
            defaults=self.settings.query_options(),
            metrics=self._metrics,
        )
        self._mutations = MutationRunner(
            self._store,
            queries=self._queries,
            timeout_ms=self.settings.mutation_timeout_ms,
            metrics=self._metrics,
        )
        self._running = False
        self._gc_task: asyncio.Task[None] | None = None

    @classmethod
    def from_env(cls, *, metrics: QueryMetrics | None = None) -> QueryClient:
        return cls(settings=QueryClientSettings.from_env(), metrics=metrics)

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def queries(self) -> QueryRunner:
        return self._queries

    @property
    def mutations(self) -> MutationRunner:
        return self._mutations

    @property
    def running(self) -> bool:
        return self._running

    @property
    def is_mutating(self) -> bool:
        return self._mutations.is_pending

    def options(self, **overrides: Any) -> QueryOptions:
        """Client default query options with selected fields replaced."""
        return replace(self._queries.defaults, **overrides)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(
        self,
        key: Sequence[Any],
        fetch_fn: Fetcher[T],
        options: QueryOptions | None = None,
        *,
        wait_for_refetch: bool = False,
    ) -> QueryResult[T]:
        return await self._queries.query(
            key, fetch_fn, options, wait_for_refetch=wait_for_refetch
        )

    async def fetch(
        self,
        key: Sequence[Any],
        fetch_fn: Fetcher[T],
        options: QueryOptions | None = None,
    ) -> T:
        return await self._queries.fetch(key, fetch_fn, options)

    def observe(
        self,
        key: Sequence[Any],
        fetch_fn: Fetcher[T],
        options: QueryOptions | None = None,
    ) -> QueryObserver[T]:
        return self._queries.observe(key, fetch_fn, options)

    def get_query_data(self, key: Sequence[Any]) -> Any | None:
        entry = self._store.get(key)
        return entry.value if entry is not None else None

    def invalidate_queries(
        self, prefix: Sequence[Any] = (), *, refetch_active: bool = True
    ) -> int:
        """Mark every entry under `prefix` stale; optionally refetch observed ones."""
        marked = self._store.invalidate(prefix)
        self._metrics.incr("cache_invalidated_total", marked)
        if refetch_active:
            self._queries.refetch_active(prefix)
        return marked

    def remove_queries(self, prefix: Sequence[Any] = ()) -> int:
        return self._store.remove(prefix)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def mutate(
        self,
        mutation_fn: MutationFn[T],
        invalidate_keys: Sequence[Sequence[Any]] = (),
        **kwargs: Any,
    ) -> MutationResult[T]:
        return await self._mutations.mutate(mutation_fn, invalidate_keys, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def collect_garbage(self) -> int:
        evicted = self._store.evict_expired()
        if evicted:
            self._metrics.incr("cache_evicted_total", evicted)
        return evicted

    async def start(self) -> None:
        """Start the periodic garbage collection loop."""
        if self._running:
            raise RuntimeError("QueryClient is already running")
        if self.settings.gc_interval_s <= 0:
            raise ValueError("gc_interval_s must be > 0")
        self._running = True
        self._gc_task = asyncio.create_task(self._gc_loop())
        logger.info(
            "QueryClient started (gc_interval=%.1fs)", self.settings.gc_interval_s
        )

    async def shutdown(self) -> None:
        """Stop garbage collection and cancel in-flight fetches."""
        if not self._running:
            return
        self._running = False
        if self._gc_task is not None and not self._gc_task.done():
            self._gc_task.cancel()
            await asyncio.gather(self._gc_task, return_exceptions=True)
        self._gc_task = None
        cancelled = self._queries.cancel_all()
        logger.info("QueryClient stopped (cancelled %d in-flight fetch(es))", cancelled)

    async def __aenter__(self) -> QueryClient:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def _gc_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.settings.gc_interval_s)
                if not self._running:
                    break
                self.collect_garbage()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("QueryClient garbage collection failed")
