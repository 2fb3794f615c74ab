"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Query runner: serve fresh data from the cache, fetch on miss or staleness.

Quick start::

    store = InMemoryCacheStore()
    runner = QueryRunner(store)

    result = await runner.query(("admin", "articles", "all"), fetch_articles)
    if result.has_data:
        render(result.value)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Generic, TypeVar

from .errors import QueryError
from .keys import CacheKey, key_starts_with, normalize_key
from .metrics import NoOpQueryMetrics, QueryMetrics
from .runtime.inflight import InFlightRegistry, PendingRequest
from .runtime.retry import call_with_retry
from .store.base import CacheStore
from .types import QueryOptions, QueryResult

T = TypeVar("T")

logger = logging.getLogger("querykit.query")

Fetcher = Callable[[], Awaitable[T]]
ResultListener = Callable[[QueryResult[Any]], None]


class QueryRunner:
    """
    Mediates between callers, the cache store and remote fetch functions.

    At most one fetch runs per key at any instant; concurrent callers for
    the same key attach to the running fetch and share its outcome,
    retries included.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        defaults: QueryOptions | None = None,
        metrics: QueryMetrics | None = None,
    ) -> None:
        self._store = store
        self._defaults = defaults or QueryOptions()
        self._metrics: QueryMetrics = metrics or NoOpQueryMetrics()
        self._inflight = InFlightRegistry()
        self._observers: dict[CacheKey, list[QueryObserver[Any]]] = {}

    @property
    def defaults(self) -> QueryOptions:
        return self._defaults

    @property
    def store(self) -> CacheStore:
        return self._store

    def is_fetching(self, key: Sequence[Any]) -> bool:
        return normalize_key(key) in self._inflight

    def peek(self, key: Sequence[Any]) -> QueryResult[Any]:
        """Synchronous state of `key` without starting a fetch."""
        normalized = normalize_key(key)
        fetching = normalized in self._inflight
        entry = self._store.get(normalized)
        if entry is None:
            return QueryResult(
                status="loading" if fetching else "idle", is_fetching=fetching
            )
        status = "stale" if entry.is_stale(self._store.now()) else "success"
        return QueryResult(
            status=status,
            value=entry.value,
            from_cache=True,
            is_fetching=fetching,
            updated_at_ms=entry.fetched_at_ms,
        )

    async def query(
        self,
        key: Sequence[Any],
        fetch_fn: Fetcher[T],
        options: QueryOptions | None = None,
        *,
        wait_for_refetch: bool = False,
    ) -> QueryResult[T]:
        """
        Resolve `key` from the cache or through `fetch_fn`.

        - disabled: returns ``idle`` without touching anything.
        - fresh entry: returns it without invoking `fetch_fn`.
        - stale entry: returns ``stale`` with the old value and refetches in
          the background, or awaits the refetch when `wait_for_refetch`.
        - no entry: awaits the (shared) fetch.

        Failures never raise; they come back as an ``error`` result carrying
        any previously cached value.
        """
        opts = options or self._defaults
        normalized = normalize_key(key)
        if not opts.enabled:
            return QueryResult(status="idle")

        entry = self._store.get(normalized)
        if entry is not None and not entry.is_stale(self._store.now()):
            self._metrics.incr("query_cache_hit_total")
            logger.debug("Cache hit for %r", normalized)
            return QueryResult(
                status="success",
                value=entry.value,
                from_cache=True,
                updated_at_ms=entry.fetched_at_ms,
            )

        if entry is not None and not wait_for_refetch:
            self._metrics.incr("query_cache_stale_total")
            logger.debug("Serving stale entry for %r while refetching", normalized)
            self._start_fetch(normalized, fetch_fn, opts)
            return QueryResult(
                status="stale",
                value=entry.value,
                from_cache=True,
                is_fetching=True,
                updated_at_ms=entry.fetched_at_ms,
            )

        self._metrics.incr("query_cache_miss_total")
        try:
            value = await self._fetch_shared(normalized, fetch_fn, opts)
        except QueryError as error:
            return QueryResult(
                status="error",
                value=entry.value if entry is not None else None,
                error=error,
            )
        fetched = self._store.get(normalized)
        return QueryResult(
            status="success",
            value=value,
            updated_at_ms=fetched.fetched_at_ms if fetched is not None else None,
        )

    async def fetch(
        self,
        key: Sequence[Any],
        fetch_fn: Fetcher[T],
        options: QueryOptions | None = None,
    ) -> T:
        """Fetch `key` regardless of freshness; raises the classified error."""
        return await self._fetch_shared(
            normalize_key(key), fetch_fn, options or self._defaults
        )

    def observe(
        self,
        key: Sequence[Any],
        fetch_fn: Fetcher[T],
        options: QueryOptions | None = None,
    ) -> QueryObserver[T]:
        """Create an observer that keeps `key` alive until closed."""
        return QueryObserver(self, key, fetch_fn, options or self._defaults)

    def refetch_active(self, prefix: Sequence[Any] = ()) -> int:
        """
        Start background refetches for observed keys under `prefix`.

        Returns the number of keys scheduled. Outside a running event loop
        nothing is scheduled; observers pick up the stale entries on their
        next refresh.
        """
        normalized = normalize_key(prefix, allow_empty=True)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipped refetch under %r", normalized)
            return 0
        scheduled = 0
        for key, observers in list(self._observers.items()):
            if not key_starts_with(key, normalized):
                continue
            observer = next((o for o in observers if o.options.enabled), None)
            if observer is None:
                continue
            self._start_fetch(key, observer.fetch_fn, observer.options)
            scheduled += 1
        return scheduled

    def cancel_all(self) -> int:
        return self._inflight.cancel_all()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_fetch(
        self, key: CacheKey, fetch_fn: Fetcher[T], opts: QueryOptions
    ) -> tuple[PendingRequest[T], bool]:
        generation = self._store.generation(key)
        running = self._inflight.get(key)
        if running is not None and running.generation < generation:
            # Invalidated after it started; later callers must not join it.
            self._inflight.supersede(lambda other: other == key)
            logger.debug("Superseded in-flight fetch for %r", key)
        pending, created = self._inflight.start(
            key,
            lambda pending: self._run_fetch(key, fetch_fn, opts, pending),
            cancel_when_unobserved=opts.cancel_when_unobserved,
            generation=generation,
        )
        if not created:
            self._metrics.incr("query_dedup_total")
            logger.debug("Joined in-flight fetch for %r", key)
        return pending, created

    async def _fetch_shared(
        self, key: CacheKey, fetch_fn: Fetcher[T], opts: QueryOptions
    ) -> T:
        pending, _ = self._start_fetch(key, fetch_fn, opts)
        return await self._inflight.wait(pending)

    async def _run_fetch(
        self,
        key: CacheKey,
        fetch_fn: Fetcher[T],
        opts: QueryOptions,
        pending: PendingRequest[T],
    ) -> T:
        self._metrics.incr("query_fetch_total")

        def _on_retry(attempt: int, error: QueryError) -> None:
            self._metrics.incr("query_retry_total", tags={"kind": error.kind})

        try:
            value = await call_with_retry(
                fetch_fn,
                policy=opts.retry,
                timeout_ms=opts.timeout_ms,
                on_retry=_on_retry,
            )
        except QueryError as error:
            self._metrics.incr("query_error_total", tags={"kind": error.kind})
            logger.warning("Fetch for %r failed: %s: %s", key, error.kind, error)
            if not pending.superseded:
                self._notify(key, error=error)
            raise

        stored = self._store.set(
            key,
            value,
            stale_time_ms=opts.stale_time_ms,
            gc_time_ms=opts.gc_time_ms,
            generation=pending.generation,
        )
        if stored is None:
            pending.superseded = True
            logger.debug("Discarded fetch result for %r invalidated mid-fetch", key)
            return value
        self._notify(key)
        return value

    def _notify(self, key: CacheKey, *, error: QueryError | None = None) -> None:
        observers = self._observers.get(key)
        if not observers:
            return
        entry = self._store.get(key)
        if error is not None:
            result: QueryResult[Any] = QueryResult(
                status="error",
                value=entry.value if entry is not None else None,
                error=error,
            )
        elif entry is not None:
            result = QueryResult(
                status="success",
                value=entry.value,
                updated_at_ms=entry.fetched_at_ms,
            )
        else:
            return
        for observer in list(observers):
            observer._update(result)  # noqa: SLF001

    def _attach(self, observer: QueryObserver[Any]) -> None:
        self._store.subscribe(observer.key)
        self._observers.setdefault(observer.key, []).append(observer)

    def _detach(self, observer: QueryObserver[Any]) -> None:
        observers = self._observers.get(observer.key)
        if observers and observer in observers:
            observers.remove(observer)
            if not observers:
                del self._observers[observer.key]
        self._store.unsubscribe(observer.key)


class QueryObserver(Generic[T]):
    """
    Long-lived view of one query, the equivalent of a mounted component.

    While open the observer counts as an active subscriber, so its entry
    is never garbage collected, and it receives the outcome of every
    fetch for its key, including background refetches started elsewhere.
    """

    def __init__(
        self,
        runner: QueryRunner,
        key: Sequence[Any],
        fetch_fn: Fetcher[T],
        options: QueryOptions,
    ) -> None:
        self.key = normalize_key(key)
        self.fetch_fn = fetch_fn
        self.options = options
        self._runner = runner
        self._listeners: list[ResultListener] = []
        self._closed = False
        self._result: QueryResult[T] = QueryResult(status="idle")
        # Disabled observers never subscribe, so they do not pin the entry.
        if options.enabled:
            self._result = runner.peek(self.key)
            runner._attach(self)  # noqa: SLF001

    @property
    def result(self) -> QueryResult[T]:
        return self._result

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: ResultListener) -> Callable[[], None]:
        """Register a result listener; returns a function removing it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def refresh(self, *, wait_for_refetch: bool = False) -> QueryResult[T]:
        """Run the query with this observer's options and record the result."""
        self._ensure_open()
        result = await self._runner.query(
            self.key,
            self.fetch_fn,
            self.options,
            wait_for_refetch=wait_for_refetch,
        )
        self._update(result)
        return result

    async def refetch(self) -> QueryResult[T]:
        """Force a fetch; failures are recorded rather than raised."""
        self._ensure_open()
        try:
            await self._runner.fetch(self.key, self.fetch_fn, self.options)
        except QueryError as error:
            result: QueryResult[T] = QueryResult(
                status="error", value=self._result.value, error=error
            )
            self._update(result)
            return result
        return self._result

    def close(self) -> None:
        """Detach from the runner; the in-flight fetch, if any, keeps running."""
        if self._closed:
            return
        self._closed = True
        if self.options.enabled:
            self._runner._detach(self)  # noqa: SLF001
        self._listeners.clear()

    def __enter__(self) -> QueryObserver[T]:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("QueryObserver is closed")

    def _update(self, result: QueryResult[Any]) -> None:
        self._result = result
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception:  # noqa: BLE001
                logger.exception("Query listener failed for %r", self.key)
