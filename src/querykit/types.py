"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Core value types shared by the store and the runners.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from .errors import QueryError
from .runtime.contracts import RetryPolicy

T = TypeVar("T")

QueryStatus = Literal["idle", "loading", "success", "error", "stale"]
MutationStatus = Literal["success", "error"]

# Defaults mirror the application's query client configuration.
DEFAULT_STALE_TIME_MS = 5 * 60 * 1000
DEFAULT_GC_TIME_MS = 30 * 60 * 1000


def now_ms() -> float:
    """Wall clock in milliseconds."""
    return time.time() * 1000.0


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    """
    One cached query result with freshness metadata.

    Invariant: ``collect_until_ms >= fresh_until_ms >= fetched_at_ms``.
    """

    value: T
    fetched_at_ms: float
    fresh_until_ms: float
    collect_until_ms: float
    invalidated: bool = False

    def is_stale(self, now: float) -> bool:
        return self.invalidated or now >= self.fresh_until_ms

    def is_collectable(self, now: float) -> bool:
        return now >= self.collect_until_ms


@dataclass(frozen=True, slots=True)
class QueryOptions:
    """
    Per-query execution options.

    Attributes:
        stale_time_ms: How long a fetched value is served without refetch.
        gc_time_ms: How long an unobserved entry is kept before eviction.
        enabled: When false, `query` does nothing and reports ``idle``.
        retry: Retry schedule applied to failed fetches.
        timeout_ms: Per-attempt timeout, or None for no timeout.
        cancel_when_unobserved: Cancel the in-flight fetch when its last
            waiter detaches instead of letting it populate the cache.
    """

    stale_time_ms: float = DEFAULT_STALE_TIME_MS
    gc_time_ms: float = DEFAULT_GC_TIME_MS
    enabled: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeout_ms: float | None = None
    cancel_when_unobserved: bool = False


@dataclass(frozen=True, slots=True)
class QueryResult(Generic[T]):
    """Snapshot of one query as seen by a caller."""

    status: QueryStatus
    value: T | None = None
    error: QueryError | None = None
    from_cache: bool = False
    is_fetching: bool = False
    updated_at_ms: float | None = None

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @property
    def has_data(self) -> bool:
        return self.status in ("success", "stale")


@dataclass(frozen=True, slots=True)
class MutationResult(Generic[T]):
    """Outcome of one mutation call."""

    status: MutationStatus
    value: T | None = None
    error: QueryError | None = None
    invalidated: tuple[Any, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    def unwrap(self) -> T | None:
        """Return the mutation value or raise its error."""
        if self.error is not None:
            raise self.error
        return self.value
