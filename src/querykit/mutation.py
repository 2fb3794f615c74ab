"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Mutation runner: execute one write, then invalidate the keys it affects.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from .errors import QueryError, classify_error
from .keys import CacheKey, normalize_key
from .metrics import NoOpQueryMetrics, QueryMetrics
from .runtime.timeouts import await_with_timeout
from .store.base import CacheStore
from .types import MutationResult

if TYPE_CHECKING:
    from .query import QueryRunner

T = TypeVar("T")

logger = logging.getLogger("querykit.mutation")

MutationFn = Callable[[], Awaitable[T]]
SuccessCallback = Callable[[Any], Awaitable[None] | None]
ErrorCallback = Callable[[QueryError], Awaitable[None] | None]
SettledCallback = Callable[[MutationResult[Any]], Awaitable[None] | None]


class MutationRunner:
    """
    Executes writes and synchronizes the cache afterwards.

    A mutation runs exactly once per call and is never retried. The cache is
    invalidated only after the write is confirmed, so it never reflects an
    unconfirmed write; a failed write leaves the cache untouched.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        queries: QueryRunner | None = None,
        timeout_ms: float | None = None,
        metrics: QueryMetrics | None = None,
    ) -> None:
        self._store = store
        self._queries = queries
        self._timeout_ms = timeout_ms
        self._metrics: QueryMetrics = metrics or NoOpQueryMetrics()
        self._pending = 0

    @property
    def pending(self) -> int:
        """Number of mutations whose write or callbacks are still running."""
        return self._pending

    @property
    def is_pending(self) -> bool:
        return self._pending > 0

    async def mutate(
        self,
        mutation_fn: MutationFn[T],
        invalidate_keys: Sequence[Sequence[Any]] = (),
        *,
        timeout_ms: float | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_settled: SettledCallback | None = None,
        refetch_active: bool = False,
    ) -> MutationResult[T]:
        """
        Run `mutation_fn` once and invalidate `invalidate_keys` on success.

        Args:
            mutation_fn: No-argument coroutine function performing the write.
            invalidate_keys: Keys or key prefixes made stale after success.
            timeout_ms: Overrides the runner timeout for this call.
            on_success: Called with the value after invalidation.
            on_error: Called with the classified error.
            on_settled: Called with the final result either way.
            refetch_active: Also refetch observed queries under the
                invalidated prefixes.
        """
        prefixes = [normalize_key(key, allow_empty=True) for key in invalidate_keys]
        effective_timeout = self._timeout_ms if timeout_ms is None else timeout_ms

        self._pending += 1
        try:
            return await self._execute(
                mutation_fn,
                prefixes,
                timeout_ms=effective_timeout,
                on_success=on_success,
                on_error=on_error,
                on_settled=on_settled,
                refetch_active=refetch_active,
            )
        finally:
            self._pending -= 1

    async def _execute(
        self,
        mutation_fn: MutationFn[T],
        prefixes: list[CacheKey],
        *,
        timeout_ms: float | None,
        on_success: SuccessCallback | None,
        on_error: ErrorCallback | None,
        on_settled: SettledCallback | None,
        refetch_active: bool,
    ) -> MutationResult[T]:
        try:
            value = await await_with_timeout(mutation_fn(), timeout_ms)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify_error(exc)
            if error is not exc:
                error.__cause__ = exc
            self._metrics.incr("mutation_error_total", tags={"kind": error.kind})
            logger.warning("Mutation failed: %s: %s", error.kind, error)
            result: MutationResult[T] = MutationResult(status="error", error=error)
            await self._run_callback(on_error, error)
            await self._run_callback(on_settled, result)
            return result

        self._invalidate(prefixes, refetch_active=refetch_active)
        self._metrics.incr("mutation_success_total")
        result = MutationResult(
            status="success", value=value, invalidated=tuple(prefixes)
        )
        await self._run_callback(on_success, value)
        await self._run_callback(on_settled, result)
        return result

    def _invalidate(self, prefixes: list[CacheKey], *, refetch_active: bool) -> None:
        for prefix in prefixes:
            marked = self._store.invalidate(prefix)
            self._metrics.incr("cache_invalidated_total", marked)
            if refetch_active and self._queries is not None:
                self._queries.refetch_active(prefix)

    async def _run_callback(self, callback, argument) -> None:
        if callback is None:
            return
        try:
            outcome = callback(argument)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Mutation callback %r failed", callback)
