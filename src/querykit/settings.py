"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Query client settings and explicit config loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .runtime.contracts import RetryPolicy
from .types import DEFAULT_GC_TIME_MS, DEFAULT_STALE_TIME_MS, QueryOptions


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


@dataclass(frozen=True, slots=True)
class QueryClientSettings:
    """Explicit settings used by the query client and its runners."""

    stale_time_ms: float = DEFAULT_STALE_TIME_MS
    gc_time_ms: float = DEFAULT_GC_TIME_MS
    query_retries: int = 1
    retry_delay_ms: float = 1000.0
    retry_backoff_multiplier: float = 1.0
    retry_max_delay_ms: float = 30000.0
    query_timeout_ms: float | None = None
    mutation_timeout_ms: float | None = None
    gc_interval_s: float = 60.0

    @staticmethod
    def from_env() -> "QueryClientSettings":
        """Load settings from environment variables."""
        return QueryClientSettings(
            stale_time_ms=float(
                os.getenv("QUERYKIT_STALE_TIME_MS", str(DEFAULT_STALE_TIME_MS))
            ),
            gc_time_ms=float(os.getenv("QUERYKIT_GC_TIME_MS", str(DEFAULT_GC_TIME_MS))),
            query_retries=int(os.getenv("QUERYKIT_QUERY_RETRIES", "1")),
            retry_delay_ms=float(os.getenv("QUERYKIT_RETRY_DELAY_MS", "1000")),
            retry_backoff_multiplier=float(
                os.getenv("QUERYKIT_RETRY_BACKOFF_MULTIPLIER", "1.0")
            ),
            retry_max_delay_ms=float(os.getenv("QUERYKIT_RETRY_MAX_DELAY_MS", "30000")),
            query_timeout_ms=_optional_float("QUERYKIT_QUERY_TIMEOUT_MS"),
            mutation_timeout_ms=_optional_float("QUERYKIT_MUTATION_TIMEOUT_MS"),
            gc_interval_s=float(os.getenv("QUERYKIT_GC_INTERVAL_S", "60")),
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.query_retries,
            backoff_ms=self.retry_delay_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
            max_backoff_ms=self.retry_max_delay_ms,
        )

    def query_options(self) -> QueryOptions:
        """Default options applied to queries that do not override them."""
        return QueryOptions(
            stale_time_ms=self.stale_time_ms,
            gc_time_ms=self.gc_time_ms,
            retry=self.retry_policy(),
            timeout_ms=self.query_timeout_ms,
        )
