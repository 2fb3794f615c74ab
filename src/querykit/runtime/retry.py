"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/retry.py.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..errors import QueryError, classify_error, is_retryable
from .contracts import RetryPolicy
from .timeouts import await_with_timeout

T = TypeVar("T")

logger = logging.getLogger("querykit.retry")

RetryHook = Callable[[int, QueryError], None]


def backoff_delay_ms(attempt: int, policy: RetryPolicy) -> float:
    """Delay before retry number `attempt` (zero-based)."""
    delay = policy.backoff_ms * (policy.backoff_multiplier**attempt)
    return min(delay, policy.max_backoff_ms)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    timeout_ms: float | None = None,
    on_retry: RetryHook | None = None,
) -> T:
    """
    Execute `fn` under a bounded retry policy.

    Each attempt is individually bounded by `timeout_ms`. Only network
    failures and timeouts are retried; the last classified error is raised
    once the budget is spent.
    """
    for attempt in range(policy.max_retries + 1):
        try:
            return await await_with_timeout(fn(), timeout_ms)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            classified = classify_error(error)
            if is_retryable(classified) and attempt < policy.max_retries:
                delay = backoff_delay_ms(attempt, policy)
                logger.warning(
                    "Attempt %d failed (%s: %s); retrying in %.0fms",
                    attempt + 1,
                    classified.kind,
                    classified,
                    delay,
                )
                if on_retry is not None:
                    on_retry(attempt + 1, classified)
                await asyncio.sleep(delay / 1000.0)
                continue
            if classified is error:
                raise
            raise classified from error
    raise QueryError("Retry loop exhausted")
