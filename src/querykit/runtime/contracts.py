"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Typed retry policy for query execution.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Retry semantics for one fetch path.

    The delay before retry ``n`` (zero-based) is
    ``min(backoff_ms * backoff_multiplier ** n, max_backoff_ms)``; the
    default multiplier of 1.0 gives a fixed backoff.
    """

    max_retries: int = 1
    backoff_ms: float = 1000.0
    backoff_multiplier: float = 1.0
    max_backoff_ms: float = 30000.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff delays must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    @classmethod
    def disabled(cls) -> RetryPolicy:
        return cls(max_retries=0, backoff_ms=0.0)
