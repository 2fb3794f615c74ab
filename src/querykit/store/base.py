"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: store/base.py.
"""

from __future__ import annotations

from typing import Any, Protocol

from ..keys import CacheKey
from ..types import CacheEntry


class CacheStore(Protocol):
    """Protocol implemented by cache stores used by the query runners."""

    def now(self) -> float: ...

    def get(self, key: CacheKey) -> CacheEntry[Any] | None: ...

    def set(
        self,
        key: CacheKey,
        value: Any,
        *,
        stale_time_ms: float,
        gc_time_ms: float,
        generation: int | None = None,
    ) -> CacheEntry[Any] | None: ...

    def invalidate(self, prefix: CacheKey) -> int: ...

    def generation(self, key: CacheKey) -> int: ...

    def remove(self, prefix: CacheKey) -> int: ...

    def evict_expired(self, now: float | None = None) -> int: ...

    def subscribe(self, key: CacheKey) -> None: ...

    def unsubscribe(self, key: CacheKey) -> None: ...
