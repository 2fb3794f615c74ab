"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Process-local cache store with an explicit prefix trie.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from threading import RLock
from typing import Any

from ..keys import CacheKey, KeyPart, normalize_key
from ..types import CacheEntry, now_ms
from .base import CacheStore

logger = logging.getLogger("querykit.store")


@dataclass(slots=True)
class _TrieNode:
    children: dict[KeyPart, _TrieNode] = field(default_factory=dict)
    terminal: bool = False


class InMemoryCacheStore(CacheStore):
    """
    Mapping from cache key to cache entry for the process lifetime.

    Entries are indexed twice: a dict for exact lookups and a trie over key
    parts so prefix invalidation visits only the matching family. All
    mutation happens under one re-entrant lock, which makes the store safe
    to share with worker threads as well as coroutines.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or now_ms
        self._entries: dict[CacheKey, CacheEntry[Any]] = {}
        self._subscribers: dict[CacheKey, int] = {}
        self._root = _TrieNode()
        self._lock = RLock()
        # Last invalidation generation recorded per invalidated prefix.
        self._generation = 0
        self._invalidations: dict[CacheKey, int] = {}

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: Sequence[Any]) -> CacheEntry[Any] | None:
        """
        Return the entry for `key` regardless of freshness.

        An entry past its collect horizon with no subscribers is evicted
        here and reported as absent.
        """
        normalized = normalize_key(key)
        with self._lock:
            entry = self._entries.get(normalized)
            if entry is None:
                return None
            if entry.is_collectable(self._clock()) and not self._subscribers.get(
                normalized
            ):
                self._delete(normalized)
                logger.debug("Evicted expired entry on read: %r", normalized)
                return None
            return entry

    def set(
        self,
        key: Sequence[Any],
        value: Any,
        *,
        stale_time_ms: float,
        gc_time_ms: float,
        generation: int | None = None,
    ) -> CacheEntry[Any] | None:
        """
        Insert or overwrite the entry for `key` with fresh timestamps.

        When `generation` is given (a value read from `generation(key)`
        before the data was fetched), the write is dropped and None is
        returned if `key` has been invalidated since.
        """
        if stale_time_ms < 0 or gc_time_ms < 0:
            raise ValueError("stale_time_ms and gc_time_ms must be >= 0")
        normalized = normalize_key(key)
        with self._lock:
            if (
                generation is not None
                and self._generation_of(normalized) > generation
            ):
                logger.debug("Dropped write for %r invalidated mid-fetch", normalized)
                return None
            now = self._clock()
            fresh_until = now + stale_time_ms
            entry: CacheEntry[Any] = CacheEntry(
                value=value,
                fetched_at_ms=now,
                fresh_until_ms=fresh_until,
                collect_until_ms=max(now + gc_time_ms, fresh_until),
            )
            if normalized not in self._entries:
                self._insert_path(normalized)
            self._entries[normalized] = entry
        return entry

    def invalidate(self, prefix: Sequence[Any]) -> int:
        """
        Mark every entry under `prefix` stale without dropping its value.

        Returns the number of entries marked.
        """
        normalized = normalize_key(prefix, allow_empty=True)
        with self._lock:
            now = self._clock()
            self._generation += 1
            self._invalidations[normalized] = self._generation
            marked = 0
            for key in self._walk(normalized):
                entry = self._entries[key]
                self._entries[key] = replace(
                    entry,
                    fresh_until_ms=min(
                        entry.fresh_until_ms, max(now, entry.fetched_at_ms)
                    ),
                    invalidated=True,
                )
                marked += 1
        logger.debug("Invalidated %d entr(y/ies) under %r", marked, normalized)
        return marked

    def generation(self, key: Sequence[Any]) -> int:
        """
        Latest invalidation generation covering `key`.

        Grows whenever `key` or one of its prefixes is invalidated, so a
        fetch can tell whether a write landed while it was running.
        """
        normalized = normalize_key(key)
        with self._lock:
            return self._generation_of(normalized)

    def evict_expired(self, now: float | None = None) -> int:
        """Remove unobserved entries whose collect horizon has passed."""
        with self._lock:
            current = self._clock() if now is None else now
            expired = [
                key
                for key, entry in self._entries.items()
                if entry.is_collectable(current) and not self._subscribers.get(key)
            ]
            for key in expired:
                self._delete(key)
        if expired:
            logger.debug("Evicted %d expired entr(y/ies)", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, key: Sequence[Any]) -> None:
        normalized = normalize_key(key)
        with self._lock:
            self._subscribers[normalized] = self._subscribers.get(normalized, 0) + 1

    def unsubscribe(self, key: Sequence[Any]) -> None:
        normalized = normalize_key(key)
        with self._lock:
            count = self._subscribers.get(normalized, 0) - 1
            if count > 0:
                self._subscribers[normalized] = count
            else:
                self._subscribers.pop(normalized, None)

    def subscriber_count(self, key: Sequence[Any]) -> int:
        return self._subscribers.get(normalize_key(key), 0)

    # ------------------------------------------------------------------
    # Bulk access
    # ------------------------------------------------------------------

    def keys(self, prefix: Sequence[Any] = ()) -> list[CacheKey]:
        normalized = normalize_key(prefix, allow_empty=True)
        with self._lock:
            return list(self._walk(normalized))

    def remove(self, prefix: Sequence[Any]) -> int:
        """Drop every entry under `prefix`; returns the number removed."""
        normalized = normalize_key(prefix, allow_empty=True)
        with self._lock:
            matched = list(self._walk(normalized))
            for key in matched:
                self._delete(key)
        return len(matched)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._root = _TrieNode()

    def dehydrate(self) -> list[tuple[CacheKey, CacheEntry[Any]]]:
        """Snapshot every entry for persistence."""
        with self._lock:
            return list(self._entries.items())

    def hydrate(self, key: Sequence[Any], entry: CacheEntry[Any]) -> bool:
        """
        Restore a previously dehydrated entry.

        Skipped when the store already holds data fetched at the same time
        or later. Returns whether the entry was written.
        """
        normalized = normalize_key(key)
        with self._lock:
            current = self._entries.get(normalized)
            if current is not None and current.fetched_at_ms >= entry.fetched_at_ms:
                return False
            if current is None:
                self._insert_path(normalized)
            self._entries[normalized] = entry
        return True

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, str) or not isinstance(key, Sequence):
            return False
        return normalize_key(key) in self._entries

    # ------------------------------------------------------------------
    # Trie maintenance
    # ------------------------------------------------------------------

    def _generation_of(self, key: CacheKey) -> int:
        if not self._invalidations:
            return 0
        return max(
            self._invalidations.get(key[:depth], 0) for depth in range(len(key) + 1)
        )

    def _insert_path(self, key: CacheKey) -> None:
        node = self._root
        for part in key:
            node = node.children.setdefault(part, _TrieNode())
        node.terminal = True

    def _delete(self, key: CacheKey) -> None:
        self._entries.pop(key, None)
        path: list[tuple[_TrieNode, KeyPart]] = []
        node = self._root
        for part in key:
            child = node.children.get(part)
            if child is None:
                return
            path.append((node, part))
            node = child
        node.terminal = False
        for parent, part in reversed(path):
            child = parent.children[part]
            if child.terminal or child.children:
                break
            del parent.children[part]

    def _walk(self, prefix: CacheKey) -> Iterator[CacheKey]:
        node = self._root
        for part in prefix:
            child = node.children.get(part)
            if child is None:
                return
            node = child
        stack: list[tuple[CacheKey, _TrieNode]] = [(prefix, node)]
        while stack:
            path, current = stack.pop()
            if current.terminal:
                yield path
            for part, child in current.children.items():
                stack.append(((*path, part), child))
