"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Redis persistence for cache snapshots, so a restarted process can serve
previously fetched data before its first refetch.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from collections.abc import Sequence
from typing import Any

from ..keys import CacheKey, key_starts_with, normalize_key
from ..types import CacheEntry
from .inmemory import InMemoryCacheStore

logger = logging.getLogger("querykit.persist")


def _key_digest(key: CacheKey) -> str:
    normalized = json.dumps(list(key), ensure_ascii=True, separators=(",", ":"))
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class RedisCachePersister:
    """
    Write store entries to Redis and hydrate them back.

    Each entry is stored as one JSON blob with a TTL equal to its remaining
    garbage collection horizon, plus a member in an index set. Entries
    whose value is not JSON-serializable are skipped.
    """

    def __init__(self, redis_client, *, prefix: str = "querykit:cache") -> None:
        self._redis = redis_client
        self._prefix = prefix

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}:index"

    def _entry_key(self, digest: str) -> str:
        return f"{self._prefix}:entry:{digest}"

    async def persist(
        self, store: InMemoryCacheStore, *, prefix: Sequence[Any] = ()
    ) -> int:
        """Persist every live entry under `prefix`; returns the number written."""
        scope = normalize_key(prefix, allow_empty=True)
        now = store.now()
        written = 0
        for key, entry in store.dehydrate():
            if not key_starts_with(key, scope):
                continue
            remaining_ms = entry.collect_until_ms - now
            if remaining_ms <= 0:
                continue
            try:
                blob = json.dumps(
                    {
                        "key": list(key),
                        "value": entry.value,
                        "fetched_at_ms": entry.fetched_at_ms,
                        "fresh_until_ms": entry.fresh_until_ms,
                        "collect_until_ms": entry.collect_until_ms,
                        "invalidated": entry.invalidated,
                    },
                    ensure_ascii=True,
                )
            except (TypeError, ValueError):
                logger.debug("Skipping non-serializable entry %r", key)
                continue
            digest = _key_digest(key)
            ttl_s = int(max(1, math.ceil(remaining_ms / 1000.0)))
            await self._redis.setex(self._entry_key(digest), ttl_s, blob)
            await self._redis.sadd(self._index_key, digest)
            written += 1
        logger.info("Persisted %d cache entr(y/ies) to %s", written, self._prefix)
        return written

    async def restore(self, store: InMemoryCacheStore) -> int:
        """Hydrate `store` from Redis; returns the number of entries written."""
        restored = 0
        for member in await self._redis.smembers(self._index_key):
            digest = member.decode("utf-8") if isinstance(member, bytes) else str(member)
            blob = await self._redis.get(self._entry_key(digest))
            if blob is None:
                await self._redis.srem(self._index_key, member)
                continue
            try:
                row = json.loads(blob)
                key = normalize_key(row["key"])
                entry: CacheEntry[Any] = CacheEntry(
                    value=row.get("value"),
                    fetched_at_ms=float(row["fetched_at_ms"]),
                    fresh_until_ms=float(row["fresh_until_ms"]),
                    collect_until_ms=float(row["collect_until_ms"]),
                    invalidated=bool(row.get("invalidated", False)),
                )
            except (ValueError, KeyError, TypeError):
                logger.warning("Dropping unreadable cache blob %s", digest)
                await self._redis.srem(self._index_key, member)
                continue
            if store.hydrate(key, entry):
                restored += 1
        logger.info("Restored %d cache entr(y/ies) from %s", restored, self._prefix)
        return restored

    async def clear(self) -> int:
        """Delete every persisted entry; returns the number of blobs removed."""
        members = await self._redis.smembers(self._index_key)
        removed = 0
        for member in members:
            digest = member.decode("utf-8") if isinstance(member, bytes) else str(member)
            removed += int(await self._redis.delete(self._entry_key(digest)) or 0)
        await self._redis.delete(self._index_key)
        return removed
