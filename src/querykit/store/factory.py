"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Build a cache persister from environment variables.

Variables (first non-empty wins where two are listed):

- ``QUERYKIT_PERSIST_PREFIX``: Redis key prefix, default ``querykit:cache``.
- ``QUERYKIT_REDIS_URL`` / ``REDIS_URL``: full connection URL.
- ``QUERYKIT_REDIS_HOST``, ``QUERYKIT_REDIS_PORT``, ``QUERYKIT_REDIS_DB``,
  ``QUERYKIT_REDIS_PASSWORD``: used only when no URL is set.
"""

from __future__ import annotations

import os
from typing import Any
from urllib.parse import quote

from .persist import RedisCachePersister

DEFAULT_PERSIST_PREFIX = "querykit:cache"


def _env_first(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return default


def redis_url_from_env() -> str:
    """Resolve the Redis connection URL, assembling it from parts if needed."""
    url = _env_first("QUERYKIT_REDIS_URL", "REDIS_URL")
    if url:
        return url
    host = _env_first("QUERYKIT_REDIS_HOST", default="localhost")
    port = _env_first("QUERYKIT_REDIS_PORT", default="6379")
    db = _env_first("QUERYKIT_REDIS_DB", default="0")
    password = _env_first("QUERYKIT_REDIS_PASSWORD")
    auth = f":{quote(password, safe='')}@" if password else ""
    return f"redis://{auth}{host}:{port}/{db}"


def create_cache_persister_from_env(
    *, redis_client: Any | None = None
) -> RedisCachePersister:
    """
    Create a `RedisCachePersister` configured from the environment.

    An injected `redis_client` is used as-is; otherwise a `redis.asyncio`
    client is built from `redis_url_from_env()`.
    """
    prefix = _env_first("QUERYKIT_PERSIST_PREFIX", default=DEFAULT_PERSIST_PREFIX)
    if redis_client is not None:
        return RedisCachePersister(redis_client, prefix=prefix)

    try:
        import redis.asyncio as redis
    except ModuleNotFoundError as exc:  # pragma: no cover
        raise RuntimeError(
            "Redis cache persistence requires `redis` to be installed."
        ) from exc

    return RedisCachePersister(redis.Redis.from_url(redis_url_from_env()), prefix=prefix)
