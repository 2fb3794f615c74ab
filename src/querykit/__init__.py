"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Asynchronous query cache with request deduplication and mutation-driven
invalidation.

Quick start::

    from querykit import KeyFamily, QueryClient

    articles = KeyFamily(("admin", "articles"))

    async with QueryClient() as client:
        result = await client.query(articles.all, fetch_articles)
        await client.mutate(
            lambda: delete_article(article_id),
            invalidate_keys=[articles.all],
        )
"""

from .client import QueryClient
from .errors import (
    InvalidKeyError,
    NetworkFailure,
    QueryCancelledError,
    QueryError,
    QueryTimeoutError,
    classify_error,
)
from .keys import CacheKey, KeyFamily, key_starts_with, normalize_key
from .metrics import NoOpQueryMetrics, PrometheusQueryMetrics, QueryMetrics
from .mutation import MutationRunner
from .query import QueryObserver, QueryRunner
from .runtime import RetryPolicy
from .settings import QueryClientSettings
from .store import (
    CacheStore,
    InMemoryCacheStore,
    RedisCachePersister,
    create_cache_persister_from_env,
)
from .types import CacheEntry, MutationResult, QueryOptions, QueryResult

__all__ = [
    "QueryClient",
    "QueryClientSettings",
    "QueryRunner",
    "QueryObserver",
    "MutationRunner",
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCachePersister",
    "create_cache_persister_from_env",
    "CacheEntry",
    "CacheKey",
    "KeyFamily",
    "normalize_key",
    "key_starts_with",
    "QueryOptions",
    "QueryResult",
    "MutationResult",
    "RetryPolicy",
    "QueryError",
    "NetworkFailure",
    "QueryTimeoutError",
    "QueryCancelledError",
    "InvalidKeyError",
    "classify_error",
    "QueryMetrics",
    "NoOpQueryMetrics",
    "PrometheusQueryMetrics",
]
