"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: store/__init__.py.
"""

from .base import CacheStore
from .inmemory import InMemoryCacheStore
from .factory import create_cache_persister_from_env
from .persist import RedisCachePersister

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCachePersister",
    "create_cache_persister_from_env",
]
