"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Cache key normalization, prefix matching and key family factories.

A cache key is an ordered tuple of primitive parts. Keys form an implicit
hierarchy: ``("admin", "articles")`` is the prefix of every key that starts
with those two parts, and invalidating it touches the whole family.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

from .errors import InvalidKeyError

KeyPart = Union[str, int, float, bool, None, tuple]
CacheKey = tuple[KeyPart, ...]

_PRIMITIVES = (str, int, float, bool, type(None))


def _normalize_part(part: Any) -> KeyPart:
    if isinstance(part, _PRIMITIVES):
        return part
    if isinstance(part, Mapping):
        items = sorted(part.items(), key=lambda item: str(item[0]))
        return tuple((str(name), _normalize_part(value)) for name, value in items)
    if isinstance(part, Sequence) and not isinstance(part, (bytes, bytearray)):
        return tuple(_normalize_part(item) for item in part)
    raise InvalidKeyError(
        f"Unsupported key part of type {type(part).__name__}: {part!r}"
    )


def normalize_key(key: Sequence[Any], *, allow_empty: bool = False) -> CacheKey:
    """
    Convert a sequence of parts into a hashable cache key.

    Mappings are flattened into sorted ``(name, value)`` pairs so filter
    objects compare by content; nested sequences become tuples.

    Args:
        key: Ordered key parts. A bare string is rejected because it would
            otherwise be split into characters.
        allow_empty: Accept ``()``, which is only meaningful as a prefix.
    """
    if isinstance(key, (str, bytes, bytearray)) or not isinstance(key, Sequence):
        raise InvalidKeyError(
            f"Cache keys must be a non-string sequence, got {type(key).__name__}"
        )
    normalized = tuple(_normalize_part(part) for part in key)
    if not normalized and not allow_empty:
        raise InvalidKeyError("Cache keys must be non-empty")
    return normalized


def key_starts_with(key: CacheKey, prefix: CacheKey) -> bool:
    """Whether `prefix` is an element-wise prefix of `key`."""
    if len(prefix) > len(key):
        return False
    return key[: len(prefix)] == prefix


@dataclass(frozen=True, slots=True)
class KeyFamily:
    """
    Factory for the keys of one resource family.

    Example::

        articles = KeyFamily(("admin", "articles"))
        articles.all            # ("admin", "articles")
        articles.detail("123")  # ("admin", "articles", "123")
        articles.list({"published": True})
    """

    root: CacheKey

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", normalize_key(self.root))

    @property
    def all(self) -> CacheKey:
        return self.root

    def child(self, *parts: Any) -> CacheKey:
        return normalize_key((*self.root, *parts))

    def list(self, filters: Mapping[str, Any] | None = None) -> CacheKey:
        if filters is None:
            return self.child("list")
        return self.child("list", filters)

    def detail(self, item_id: Any) -> CacheKey:
        return self.child(item_id)

    def family(self, *parts: Any) -> KeyFamily:
        """Return a nested family rooted below this one."""
        return KeyFamily(self.child(*parts))
