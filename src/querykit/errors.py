"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Error taxonomy for query and mutation execution.
"""

from __future__ import annotations

import asyncio
from typing import Literal

ErrorKind = Literal["NetworkFailure", "Timeout", "Cancelled", "InvalidKey"]


class QueryError(RuntimeError):
    """Base error raised by query and mutation runners."""

    kind: ErrorKind = "NetworkFailure"


class NetworkFailure(QueryError):
    """Raised when a fetch or mutation function rejected."""

    kind: ErrorKind = "NetworkFailure"


class QueryTimeoutError(QueryError):
    """Raised when a fetch or mutation exceeded its timeout."""

    kind: ErrorKind = "Timeout"


class QueryCancelledError(QueryError):
    """Raised when an unobserved fetch was cancelled before completion."""

    kind: ErrorKind = "Cancelled"


class InvalidKeyError(QueryError, ValueError):
    """Raised when a cache key cannot be normalized."""

    kind: ErrorKind = "InvalidKey"


def classify_error(error: BaseException) -> QueryError:
    """Map an arbitrary exception onto the query error taxonomy."""
    if isinstance(error, QueryError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return QueryTimeoutError(str(error) or "Operation timed out")
    if isinstance(error, asyncio.CancelledError):
        return QueryCancelledError(str(error) or "Operation cancelled")
    return NetworkFailure(str(error) or type(error).__name__)


def is_retryable(error: QueryError) -> bool:
    """Whether the retry policy applies to a classified error."""
    return isinstance(error, (NetworkFailure, QueryTimeoutError))
