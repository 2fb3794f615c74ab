"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Millisecond timeouts for fetch and mutation attempts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from ..errors import QueryTimeoutError

T = TypeVar("T")


async def await_with_timeout(awaitable: Awaitable[T], timeout_ms: float | None) -> T:
    """
    Await `awaitable`, failing with `QueryTimeoutError` after `timeout_ms`.

    ``None`` disables the timeout. The awaitable is cancelled on expiry.
    """
    if timeout_ms is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as exc:
        raise QueryTimeoutError(f"Timed out after {timeout_ms:.0f}ms") from exc
