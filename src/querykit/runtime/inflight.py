"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

In-flight request tracking: at most one fetch per key at any instant.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from ..errors import QueryCancelledError

T = TypeVar("T")


@dataclass(slots=True, eq=False)
class PendingRequest(Generic[T]):
    """
    One in-flight fetch shared by every caller of the same key.

    Attributes:
        key: Key the fetch populates.
        task: Task running the fetch (including its retries).
        waiters: Number of callers currently awaiting the outcome.
        cancel_when_unobserved: Cancel `task` once the last waiter detaches.
        generation: Store invalidation generation read when the fetch began.
        superseded: Set when an invalidation overtook this fetch; its result
            still reaches current waiters but must not be cached.
    """

    key: Hashable
    cancel_when_unobserved: bool = False
    waiters: int = 0
    generation: int = 0
    superseded: bool = False
    task: asyncio.Task[T] = field(init=False)

    @property
    def done(self) -> bool:
        return self.task.done()


class InFlightRegistry:
    """Deduplicate concurrent fetches for identical keys."""

    def __init__(self) -> None:
        self._pending: dict[Hashable, PendingRequest[Any]] = {}
        self._superseded: set[PendingRequest[Any]] = set()

    def get(self, key: Hashable) -> PendingRequest[Any] | None:
        pending = self._pending.get(key)
        if pending is None or pending.done:
            return None
        return pending

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return sum(1 for pending in self._pending.values() if not pending.done)

    def start(
        self,
        key: Hashable,
        factory: Callable[[PendingRequest[T]], Awaitable[T]],
        *,
        cancel_when_unobserved: bool = False,
        generation: int = 0,
    ) -> tuple[PendingRequest[T], bool]:
        """
        Return the in-flight request for `key`, starting one if none exists.

        `factory` receives the new request so the fetch can consult its
        state. The boolean is True when this call started the fetch.
        """
        existing = self.get(key)
        if existing is not None:
            return existing, False

        pending: PendingRequest[T] = PendingRequest(
            key=key,
            cancel_when_unobserved=cancel_when_unobserved,
            generation=generation,
        )
        pending.task = asyncio.ensure_future(factory(pending))
        self._pending[key] = pending
        pending.task.add_done_callback(lambda _: self._release(pending))
        return pending, True

    async def wait(self, pending: PendingRequest[T]) -> T:
        """
        Await the outcome of `pending` as one more waiter.

        Cancelling the caller detaches it without cancelling the shared
        fetch, unless it was the last waiter of a request started with
        ``cancel_when_unobserved``.
        """
        pending.waiters += 1
        detached = False
        try:
            return await asyncio.shield(pending.task)
        except asyncio.CancelledError:
            if pending.task.cancelled():
                raise QueryCancelledError(
                    f"Fetch for {pending.key!r} was cancelled"
                ) from None
            pending.waiters -= 1
            detached = True
            if (
                pending.waiters == 0
                and pending.cancel_when_unobserved
                and not pending.task.done()
            ):
                pending.task.cancel()
            raise
        finally:
            if not detached:
                pending.waiters -= 1

    def supersede(self, matches: Callable[[Hashable], bool]) -> int:
        """
        Detach in-flight requests whose key satisfies `matches`.

        Detached fetches keep running for their current waiters, but the
        next `start` for the same key begins a new fetch. Returns the number
        of requests superseded.
        """
        superseded = 0
        for key, pending in list(self._pending.items()):
            if pending.done or not matches(key):
                continue
            pending.superseded = True
            del self._pending[key]
            self._superseded.add(pending)
            superseded += 1
        return superseded

    def cancel_all(self) -> int:
        """Cancel every in-flight fetch; returns the number cancelled."""
        cancelled = 0
        for pending in [*self._pending.values(), *self._superseded]:
            if not pending.done:
                pending.task.cancel()
                cancelled += 1
        return cancelled

    def _release(self, pending: PendingRequest[Any]) -> None:
        self._superseded.discard(pending)
        if self._pending.get(pending.key) is pending:
            del self._pending[pending.key]
        if not pending.task.cancelled():
            # Mark the outcome as retrieved when nobody awaited it.
            pending.task.exception()
