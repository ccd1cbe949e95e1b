"""Keyed single-flight guard for coroutines."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


class SingleFlight(Generic[K, T]):
    """Collapses overlapping calls for the same key onto one pending task.

    The task is stored before it starts running and removed once it settles,
    whatever the outcome, so a later call always starts fresh work.
    """

    def __init__(self) -> None:
        self._pending: dict[K, asyncio.Task[T]] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._pending

    def pending(self, key: K) -> asyncio.Task[T] | None:
        return self._pending.get(key)

    def submit(self, key: K, factory: Callable[[], Awaitable[T]]) -> asyncio.Task[T]:
        """Return the pending task for ``key`` or start a new one."""
        task = self._pending.get(key)
        if task is not None:
            return task
        task = asyncio.ensure_future(self._settle(key, factory))
        self._pending[key] = task
        return task

    async def run(self, key: K, factory: Callable[[], Awaitable[T]]) -> T:
        """Await the shared task without letting this caller's cancellation reach it."""
        return await asyncio.shield(self.submit(key, factory))

    async def _settle(self, key: K, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]


__all__ = ["SingleFlight"]
