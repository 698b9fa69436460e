"""Minimum-interval throttling for backend calls."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class RateLimiter:
    """Enforce a minimum spacing between the starts of consecutive calls.

    Concurrent callers serialize through a lock around the wait-and-stamp
    step only, so the wrapped call itself still runs in parallel with other
    callers once its slot is reserved. A zero interval is a pass-through.
    """

    def __init__(self, min_interval_ms: float) -> None:
        self.min_interval = max(0.0, min_interval_ms) / 1000.0
        self._last_call: float | None = None
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    def _loop_lock(self) -> asyncio.Lock:
        # A lock is bound to the event loop it first waits on.
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    @property
    def last_call(self) -> float | None:
        return self._last_call

    async def acquire(self) -> None:
        """Wait until the next call may start, then stamp it."""
        if self.min_interval <= 0:
            return
        async with self._loop_lock():
            now = time.monotonic()
            if self._last_call is not None:
                delay = self.min_interval - (now - self._last_call)
                if delay > 0:
                    await asyncio.sleep(delay)
            self._last_call = time.monotonic()

    async def throttle(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once the minimum interval since the last call has elapsed.

        The result or exception of ``fn`` propagates unchanged.
        """
        await self.acquire()
        return await fn()
