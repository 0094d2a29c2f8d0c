"""
Shared request spacer for the market-data client.

One instance is shared by every caller (scan loop, monitor loop,
discovery) so the combined request rate stays under the provider's
limit. Callers queue on an asyncio.Lock and each request starts at least
``min_interval_seconds`` after the previous one.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable


class RateLimiter:
    def __init__(
        self,
        min_interval_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval = max(min_interval_seconds, 0.0)
        self._sleep = sleep
        self._monotonic = monotonic
        self._lock = asyncio.Lock()
        self._last_request: float | None = None

    @property
    def min_interval_seconds(self) -> float:
        return self._min_interval

    async def acquire(self) -> None:
        """Wait until the next request slot is free and claim it."""
        async with self._lock:
            if self._last_request is not None:
                elapsed = self._monotonic() - self._last_request
                if elapsed < self._min_interval:
                    await self._sleep(self._min_interval - elapsed)
            self._last_request = self._monotonic()
