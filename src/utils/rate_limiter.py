"""
Minimum-interval rate limiter for exchange API calls.
"""

import asyncio
import time


class RateLimiter:
    """
    Enforces a minimum delay between consecutive calls.

    Owned by an execution adapter; callers await `wait()` before each
    request. Concurrent waiters are serialized so each one gets its own slot.
    """

    def __init__(self, min_delay_seconds: float = 0.2):
        self.min_delay_seconds = min_delay_seconds
        self._last_call: float = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        """Sleep until the next call slot is available."""
        async with self._lock:
            if self._last_call > 0:
                elapsed = time.monotonic() - self._last_call
                if elapsed < self.min_delay_seconds:
                    await asyncio.sleep(self.min_delay_seconds - elapsed)
            self._last_call = time.monotonic()

    def reset(self) -> None:
        """Forget the last call so the next one proceeds immediately."""
        self._last_call = 0.0
