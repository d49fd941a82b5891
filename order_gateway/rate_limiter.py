"""
Order Gateway - Rate Limiter.

============================================================
PURPOSE
============================================================
Per-backend minimum spacing between request starts.

INVARIANTS:
- The last-request timestamp is updated on acquisition
- Updates happen under a per-backend asyncio.Lock
- Waiters are released in FIFO order

============================================================
"""

import asyncio
import logging
import time
from typing import Callable, Awaitable, Dict, Optional

from .config import RateLimitConfig


logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Enforces min_interval between consecutive acquisitions per backend.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_acquired: Dict[str, float] = {}

    def _lock_for(self, backend_id: str) -> asyncio.Lock:
        lock = self._locks.get(backend_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[backend_id] = lock
        return lock

    async def acquire(self, backend_id: str) -> float:
        """
        Wait until the backend's minimum interval has elapsed.

        Args:
            backend_id: Backend identifier

        Returns:
            Seconds spent waiting
        """
        interval = self._config.interval_for(backend_id)
        waited = 0.0

        async with self._lock_for(backend_id):
            last = self._last_acquired.get(backend_id)
            if last is not None:
                elapsed = self._clock() - last
                if elapsed < interval:
                    waited = interval - elapsed
                    logger.debug(f"Rate limit {backend_id}: waiting {waited * 1000:.0f}ms")
                    await self._sleep(waited)
            self._last_acquired[backend_id] = self._clock()

        return waited

    def last_acquired(self, backend_id: str) -> Optional[float]:
        return self._last_acquired.get(backend_id)

    def status(self) -> Dict[str, float]:
        """Last acquisition time per backend."""
        return dict(self._last_acquired)

    def reset(self, backend_id: Optional[str] = None) -> None:
        if backend_id is None:
            self._last_acquired.clear()
        else:
            self._last_acquired.pop(backend_id, None)
