"""
Process-wide request spacing for controller calls.

One RateLimiter instance is created per process and passed by reference
to every ControllerGateway, so the combined request rate of all gateways
stays under the controller's ceiling.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-interval limiter with exponential backoff on throttling.

    Callers queue on an asyncio.Lock (FIFO), so no caller dispatches
    before its computed slot. The dispatch stamp is written while the
    lock is still held.
    """

    def __init__(
        self,
        min_interval: float = 0.2,
        max_backoff: float = 5.0,
        base_backoff: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            min_interval: Minimum seconds between two dispatches
            max_backoff: Cap of the throttling backoff in seconds
            base_backoff: First backoff step after a throttling signal
            clock: Monotonic clock (injectable for tests)
            sleep: Coroutine used to wait (injectable for tests)
        """
        self.min_interval = min_interval
        self.max_backoff = max_backoff
        self.base_backoff = base_backoff
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self._last_dispatch: Optional[float] = None
        self._current_backoff = 0.0
        self._blocked_until = 0.0

    @property
    def last_dispatch(self) -> Optional[float]:
        return self._last_dispatch

    @property
    def current_backoff(self) -> float:
        return self._current_backoff

    async def wait(self) -> float:
        """
        Wait for the next permissible dispatch slot.

        Returns:
            The dispatch timestamp stamped for this caller
        """
        async with self._lock:
            now = self._clock()
            eligible = now
            if self._last_dispatch is not None:
                eligible = max(eligible, self._last_dispatch + self.min_interval)
            eligible = max(eligible, self._blocked_until)

            delay = eligible - now
            if delay > 0:
                logger.debug(f"Rate limiter delaying request {delay:.3f}s")
                await self._sleep(delay)

            self._last_dispatch = max(self._clock(), eligible)
            return self._last_dispatch

    def record_throttle(self) -> float:
        """
        Escalate the backoff after a throttling response.

        The backoff is applied before the next dispatch is allowed.

        Returns:
            The backoff in seconds
        """
        if self._current_backoff <= 0:
            self._current_backoff = min(self.base_backoff, self.max_backoff)
        else:
            self._current_backoff = min(self._current_backoff * 2, self.max_backoff)

        self._blocked_until = max(self._blocked_until, self._clock() + self._current_backoff)
        logger.warning(f"Controller throttling, backing off {self._current_backoff:.1f}s")
        return self._current_backoff

    def record_success(self) -> None:
        """Reset the backoff after a non-throttled response."""
        if self._current_backoff:
            logger.debug("Throttling cleared, resetting backoff")
        self._current_backoff = 0.0

    async def backoff(self) -> float:
        """Record a throttling signal and wait out the backoff in this task."""
        delay = self.record_throttle()
        await self._sleep(delay)
        return delay
