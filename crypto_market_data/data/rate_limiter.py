"""Per-resource-class dispatch throttling."""

import asyncio
import logging
from typing import Dict, Optional

from .clock import Clock, SystemClock
from .resources import DEFAULT_POLICIES, ResourceClass, ResourcePolicy

logger = logging.getLogger(__name__)


class DispatchLedger:
    """Last dispatch time per resource class."""

    def __init__(self):
        self._last_dispatch: Dict[ResourceClass, float] = {}

    def last_dispatch_at(self, resource_class: ResourceClass) -> Optional[float]:
        return self._last_dispatch.get(resource_class)

    def record(self, resource_class: ResourceClass, timestamp: float) -> None:
        self._last_dispatch[resource_class] = timestamp

    def reset(self, resource_class: Optional[ResourceClass] = None) -> None:
        if resource_class is None:
            self._last_dispatch.clear()
        else:
            self._last_dispatch.pop(resource_class, None)

    def snapshot(self) -> Dict[str, float]:
        return {cls.value: ts for cls, ts in self._last_dispatch.items()}


class RateLimiter:
    """Enforces a minimum interval between dispatches of the same resource class.

    Check-and-record is atomic per class: each class has its own lock, so
    unrelated classes never wait on each other and two concurrent callers
    of one class cannot both slip into the same window.
    """

    def __init__(self, clock: Optional[Clock] = None,
                 policies: Optional[Dict[ResourceClass, ResourcePolicy]] = None,
                 ledger: Optional[DispatchLedger] = None):
        """Initialize rate limiter.

        Args:
            clock: Time source
            policies: Per-class policy table providing ``min_dispatch_interval``
            ledger: Shared dispatch ledger
        """
        self.clock = clock if clock is not None else SystemClock()
        self.policies = policies if policies is not None else DEFAULT_POLICIES
        self.ledger = ledger if ledger is not None else DispatchLedger()
        self._locks: Dict[ResourceClass, asyncio.Lock] = {}
        self._stats = {'allowed': 0, 'throttled': 0, 'forced': 0, 'extended': 0}

    def _lock_for(self, resource_class: ResourceClass) -> asyncio.Lock:
        lock = self._locks.get(resource_class)
        if lock is None:
            lock = self._locks[resource_class] = asyncio.Lock()
        return lock

    async def try_dispatch(self, resource_class: ResourceClass) -> bool:
        """Acquire permission to dispatch a request.

        On success the dispatch time is recorded before the lock is released.

        Returns:
            True if the request may be dispatched, False if throttled
        """
        async with self._lock_for(resource_class):
            now = self.clock.now()
            if self.retry_after(resource_class, now) > 0:
                self._stats['throttled'] += 1
                logger.info(f"Rate limiting {resource_class.value}: waiting before next request")
                return False

            self.ledger.record(resource_class, now)
            self._stats['allowed'] += 1
            return True

    async def force_dispatch(self, resource_class: ResourceClass) -> bool:
        """Bypass the interval check but still record the dispatch.

        Returns:
            Always True
        """
        async with self._lock_for(resource_class):
            self.ledger.record(resource_class, self.clock.now())
            self._stats['forced'] += 1
            return True

    async def extend(self, resource_class: ResourceClass) -> None:
        """Treat the class as just dispatched so siblings back off (HTTP 429)."""
        async with self._lock_for(resource_class):
            self.ledger.record(resource_class, self.clock.now())
            self._stats['extended'] += 1
        logger.info(f"Upstream rate limit hit, extending {resource_class.value} throttle window")

    def retry_after(self, resource_class: ResourceClass, now: Optional[float] = None) -> float:
        """Seconds until the next dispatch of a class is allowed (0 if allowed now)."""
        last = self.ledger.last_dispatch_at(resource_class)
        if last is None:
            return 0.0
        now = self.clock.now() if now is None else now
        interval = self.policies[resource_class].min_dispatch_interval
        return max(0.0, interval - (now - last))

    def reset(self, resource_class: Optional[ResourceClass] = None) -> None:
        """Forget recorded dispatches. Useful for testing or admin override."""
        self.ledger.reset(resource_class)

    def get_stats(self) -> Dict[str, int]:
        return self._stats.copy()
