"""Periodic background refresh of tracked resources."""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from .clock import Clock, SystemClock
from .models import Decoder
from .resources import ResourceKey

logger = logging.getLogger(__name__)

REFRESH_INTERVALS = (15, 30, 60, 300)


class BackgroundRefresher:
    """Re-resolves tracked keys on a fixed interval.

    Refreshes go through ``DataService.resolve`` without forcing, so they
    honour freshness and the rate limiter like any other caller. Outcomes
    reach views through the service's subscriptions.
    """

    def __init__(self, service, interval: float = 30.0, clock: Optional[Clock] = None):
        """Initialize background refresher.

        Args:
            service: DataService used to resolve tracked keys
            interval: Seconds between refresh rounds
            clock: Time source for the refresh sleep; defaults to the service clock
        """
        if interval <= 0:
            raise ValueError("Refresh interval must be positive")

        self.service = service
        self.interval = interval
        self.clock = clock or getattr(service, "clock", None) or SystemClock()

        self._tracked: Dict[ResourceKey, Optional[Decoder]] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._rounds = 0
        self._errors = 0

    def track(self, key: ResourceKey, decode: Optional[Decoder] = None) -> None:
        """Add a key to every future refresh round."""
        self._tracked[key] = decode
        logger.debug(f"Tracking {key} for background refresh")

    def untrack(self, key: ResourceKey) -> None:
        self._tracked.pop(key, None)

    @property
    def tracked(self) -> Set[ResourceKey]:
        return set(self._tracked)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the refresh loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(f"Background refresh started (every {self.interval:.0f}s)")

    async def stop(self) -> None:
        """Stop the refresh loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Background refresh stopped")

    async def refresh_now(self) -> Dict[ResourceKey, Any]:
        """Run one refresh round immediately.

        Returns:
            Outcome per tracked key
        """
        tracked = list(self._tracked.items())
        outcomes = await asyncio.gather(
            *(self.service.resolve(key, decode) for key, decode in tracked),
            return_exceptions=True,
        )

        results = {}
        for (key, _), outcome in zip(tracked, outcomes):
            if isinstance(outcome, BaseException):
                self._errors += 1
                logger.error(f"Background refresh of {key} raised: {outcome!r}")
                continue
            results[key] = outcome

        self._rounds += 1
        return results

    async def _refresh_loop(self):
        """Background refresh loop."""
        while self._running:
            try:
                await self.refresh_now()
            except Exception as e:
                logger.error(f"Error in refresh loop: {e}")
            await self.clock.sleep(self.interval)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'running': self._running,
            'interval': self.interval,
            'tracked': len(self._tracked),
            'rounds': self._rounds,
            'errors': self._errors,
        }
