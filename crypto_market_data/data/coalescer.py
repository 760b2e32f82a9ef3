"""
Request coalescing to prevent duplicate upstream API calls.

When multiple concurrent callers resolve the same resource key, only one
fetch runs and every caller receives the same result.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable

logger = logging.getLogger(__name__)


@dataclass
class InFlightRequest:
    """Tracks an in-progress fetch for one key."""
    task: asyncio.Task
    started_at: float = field(default_factory=lambda: asyncio.get_running_loop().time())
    waiter_count: int = 1


class RequestCoalescer:
    """
    Ensures concurrent requests for the same key share one fetch.

    Pattern:
    - First caller for a key starts the work as a task
    - Later callers for the same key await that task
    - The registry entry is removed exactly once, when the task completes
    - A caller that is cancelled stops waiting but the task runs to
      completion, so its result still reaches the cache and other waiters

    Usage:
        coalescer = RequestCoalescer()
        outcome = await coalescer.run_exclusive(key, lambda: fetch(key))
    """

    def __init__(self):
        # Registry mutations never span an await, so no lock is needed
        self._in_flight: Dict[Hashable, InFlightRequest] = {}
        self._stats = {'started': 0, 'joined': 0}

    async def run_exclusive(self, key: Hashable, work: Callable[[], Awaitable[Any]]) -> Any:
        """Either join an existing in-flight fetch or start a new one.

        Args:
            key: Identity of the request
            work: Zero-argument coroutine function performing the fetch

        Returns:
            The result of ``work`` (shared among all concurrent callers)

        Raises:
            Exception: Any error raised by ``work`` is re-raised to every caller
        """
        in_flight = self._in_flight.get(key)

        if in_flight is not None:
            in_flight.waiter_count += 1
            self._stats['joined'] += 1
            logger.debug(f"Coalescing request for {key} (waiters: {in_flight.waiter_count})")
        else:
            task = asyncio.ensure_future(work())
            in_flight = InFlightRequest(task=task)
            self._in_flight[key] = in_flight
            self._stats['started'] += 1
            task.add_done_callback(lambda done, k=key: self._release(k, done))
            logger.debug(f"Initiating fetch for {key}")

        return await asyncio.shield(in_flight.task)

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        current = self._in_flight.get(key)
        if current is not None and current.task is task:
            del self._in_flight[key]

    def is_in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    async def drain(self) -> None:
        """Wait until every in-flight request has completed."""
        while self._in_flight:
            tasks = [entry.task for entry in self._in_flight.values()]
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            **self._stats,
            'active_requests': len(self._in_flight),
            'active_keys': [str(key) for key in self._in_flight],
        }
