"""
Outcome streams for live updates.

Views subscribe to a resource key and receive every outcome produced by
a completed fetch for that key, including fetches started by someone else
(a background refresh or another view).
"""

import asyncio
import logging
from typing import Dict, Hashable, Optional, Set

from .models import Outcome

logger = logging.getLogger(__name__)


class Subscription:
    """Async iterator over the outcomes published for one key."""

    def __init__(self, hub: "SubscriptionHub", key: Hashable, max_queue: int = 16):
        self.key = key
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._closed = False
        self.dropped = 0

    def _offer(self, outcome: Outcome) -> None:
        if self._closed:
            return
        if self._queue.full():
            # Slow consumer: drop the oldest outcome, the newest matters most
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(outcome)

    async def get(self, timeout: Optional[float] = None) -> Optional[Outcome]:
        """Wait for the next outcome.

        Returns:
            The next outcome, or None once the subscription is closed
        """
        if self._closed and self._queue.empty():
            return None
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        return item

    def close(self) -> None:
        """Stop receiving outcomes and end iteration."""
        if self._closed:
            return
        self._closed = True
        self._hub._remove(self)
        # Wake a consumer blocked in get()
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self):
        return self

    async def __anext__(self) -> Outcome:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()


class SubscriptionHub:
    """Fan-out of outcomes to per-key subscriptions."""

    def __init__(self):
        self._subscribers: Dict[Hashable, Set[Subscription]] = {}
        self._stats = {'published': 0, 'delivered': 0}

    def subscribe(self, key: Hashable, max_queue: int = 16) -> Subscription:
        """Subscribe to outcomes for a key.

        Args:
            key: Resource key
            max_queue: Outcomes buffered before the oldest is dropped
        """
        if max_queue < 1:
            raise ValueError("max_queue must be at least 1")
        subscription = Subscription(self, key, max_queue)
        self._subscribers.setdefault(key, set()).add(subscription)
        logger.debug(f"Subscribed to {key}")
        return subscription

    def publish(self, key: Hashable, outcome: Outcome) -> int:
        """Deliver an outcome to every subscriber of a key.

        Returns:
            Number of subscriptions the outcome was delivered to
        """
        self._stats['published'] += 1
        subscribers = list(self._subscribers.get(key, ()))
        for subscription in subscribers:
            subscription._offer(outcome)
        self._stats['delivered'] += len(subscribers)
        return len(subscribers)

    def subscriber_count(self, key: Optional[Hashable] = None) -> int:
        if key is None:
            return sum(len(subs) for subs in self._subscribers.values())
        return len(self._subscribers.get(key, ()))

    def close_all(self) -> None:
        for subscription in [s for subs in self._subscribers.values() for s in subs]:
            subscription.close()

    def _remove(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.key)
        if subs is None:
            return
        subs.discard(subscription)
        if not subs:
            del self._subscribers[subscription.key]
        logger.debug(f"Unsubscribed from {subscription.key}")

    def get_stats(self) -> Dict[str, int]:
        return {**self._stats, 'subscribers': self.subscriber_count()}
