"""Tests for outcome subscriptions."""

import asyncio

import pytest

from crypto_market_data.data.models import Fresh
from crypto_market_data.data.resources import global_metrics_key, market_list_key
from crypto_market_data.data.subscriptions import SubscriptionHub


@pytest.fixture
def hub():
    return SubscriptionHub()


class TestSubscriptionHub:
    """Test SubscriptionHub fan-out."""

    async def test_publish_reaches_every_subscriber_of_key(self, hub):
        key = market_list_key()
        first = hub.subscribe(key)
        second = hub.subscribe(key)
        other = hub.subscribe(global_metrics_key())

        delivered = hub.publish(key, Fresh([1], stored_at=1.0))

        assert delivered == 2
        assert (await first.get(timeout=1)).value == [1]
        assert (await second.get(timeout=1)).value == [1]
        with pytest.raises(asyncio.TimeoutError):
            await other.get(timeout=0.01)

    async def test_publish_without_subscribers(self, hub):
        assert hub.publish(market_list_key(), Fresh([], stored_at=0.0)) == 0
        assert hub.get_stats() == {'published': 1, 'delivered': 0, 'subscribers': 0}

    def test_invalid_queue_size(self, hub):
        with pytest.raises(ValueError):
            hub.subscribe(market_list_key(), max_queue=0)

    async def test_subscriber_count_and_close(self, hub):
        key = market_list_key()
        subscription = hub.subscribe(key)
        hub.subscribe(global_metrics_key())

        assert hub.subscriber_count(key) == 1
        assert hub.subscriber_count() == 2

        subscription.close()

        assert subscription.closed
        assert hub.subscriber_count(key) == 0
        assert hub.subscriber_count() == 1

    async def test_close_all(self, hub):
        subscriptions = [hub.subscribe(market_list_key(page=page)) for page in (1, 2)]

        hub.close_all()

        assert hub.subscriber_count() == 0
        assert all(s.closed for s in subscriptions)


class TestSubscription:
    """Test Subscription iteration and buffering."""

    async def test_slow_consumer_drops_oldest(self, hub):
        key = market_list_key()
        subscription = hub.subscribe(key, max_queue=2)

        for value in range(4):
            hub.publish(key, Fresh(value, stored_at=float(value)))

        assert subscription.dropped == 2
        assert (await subscription.get(timeout=1)).value == 2
        assert (await subscription.get(timeout=1)).value == 3

    async def test_iteration_ends_on_close(self, hub):
        key = market_list_key()
        subscription = hub.subscribe(key)
        hub.publish(key, Fresh("a", stored_at=1.0))
        hub.publish(key, Fresh("b", stored_at=2.0))

        received = []
        async for outcome in subscription:
            received.append(outcome.value)
            if len(received) == 2:
                subscription.close()

        assert received == ["a", "b"]
        assert await subscription.get() is None

    async def test_close_wakes_blocked_consumer(self, hub):
        subscription = hub.subscribe(market_list_key())

        waiter = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)
        subscription.close()

        assert await asyncio.wait_for(waiter, timeout=1) is None

    async def test_outcomes_after_close_are_ignored(self, hub):
        key = market_list_key()
        subscription = hub.subscribe(key)
        subscription.close()

        assert hub.publish(key, Fresh(1, stored_at=1.0)) == 0
        assert await subscription.get() is None

    async def test_context_manager_unsubscribes(self, hub):
        key = market_list_key()

        async with hub.subscribe(key) as subscription:
            assert hub.subscriber_count(key) == 1

        assert subscription.closed
        assert hub.subscriber_count(key) == 0
