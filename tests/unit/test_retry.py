"""Tests for the exponential backoff retry policy."""

import pytest

from crypto_market_data.data.errors import (
    DecodeError,
    RateLimitedError,
    ServerError,
    ThrottledError,
    TransportError,
)
from crypto_market_data.data.resources import DEFAULT_POLICIES, ResourceClass, ResourcePolicy
from crypto_market_data.data.retry import GIVE_UP, GiveUp, RetryPolicy, build_retry_policies, is_retryable


class TestIsRetryable:
    """Classification of errors."""

    @pytest.mark.parametrize("error", [
        TransportError.timeout(),
        TransportError.connection_failed(),
        RateLimitedError(),
        ServerError(500),
        ServerError(503),
    ])
    def test_retryable(self, error):
        assert is_retryable(error)

    @pytest.mark.parametrize("error", [
        ServerError(400),
        ServerError(404),
        DecodeError("bad payload"),
        ThrottledError("market_list", 3.0),
    ])
    def test_not_retryable(self, error):
        assert not is_retryable(error)


class TestRetryPolicy:
    """Test RetryPolicy delays."""

    def test_delays_grow_exponentially_until_give_up(self):
        policy = RetryPolicy(max_attempts=4, backoff_base=0.5)
        error = ServerError(503)

        delays = [policy.next_delay(attempt, error) for attempt in range(1, 5)]

        assert delays[:3] == [1.0, 2.0, 4.0]
        assert delays[3] is GIVE_UP

    def test_give_up_is_final(self):
        policy = RetryPolicy(max_attempts=3)

        assert policy.next_delay(3, RateLimitedError()) is GIVE_UP
        assert policy.next_delay(7, RateLimitedError()) is GIVE_UP

    def test_non_retryable_gives_up_immediately(self):
        policy = RetryPolicy(max_attempts=5)

        assert policy.next_delay(1, ServerError(404)) is GIVE_UP

    def test_single_attempt_policy(self):
        assert RetryPolicy(max_attempts=1).next_delay(1, TransportError.timeout()) is GIVE_UP

    def test_give_up_is_a_singleton(self):
        assert GiveUp() is GIVE_UP
        assert repr(GIVE_UP) == "GIVE_UP"

    def test_built_from_resource_policies(self):
        policies = dict(DEFAULT_POLICIES)
        policies[ResourceClass.SECTOR_LIST] = ResourcePolicy(
            ttl=60, min_dispatch_interval=10, max_attempts=5, backoff_base=2.0
        )

        retry_policies = build_retry_policies(policies)

        assert retry_policies[ResourceClass.SECTOR_LIST] == RetryPolicy(max_attempts=5, backoff_base=2.0)
        assert retry_policies[ResourceClass.MARKET_LIST] == RetryPolicy(max_attempts=3, backoff_base=1.0)
