"""Exponential backoff retry policy."""

from dataclasses import dataclass
from typing import Dict, Optional, Union

from .errors import DataAccessError, RateLimitedError, ServerError, TransportError
from .resources import DEFAULT_POLICIES, ResourceClass, ResourcePolicy


class GiveUp:
    """Sentinel returned when no further attempt should be made."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "GIVE_UP"


GIVE_UP = GiveUp()


def is_retryable(error: BaseException) -> bool:
    """Transport failures, 5xx and 429 are retryable; other 4xx and decode errors are not."""
    if isinstance(error, RateLimitedError):
        return True
    if isinstance(error, ServerError):
        return not error.is_client_error
    if isinstance(error, TransportError):
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Maps (attempt, error) to a backoff delay or :data:`GIVE_UP`.

    Attempts are numbered from 1. After attempt ``n`` fails the delay is
    ``backoff_base * 2 ** n`` seconds, until ``n`` reaches ``max_attempts``.
    """

    max_attempts: int = 3
    backoff_base: float = 1.0

    @classmethod
    def for_policy(cls, policy: ResourcePolicy) -> "RetryPolicy":
        return cls(max_attempts=policy.max_attempts, backoff_base=policy.backoff_base)

    def next_delay(self, attempt: int, error: Optional[DataAccessError]) -> Union[float, GiveUp]:
        """Decide what to do after a failed attempt.

        Args:
            attempt: Number of the attempt that just failed (1-based)
            error: The failure

        Returns:
            Seconds to wait before the next attempt, or GIVE_UP
        """
        if error is not None and not is_retryable(error):
            return GIVE_UP
        if attempt >= self.max_attempts:
            return GIVE_UP
        return self.backoff_base * (2 ** attempt)


def build_retry_policies(
    policies: Optional[Dict[ResourceClass, ResourcePolicy]] = None,
) -> Dict[ResourceClass, RetryPolicy]:
    policies = policies if policies is not None else DEFAULT_POLICIES
    return {cls: RetryPolicy.for_policy(policy) for cls, policy in policies.items()}
