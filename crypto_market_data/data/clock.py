"""Time sources for the data-access layer."""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import List


class Clock(ABC):
    """Supplies the current time and suspends for backoff delays."""

    @abstractmethod
    def now(self) -> float:
        """Current time as epoch seconds."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        pass


class SystemClock(Clock):
    """Wall-clock time backed by :func:`time.time` and :func:`asyncio.sleep`."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """Virtual clock for deterministic tests.

    ``sleep`` advances virtual time instead of waiting and records every
    requested delay in :attr:`sleeps`.
    """

    def __init__(self, start: float = 0.0):
        """Initialize manual clock.

        Args:
            start: Initial virtual time in epoch seconds
        """
        self._now = float(start)
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        """Move virtual time forward.

        Returns:
            The new virtual time
        """
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: float) -> None:
        self._now = float(timestamp)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += seconds
        # Still yield so other tasks get scheduled like a real suspension point
        await asyncio.sleep(0)
