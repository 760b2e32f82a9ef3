"""Tests for time sources."""

import pytest

from crypto_market_data.data.clock import Clock, ManualClock, SystemClock


class TestClock:
    """Test Clock implementations."""

    def test_clock_is_abstract(self):
        with pytest.raises(TypeError):
            Clock()

    async def test_manual_clock_sleep_advances_time(self):
        clock = ManualClock(start=100)

        await clock.sleep(2.5)

        assert clock.now() == 102.5
        assert clock.sleeps == [2.5]

    def test_manual_clock_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            ManualClock().advance(-1)

    def test_system_clock_is_a_clock(self):
        assert isinstance(SystemClock(), Clock)
        assert SystemClock().now() > 0
