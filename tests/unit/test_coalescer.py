"""Tests for request coalescing."""

import asyncio

import pytest

from crypto_market_data.data.coalescer import RequestCoalescer


@pytest.fixture
def coalescer():
    return RequestCoalescer()


class TestRequestCoalescer:
    """Test RequestCoalescer functionality."""

    async def test_concurrent_callers_share_one_execution(self, coalescer):
        release = asyncio.Event()
        executions = 0

        async def work():
            nonlocal executions
            executions += 1
            await release.wait()
            return object()

        tasks = [asyncio.create_task(coalescer.run_exclusive("key", work)) for _ in range(4)]
        await asyncio.sleep(0)
        assert coalescer.is_in_flight("key")

        release.set()
        results = await asyncio.gather(*tasks)

        assert executions == 1
        assert all(result is results[0] for result in results)
        assert not coalescer.is_in_flight("key")
        assert coalescer.get_stats()['joined'] == 3

    async def test_different_keys_run_independently(self, coalescer):
        async def work_for(value):
            await asyncio.sleep(0)
            return value

        results = await asyncio.gather(
            coalescer.run_exclusive("a", lambda: work_for(1)),
            coalescer.run_exclusive("b", lambda: work_for(2)),
        )

        assert results == [1, 2]
        assert coalescer.get_stats()['started'] == 2

    async def test_entry_removed_after_failure(self, coalescer):
        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await coalescer.run_exclusive("key", failing)
        await asyncio.sleep(0)

        assert coalescer.active_requests == 0

    async def test_sequential_calls_start_new_work(self, coalescer):
        calls = []

        async def work():
            calls.append(1)
            return len(calls)

        assert await coalescer.run_exclusive("key", work) == 1
        await asyncio.sleep(0)
        assert await coalescer.run_exclusive("key", work) == 2

    async def test_cancelled_waiter_leaves_work_running(self, coalescer):
        release = asyncio.Event()
        finished = asyncio.Event()

        async def work():
            await release.wait()
            finished.set()
            return "done"

        abandoned = asyncio.create_task(coalescer.run_exclusive("key", work))
        await asyncio.sleep(0)
        abandoned.cancel()
        with pytest.raises(asyncio.CancelledError):
            await abandoned

        late = asyncio.create_task(coalescer.run_exclusive("key", work))
        await asyncio.sleep(0)
        release.set()

        assert await late == "done"
        assert finished.is_set()
        assert coalescer.get_stats()['started'] == 1

    async def test_drain_waits_for_in_flight_work(self, coalescer):
        release = asyncio.Event()

        async def work():
            await release.wait()
            return 1

        task = asyncio.create_task(coalescer.run_exclusive("key", work))
        await asyncio.sleep(0)
        asyncio.get_running_loop().call_soon(release.set)

        await coalescer.drain()

        assert coalescer.active_requests == 0
        assert await task == 1
