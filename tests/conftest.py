"""
Pytest configuration and shared fixtures for the test suite.

Provides a virtual clock, an in-memory blob store, a scripted transport
and canned CoinGecko payloads so the data layer can be exercised without
network access or real waiting.
"""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Tuple

import pytest
from click.testing import CliRunner

from crypto_market_data.data.api_client import Transport
from crypto_market_data.data.blob_store import MemoryBlobStore
from crypto_market_data.data.clock import ManualClock
from crypto_market_data.data.errors import TransportError
from crypto_market_data.data.resources import RequestDescriptor
from crypto_market_data.data.service import DataService


START_TIME = 1_700_000_000.0


class FakeTransport(Transport):
    """Transport answering from scripted responses.

    Routes are matched in registration order by URL fragment. Each route
    replays its items in order and keeps returning the last one. An item
    that is an exception is raised instead of returned.
    """

    def __init__(self):
        self.routes: List[Tuple[str, List[Any]]] = []
        self.calls: List[RequestDescriptor] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = False

    def respond(self, fragment: str, *items: Any) -> "FakeTransport":
        self.routes.append((fragment, list(items)))
        return self

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def fetch(self, request: RequestDescriptor) -> bytes:
        self.calls.append(request)
        if self.gate is not None:
            await self.gate.wait()

        for fragment, items in self.routes:
            if fragment in request.url:
                item = items.pop(0) if len(items) > 1 else items[0]
                if isinstance(item, BaseException):
                    raise item
                return item

        raise TransportError.connection_failed(f"No scripted response for {request.url}")

    def calls_to(self, fragment: str) -> int:
        return sum(1 for call in self.calls if fragment in call.url)


def encode(data: Any) -> bytes:
    return json.dumps(data).encode()


def market_rows(*specs) -> List[dict]:
    """Build ``coins/markets`` rows from (id, symbol, price, volume) tuples."""
    return [
        {
            "id": coin_id,
            "symbol": symbol,
            "name": coin_id.title(),
            "current_price": price,
            "price_change_percentage_24h": 1.5,
            "total_volume": volume,
            "market_cap": price * 1000,
            "image": f"https://img.example/{symbol}.png",
        }
        for coin_id, symbol, price, volume in specs
    ]


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return ManualClock(start=START_TIME)


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def market_payload():
    return encode(market_rows(
        ("ethereum", "eth", 3000.0, 5_000_000.0),
        ("bitcoin", "btc", 60000.0, 9_000_000.0),
    ))


@pytest.fixture
def market_payload_v2():
    return encode(market_rows(
        ("bitcoin", "btc", 61000.0, 9_500_000.0),
    ))


@pytest.fixture
def global_payload():
    return encode({
        "data": {
            "market_cap_percentage": {"btc": 52.0, "eth": 17.0, "usdt": 4.0},
            "total_market_cap": {"usd": 2_000_000_000_000.0, "eur": 1_800_000_000_000.0},
        }
    })


@pytest.fixture
def categories_payload():
    return encode([
        {"id": "layer-1", "name": "Layer 1", "market_cap": 1.5e12,
         "market_cap_change_24h": 2.1, "content": "", "top_3_coins": []},
        {"id": "meme", "name": "Meme", "market_cap": None, "top_3_coins": []},
        {"id": "defi", "name": "DeFi", "market_cap": 9.0e10,
         "market_cap_change_24h": -1.2, "top_3_coins": ["https://img.example/uni.png"]},
        {"id": "ai", "name": "AI", "top_3_coins": []},
    ])


@pytest.fixture
def chart_payload():
    return encode({
        "prices": [
            [1_700_000_000_000, 60000.0],
            [1_700_003_600_000, 60500.0],
            [1_700_007_200_000, 59800.0],
        ]
    })


@pytest.fixture
def images_payload():
    return encode(market_rows(
        ("bitcoin", "btc", 60000.0, 1.0),
        ("ethereum", "eth", 3000.0, 1.0),
    ))


@pytest.fixture
async def service(transport, blob_store, clock):
    """A started data service wired to the fake transport and virtual clock."""
    data_service = DataService(transport, blob_store=blob_store, clock=clock)
    await data_service.start()

    yield data_service

    await data_service.stop()
