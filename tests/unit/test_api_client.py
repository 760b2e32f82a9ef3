"""Tests for the aiohttp transport."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from crypto_market_data.data.api_client import AiohttpTransport
from crypto_market_data.data.errors import RateLimitedError, ServerError, TransportError
from crypto_market_data.data.resources import RequestDescriptor


@pytest.fixture
def request_descriptor():
    return RequestDescriptor(
        url="https://api.test.com/api/v3/global",
        headers={"Accept": "application/json"},
        timeout=7.0,
    )


def _session_returning(status: int, body: bytes = b"{}") -> MagicMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.read = AsyncMock(return_value=body)

    mock_session = MagicMock()
    mock_session.get.return_value.__aenter__.return_value = mock_response
    return mock_session


class TestAiohttpTransport:
    """Test AiohttpTransport functionality."""

    async def test_lifecycle(self):
        """Test transport start and stop."""
        transport = AiohttpTransport()
        assert transport._session is None

        await transport.start()
        assert isinstance(transport._session, aiohttp.ClientSession)

        await transport.stop()
        assert transport._session is None

    async def test_context_manager(self):
        """Test transport as async context manager."""
        async with AiohttpTransport() as transport:
            assert transport._session is not None

        assert transport._session is None

    async def test_borrowed_session_is_not_closed(self):
        mock_session = MagicMock()
        mock_session.close = AsyncMock()
        transport = AiohttpTransport(session=mock_session)

        await transport.start()
        await transport.stop()

        mock_session.close.assert_not_called()

    async def test_fetch_success(self, request_descriptor):
        """Test successful fetch returns the body."""
        mock_session = _session_returning(200, b'{"data": {}}')
        transport = AiohttpTransport(session=mock_session)

        body = await transport.fetch(request_descriptor)

        assert body == b'{"data": {}}'
        call_args = mock_session.get.call_args
        assert call_args[0][0] == request_descriptor.url
        assert call_args[1]['headers'] == {"Accept": "application/json"}
        assert call_args[1]['timeout'].total == 7.0
        assert transport.get_stats() == {'request_count': 1, 'error_count': 0}

    async def test_fetch_rate_limited(self, request_descriptor):
        transport = AiohttpTransport(session=_session_returning(429))

        with pytest.raises(RateLimitedError) as exc_info:
            await transport.fetch(request_descriptor)

        assert exc_info.value.status == 429
        assert transport.get_stats()['error_count'] == 1

    async def test_fetch_server_error(self, request_descriptor):
        transport = AiohttpTransport(session=_session_returning(502))

        with pytest.raises(ServerError) as exc_info:
            await transport.fetch(request_descriptor)

        assert exc_info.value.status == 502
        assert exc_info.value.message == "Server returned status code 502"

    async def test_fetch_timeout(self, request_descriptor):
        mock_session = MagicMock()
        mock_session.get.side_effect = asyncio.TimeoutError()
        transport = AiohttpTransport(session=mock_session)

        with pytest.raises(TransportError) as exc_info:
            await transport.fetch(request_descriptor)

        assert exc_info.value.kind == TransportError.TIMEOUT

    async def test_fetch_connection_failure(self, request_descriptor):
        mock_session = MagicMock()
        mock_session.get.side_effect = aiohttp.ClientConnectionError("refused")
        transport = AiohttpTransport(session=mock_session)

        with pytest.raises(TransportError) as exc_info:
            await transport.fetch(request_descriptor)

        assert exc_info.value.kind == TransportError.CONNECTION_FAILED
        assert "refused" in exc_info.value.message
