"""HTTP transport for the upstream market data API."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from .errors import TransportError
from .resources import RequestDescriptor

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Performs one network fetch and returns the raw response body.

    Implementations raise :class:`TransportError` (or a subclass) for
    timeouts, connection failures and non-2xx statuses. They do not retry;
    retries are the data service's job.
    """

    async def start(self) -> None:
        """Open underlying resources."""

    async def stop(self) -> None:
        """Release underlying resources."""

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    @abstractmethod
    async def fetch(self, request: RequestDescriptor) -> bytes:
        pass


class AiohttpTransport(Transport):
    """Transport backed by a shared :class:`aiohttp.ClientSession`."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        """Initialize transport.

        Args:
            session: Existing session to reuse; one is created on start otherwise
        """
        self._session = session
        self._owns_session = session is None
        self._request_count = 0
        self._error_count = 0

    async def start(self):
        """Start the HTTP client session."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
            logger.info("Started HTTP transport")

    async def stop(self):
        """Stop the HTTP client session."""
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None
            logger.info("Stopped HTTP transport")

    async def fetch(self, request: RequestDescriptor) -> bytes:
        """Perform a GET request.

        Args:
            request: URL, headers and timeout for this call

        Returns:
            Response body

        Raises:
            TransportError: On timeout, connection failure or non-2xx status
        """
        if not self._session:
            await self.start()

        start_time = time.time()
        timeout = aiohttp.ClientTimeout(total=request.timeout)
        self._request_count += 1

        try:
            async with self._session.get(request.url, headers=request.headers,
                                         timeout=timeout) as response:
                body = await response.read()
                response_time = time.time() - start_time
                logger.debug(f"GET {request.url} -> {response.status} ({response_time:.3f}s)")

                if not 200 <= response.status < 300:
                    self._error_count += 1
                    raise TransportError.http_status(response.status)

                return body

        except asyncio.TimeoutError as e:
            self._error_count += 1
            raise TransportError.timeout(f"Request to {request.url} timed out after {request.timeout}s") from e
        except aiohttp.ClientError as e:
            self._error_count += 1
            raise TransportError.connection_failed(f"Request to {request.url} failed: {e}") from e

    def get_stats(self) -> Dict[str, Any]:
        """Get transport statistics."""
        return {
            'request_count': self._request_count,
            'error_count': self._error_count,
        }
