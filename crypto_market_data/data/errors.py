"""Error taxonomy for market data access.

None of these errors escape :meth:`DataService.resolve`; they are carried
inside ``Stale`` and ``Failed`` outcomes so callers can show a staleness
indicator or a retry affordance.
"""

from typing import Optional


class DataAccessError(Exception):
    """Base class for all data-access errors."""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def __eq__(self, other):
        return (
            type(self) is type(other)
            and self.message == other.message
            and getattr(self, "status", None) == getattr(other, "status", None)
        )

    def __hash__(self):
        return hash((type(self), self.message))


class TransportError(DataAccessError):
    """Failure reported by the transport collaborator."""

    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"
    HTTP_STATUS = "http_status"

    def __init__(self, kind: str, message: str = "", status: Optional[int] = None):
        """Initialize transport error.

        Args:
            kind: One of ``timeout``, ``connection_failed`` or ``http_status``
            message: Human readable detail
            status: HTTP status code for ``http_status`` errors
        """
        if kind not in (self.TIMEOUT, self.CONNECTION_FAILED, self.HTTP_STATUS):
            raise ValueError(f"Unknown transport error kind: {kind}")
        self.kind = kind
        self.status = status
        super().__init__(message or self._default_message())

    def _default_message(self) -> str:
        if self.kind == self.HTTP_STATUS:
            return f"Server returned status code {self.status}"
        if self.kind == self.TIMEOUT:
            return "Request timed out"
        return "Connection failed"

    @classmethod
    def timeout(cls, message: str = "") -> "TransportError":
        return cls(cls.TIMEOUT, message)

    @classmethod
    def connection_failed(cls, message: str = "") -> "TransportError":
        return cls(cls.CONNECTION_FAILED, message)

    @classmethod
    def http_status(cls, status: int, message: str = "") -> "TransportError":
        """Map a non-2xx status to the matching error class."""
        if status == 429:
            return RateLimitedError(message)
        return ServerError(status, message)


class RateLimitedError(TransportError):
    """The upstream API answered HTTP 429."""

    def __init__(self, message: str = ""):
        super().__init__(
            TransportError.HTTP_STATUS,
            message or "Rate limit exceeded. Please try again later.",
            status=429,
        )
        self.kind = "rate_limited"


class ServerError(TransportError):
    """The upstream API answered a non-2xx status other than 429."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(TransportError.HTTP_STATUS, message, status=status)
        self.kind = "server_error"

    @property
    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500


class ThrottledError(DataAccessError):
    """Dispatch refused locally because the minimum interval has not elapsed."""

    kind = "throttled"

    def __init__(self, resource_class: str, retry_after: float = 0.0):
        self.resource_class = resource_class
        self.retry_after = retry_after
        super().__init__(
            f"Dispatch for {resource_class} throttled, next slot in {retry_after:.1f}s"
        )


class DecodeError(DataAccessError):
    """Payload did not match the expected resource shape."""

    kind = "decode_error"
