"""Custom exception classes for the fedifabric library."""

from datetime import datetime
from enum import Enum

import httpx


class ErrorKind(Enum):
    """Classification of failures surfaced by the request executor."""

    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    GENERIC = "generic"


class FedifabricError(Exception):
    """Base exception class for all fedifabric errors."""

    kind: ErrorKind = ErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        *,
        response: httpx.Response | None = None,
        request: httpx.Request | None = None,
    ):
        """Initializes the base exception.

        Args:
            message: The error message.
            response: Optional httpx.Response object associated with the error.
            request: Optional httpx.Request object associated with the error.
        """
        super().__init__(message)
        self.message = message
        self.response = response
        self.request = request

    @property
    def status_code(self) -> int | None:
        """HTTP status of the failed response, if there was one."""
        return self.response.status_code if self.response is not None else None

    def __str__(self) -> str:
        if self.response is not None:
            url_info = getattr(getattr(self.response, "request", None), "url", "N/A")
            return (
                f"{self.message} (Status: {self.response.status_code}, URL: {url_info})"
            )
        if isinstance(self.request, httpx.Request):
            return f"{self.message} (URL: {self.request.url})"
        return self.message


class APIError(FedifabricError):
    """Represents a generic error returned by the API (any other 4xx/5xx)."""


class UnauthorizedError(APIError):
    """Represents a rejected or missing credential (401 Unauthorized)."""

    kind = ErrorKind.UNAUTHORIZED


class NotFoundError(APIError):
    """Represents a resource not found error (404 Not Found)."""

    kind = ErrorKind.NOT_FOUND


class RateLimitError(APIError):
    """Represents hitting the API rate limit (429 Too Many Requests).

    The rate limit headers the server sent along with the 429 are exposed for
    callers that want to schedule their own retry. The library never retries.

    Attributes:
        limit: Value of `X-RateLimit-Limit`, if present.
        remaining: Value of `X-RateLimit-Remaining`, if present.
        reset_at: Value of `X-RateLimit-Reset` as an aware datetime, if parseable.
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        *,
        response: httpx.Response | None = None,
        request: httpx.Request | None = None,
    ):
        super().__init__(message, response=response, request=request)
        self.limit: int | None = None
        self.remaining: int | None = None
        self.reset_at: datetime | None = None


class TransportError(FedifabricError):
    """Represents a failure of the HTTP transport itself (no usable response)."""

    def __init__(self, message: str, *, request: httpx.Request | None = None):
        super().__init__(message, request=request, response=None)


class TimeoutError(TransportError):
    """Represents a request timeout error."""


class NetworkError(TransportError):
    """Represents a network connection error (DNS failure, refused connection...)."""


class StreamingError(FedifabricError):
    """Raised on a subscription's event sequence when its socket fails.

    The error is terminal: the subscription delivers nothing afterwards and a
    fresh `subscribe()` is needed to resume.
    """

    def __init__(self, message: str, *, url: str | None = None):
        super().__init__(message)
        self.url = url

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} (URL: {self.url})"
        return self.message


class PaginationError(FedifabricError):
    """Raised when a paginator is advanced while a previous advance is in flight."""


class ConfigurationError(FedifabricError):
    """Represents an error in the library's configuration."""

    def __init__(self, message: str):
        super().__init__(message, response=None)
