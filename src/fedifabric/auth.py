from typing import Protocol

import httpx

from .config import ConnectionConfig
from .log_config import logger


class AuthStrategy(Protocol):
    """Protocol defining the interface for authentication strategies.

    Concrete implementations of this protocol handle the specifics of adding
    authentication information to an HTTP request and to the streaming
    connection URL.
    """

    async def async_authenticate(self, request: httpx.Request) -> None:
        """
        Asynchronously modifies the request to add authentication information.

        Args:
            request: The httpx.Request object to modify.
        """
        ...

    def streaming_params(self) -> dict[str, str]:
        """Returns query parameters that authenticate a streaming connection."""
        ...

    async def async_close(self) -> None:
        """
        Asynchronously closes any underlying resources used by the auth strategy,
        if applicable. This method should be idempotent.
        """
        ...


class AccessTokenAuth:
    """Implements AuthStrategy with the bearer token held by a ConnectionConfig.

    The token is read on every call rather than captured at construction, so
    assigning `config.access_token` takes effect on the next request. When no
    token is configured the request is sent anonymously, without an
    `Authorization` header.
    """

    def __init__(self, config: ConnectionConfig):
        self._config = config

    @property
    def token(self) -> str | None:
        return self._config.access_token or None

    async def async_authenticate(self, request: httpx.Request) -> None:
        """Adds 'Authorization: Bearer <token>' when a token is configured."""
        token = self.token
        if not token:
            logger.trace("No access token configured, sending anonymous request.")
            return
        logger.trace("Authenticating request with configured access token.")
        request.headers["Authorization"] = f"Bearer {token}"

    def streaming_params(self) -> dict[str, str]:
        token = self.token
        return {"access_token": token} if token else {}

    async def async_close(self) -> None:
        """No resources to close for AccessTokenAuth, this method is a no-op."""
