"""Gateway: the composition root of the fedifabric client.

The Gateway owns the connection config and the shared transport resources
(the httpx.AsyncClient and the streaming socket arena) and exposes the only
entry points resource-specific code uses: the five HTTP verbs, `paginate()`
and `stream()`.
"""

import ssl
from collections.abc import Mapping
from typing import Any, Self
from urllib.parse import urlencode

import certifi
import httpx

from .auth import AccessTokenAuth, AuthStrategy
from .config import ConnectionConfig, GatewaySettings, get_settings
from .exceptions import ConfigurationError
from .executor import RequestExecutor
from .log_config import logger, redact_url
from .pagination import Paginator
from .streaming import Subscription, SubscriptionManager, WebSocketConnector
from .types import ApiResponse, RequestData


def derive_streaming_url(url: str) -> str:
    """Maps an http(s) base URL onto the matching ws(s) URL."""
    if url.startswith("https://"):
        return "wss://" + url[len("https://") :]
    if url.startswith("http://"):
        return "ws://" + url[len("http://") :]
    return url


class Gateway:
    """Asynchronous network gateway to a federated social-networking API.

    Example:
    ```python
    async with Gateway("https://example.social", access_token="...") as gateway:
        me = await gateway.get("/api/v1/accounts/verify_credentials")
        async for page in gateway.paginate("/api/v1/timelines/home"):
            ...
    ```

    Attributes:
        config: The mutable `ConnectionConfig`. Assigning `config.url` or
            `config.streaming_url` re-normalizes the value.
        _settings: Settings for timeouts, user agent, streaming and hooks.
        _auth_strategy: Strategy applying the bearer credential.
        _http_client: The underlying httpx.AsyncClient.
        _should_close_client: Whether this instance owns `_http_client`.
        _executor: The request executor.
        _streaming: The subscription manager.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        streaming_url: str | None = None,
        version: str | None = None,
        access_token: str | None = None,
        settings: GatewaySettings | None = None,
        auth_strategy: AuthStrategy | None = None,
        http_client: httpx.AsyncClient | None = None,
        websocket_connect: WebSocketConnector | None = None,
    ):
        """Initialize the Gateway.

        Args:
            url: Base URL of the instance. Falls back to the `url` setting.
            streaming_url: Streaming API base URL. When unset it is derived
                from `url`, or resolved with `resolve_streaming_url()`.
            version: Version string of the instance software.
            access_token: Bearer token; requests are anonymous without one.
            settings: Settings to use instead of the environment-loaded ones.
            auth_strategy: Optional authentication strategy. Defaults to the
                configured access token.
            http_client: Optional pre-configured httpx.AsyncClient instance.
            websocket_connect: Optional WebSocket primitive, mainly for tests.

        Raises:
            ConfigurationError: If no base URL is given or configured.
        """
        self._settings = settings or get_settings()
        base_url = url or self._settings.url
        if not base_url:
            raise ConfigurationError(
                "Gateway requires a base URL (argument or FEDIFABRIC_URL)."
            )

        self.config = ConnectionConfig(
            url=base_url,
            streaming_url=streaming_url or self._settings.streaming_url,
            version=version or self._settings.version,
            access_token=access_token or self._settings.access_token,
        )

        self._auth_strategy: AuthStrategy = auth_strategy or AccessTokenAuth(
            self.config
        )
        self._should_close_client = http_client is None
        self._http_client = http_client or self._create_default_http_client()
        self._executor = RequestExecutor(
            self.config, self._settings, self._auth_strategy, self._http_client
        )
        self._streaming = SubscriptionManager(self._settings, websocket_connect)

        logger.debug(f"Gateway initialized for {self.config.url}")

    def _create_default_http_client(self) -> httpx.AsyncClient:
        """Create a default httpx.AsyncClient with configured settings.

        Returns:
            httpx.AsyncClient: Client with certifi SSL verification, the
                configured timeout and the user agent header.
        """
        try:
            verify_ssl: ssl.SSLContext | bool = ssl.create_default_context(
                cafile=certifi.where()
            )
            logger.debug("Using certifi SSL context.")
        except (OSError, ssl.SSLError):
            verify_ssl = True
            logger.warning(
                "certifi bundle failed to load. Using default SSL verification."
            )

        return httpx.AsyncClient(
            timeout=self._settings.request_timeout,
            verify=verify_ssl,
            headers={"User-Agent": self._settings.user_agent},
        )

    @property
    def streaming(self) -> SubscriptionManager:
        return self._streaming

    # --- HTTP verbs ---

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        data: Any | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | str | None = None,
    ) -> ApiResponse:
        """Perform an HTTP request against the API.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE).
            path: Path relative to the base URL, or an absolute URL.
            params: Query parameters.
            data: Body, encoded according to the `Content-Type` header
                (JSON by default, or `multipart/form-data`).
            headers: Per-call header overrides.
            content: Pre-built body, sent as-is when `data` is not encoded.

        Returns:
            ApiResponse: The response with its body decoded.
        """
        request_data = RequestData(
            method=method,
            path=path,
            params=params,
            body=data,
            content=content,
            headers=dict(headers or {}),
        )
        return await self._executor.execute(request_data)

    async def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> ApiResponse:
        """HTTP GET."""
        return await self.request("GET", path, params=params, headers=headers)

    async def post(
        self,
        path: str,
        data: Any | None = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | str | None = None,
    ) -> ApiResponse:
        """HTTP POST."""
        return await self.request(
            "POST", path, params=params, data=data, headers=headers, content=content
        )

    async def put(
        self,
        path: str,
        data: Any | None = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | str | None = None,
    ) -> ApiResponse:
        """HTTP PUT."""
        return await self.request(
            "PUT", path, params=params, data=data, headers=headers, content=content
        )

    async def patch(
        self,
        path: str,
        data: Any | None = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | str | None = None,
    ) -> ApiResponse:
        """HTTP PATCH."""
        return await self.request(
            "PATCH", path, params=params, data=data, headers=headers, content=content
        )

    async def delete(
        self,
        path: str,
        data: Any | None = None,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | str | None = None,
    ) -> ApiResponse:
        """HTTP DELETE."""
        return await self.request(
            "DELETE", path, params=params, data=data, headers=headers, content=content
        )

    # --- Pagination ---

    def paginate(
        self, url: str, params: Mapping[str, Any] | None = None
    ) -> Paginator:
        """Returns a paginator following the `Link: rel="next"` chain from `url`.

        Nothing is fetched until the first advance.
        """
        return Paginator(self.get, url, params)

    # --- Streaming ---

    def streaming_socket_url(self, params: Mapping[str, Any] | None = None) -> str:
        """Builds the URL of the multiplexed streaming socket.

        The access token travels as a query parameter, as WebSocket
        handshakes from browsers cannot carry custom headers.
        """
        base = self.config.streaming_url or derive_streaming_url(self.config.url)
        query = {**self._auth_strategy.streaming_params(), **(params or {})}
        url = f"{base}{self._settings.streaming_path}"
        if query:
            url = f"{url}?{urlencode(query)}"
        return url

    async def resolve_streaming_url(self) -> str:
        """Looks up the streaming API URL advertised by the instance.

        Stores it in `config.streaming_url` and returns it. An explicitly
        configured streaming URL is kept as-is.
        """
        if self.config.streaming_url:
            return self.config.streaming_url

        response = await self.get("/api/v1/instance")
        urls = response.data.get("urls") if isinstance(response.data, dict) else None
        streaming_url = urls.get("streaming_api") if isinstance(urls, dict) else None
        if not streaming_url:
            raise ConfigurationError(
                "Instance did not advertise a streaming API URL."
            )
        self.config.streaming_url = streaming_url
        logger.info(f"Resolved streaming API URL: {self.config.streaming_url}")
        return self.config.streaming_url

    async def stream(
        self, channel: str, params: Mapping[str, Any] | None = None
    ) -> Subscription:
        """Subscribes to a streaming channel.

        Args:
            channel: Channel name, e.g. "public:local" (see `compose_channel`).
            params: Qualifying parameters, e.g. `{"tag": "python"}`.

        Returns:
            Subscription: The live subscription; call `unsubscribe()` (or use
                it as an async context manager) to release it.
        """
        socket_url = self.streaming_socket_url()
        logger.debug(f"Streaming {channel} {dict(params or {})} via {redact_url(socket_url)}")
        return await self._streaming.subscribe(socket_url, channel, params)

    # --- Lifecycle ---

    async def aclose(self) -> None:
        """Close streaming sockets, the owned HTTP client and the auth strategy."""
        await self._streaming.aclose()
        if self._should_close_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            logger.debug("Gateway internal HTTP client closed.")
        await self._auth_strategy.async_close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        await self.aclose()
