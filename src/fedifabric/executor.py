"""Request executor: the single place where HTTP outcomes become typed results.

`RequestExecutor.execute` sends one request described by a `RequestData`,
returns an `ApiResponse` for any status below 400 and raises one of the typed
errors from `fedifabric.exceptions` otherwise. Nothing above this module
catches or reclassifies those errors.
"""

from datetime import datetime
from http import HTTPStatus
from typing import Any

import httpx

from .auth import AuthStrategy
from .config import ConnectionConfig, GatewaySettings
from .encoding import JSON_CONTENT_TYPE, encode_body
from .exceptions import (
    APIError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    TimeoutError,
    TransportError,
    UnauthorizedError,
)
from .log_config import logger
from .types import ApiResponse, RequestData

DEFAULT_ERROR_MESSAGE = "Unexpected error occurred"

_STATUS_ERRORS: dict[int, type[APIError]] = {
    HTTPStatus.UNAUTHORIZED: UnauthorizedError,
    HTTPStatus.NOT_FOUND: NotFoundError,
    HTTPStatus.TOO_MANY_REQUESTS: RateLimitError,
}


def parse_body(response: httpx.Response) -> Any:
    """Decodes the body as JSON, falling back to the raw text verbatim."""
    try:
        return response.json()
    except ValueError:
        return response.text


def error_message(data: Any) -> str:
    """Extracts the server-supplied `error` string from a decoded error body."""
    if isinstance(data, dict):
        message = data.get("error")
        if isinstance(message, str) and message:
            return message
    return DEFAULT_ERROR_MESSAGE


def _parse_rate_limit_headers(error: RateLimitError, response: httpx.Response) -> None:
    limit_str = response.headers.get("X-RateLimit-Limit")
    if limit_str and limit_str.isdigit():
        error.limit = int(limit_str)

    remaining_str = response.headers.get("X-RateLimit-Remaining")
    if remaining_str and remaining_str.isdigit():
        error.remaining = int(remaining_str)

    reset_str = response.headers.get("X-RateLimit-Reset")
    if reset_str:
        try:
            error.reset_at = datetime.fromisoformat(reset_str.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Could not parse X-RateLimit-Reset value: {reset_str}")


class RequestExecutor:
    """Sends single HTTP requests and normalizes their outcome.

    Attributes:
        _config: Connection config providing the base URL.
        _settings: Settings providing hooks.
        _auth_strategy: Strategy that applies the credential header.
        _http_client: The httpx.AsyncClient used to send requests.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        settings: GatewaySettings,
        auth_strategy: AuthStrategy,
        http_client: httpx.AsyncClient,
    ):
        self._config = config
        self._settings = settings
        self._auth_strategy = auth_strategy
        self._http_client = http_client

    def build_url(self, path: str) -> str:
        """Joins `path` onto the base URL; absolute URLs are returned unchanged."""
        if httpx.URL(path).is_absolute_url:
            return path
        return f"{self._config.url}/{path.lstrip('/')}"

    def _run_pre_request_hooks(
        self, method: str, url: str, params: dict[str, Any] | None, headers: httpx.Headers
    ) -> None:
        if not self._settings.pre_request_hooks:
            return
        logger.debug(
            f"Executing {len(self._settings.pre_request_hooks)} pre-request hooks "
            f"for {method} {url}"
        )
        for hook in self._settings.pre_request_hooks:
            try:
                hook(method, url, params, headers)
            except Exception as e:
                logger.error(
                    f"Error executing pre-request hook {getattr(hook, '__name__', str(hook))}: {e}"
                )

    def _run_post_request_hooks(self, response: httpx.Response, data: Any) -> None:
        if not self._settings.post_request_hooks:
            return
        for hook in self._settings.post_request_hooks:
            try:
                hook(response, data)
            except Exception as e:
                logger.error(
                    f"Error executing post-request hook {getattr(hook, '__name__', str(hook))}: {e}"
                )

    async def build_request(self, request_data: RequestData) -> httpx.Request:
        """Builds the authenticated, encoded httpx.Request for a descriptor."""
        url = self.build_url(request_data.path)
        params = dict(request_data.params) if request_data.params is not None else None

        headers = httpx.Headers({"Content-Type": JSON_CONTENT_TYPE})
        headers.update(request_data.headers)

        self._run_pre_request_hooks(request_data.method, url, params, headers)

        body_kwargs: dict[str, Any] = {}
        if request_data.body is not None:
            encoded = encode_body(request_data.body, headers.get("Content-Type"))
            if encoded is not None:
                headers.update(encoded.headers)
                body_kwargs = encoded.request_kwargs()
        if not body_kwargs and request_data.content is not None:
            body_kwargs = {"content": request_data.content}

        # build_request merges the client's default headers (User-Agent)
        request = self._http_client.build_request(
            request_data.method.upper(),
            url,
            params=params,
            headers=headers,
            **body_kwargs,
        )
        await self._auth_strategy.async_authenticate(request)
        return request

    def _raise_for_status(self, response: httpx.Response, data: Any) -> None:
        if response.status_code < HTTPStatus.BAD_REQUEST:
            return

        message = error_message(data)
        error_cls = _STATUS_ERRORS.get(response.status_code, APIError)
        error = error_cls(message, response=response, request=response.request)
        if isinstance(error, RateLimitError):
            _parse_rate_limit_headers(error, response)
        logger.warning(
            f"Request failed with status {response.status_code} "
            f"({error.kind.value}): {message}"
        )
        raise error

    async def execute(self, request_data: RequestData) -> ApiResponse:
        """Execute a single HTTP request and normalize the outcome.

        Args:
            request_data: The request descriptor.

        Returns:
            ApiResponse: The response with its body decoded (JSON when
                possible, raw text otherwise).

        Raises:
            UnauthorizedError: On 401.
            NotFoundError: On 404.
            RateLimitError: On 429.
            APIError: On any other status of 400 or above.
            TimeoutError: If the request times out.
            NetworkError: For connection-level failures.
            TransportError: For any other failure of the HTTP transport.
        """
        request = await self.build_request(request_data)

        logger.debug(f"Sending request: {request.method} {request.url}")
        try:
            response = await self._http_client.send(request)
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out: {request.url}")
            raise TimeoutError("Request timed out", request=request) from e
        except httpx.NetworkError as e:
            logger.error(f"Network error occurred for {request.url}: {e}")
            raise NetworkError(
                f"Network error for {request.url}: {e}", request=request
            ) from e
        except httpx.RequestError as e:
            logger.error(f"HTTP request error for {request.url}: {e}")
            raise TransportError(
                f"HTTP request error for {request.url}: {e}", request=request
            ) from e

        logger.debug(f"Received response: {response.status_code} for {request.url}")
        logger.trace(f"Response Headers: {response.headers}")

        data = parse_body(response)
        self._raise_for_status(response, data)
        self._run_post_request_hooks(response, data)
        return ApiResponse(status_code=response.status_code, data=data, raw=response)
