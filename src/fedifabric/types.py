# fedifabric/types.py
"""Core type definitions and data structures for the fedifabric library.

This module defines the request descriptor handed to the executor, the
response and page wrappers handed back to callers, and the type aliases for
request hooks.
"""

from collections.abc import Callable, Mapping
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field


class RequestData(BaseModel):
    """Describes a single HTTP call; created per call and discarded afterwards.

    `path` is joined onto the configured base URL unless it already is an
    absolute URL (as `next` links from the `Link` header are). `content` is a
    pre-built raw body, only sent when the body encoder declines to encode
    `body` for the requested content type.
    """

    method: str
    path: str
    params: Mapping[str, Any] | None = None
    body: Any | None = None
    content: bytes | str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class ApiResponse(BaseModel):
    """A successful response with its body parsed on a best-effort basis.

    Attributes:
        status_code: HTTP status of the response (always below 400).
        data: The decoded JSON body, or the raw text when it is not JSON.
        raw: The underlying `httpx.Response`.
    """

    status_code: int
    data: Any = None
    raw: httpx.Response

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def headers(self) -> httpx.Headers:
        return self.raw.headers

    @property
    def url(self) -> str:
        return str(self.raw.request.url)


class Page(BaseModel):
    """Result of one paginator advance.

    `done` is already true on the advance that fetched the last page, so the
    final page is delivered together with the completion signal. Once the
    cursor is exhausted, further advances return `value=None`.
    """

    done: bool
    value: ApiResponse | None = None


PreRequestHook = Callable[[str, str, dict[str, Any] | None, httpx.Headers], None]
"""Called with `(method, url, params, headers)` before a request is built.

`params` (a dict, or None when the call has no query) and `headers` (an
`httpx.Headers`) are the objects the request is built from, so in-place edits
reach the wire. The return value is ignored and exceptions are logged, never
raised to the caller.
"""

PostRequestHook = Callable[[httpx.Response, Any], None]
"""Type alias for a post-request hook.

Post-request hooks are functions called after a successful response has been
received and its body decoded.

Args:
    response (httpx.Response): The raw `httpx.Response` object.
    data (Any): The decoded body (JSON value or raw text).
Return:
    None: Hooks are expected to perform side effects.
"""
