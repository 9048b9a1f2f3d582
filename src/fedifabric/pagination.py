"""Link-header pagination over collection endpoints.

The API pages its collections with RFC 8288 `Link` headers: every page names
the URL of the following one with `rel="next"`, and that URL already carries
the cursor query parameters. `Paginator` keeps the position in an explicit
`PageCursor` and moves it forward one request at a time.

Completion is reported on the advance that fetched the last page: that
advance returns `Page(done=True, value=<last response>)`. Only an explicit
reset brings an exhausted cursor back to life.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import BaseModel

from .exceptions import PaginationError
from .log_config import logger
from .types import ApiResponse, Page

PageFetcher = Callable[[str, Mapping[str, Any] | None], Awaitable[ApiResponse]]
"""Coroutine issuing a GET for `(url, params)`, normally `Gateway.get`."""


class PageCursor(BaseModel):
    """Mutable pagination position threaded between page fetches."""

    url: str | None
    params: dict[str, Any] | None = None
    done: bool = False


def next_link(response: ApiResponse) -> str | None:
    """Returns the `rel="next"` URI of the response's Link header, if any."""
    link = response.raw.links.get("next")
    if not link:
        return None
    return link.get("url") or None


class Paginator:
    """Lazy, resettable sequence of pages for one collection endpoint.

    Use `advance()` for full control over the cursor, or iterate with
    `async for`, which yields each fetched `ApiResponse` (the last page
    included) and then stops.

    Advances must not overlap: a second `advance()` issued while one is still
    awaiting its response raises `PaginationError`.

    Attributes:
        initial_url: URL of the first page.
        initial_params: Query parameters of the first page.
        cursor: The current position.
    """

    def __init__(
        self,
        fetch: PageFetcher,
        initial_url: str,
        initial_params: Mapping[str, Any] | None = None,
    ):
        self._fetch = fetch
        self.initial_url = initial_url
        self.initial_params = dict(initial_params) if initial_params else None
        self.cursor = self._initial_cursor()
        self._in_flight = False

    def _initial_cursor(self) -> PageCursor:
        params = dict(self.initial_params) if self.initial_params is not None else None
        return PageCursor(url=self.initial_url, params=params)

    def reset(self) -> None:
        """Rewinds the cursor to the initial URL and parameters."""
        logger.debug(f"Resetting paginator to {self.initial_url}")
        self.cursor = self._initial_cursor()

    async def advance(
        self,
        reset: bool = False,
        *,
        url: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Page:
        """Fetches the next page and moves the cursor forward.

        Args:
            reset: Rewind to the initial URL/params before fetching.
            url: Fetch this URL instead of the cursor's for this advance only.
            params: Send these parameters instead of the cursor's for this
                advance only.

        Returns:
            Page: `done` is True when the fetched page has no `next` link (or
                when the cursor was already exhausted, in which case `value`
                is None and no request is made).

        Raises:
            PaginationError: If another advance is still in flight.
        """
        if self._in_flight:
            raise PaginationError(
                "Paginator advanced while a previous advance is still pending"
            )
        if reset:
            self.reset()

        cursor = self.cursor
        if cursor.done or not cursor.url:
            return Page(done=True, value=None)

        self._in_flight = True
        try:
            response = await self._fetch(
                url or cursor.url, params if params is not None else cursor.params
            )
        finally:
            self._in_flight = False

        next_url = next_link(response)
        cursor.url = next_url
        cursor.params = None
        cursor.done = next_url is None
        if cursor.done:
            logger.debug(f"Pagination of {self.initial_url} finished")
        else:
            logger.trace(f"Next page of {self.initial_url}: {next_url}")
        return Page(done=cursor.done, value=response)

    def __aiter__(self) -> "Paginator":
        return self

    async def __anext__(self) -> ApiResponse:
        page = await self.advance()
        if page.value is None:
            raise StopAsyncIteration
        return page.value
