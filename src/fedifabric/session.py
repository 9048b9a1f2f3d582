"""Main user-facing session class for interacting with a federated instance."""

from typing import Any

from .client import Gateway
from .log_config import logger
from .resources import (
    AccountRepository,
    MediaRepository,
    StatusRepository,
    StreamingRepository,
    TimelineRepository,
)


class FediSession:
    """High-level session bundling a Gateway with the resource repositories.

    The session owns its Gateway and closes it (HTTP client and every
    streaming socket) on `close()` or when leaving `async with`.

    Example:
    ```python
    async with FediSession("https://example.social", access_token="...") as session:
        status = await session.statuses.create("Hello from Python")
        async with await session.streaming.user(notification=True) as subscription:
            first = await subscription.values().take(1).to_list()
    ```

    Attributes:
        gateway (Gateway): The underlying gateway.
        statuses (StatusRepository): Status endpoints.
        media (MediaRepository): Media attachment endpoints.
        accounts (AccountRepository): Account endpoints.
        timelines (TimelineRepository): Paginated timelines.
        streaming (StreamingRepository): Streaming channels.
    """

    def __init__(self, url: str | None = None, **gateway_options: Any):
        """Initializes the session and its Gateway.

        Args:
            url: Base URL of the instance.
            **gateway_options: Passed through to `Gateway`, e.g.
                `access_token`, `streaming_url` or `settings`.
        """
        self.gateway = Gateway(url, **gateway_options)
        self.statuses = StatusRepository(self.gateway)
        self.media = MediaRepository(self.gateway)
        self.accounts = AccountRepository(self.gateway)
        self.timelines = TimelineRepository(self.gateway)
        self.streaming = StreamingRepository(self.gateway)
        logger.info(f"FediSession initialized for {self.gateway.config.url}")

    async def close(self) -> None:
        """Closes the underlying gateway."""
        await self.gateway.aclose()

    async def __aenter__(self) -> "FediSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
