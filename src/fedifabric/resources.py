"""Resource repositories built on the Gateway verbs.

Repositories only shape parameters and call the Gateway; they hold no state
of their own and never catch the typed errors raised by the executor. Return
values are the decoded JSON entities (`ApiResponse.data`), paginators for
collections, and subscriptions for streaming channels.
"""

import asyncio
import time
from collections.abc import Sequence
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from .encoding import MULTIPART_CONTENT_TYPE
from .exceptions import TimeoutError
from .log_config import logger
from .pagination import Paginator
from .streaming import Subscription, compose_channel

if TYPE_CHECKING:
    from .client import Gateway

MULTIPART_HEADERS = {"Content-Type": MULTIPART_CONTENT_TYPE}


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


class BaseRepository:
    """Base class for all repositories.

    Attributes:
        _gateway: The `Gateway` instance used for network calls.
    """

    def __init__(self, gateway: "Gateway"):
        self._gateway = gateway
        logger.debug(f"{self.__class__.__name__} initialized")


class StatusRepository(BaseRepository):
    """Create, read, edit and act on statuses."""

    async def create(
        self,
        status: str,
        *,
        visibility: str | None = None,
        media_ids: Sequence[str] | None = None,
        in_reply_to_id: str | None = None,
        spoiler_text: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        body = _drop_none(
            {
                "status": status,
                "visibility": visibility,
                "media_ids": list(media_ids) if media_ids else None,
                "in_reply_to_id": in_reply_to_id,
                "spoiler_text": spoiler_text,
                **extra,
            }
        )
        response = await self._gateway.post("/api/v1/statuses", body)
        return response.data

    async def fetch(self, status_id: str) -> dict[str, Any]:
        response = await self._gateway.get(f"/api/v1/statuses/{status_id}")
        return response.data

    async def update(self, status_id: str, **changes: Any) -> dict[str, Any]:
        response = await self._gateway.put(
            f"/api/v1/statuses/{status_id}", _drop_none(changes)
        )
        return response.data

    async def remove(self, status_id: str) -> dict[str, Any]:
        response = await self._gateway.delete(f"/api/v1/statuses/{status_id}")
        return response.data

    async def _action(self, status_id: str, action: str) -> dict[str, Any]:
        response = await self._gateway.post(f"/api/v1/statuses/{status_id}/{action}")
        return response.data

    async def favourite(self, status_id: str) -> dict[str, Any]:
        return await self._action(status_id, "favourite")

    async def unfavourite(self, status_id: str) -> dict[str, Any]:
        return await self._action(status_id, "unfavourite")

    async def reblog(self, status_id: str) -> dict[str, Any]:
        return await self._action(status_id, "reblog")

    async def unreblog(self, status_id: str) -> dict[str, Any]:
        return await self._action(status_id, "unreblog")

    async def mute(self, status_id: str) -> dict[str, Any]:
        return await self._action(status_id, "mute")

    async def unmute(self, status_id: str) -> dict[str, Any]:
        return await self._action(status_id, "unmute")


class MediaRepository(BaseRepository):
    """Upload and describe media attachments."""

    async def create(
        self,
        file: Any,
        *,
        description: str | None = None,
        focus: str | None = None,
    ) -> dict[str, Any]:
        """Uploads a file as multipart form data.

        Args:
            file: Bytes, an open binary file, or a `(filename, content, type)`
                tuple.
            description: Alt text for the attachment.
            focus: Focal point as "x,y".
        """
        body = _drop_none({"file": file, "description": description, "focus": focus})
        response = await self._gateway.post(
            "/api/v2/media", body, headers=MULTIPART_HEADERS
        )
        return response.data

    async def fetch(self, media_id: str) -> dict[str, Any]:
        response = await self._gateway.get(f"/api/v1/media/{media_id}")
        return response.data

    async def update(self, media_id: str, **changes: Any) -> dict[str, Any]:
        response = await self._gateway.put(
            f"/api/v1/media/{media_id}",
            _drop_none(changes),
            headers=MULTIPART_HEADERS,
        )
        return response.data

    async def wait_until_processed(
        self, media_id: str, *, interval: float = 1.0, timeout: float = 60.0
    ) -> dict[str, Any]:
        """Polls an uploaded attachment until the server has processed it.

        `/api/v2/media` answers 202 for large files and the attachment's
        `url` stays null, with fetches answering 206, until processing
        finishes.

        Raises:
            TimeoutError: If the attachment is still pending after `timeout`
                seconds.
        """
        deadline = time.monotonic() + timeout
        while True:
            response = await self._gateway.get(f"/api/v1/media/{media_id}")
            data = response.data
            if response.status_code != HTTPStatus.PARTIAL_CONTENT and data.get("url"):
                return data
            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"Media {media_id} was not processed within {timeout}s"
                )
            logger.debug(f"Media {media_id} still processing, retrying in {interval}s")
            await asyncio.sleep(interval)


class AccountRepository(BaseRepository):
    """The authenticated account and relationships with other accounts."""

    async def verify_credentials(self) -> dict[str, Any]:
        response = await self._gateway.get("/api/v1/accounts/verify_credentials")
        return response.data

    async def update_credentials(self, **fields: Any) -> dict[str, Any]:
        """Updates the profile; `avatar` and `header` may be file values."""
        response = await self._gateway.patch(
            "/api/v1/accounts/update_credentials",
            _drop_none(fields),
            headers=MULTIPART_HEADERS,
        )
        return response.data

    async def remove_avatar(self) -> dict[str, Any]:
        """Deletes the profile avatar; returns the updated account."""
        response = await self._gateway.delete("/api/v1/profile/avatar")
        return response.data

    async def remove_header(self) -> dict[str, Any]:
        """Deletes the profile header image; returns the updated account."""
        response = await self._gateway.delete("/api/v1/profile/header")
        return response.data

    async def follow(self, account_id: str) -> dict[str, Any]:
        response = await self._gateway.post(f"/api/v1/accounts/{account_id}/follow")
        return response.data

    async def unfollow(self, account_id: str) -> dict[str, Any]:
        response = await self._gateway.post(f"/api/v1/accounts/{account_id}/unfollow")
        return response.data

    def statuses(self, account_id: str, **params: Any) -> Paginator:
        return self._gateway.paginate(
            f"/api/v1/accounts/{account_id}/statuses", _drop_none(params)
        )


class TimelineRepository(BaseRepository):
    """Paginated timelines.

    Common parameters are `limit`, `max_id`, `since_id` and `min_id`; later
    pages are addressed by the `next` links the server returns.
    """

    def home(self, **params: Any) -> Paginator:
        return self._gateway.paginate("/api/v1/timelines/home", _drop_none(params))

    def public(
        self,
        *,
        local: bool = False,
        remote: bool = False,
        only_media: bool = False,
        **params: Any,
    ) -> Paginator:
        query = _drop_none(params)
        if local:
            query["local"] = "true"
        if remote:
            query["remote"] = "true"
        if only_media:
            query["only_media"] = "true"
        return self._gateway.paginate("/api/v1/timelines/public", query)

    def hashtag(self, tag: str, **params: Any) -> Paginator:
        return self._gateway.paginate(
            f"/api/v1/timelines/tag/{tag}", _drop_none(params)
        )

    def list(self, list_id: str, **params: Any) -> Paginator:
        return self._gateway.paginate(
            f"/api/v1/timelines/list/{list_id}", _drop_none(params)
        )


class StreamingRepository(BaseRepository):
    """Named streaming channels.

    Each method subscribes to one channel and returns the live
    `Subscription`; unsubscribe it when done.
    """

    async def public(
        self, *, local: bool = False, remote: bool = False, media: bool = False
    ) -> Subscription:
        qualifiers = []
        if local:
            qualifiers.append("local")
        elif remote:
            qualifiers.append("remote")
        if media:
            qualifiers.append("media")
        return await self._gateway.stream(compose_channel("public", *qualifiers))

    async def hashtag(self, tag: str, *, local: bool = False) -> Subscription:
        channel = compose_channel("hashtag", "local") if local else "hashtag"
        return await self._gateway.stream(channel, {"tag": tag})

    async def user(self, *, notification: bool = False) -> Subscription:
        channel = compose_channel("user", "notification") if notification else "user"
        return await self._gateway.stream(channel)

    async def list(self, list_id: str) -> Subscription:
        return await self._gateway.stream("list", {"list": list_id})

    async def direct(self) -> Subscription:
        return await self._gateway.stream("direct")
