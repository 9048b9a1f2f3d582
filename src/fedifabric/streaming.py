"""Streaming subscriptions multiplexed over shared WebSocket connections.

One WebSocket per socket URL carries any number of logical channels
(`public:local`, `hashtag`, `user:notification`, ...). The manager keeps an
arena of open sockets keyed by URL: the first subscription opens the socket,
the last unsubscribe closes it. Opening and closing for a URL are serialized
by a per-URL lock, so concurrent subscribe/unsubscribe calls never race on
the socket handle.

Inbound frames are routed to every subscription whose tag
(`[channel, *param values]`) equals the frame's `stream` field. Each
subscription buffers events in its own queues, so a slow consumer never
blocks delivery to another subscription sharing the socket.

The manager never reconnects. When a socket fails, every subscription on it
ends with a `StreamingError`; resubscribing is up to the caller.
"""

import asyncio
import contextlib
import json
import ssl
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from enum import Enum
from typing import Any, Protocol, Self

import certifi
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import GatewaySettings
from .events import StreamEvent, parse_frame
from .exceptions import ConfigurationError, StreamingError
from .log_config import logger, redact_url

CHANNEL_SEPARATOR = ":"


def compose_channel(base: str, *qualifiers: str) -> str:
    """Builds a channel name from a base stream and ordered qualifiers.

    Example:
        `compose_channel("public", "local", "media")` returns
        `"public:local:media"`.

    Raises:
        ConfigurationError: If a token is empty or contains the separator.
    """
    tokens = [base, *qualifiers]
    for token in tokens:
        if not token or CHANNEL_SEPARATOR in token:
            raise ConfigurationError(f"Invalid channel token: {token!r}")
    return CHANNEL_SEPARATOR.join(tokens)


class WebSocketConnection(Protocol):
    """The subset of a websockets connection the manager relies on."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


WebSocketConnector = Callable[[str], Awaitable[WebSocketConnection]]
"""Opens a WebSocket to the given URL."""


class SubscriptionState(Enum):
    """Lifecycle of a subscription; UNSUBSCRIBED is terminal."""

    NEW = "new"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"


_CLOSED = object()


class EventStream:
    """Lazy async sequence of stream events with chainable combinators.

    Example:
    ```python
    events = await subscription.values().filter(
        lambda e: e.event == "update"
    ).take(1).to_list()
    ```
    """

    def __init__(
        self,
        source: AsyncIterator[StreamEvent],
        release: Callable[[], None] | None = None,
    ):
        self._source = source
        self._release = release

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> StreamEvent:
        return await self._source.__anext__()

    async def aclose(self) -> None:
        """Stops the sequence and detaches it from its subscription."""
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()
        if self._release is not None:
            self._release()

    def filter(self, predicate: Callable[[StreamEvent], bool]) -> "EventStream":
        """Keeps only the events for which `predicate` returns True."""

        async def _filtered() -> AsyncIterator[StreamEvent]:
            try:
                async for event in self:
                    if predicate(event):
                        yield event
            finally:
                await self.aclose()

        return EventStream(_filtered())

    def take(self, count: int) -> "EventStream":
        """Ends the sequence after `count` events."""

        async def _taken() -> AsyncIterator[StreamEvent]:
            try:
                if count <= 0:
                    return
                taken = 0
                async for event in self:
                    yield event
                    taken += 1
                    if taken >= count:
                        return
            finally:
                await self.aclose()

        return EventStream(_taken())

    async def to_list(self) -> list[StreamEvent]:
        """Drains the sequence into a list; only finishes on a finite sequence."""
        return [event async for event in self]


class Subscription:
    """Interest in one logical channel on a shared streaming socket.

    Events are buffered from the moment the subscription is registered, so
    nothing emitted after `subscribe()` returns is lost even if `values()` is
    called later. `unsubscribe()` stops delivery at once: events still queued
    are discarded and every open `values()` sequence ends.

    Attributes:
        channel: The channel name, e.g. "public:local".
        params: Qualifying parameters such as `{"tag": "python"}`.
        state: Current `SubscriptionState`.
    """

    def __init__(
        self,
        manager: "SubscriptionManager",
        socket_url: str,
        channel: str,
        params: Mapping[str, Any] | None = None,
    ):
        self._manager = manager
        self._socket_url = socket_url
        self.channel = channel
        self.params = {key: str(value) for key, value in (params or {}).items()}
        self.state = SubscriptionState.NEW
        self._backlog: list[StreamEvent] = []
        self._consumers: list[asyncio.Queue[Any]] = []
        self._error: StreamingError | None = None

    @property
    def tag(self) -> list[str]:
        """Channel tag carried in the `stream` field of matching frames."""
        return [self.channel, *self.params.values()]

    def matches(self, stream: list[str]) -> bool:
        # Hashtags are case-insensitive on the server
        return [str(part).lower() for part in stream] == [
            part.lower() for part in self.tag
        ]

    @property
    def is_active(self) -> bool:
        return self.state in (SubscriptionState.SUBSCRIBING, SubscriptionState.SUBSCRIBED)

    def subscribe_message(self) -> dict[str, Any]:
        return {"type": "subscribe", "stream": self.channel, **self.params}

    def unsubscribe_message(self) -> dict[str, Any]:
        return {"type": "unsubscribe", "stream": self.channel, **self.params}

    def _deliver(self, event: StreamEvent) -> None:
        if not self.is_active:
            return
        if not self._consumers:
            self._backlog.append(event)
            return
        for queue in self._consumers:
            queue.put_nowait(event)

    def _fail(self, error: StreamingError) -> None:
        if not self.is_active:
            return
        logger.warning(f"Subscription to {self.channel} terminated: {error}")
        self.state = SubscriptionState.UNSUBSCRIBED
        self._error = error
        for queue in self._consumers:
            queue.put_nowait(error)

    def _close_consumers(self) -> None:
        self._backlog.clear()
        for queue in self._consumers:
            while not queue.empty():
                queue.get_nowait()
            queue.put_nowait(_CLOSED)

    async def _consume(self, queue: asyncio.Queue[Any]) -> AsyncIterator[StreamEvent]:
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                if isinstance(item, StreamingError):
                    raise item
                if self.state is SubscriptionState.UNSUBSCRIBED and self._error is None:
                    return
                yield item
        finally:
            self._drop_consumer(queue)

    def _drop_consumer(self, queue: asyncio.Queue[Any]) -> None:
        if queue in self._consumers:
            self._consumers.remove(queue)

    def values(self) -> EventStream:
        """Returns an infinite sequence of the events received on this channel.

        The sequence ends when the subscription is unsubscribed and raises
        `StreamingError` if the underlying socket fails. The first call also
        receives the events buffered since subscribing; later calls start
        from the next event.
        """
        queue: asyncio.Queue[Any] = asyncio.Queue()
        for event in self._backlog:
            queue.put_nowait(event)
        self._backlog.clear()
        if self.state is SubscriptionState.UNSUBSCRIBED:
            queue.put_nowait(self._error or _CLOSED)
        else:
            self._consumers.append(queue)
        return EventStream(self._consume(queue), lambda: self._drop_consumer(queue))

    def __aiter__(self) -> EventStream:
        return self.values()

    async def unsubscribe(self) -> None:
        """Stops delivery and releases this subscription's share of the socket.

        Safe to call several times, and after the socket has already closed.
        """
        if self.state is SubscriptionState.UNSUBSCRIBED and self._error is None:
            return
        self.state = SubscriptionState.UNSUBSCRIBED
        self._error = None
        self._close_consumers()
        await self._manager._release(self)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.unsubscribe()

    def __repr__(self) -> str:
        return f"<Subscription {self.tag} {self.state.value}>"


class _SocketHandle:
    """An open socket plus the subscriptions currently sharing it."""

    def __init__(self, url: str, connection: WebSocketConnection):
        self.url = url
        self.connection = connection
        self.subscriptions: list[Subscription] = []
        self.reader: asyncio.Task[None] | None = None
        self.closing = False

    async def send(self, message: dict[str, Any]) -> None:
        await self.connection.send(json.dumps(message))


class SubscriptionManager:
    """Opens, shares and closes streaming sockets on behalf of subscriptions.

    Attributes:
        _settings: Settings providing WebSocket timeouts and user agent.
        _connect: The WebSocket primitive; defaults to `websockets.connect`.
        _sockets: Arena of open sockets keyed by socket URL.
        _locks: Per-URL locks serializing open/close transitions. An entry
            lives while its socket is open or a caller holds or awaits it.
        _lock_users: Number of callers holding or awaiting each lock.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        connect: WebSocketConnector | None = None,
    ):
        self._settings = settings
        self._connect = connect or self._default_connect
        self._sockets: dict[str, _SocketHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def _default_connect(self, url: str) -> WebSocketConnection:
        kwargs: dict[str, Any] = {
            "open_timeout": self._settings.streaming_open_timeout,
            "ping_interval": self._settings.streaming_ping_interval,
            "user_agent_header": self._settings.user_agent,
        }
        if url.startswith("wss://"):
            kwargs["ssl"] = ssl.create_default_context(cafile=certifi.where())
        return await websockets.connect(url, **kwargs)

    @contextlib.asynccontextmanager
    async def _locked(self, url: str) -> AsyncIterator[None]:
        lock = self._locks.get(url)
        if lock is None:
            lock = self._locks[url] = asyncio.Lock()
        self._lock_users[url] = self._lock_users.get(url, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[url] -= 1
            if not self._lock_users[url]:
                del self._lock_users[url]
                self._discard_lock(url)

    def _discard_lock(self, url: str) -> None:
        if url not in self._sockets and url not in self._lock_users:
            self._locks.pop(url, None)

    @property
    def open_sockets(self) -> list[str]:
        """URLs of the sockets currently open, redacted for display."""
        return [redact_url(url) for url in self._sockets]

    def subscriptions_for(self, url: str) -> list[Subscription]:
        handle = self._sockets.get(url)
        return list(handle.subscriptions) if handle else []

    async def subscribe(
        self,
        socket_url: str,
        channel: str,
        params: Mapping[str, Any] | None = None,
    ) -> Subscription:
        """Subscribes to `channel` over the socket at `socket_url`.

        Opens the socket if no other subscription holds it yet. The subscribe
        message is only sent when no other live subscription on the socket
        already covers the same channel tag.

        Raises:
            StreamingError: If the socket cannot be opened or the subscribe
                message cannot be sent.
        """
        subscription = Subscription(self, socket_url, channel, params)
        subscription.state = SubscriptionState.SUBSCRIBING

        async with self._locked(socket_url):
            handle = self._sockets.get(socket_url)
            if handle is None:
                handle = await self._open(socket_url)

            shared = any(s.tag == subscription.tag for s in handle.subscriptions)
            handle.subscriptions.append(subscription)
            if not shared:
                try:
                    await handle.send(subscription.subscribe_message())
                except (ConnectionClosed, OSError) as e:
                    handle.subscriptions.remove(subscription)
                    subscription.state = SubscriptionState.UNSUBSCRIBED
                    if not handle.subscriptions:
                        await self._close(handle)
                    raise StreamingError(
                        f"Could not subscribe to {channel}: {e}",
                        url=redact_url(socket_url),
                    ) from e

            if subscription.state is SubscriptionState.SUBSCRIBING:
                subscription.state = SubscriptionState.SUBSCRIBED
        logger.info(f"Subscribed to {subscription.tag}")
        return subscription

    async def _open(self, url: str) -> _SocketHandle:
        logger.info(f"Opening streaming connection to {redact_url(url)}")
        try:
            connection = await self._connect(url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.error(f"Failed to open streaming connection: {e}")
            raise StreamingError(
                f"Could not open streaming connection: {e}", url=redact_url(url)
            ) from e

        handle = _SocketHandle(url, connection)
        handle.reader = asyncio.create_task(self._read_frames(handle))
        self._sockets[url] = handle
        return handle

    async def _close(self, handle: _SocketHandle) -> None:
        handle.closing = True
        if self._sockets.get(handle.url) is handle:
            del self._sockets[handle.url]

        logger.info(f"Closing streaming connection to {redact_url(handle.url)}")
        try:
            await handle.connection.close()
        except (OSError, WebSocketException) as e:
            logger.warning(f"Error closing streaming connection: {e}")

        if handle.reader is not None and not handle.reader.done():
            handle.reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await handle.reader

    async def _release(self, subscription: Subscription) -> None:
        url = subscription._socket_url
        async with self._locked(url):
            handle = self._sockets.get(url)
            if handle is None or subscription not in handle.subscriptions:
                logger.debug(f"{subscription!r} holds no socket; nothing to release")
                return

            handle.subscriptions.remove(subscription)
            logger.info(f"Unsubscribed from {subscription.tag}")
            if not handle.subscriptions:
                await self._close(handle)
                return

            if any(s.tag == subscription.tag for s in handle.subscriptions):
                return
            try:
                await handle.send(subscription.unsubscribe_message())
            except (ConnectionClosed, OSError) as e:
                logger.warning(
                    f"Could not send unsubscribe for {subscription.tag}: {e}"
                )

    async def _read_frames(self, handle: _SocketHandle) -> None:
        try:
            async for message in handle.connection:
                self._dispatch(handle, message)
        except Exception as e:
            if not handle.closing:
                self._fail_socket(
                    handle,
                    StreamingError(
                        f"Streaming connection failed: {e}",
                        url=redact_url(handle.url),
                    ),
                )
            return

        if not handle.closing:
            self._fail_socket(
                handle,
                StreamingError(
                    "Streaming connection closed by server",
                    url=redact_url(handle.url),
                ),
            )

    def _dispatch(self, handle: _SocketHandle, message: str | bytes) -> None:
        try:
            frame = json.loads(message)
        except ValueError:
            logger.warning(f"Discarding non-JSON streaming frame: {message!r:.200}")
            return
        if not isinstance(frame, dict):
            logger.warning(f"Discarding unexpected streaming frame: {frame!r:.200}")
            return
        if "error" in frame and "event" not in frame:
            logger.warning(f"Streaming server reported an error: {frame['error']}")
            return

        stream = frame.get("stream") or []
        targets = [s for s in handle.subscriptions if s.matches(stream)]
        if not targets:
            logger.trace(f"No subscription for stream {stream}; frame dropped")
            return

        try:
            event = parse_frame(frame)
        except ValueError as e:
            logger.warning(f"Discarding malformed {frame.get('event')!r} frame: {e}")
            return
        for subscription in targets:
            subscription._deliver(event)

    def _fail_socket(self, handle: _SocketHandle, error: StreamingError) -> None:
        logger.error(str(error))
        if self._sockets.get(handle.url) is handle:
            del self._sockets[handle.url]
            self._discard_lock(handle.url)
        subscriptions, handle.subscriptions = handle.subscriptions, []
        for subscription in subscriptions:
            subscription._fail(error)

    async def aclose(self) -> None:
        """Unsubscribes everything and closes every open socket."""
        for url in list(self._sockets):
            async with self._locked(url):
                handle = self._sockets.get(url)
                if handle is None:
                    continue
                subscriptions, handle.subscriptions = handle.subscriptions, []
                for subscription in subscriptions:
                    subscription.state = SubscriptionState.UNSUBSCRIBED
                    subscription._close_consumers()
                await self._close(handle)
