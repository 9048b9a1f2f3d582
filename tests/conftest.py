# tests/conftest.py
import asyncio
import json
from typing import Any

import pytest
import pytest_asyncio

from fedifabric.client import Gateway
from fedifabric.config import GatewaySettings

BASE_URL = "https://example.test"

_END = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets connection.

    Frames pushed with `push()` are yielded by async iteration in order;
    `fail()` makes iteration raise and `end()` simulates a server-side close.
    """

    def __init__(self, url: str):
        self.url = url
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise OSError("socket is closed")
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_END)

    def push(self, frame: dict[str, Any] | str) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def fail(self, error: Exception) -> None:
        self._incoming.put_nowait(error)

    def end(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_END)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnector:
    """WebSocket primitive that records every socket it opens."""

    def __init__(self):
        self.sockets: list[FakeWebSocket] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        socket = FakeWebSocket(url)
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]


async def settle(rounds: int = 5) -> None:
    """Lets background reader tasks process what has been pushed so far."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def update_frame(status_id: str, content: str, stream: list[str]) -> dict[str, Any]:
    return {
        "stream": stream,
        "event": "update",
        "payload": json.dumps({"id": status_id, "content": content}),
    }


@pytest.fixture
def settings() -> GatewaySettings:
    """Settings isolated from the environment and .env files."""
    return GatewaySettings(
        _env_file=None,
        url=None,
        streaming_url=None,
        access_token=None,
        user_agent="fedifabric-tests",
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest_asyncio.fixture
async def gateway(settings, connector):
    """Anonymous gateway against the test base URL."""
    gateway = Gateway(BASE_URL, settings=settings, websocket_connect=connector)
    yield gateway
    await gateway.aclose()


@pytest_asyncio.fixture
async def authed_gateway(settings, connector):
    """Gateway with an access token configured."""
    gateway = Gateway(
        BASE_URL,
        access_token="secret-token",
        settings=settings,
        websocket_connect=connector,
    )
    yield gateway
    await gateway.aclose()
