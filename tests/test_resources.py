# tests/test_resources.py
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from fedifabric.client import Gateway
from fedifabric.exceptions import NotFoundError
from fedifabric.exceptions import TimeoutError as FediTimeoutError
from fedifabric.resources import (
    MULTIPART_HEADERS,
    AccountRepository,
    MediaRepository,
    StatusRepository,
    StreamingRepository,
    TimelineRepository,
)
from fedifabric.session import FediSession
from fedifabric.streaming import SubscriptionState

from conftest import BASE_URL, update_frame

# --- Mocks and Fixtures ---


@pytest.fixture
def mock_gateway():
    gateway = AsyncMock(spec=Gateway)
    response = MagicMock()
    response.data = {"id": "1"}
    for verb in ("get", "post", "put", "patch", "delete"):
        getattr(gateway, verb).return_value = response
    gateway.paginate = MagicMock()
    return gateway


@pytest_asyncio.fixture
async def session(settings, connector):
    session = FediSession(
        BASE_URL,
        access_token="secret-token",
        settings=settings,
        websocket_connect=connector,
    )
    yield session
    await session.close()


# --- Statuses ---


@pytest.mark.asyncio
async def test_status_create_drops_unset_fields(mock_gateway):
    statuses = StatusRepository(mock_gateway)

    result = await statuses.create("hello", visibility="unlisted", media_ids=["7"])

    assert result == {"id": "1"}
    mock_gateway.post.assert_awaited_once_with(
        "/api/v1/statuses",
        {"status": "hello", "visibility": "unlisted", "media_ids": ["7"]},
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "action", ["favourite", "unfavourite", "reblog", "unreblog", "mute", "unmute"]
)
async def test_status_actions(mock_gateway, action):
    statuses = StatusRepository(mock_gateway)
    await getattr(statuses, action)("42")
    mock_gateway.post.assert_awaited_once_with(f"/api/v1/statuses/42/{action}")


@pytest.mark.asyncio
async def test_status_fetch_update_remove(mock_gateway):
    statuses = StatusRepository(mock_gateway)

    await statuses.fetch("42")
    await statuses.update("42", status="edited", spoiler_text=None)
    await statuses.remove("42")

    mock_gateway.get.assert_awaited_once_with("/api/v1/statuses/42")
    mock_gateway.put.assert_awaited_once_with(
        "/api/v1/statuses/42", {"status": "edited"}
    )
    mock_gateway.delete.assert_awaited_once_with("/api/v1/statuses/42")


# --- Media and accounts ---


@pytest.mark.asyncio
async def test_media_upload_is_multipart(mock_gateway):
    media = MediaRepository(mock_gateway)
    upload = ("cat.jpg", b"\xff\xd8", "image/jpeg")

    await media.create(upload, description="a cat")

    mock_gateway.post.assert_awaited_once_with(
        "/api/v2/media",
        {"file": upload, "description": "a cat"},
        headers=MULTIPART_HEADERS,
    )


@pytest.mark.asyncio
async def test_wait_until_processed_polls_until_url_is_set(gateway, httpx_mock):
    """Pending attachments (206, null url) are refetched until ready."""
    media_url = f"{BASE_URL}/api/v1/media/m1"
    httpx_mock.add_response(url=media_url, status_code=206, json={"id": "m1", "url": None})
    httpx_mock.add_response(url=media_url, status_code=206, json={"id": "m1", "url": None})
    httpx_mock.add_response(
        url=media_url, json={"id": "m1", "url": "https://files.test/m1.png"}
    )

    media = await MediaRepository(gateway).wait_until_processed("m1", interval=0)

    assert media["url"] == "https://files.test/m1.png"
    assert len(httpx_mock.get_requests()) == 3


@pytest.mark.asyncio
async def test_wait_until_processed_times_out(gateway, httpx_mock):
    httpx_mock.add_response(
        url=f"{BASE_URL}/api/v1/media/m1",
        status_code=206,
        json={"id": "m1", "url": None},
        is_reusable=True,
    )

    with pytest.raises(FediTimeoutError, match="m1 was not processed"):
        await MediaRepository(gateway).wait_until_processed(
            "m1", interval=0, timeout=0
        )


@pytest.mark.asyncio
async def test_remove_avatar_and_header(mock_gateway):
    accounts = AccountRepository(mock_gateway)

    assert await accounts.remove_avatar() == {"id": "1"}
    await accounts.remove_header()

    assert [c.args for c in mock_gateway.delete.await_args_list] == [
        ("/api/v1/profile/avatar",),
        ("/api/v1/profile/header",),
    ]


@pytest.mark.asyncio
async def test_update_credentials_is_multipart_patch(mock_gateway):
    accounts = AccountRepository(mock_gateway)

    await accounts.update_credentials(display_name="Me", note=None)

    mock_gateway.patch.assert_awaited_once_with(
        "/api/v1/accounts/update_credentials",
        {"display_name": "Me"},
        headers=MULTIPART_HEADERS,
    )


@pytest.mark.asyncio
async def test_follow_and_unfollow(mock_gateway):
    accounts = AccountRepository(mock_gateway)
    await accounts.follow("5")
    await accounts.unfollow("5")
    assert [c.args[0] for c in mock_gateway.post.await_args_list] == [
        "/api/v1/accounts/5/follow",
        "/api/v1/accounts/5/unfollow",
    ]


# --- Timelines ---


def test_timelines_build_paginators(mock_gateway):
    timelines = TimelineRepository(mock_gateway)

    timelines.home(limit=20, max_id=None)
    timelines.public(local=True, only_media=True)
    timelines.hashtag("python")
    timelines.list("3", limit=5)

    assert [c.args for c in mock_gateway.paginate.call_args_list] == [
        ("/api/v1/timelines/home", {"limit": 20}),
        ("/api/v1/timelines/public", {"local": "true", "only_media": "true"}),
        ("/api/v1/timelines/tag/python", {}),
        ("/api/v1/timelines/list/3", {"limit": 5}),
    ]


# --- Streaming channels ---


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("kwargs", "channel"),
    [
        ({}, "public"),
        ({"local": True}, "public:local"),
        ({"remote": True, "media": True}, "public:remote:media"),
        ({"local": True, "media": True}, "public:local:media"),
    ],
)
async def test_public_stream_channels(mock_gateway, kwargs, channel):
    await StreamingRepository(mock_gateway).public(**kwargs)
    mock_gateway.stream.assert_awaited_once_with(channel)


@pytest.mark.asyncio
async def test_qualified_stream_channels(mock_gateway):
    streaming = StreamingRepository(mock_gateway)

    await streaming.hashtag("python", local=True)
    await streaming.user(notification=True)
    await streaming.list("12")
    await streaming.direct()

    assert [c.args for c in mock_gateway.stream.await_args_list] == [
        ("hashtag:local", {"tag": "python"}),
        ("user:notification",),
        ("list", {"list": "12"}),
        ("direct",),
    ]


# --- Session ---


@pytest.mark.asyncio
async def test_session_round_trip(session: FediSession, httpx_mock):
    """Repositories on a session go through the shared gateway."""
    httpx_mock.add_response(
        url=f"{BASE_URL}/api/v1/statuses", method="POST", json={"id": "99"}
    )
    httpx_mock.add_response(
        url=f"{BASE_URL}/api/v1/statuses/100",
        status_code=404,
        json={"error": "Record not found"},
    )

    created = await session.statuses.create("hello")
    assert created == {"id": "99"}
    assert httpx_mock.get_requests()[0].headers["Authorization"] == "Bearer secret-token"

    with pytest.raises(NotFoundError, match="Record not found"):
        await session.statuses.fetch("100")


@pytest.mark.asyncio
async def test_session_timeline_pages(session: FediSession, httpx_mock):
    home = f"{BASE_URL}/api/v1/timelines/home"
    httpx_mock.add_response(
        url=f"{home}?limit=2",
        json=[{"id": "2"}, {"id": "1"}],
        headers={"Link": f'<{home}?max_id=1>; rel="next"'},
    )
    httpx_mock.add_response(url=f"{home}?max_id=1", json=[])

    pages = [page.data async for page in session.timelines.home(limit=2)]

    assert pages == [[{"id": "2"}, {"id": "1"}], []]


@pytest.mark.asyncio
async def test_session_stream_and_close(session: FediSession, connector):
    subscription = await session.streaming.hashtag("python")
    socket = connector.last
    assert socket.sent == [{"type": "subscribe", "stream": "hashtag", "tag": "python"}]

    socket.push(update_frame("1", "tagged", ["hashtag", "python"]))
    events = await subscription.values().take(1).to_list()
    assert events[0].payload["id"] == "1"

    await session.close()

    assert socket.closed
    assert subscription.state is SubscriptionState.UNSUBSCRIBED


@pytest.mark.asyncio
async def test_session_context_manager(settings, connector):
    async with FediSession(
        BASE_URL, settings=settings, websocket_connect=connector
    ) as session:
        await session.streaming.direct()

    assert connector.last.closed
