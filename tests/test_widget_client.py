"""Test suite for the embed client against the in-process API."""

import json

import pytest
from httpx import ASGITransport, AsyncClient

from test_connection import FakeConnector, FakeSocket, until
from widget_chat.client.connection import ConnectionManager
from widget_chat.client.widget import WidgetChatClient


def make_client(app, connector, widget_id="open-widget", origin=None):
    headers = {"Origin": origin} if origin else None
    http = AsyncClient(transport=ASGITransport(app=app), base_url="http://test", headers=headers)
    connection = ConnectionManager(
        connector=connector, reconnect_interval=0, heartbeat_interval=None
    )
    return WidgetChatClient(
        "http://test",
        widget_id,
        client_id="visitor-1",
        http=http,
        connection=connection,
    ), http


@pytest.mark.asyncio
async def test_start_goes_live(app):
    """Test the full start sequence: config, session, token, subscriptions."""
    socket = FakeSocket()
    connector = FakeConnector(socket)
    client, http = make_client(app, connector)
    async with http:
        assert await client.start() is True

        state = client.state
        assert state.error is None
        assert state.realtime is True
        assert state.config["title"] == "Support"
        assert [m["role"] for m in state.messages] == ["system"]

        assert connector.urls[0].startswith("ws://test/ws?token=")
        subscribed = [m["data"]["channel"] for m in socket.sent if m["type"] == "subscribe"]
        assert subscribed == [f"chat.{state.session_id}", "widget.open-widget"]

        await client.close()
        assert socket.close_code == 1000


@pytest.mark.asyncio
async def test_messages_merge_http_and_broadcasts(app):
    socket = FakeSocket()
    client, http = make_client(app, FakeConnector(socket))
    async with http:
        await client.start()

        result = await client.send_message("hello")
        assert result.ok
        contents = [m["content"] for m in client.state.messages]
        assert contents == ["Hi! How can we help?", "hello", "Echo: hello"]

        # a broadcast echo of a known message is ignored
        known = client.state.messages[1]
        socket.feed(json.dumps({"type": "chat.message", "data": known}))
        socket.feed(
            json.dumps(
                {"type": "chat.message", "data": {"id": "remote-1", "role": "assistant", "content": "agent"}}
            )
        )
        await until(lambda: len(client.state.messages) == 4)
        assert client.state.messages[-1]["content"] == "agent"

        await client.close()


@pytest.mark.asyncio
async def test_typing_events_from_others(app):
    socket = FakeSocket()
    client, http = make_client(app, FakeConnector(socket))
    async with http:
        await client.start()

        for user_id in ("visitor-1", "visitor-2"):
            socket.feed(
                json.dumps({"type": "chat.typing", "data": {"user_id": user_id, "is_typing": True}})
            )
        await until(lambda: client.typing.is_typing("visitor-2"))
        assert not client.typing.is_typing("visitor-1")

        result = await client.set_typing(True)
        assert result.ok

        await client.close()


@pytest.mark.asyncio
async def test_falls_back_to_http_when_socket_unavailable(app):
    connector = FakeConnector()
    client, http = make_client(app, connector)
    async with http:
        assert await client.start() is True
        assert client.state.realtime is False

        result = await client.send_message("still works")
        assert result.ok
        assert result.value["ai_message"]["content"] == "Echo: still works"
        await client.close()


@pytest.mark.asyncio
async def test_subscription_rejection_degrades(app):
    socket = FakeSocket()
    client, http = make_client(app, FakeConnector(socket))
    async with http:
        await client.start()
        socket.feed(
            json.dumps({"type": "subscription_error", "data": {"channel": "widget.open-widget"}})
        )
        await until(lambda: client.state.realtime is False)
        await client.close()


@pytest.mark.asyncio
async def test_start_stops_at_first_failing_step(app):
    connector = FakeConnector(FakeSocket())
    client, http = make_client(app, connector, widget_id="restricted-widget", origin="https://evil.com")
    async with http:
        assert await client.start() is False
        assert client.state.error == "Domain not allowed"
        assert client.state.session_id is None
        assert connector.calls == 0

        result = await client.send_message("hello")
        assert not result.ok
        await client.close()


@pytest.mark.asyncio
async def test_allowed_origin_starts(app):
    client, http = make_client(
        app, FakeConnector(FakeSocket()), widget_id="restricted-widget", origin="https://shop.partner.io"
    )
    async with http:
        assert await client.start() is True
        await client.close()


@pytest.mark.asyncio
async def test_reconnect_resubscribes_with_fresh_token(app):
    first, second = FakeSocket(), FakeSocket()
    connector = FakeConnector(first, second)
    client, http = make_client(app, connector)
    async with http:
        assert await client.start() is True

        first.drop()
        await until(lambda: len(second.sent) == 2)
        subscribed = [m["data"]["channel"] for m in second.sent if m["type"] == "subscribe"]
        assert subscribed == [f"chat.{client.state.session_id}", "widget.open-widget"]
        assert client.state.realtime is True
        assert connector.urls[1].startswith("ws://test/ws?token=")
        assert connector.urls[0] != connector.urls[1]

        # no sockets left: the reconnect budget runs out and the client goes offline
        second.drop()
        await client.connection.wait_closed()
        assert client.state.realtime is False
        await client.close()


@pytest.mark.asyncio
async def test_resumed_session_loads_every_page(app):
    client, http = make_client(app, FakeConnector())
    async with http:
        await client.start()
        for content in ("one", "two"):
            assert (await client.send_message(content)).ok

        resumed = WidgetChatClient("http://test", "open-widget", http=http, connection=client.connection)
        resumed.state.session_id = client.state.session_id
        result = await resumed.load_messages(limit=2)
        assert result.ok
        assert [m["content"] for m in resumed.state.messages] == [
            "Hi! How can we help?",
            "one",
            "Echo: one",
            "two",
            "Echo: two",
        ]
        await client.close()
