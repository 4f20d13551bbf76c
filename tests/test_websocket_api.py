"""Test suite for token issuance and the socket transport."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import build_app
from widget_chat.api.schemas import GuestTokenRequest
from widget_chat.services.status import RealtimeStatusProbe


def create_session(client):
    response = client.post("/public/widgets/open-widget/sessions")
    assert response.status_code == 201
    return response.json()["data"]["session_id"]


def guest_token(client, **body):
    response = client.post("/websocket/guest-auth", json={"client_id": "visitor-1", **body})
    assert response.status_code == 200, response.text
    return response.json()["data"]


def test_guest_auth_returns_scoped_channels(app):
    with TestClient(app) as client:
        session_id = create_session(client)
        data = guest_token(client, session_id=session_id, widget_id="open-widget")
        assert data["channels"] == ["widget.open-widget", f"chat.{session_id}", "public"]
        assert data["token"]
        assert data["expires_at"]


def test_guest_auth_validation(app):
    with TestClient(app) as client:
        response = client.post("/websocket/guest-auth", json={"client_id": "visitor-1"})
        assert response.status_code == 422
        assert response.json()["error_code"] == "missing_channel_identifiers"

        response = client.post(
            "/websocket/guest-auth",
            json={"client_id": "visitor-1", "session_id": "00000000-0000-0000-0000-000000000000"},
        )
        assert response.status_code == 422
        assert "session_id" in response.json()["errors"]

        response = client.post("/websocket/guest-auth", json={"widget_id": "open-widget"})
        assert response.status_code == 422
        assert "client_id" in response.json()["errors"]


def test_guest_auth_body_fields():
    assert set(GuestTokenRequest.model_fields) == {"client_id", "session_id", "widget_id"}


def test_guest_auth_rate_limited():
    app = build_app(GUEST_TOKEN_RATE_LIMIT=2)
    with TestClient(app) as client:
        for _ in range(2):
            guest_token(client, widget_id="open-widget")
        response = client.post(
            "/websocket/guest-auth", json={"client_id": "visitor-1", "widget_id": "open-widget"}
        )
        assert response.status_code == 429
        assert response.json()["error_code"] == "rate_limited"


def test_authenticated_token(app, auth_headers):
    with TestClient(app) as client:
        response = client.get("/websocket/auth")
        assert response.status_code == 401

        response = client.get("/websocket/auth", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user_id"] == "1"
        assert data["token"].count(".") == 2


def test_socket_rejects_missing_or_bad_token(app):
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws"):
                pass
        assert exc.value.code == 4401

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws?token=bogus"):
                pass
        assert exc.value.code == 4401


def test_guest_subscribes_and_receives_broadcasts(app):
    """Test the full embed flow over the socket."""
    with TestClient(app) as client:
        session_id = create_session(client)
        token = guest_token(client, session_id=session_id)["token"]

        with client.websocket_connect(f"/ws?token={token}") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connection_established"
            assert hello["data"]["kind"] == "guest"

            ws.send_json({"type": "subscribe", "data": {"channel": f"chat.{session_id}"}})
            reply = ws.receive_json()
            assert reply["type"] == "subscription_succeeded"
            assert reply["data"]["channel"] == f"chat.{session_id}"

            ws.send_json({"type": "subscribe", "data": {"channel": "widget.open-widget"}})
            assert ws.receive_json()["type"] == "subscription_error"

            ws.send_json({"type": "ping", "data": {}})
            assert ws.receive_json()["type"] == "pong"

            response = client.post(
                f"/public/chat/sessions/{session_id}/messages", json={"content": "hello"}
            )
            assert response.status_code == 201

            first = ws.receive_json()
            second = ws.receive_json()
            assert first["type"] == second["type"] == "chat.message"
            assert first["data"]["role"] == "user"
            assert second["data"]["role"] == "assistant"
            assert second["data"]["content"] == "Echo: hello"
            assert first["id"] != second["id"]

            client.post(
                f"/public/chat/sessions/{session_id}/typing",
                json={"is_typing": True, "client_id": "visitor-2"},
            )
            typing = ws.receive_json()
            assert typing["type"] == "chat.typing"
            assert typing["data"]["user_id"] == "visitor-2"
            assert typing["data"]["is_typing"] is True


def test_unsubscribe_stops_delivery(app):
    with TestClient(app) as client:
        session_id = create_session(client)
        token = guest_token(client, session_id=session_id)["token"]

        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "data": {"channel": f"chat.{session_id}"}})
            ws.receive_json()
            ws.send_json({"type": "unsubscribe", "data": {"channel": f"chat.{session_id}"}})
            assert ws.receive_json()["type"] == "unsubscribed"

            client.post(
                f"/public/chat/sessions/{session_id}/typing",
                json={"is_typing": True, "client_id": "visitor-2"},
            )
            ws.send_json({"type": "ping"})
            # the typing broadcast never arrives, so the next frame is the pong
            assert ws.receive_json()["type"] == "pong"


def test_malformed_socket_messages(app):
    with TestClient(app) as client:
        token = guest_token(client, widget_id="open-widget")["token"]
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json()["type"] == "error"
            ws.send_bytes(b"\x00\x01")
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["data"]["message"] == "Binary frames are not supported"
            ws.send_json({"type": "launch"})
            assert ws.receive_json()["type"] == "error"
            ws.send_json({"type": "subscribe", "data": {"channel": "admin.1"}})
            assert ws.receive_json()["data"]["reason"] == "forbidden"


def test_user_socket_channels(app, auth_headers):
    with TestClient(app) as client:
        token = client.get("/websocket/auth", headers=auth_headers).json()["data"]["token"]
        with client.websocket_connect(f"/ws?token={token}") as ws:
            assert ws.receive_json()["data"]["user_id"] == "1"
            ws.send_json({"type": "subscribe", "data": {"channel": "user.1"}})
            assert ws.receive_json()["type"] == "subscription_succeeded"
            ws.send_json({"type": "subscribe", "data": {"channel": "user.2"}})
            assert ws.receive_json()["type"] == "subscription_error"


def test_websocket_status_is_cached(app):
    calls = []

    async def probe(host, port):
        calls.append((host, port))
        return True

    app.state.status_probe = RealtimeStatusProbe(
        app.state.store, host="ws.internal", port=6001, ttl=120, probe=probe
    )
    with TestClient(app) as client:
        first = client.get("/websocket-status").json()["data"]
        second = client.get("/websocket-status").json()["data"]

    assert first == {
        "available": True,
        "host": "ws.internal",
        "port": 6001,
        "message": "WebSocket server is running",
    }
    assert second == first
    assert calls == [("ws.internal", 6001)]
