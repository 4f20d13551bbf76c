"""Embed-side chat client: HTTP for commands, the socket for live events."""

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog

from ..domain.channels import chat_channel, widget_channel
from .connection import ConnectionManager
from .dedup import RequestDeduplicator
from .results import Result, normalize
from .typing_status import TYPING_EXPIRY, TypingTracker

logger = structlog.get_logger()


@dataclass
class ChatState:
    """What the embed shows: config, transcript, errors and live status."""

    widget_id: str
    config: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None
    messages: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    realtime: bool = False


class WidgetChatClient:
    """Runs the embed flow: config, session, guest token, socket.

    Each step stops the flow on failure and records the reason in
    ``state.error``. Failing to get a guest token or to open the socket is
    not fatal; the client then keeps working over HTTP only.
    """

    def __init__(
        self,
        base_url: str,
        widget_id: str,
        *,
        client_id: Optional[str] = None,
        origin: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        connection: Optional[ConnectionManager] = None,
        realtime_url: Optional[str] = None,
        typing_expiry: float = TYPING_EXPIRY,
    ) -> None:
        self.client_id = client_id or f"guest_{uuid.uuid4().hex}"
        headers = {"Origin": origin} if origin else None
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=30.0)
        self.connection = connection or ConnectionManager()
        self.typing = TypingTracker(expiry=typing_expiry)
        self.state = ChatState(widget_id=widget_id)
        self._realtime_url = realtime_url
        self._dedup = RequestDeduplicator()
        self._disposers: List[Callable[[], None]] = []
        self._message_ids: set = set()
        self._next_token: Optional[str] = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> Result[Any]:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("widget_request_failed", url=url, error=str(e))
            return Result.failure(str(e))
        return normalize(response)

    def _fail(self, step: str, result: Result[Any]) -> bool:
        self.state.error = result.error
        logger.warning("widget_start_failed", step=step, error=result.error, status_code=result.status_code)
        return False

    async def start(self) -> bool:
        """Load config, open a session and try to go live.

        Returns False when the widget cannot be used at all.
        """
        widget_id = self.state.widget_id
        self.state.error = None

        config = await self._dedup.run(
            "config", lambda: self._request("GET", f"/public/widgets/{widget_id}/config")
        )
        if not config.ok:
            return self._fail("config", config)
        self.state.config = config.value

        if self.state.session_id is None:
            session = await self._dedup.run(
                "session", lambda: self._request("POST", f"/public/widgets/{widget_id}/sessions")
            )
            if not session.ok:
                return self._fail("session", session)
            self.state.session_id = session.value["session_id"]

        await self.load_messages()
        await self.connect_realtime()
        return True

    def _socket_url(self, token: str) -> str:
        if self._realtime_url:
            return str(httpx.URL(self._realtime_url).copy_merge_params({"token": token}))
        base = self._http.base_url
        scheme = "wss" if base.scheme == "https" else "ws"
        return str(base.copy_with(scheme=scheme, path="/ws", params={"token": token}))

    async def _guest_token(self) -> Result[Any]:
        return await self._dedup.run(
            "guest_token",
            lambda: self._request(
                "POST",
                "/websocket/guest-auth",
                json={
                    "client_id": self.client_id,
                    "session_id": self.state.session_id,
                    "widget_id": self.state.widget_id,
                },
            ),
        )

    async def _next_socket_url(self) -> str:
        """Socket URL for the next connection attempt, with a fresh guest token."""
        token, self._next_token = self._next_token, None
        if token is None:
            result = await self._guest_token()
            if not result.ok:
                raise ConnectionError(f"Guest token unavailable: {result.error}")
            token = result.value["token"]
        return self._socket_url(token)

    async def connect_realtime(self) -> bool:
        """Get a guest token, open the socket and subscribe to the chat channels.

        Subscriptions are sent again on every reconnect, each with a newly
        issued token.
        """
        token = await self._guest_token()
        if not token.ok:
            logger.warning("realtime_unavailable", reason=token.error)
            self.state.realtime = False
            return False
        self._next_token = token.value["token"]

        self._dispose_handlers()
        self._disposers = [
            self.connection.subscribe("chat.message", self._on_message),
            self.connection.subscribe("chat.typing", self._on_typing),
            self.connection.subscribe("subscription_error", self._on_subscription_error),
            self.connection.on("open", self._on_open),
            self.connection.on("close", self._on_close),
        ]

        opened = await self.connection.connect(self._next_socket_url)
        if not opened:
            logger.warning("realtime_unavailable", reason="connect_failed")
            await self.connection.disconnect()
            self.state.realtime = False
            return False
        self.state.realtime = True
        return True

    def _remember(self, message: Dict[str, Any]) -> None:
        message_id = message.get("id")
        if message_id is not None:
            if message_id in self._message_ids:
                return
            self._message_ids.add(message_id)
        self.state.messages.append(message)

    async def load_messages(self, limit: int = 50) -> Result[Any]:
        """Fetch the transcript page by page and merge it into ``state.messages``."""
        page = 1
        while True:
            result = await self._request(
                "GET",
                f"/public/chat/sessions/{self.state.session_id}/messages",
                params={"page": page, "limit": limit},
            )
            if not result.ok:
                self.state.error = result.error
                return result
            messages = result.value["messages"]
            for message in messages:
                self._remember(message)
            if not messages or page * limit >= result.value["pagination"]["total"]:
                return result
            page += 1

    async def send_message(self, content: str, message_type: str = "text") -> Result[Any]:
        if self.state.session_id is None:
            return Result.failure("No active chat session")
        result = await self._request(
            "POST",
            f"/public/chat/sessions/{self.state.session_id}/messages",
            json={"content": content, "type": message_type},
        )
        if not result.ok:
            self.state.error = result.error
            return result
        self.state.error = None
        self._remember(result.value["user_message"])
        self._remember(result.value["ai_message"])
        return result

    async def set_typing(self, is_typing: bool) -> Result[Any]:
        if self.state.session_id is None:
            return Result.failure("No active chat session")
        return await self._request(
            "POST",
            f"/public/chat/sessions/{self.state.session_id}/typing",
            json={"is_typing": is_typing, "client_id": self.client_id},
        )

    async def _on_message(self, envelope: Dict[str, Any]) -> None:
        data = envelope.get("data")
        if isinstance(data, dict):
            self._remember(data)

    def _on_typing(self, envelope: Dict[str, Any]) -> None:
        data = envelope.get("data") or {}
        user_id = data.get("user_id")
        if not user_id or user_id == self.client_id:
            return
        self.typing.update(user_id, bool(data.get("is_typing")))

    async def _on_open(self, _: Any) -> None:
        for channel in (chat_channel(self.state.session_id), widget_channel(self.state.widget_id)):
            await self.connection.send("subscribe", {"channel": channel})
        self.state.realtime = True

    def _on_close(self, _: Any) -> None:
        self.state.realtime = False

    async def _on_subscription_error(self, envelope: Dict[str, Any]) -> None:
        logger.warning("realtime_subscription_rejected", channel=(envelope.get("data") or {}).get("channel"))
        self.state.realtime = False
        await self.connection.disconnect()

    def _dispose_handlers(self) -> None:
        for dispose in self._disposers:
            dispose()
        self._disposers = []

    async def close(self) -> None:
        """Disconnect the socket and release the HTTP client."""
        await self.connection.disconnect()
        self._dispose_handlers()
        self.typing.clear()
        self.state.realtime = False
        if self._owns_http:
            await self._http.aclose()
