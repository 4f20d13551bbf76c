"""Client-side connection manager for the widget's socket transport.

One manager owns at most one transport connection. It performs the
handshake, keeps the link alive with ``ping``/``pong`` heartbeats, reconnects
with a fixed or exponential backoff after unclean closes, and dispatches
inbound envelopes by their ``type`` to subscribed handlers.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from ..config import Settings
from ..domain.models import utcnow
from .events import WILDCARD, EventBus, Handler

logger = structlog.get_logger()

NORMAL_CLOSURE = 1000
HEARTBEAT_CLOSE_CODE = 4000

LIFECYCLE_EVENTS = ("open", "close", "error", "state", "reconnect_failed")

Connector = Callable[[str], Awaitable[Any]]
UrlFactory = Callable[[], Awaitable[str]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    RECONNECTING = "reconnecting"


class ConnectionManager:
    """Keeps one transport connection open and routes its messages."""

    def __init__(
        self,
        url: Union[str, UrlFactory, None] = None,
        *,
        auto_reconnect: bool = True,
        max_reconnect_attempts: int = 5,
        reconnect_interval: float = 2.0,
        backoff: str = "fixed",
        max_reconnect_delay: float = 30.0,
        heartbeat_interval: Optional[float] = 30.0,
        heartbeat_timeout: float = 10.0,
        connector: Optional[Connector] = None,
    ) -> None:
        if backoff not in ("fixed", "exponential"):
            raise ValueError(f"Unknown backoff strategy: {backoff}")
        self.url = url
        self.auto_reconnect = auto_reconnect
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_interval = reconnect_interval
        self.backoff = backoff
        self.max_reconnect_delay = max_reconnect_delay
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout
        self._connector = connector or websockets.connect

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self._messages = EventBus()
        self._lifecycle = EventBus()
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._opened: Optional[asyncio.Future] = None
        self._pong = asyncio.Event()
        self._manual_close = False
        self._heartbeat_failed = False

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ConnectionManager":
        """Build a manager with the client knobs from ``settings``."""
        options: Dict[str, Any] = {
            "max_reconnect_attempts": settings.WS_MAX_RECONNECT_ATTEMPTS,
            "reconnect_interval": settings.WS_RECONNECT_INTERVAL,
            "heartbeat_interval": settings.WS_HEARTBEAT_INTERVAL,
        }
        options.update(kwargs)
        return cls(**options)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._ws is not None

    def subscribe(self, message_type: str, handler: Handler) -> Callable[[], None]:
        """Handle inbound messages of ``message_type`` (or ``*`` for all)."""
        return self._messages.subscribe(message_type, handler)

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Listen for a lifecycle event."""
        if event not in LIFECYCLE_EVENTS:
            raise ValueError(f"Unknown lifecycle event: {event}")
        return self._lifecycle.subscribe(event, handler)

    async def connect(self, url: Union[str, UrlFactory, None] = None) -> bool:
        """Open the connection.

        ``url`` is either a fixed URL or a coroutine function producing one,
        called again before every reconnect.

        Returns whether the first open succeeded. A failed first open still
        follows the reconnect policy in the background. Calling this while a
        connection is open or being opened does nothing.
        """
        if url is not None:
            self.url = url
        if not self.url:
            raise ValueError("No transport URL configured")

        if self._task is not None and not self._task.done():
            if self._opened is not None and not self._opened.done():
                return await asyncio.shield(self._opened)
            return self.is_connected

        self._manual_close = False
        self.reconnect_attempts = 0
        self._opened = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run())
        return await asyncio.shield(self._opened)

    async def send(self, message_type: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Send one envelope if connected; never queued."""
        ws = self._ws
        if ws is None or self.state != ConnectionState.CONNECTED:
            return False
        envelope = {
            "type": message_type,
            "data": payload or {},
            "timestamp": utcnow().isoformat(),
        }
        try:
            await ws.send(json.dumps(envelope))
        except Exception as e:
            logger.warning("transport_send_failed", message_type=message_type, error=str(e))
            await self._lifecycle.emit("error", e)
            return False
        return True

    async def disconnect(self) -> None:
        """Close the transport and cancel any pending reconnect."""
        self._manual_close = True
        task = self._task
        ws = self._ws
        if ws is not None:
            await self._set_state(ConnectionState.CLOSING)
            try:
                await ws.close(code=NORMAL_CLOSURE)
            except Exception as e:
                logger.warning("transport_close_failed", error=str(e))

        if task is None or task.done() or task is asyncio.current_task():
            return
        if ws is None:
            task.cancel()
        done, _ = await asyncio.wait({task}, timeout=self.heartbeat_timeout)
        if not done:
            task.cancel()
            await asyncio.wait({task})

    async def wait_closed(self) -> None:
        """Wait until the connection supervisor has stopped."""
        if self._task is not None:
            await asyncio.wait({self._task})

    def reconnect_delay(self, attempt: int) -> float:
        """Delay before reconnect number ``attempt`` (1-based)."""
        if self.backoff == "exponential":
            delay = self.reconnect_interval * (2 ** (attempt - 1))
        else:
            delay = self.reconnect_interval
        return min(delay, self.max_reconnect_delay)

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        logger.debug("connection_state_changed", previous=previous.value, state=state.value)
        await self._lifecycle.emit("state", state)

    async def _current_url(self) -> str:
        if callable(self.url):
            return await self.url()
        return self.url

    def _resolve_open(self, opened: bool) -> None:
        if self._opened is not None and not self._opened.done():
            self._opened.set_result(opened)

    async def _run(self) -> None:
        try:
            while True:
                clean = await self._connect_once()
                if clean or self._manual_close or not self.auto_reconnect:
                    break
                if self.reconnect_attempts >= self.max_reconnect_attempts:
                    logger.warning("reconnect_attempts_exhausted", attempts=self.reconnect_attempts)
                    await self._lifecycle.emit("reconnect_failed", self.reconnect_attempts)
                    break
                self.reconnect_attempts += 1
                delay = self.reconnect_delay(self.reconnect_attempts)
                await self._set_state(ConnectionState.RECONNECTING)
                logger.info("reconnect_scheduled", attempt=self.reconnect_attempts, delay=delay)
                await asyncio.sleep(delay)
        finally:
            self._ws = None
            self._resolve_open(False)
            await self._set_state(ConnectionState.DISCONNECTED)

    async def _connect_once(self) -> bool:
        """Open, read until closed, and report whether the close was clean."""
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await self._connector(await self._current_url())
        except Exception as e:
            logger.warning("transport_open_failed", error=str(e))
            await self._set_state(ConnectionState.DISCONNECTED)
            self._resolve_open(False)
            await self._lifecycle.emit("error", e)
            return False

        if self._manual_close:
            await ws.close(code=NORMAL_CLOSURE)
            return True

        self._ws = ws
        self._heartbeat_failed = False
        self.reconnect_attempts = 0
        await self._set_state(ConnectionState.CONNECTED)
        self._resolve_open(True)
        logger.info("transport_connected")
        await self._lifecycle.emit("open", None)

        heartbeat = None
        if self.heartbeat_interval:
            heartbeat = asyncio.create_task(self._heartbeat(ws))

        clean = True
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            logger.warning("transport_closed_abnormally", error=str(e))
            clean = False
        except Exception as e:
            logger.error("transport_receive_failed", error=str(e))
            await self._lifecycle.emit("error", e)
            clean = False
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                await asyncio.gather(heartbeat, return_exceptions=True)
            self._ws = None

        if self._heartbeat_failed:
            clean = False
        code = getattr(ws, "close_code", None)
        await self._set_state(ConnectionState.DISCONNECTED)
        logger.info("transport_closed", clean=clean, code=code)
        await self._lifecycle.emit("close", {"clean": clean, "code": code})
        return clean

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self._pong.clear()
            if not await self.send("ping"):
                return
            try:
                await asyncio.wait_for(self._pong.wait(), timeout=self.heartbeat_timeout)
            except asyncio.TimeoutError:
                logger.warning("heartbeat_timeout", timeout=self.heartbeat_timeout)
                self._heartbeat_failed = True
                await ws.close(code=HEARTBEAT_CLOSE_CODE, reason="heartbeat timeout")
                return

    async def _dispatch(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("inbound_message_unparsed")
            await self._messages.emit(WILDCARD, raw)
            return

        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            await self._messages.emit(WILDCARD, raw)
            return

        if message["type"] == "pong":
            self._pong.set()
        await self._messages.emit(message["type"], message)
