"""Reachability probe for the real-time backend, cached in the token store."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from ..cache.base import TokenStore

logger = structlog.get_logger()

STATUS_KEY = "websocket_status"

Probe = Callable[[str, int], Awaitable[bool]]


async def tcp_probe(host: str, port: int, timeout: float = 2.0) -> bool:
    """Return True when a TCP connection to ``host:port`` can be opened."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, asyncio.TimeoutError) as e:
        logger.debug("realtime_probe_failed", host=host, port=port, error=str(e))
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class RealtimeStatusProbe:
    """Reports whether the real-time server answers, caching the verdict."""

    def __init__(
        self,
        store: TokenStore,
        host: str,
        port: int,
        ttl: int = 120,
        probe: Optional[Probe] = None,
    ) -> None:
        self._store = store
        self.host = host
        self.port = port
        self.ttl = ttl
        self._probe = probe or tcp_probe

    async def status(self) -> Dict[str, Any]:
        cached = await self._store.get(STATUS_KEY)
        if cached is not None:
            return cached

        available = await self._probe(self.host, self.port)
        result = {
            "available": available,
            "host": self.host,
            "port": self.port,
            "message": (
                "WebSocket server is running"
                if available
                else "WebSocket server is not reachable"
            ),
        }
        await self._store.put(STATUS_KEY, result, self.ttl)
        logger.info("realtime_status_checked", available=available, host=self.host, port=self.port)
        return result
