"""In-process broadcast hub fanning events out to subscribed sockets."""

import asyncio
import uuid
from typing import Any, Dict, List, Protocol, Set

import structlog

from ..domain.models import Envelope, utcnow
from ..metrics import BROADCASTS

logger = structlog.get_logger()


class Subscriber(Protocol):
    """Anything that can receive a JSON envelope (a Starlette WebSocket)."""

    async def send_json(self, data: Any) -> None:
        ...


class ChannelHub:
    """Tracks channel subscriptions and delivers broadcasts best-effort."""

    def __init__(self) -> None:
        self._channels: Dict[str, Set[Subscriber]] = {}
        self._memberships: Dict[Subscriber, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def register(self, subscriber: Subscriber) -> None:
        async with self._lock:
            self._memberships.setdefault(subscriber, set())

    async def subscribe(self, subscriber: Subscriber, channel: str) -> None:
        async with self._lock:
            self._channels.setdefault(channel, set()).add(subscriber)
            self._memberships.setdefault(subscriber, set()).add(channel)

    async def unsubscribe(self, subscriber: Subscriber, channel: str) -> None:
        async with self._lock:
            self._discard(subscriber, channel)
            memberships = self._memberships.get(subscriber)
            if memberships is not None:
                memberships.discard(channel)

    async def unregister(self, subscriber: Subscriber) -> None:
        async with self._lock:
            for channel in self._memberships.pop(subscriber, set()):
                self._discard(subscriber, channel)

    def _discard(self, subscriber: Subscriber, channel: str) -> None:
        members = self._channels.get(channel)
        if not members:
            return
        members.discard(subscriber)
        if not members:
            self._channels.pop(channel, None)

    async def channels_of(self, subscriber: Subscriber) -> Set[str]:
        async with self._lock:
            return set(self._memberships.get(subscriber, set()))

    async def _snapshot(self, channel: str) -> List[Subscriber]:
        async with self._lock:
            members = self._channels.get(channel)
            return list(members) if members else []

    async def broadcast(self, channel: str, event_type: str, data: Dict[str, Any]) -> int:
        """Send an event to every subscriber of ``channel``.

        Returns the number of successful deliveries. Failures are logged and
        counted but never raised to the caller.
        """
        envelope = Envelope(
            type=event_type,
            data=data,
            timestamp=utcnow(),
            id=uuid.uuid4().hex,
        ).model_dump(mode="json")

        subscribers = await self._snapshot(channel)
        results = await asyncio.gather(
            *(self._safe_send(subscriber, envelope) for subscriber in subscribers)
        )
        delivered = sum(1 for ok in results if ok)
        logger.debug(
            "broadcast_sent",
            channel=channel,
            event_type=event_type,
            delivered=delivered,
            failed=len(results) - delivered,
        )
        return delivered

    async def _safe_send(self, subscriber: Subscriber, message: Dict[str, Any]) -> bool:
        try:
            await subscriber.send_json(message)
        except Exception as e:
            logger.warning("broadcast_delivery_failed", error=str(e))
            BROADCASTS.labels(outcome="failed").inc()
            await self.unregister(subscriber)
            return False
        BROADCASTS.labels(outcome="delivered").inc()
        return True
