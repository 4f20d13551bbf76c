"""Local typing indicators that clear themselves without a refresh."""

import asyncio
from typing import Callable, Dict, List

import structlog

logger = structlog.get_logger()

TYPING_EXPIRY = 10.0

Listener = Callable[[str, bool], None]


class TypingTracker:
    """Tracks who is typing; each ``is_typing=True`` lasts ``expiry`` seconds."""

    def __init__(self, expiry: float = TYPING_EXPIRY) -> None:
        self.expiry = expiry
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._listeners: List[Listener] = []

    @property
    def typing_users(self) -> List[str]:
        return list(self._timers)

    def is_typing(self, user_id: str) -> bool:
        return user_id in self._timers

    def listen(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(user_id, is_typing)`` whenever a state changes."""
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def update(self, user_id: str, is_typing: bool) -> None:
        """Apply a typing event; must run inside the event loop."""
        was_typing = user_id in self._timers
        timer = self._timers.pop(user_id, None)
        if timer is not None:
            timer.cancel()

        if is_typing:
            loop = asyncio.get_running_loop()
            self._timers[user_id] = loop.call_later(self.expiry, self._expire, user_id)

        if was_typing != is_typing:
            self._notify(user_id, is_typing)

    def clear(self) -> None:
        """Drop every indicator without notifying."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def _expire(self, user_id: str) -> None:
        if self._timers.pop(user_id, None) is not None:
            logger.debug("typing_indicator_expired", user_id=user_id)
            self._notify(user_id, False)

    def _notify(self, user_id: str, is_typing: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(user_id, is_typing)
            except Exception as e:
                logger.error("typing_listener_failed", user_id=user_id, error=str(e))
