"""Typed event bus with ordered handlers and disposers."""

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Union

import structlog

logger = structlog.get_logger()

WILDCARD = "*"

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """Maps an event type to handlers, called in registration order.

    Handlers may be plain functions or coroutines. A failing handler is
    logged and does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; the returned callable removes it again."""
        self._handlers.setdefault(event_type, []).append(handler)

        def dispose() -> None:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[event_type]

        return dispose

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    def clear(self) -> None:
        self._handlers.clear()

    async def emit(self, event_type: str, payload: Any = None) -> None:
        """Deliver to the handlers of ``event_type``, then to wildcard handlers."""
        handlers = list(self._handlers.get(event_type, []))
        if event_type != WILDCARD:
            handlers.extend(self._handlers.get(WILDCARD, []))
        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("event_handler_failed", event_type=event_type, error=str(e))
