"""Collapse concurrent identical requests into one in-flight call."""

import asyncio
from typing import Any, Awaitable, Callable, Dict


class RequestDeduplicator:
    """One in-flight task per key, scoped to the owning client instance."""

    def __init__(self) -> None:
        self._inflight: Dict[str, asyncio.Future] = {}

    def pending(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Await the call for ``key``, starting it only if none is running."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        # a cancelled waiter must not cancel the shared call
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
