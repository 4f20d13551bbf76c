"""Per-session request serialization with a global concurrency cap."""

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID

import structlog

logger = structlog.get_logger()


class SessionQueue:
    """Runs work for one session at a time, at most ``max_concurrent`` overall.

    Requests for the same session are processed in arrival order because
    ``asyncio.Lock`` wakes waiters first-in first-out.
    """

    def __init__(self, max_concurrent: int = 10, queue_timeout: float = 60.0) -> None:
        self.max_concurrent = max_concurrent
        self.queue_timeout = queue_timeout
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.active_requests = 0
        self._lock = asyncio.Lock()
        self._session_locks: Dict[UUID, asyncio.Lock] = {}
        self._waiters: Dict[UUID, int] = {}
        logger.info("request_queue_initialized", max_concurrent=max_concurrent)

    @contextlib.asynccontextmanager
    async def _session_slot(self, session_id: UUID):
        async with self._lock:
            lock = self._session_locks.setdefault(session_id, asyncio.Lock())
            self._waiters[session_id] = self._waiters.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            async with self._lock:
                self._waiters[session_id] -= 1
                if not self._waiters[session_id]:
                    del self._waiters[session_id]
                    self._session_locks.pop(session_id, None)

    @contextlib.asynccontextmanager
    async def acquire(self):
        """Acquire a slot in the global concurrency budget."""
        try:
            async with self._lock:
                self.active_requests += 1

            async with self.semaphore:
                yield

        finally:
            async with self._lock:
                self.active_requests -= 1

    async def get_queue_length(self) -> int:
        """Number of requests waiting or running."""
        async with self._lock:
            return self.active_requests

    async def _enter(self, stack: contextlib.AsyncExitStack, session_id: UUID) -> None:
        await stack.enter_async_context(self._session_slot(session_id))
        await stack.enter_async_context(self.acquire())

    async def enqueue_request(
        self,
        session_id: UUID,
        task: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any
    ) -> Any:
        """Run ``task`` in turn for its session and wait for the result.

        ``queue_timeout`` bounds the wait for a slot only. Once started, the
        task runs to completion.
        """
        async with contextlib.AsyncExitStack() as stack:
            try:
                await asyncio.wait_for(self._enter(stack, session_id), timeout=self.queue_timeout)
            except asyncio.TimeoutError:
                logger.error("request_timeout", session_id=str(session_id))
                raise TimeoutError("Request processing timed out")
            return await task(*args, **kwargs)
