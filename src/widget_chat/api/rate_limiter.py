"""Rate limiter for token issuance endpoints, using a sliding window per key."""

import asyncio
import time
from typing import Callable, Dict, List

from fastapi import Request
from structlog import get_logger

from ..domain.errors import RateLimitExceeded

logger = get_logger()


class RateLimiter:
    """Sliding-window limiter keyed by caller and endpoint."""

    def __init__(
        self,
        rate_limit: int = 50,
        time_window: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize rate limiter with configurable parameters."""
        self.rate_limit = rate_limit
        self.time_window = time_window  # in seconds
        self.requests: Dict[str, List[float]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()
        self._cleanup_task = None
        logger.info(
            "rate_limiter_initialized",
            rate_limit=rate_limit,
            time_window=time_window
        )

    async def start(self):
        """Start the rate limiter cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def stop(self):
        """Stop the rate limiter cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff = now - self.time_window
        recent = [ts for ts in self.requests.get(key, []) if ts > cutoff]
        if recent:
            self.requests[key] = recent
        else:
            self.requests.pop(key, None)
        return recent

    async def _periodic_cleanup(self):
        """Periodically drop timestamps that left the window."""
        while True:
            try:
                await asyncio.sleep(self.time_window)
                async with self._lock:
                    now = self._clock()
                    for key in list(self.requests.keys()):
                        self._prune(key, now)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("rate_limiter_cleanup_error", error=str(e))

    async def check_rate_limit(self, key: str) -> None:
        """Record a request for ``key`` or raise RateLimitExceeded."""
        now = self._clock()

        async with self._lock:
            recent = self._prune(key, now)
            if len(recent) >= self.rate_limit:
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    current_requests=len(recent),
                    rate_limit=self.rate_limit
                )
                raise RateLimitExceeded(
                    f"Rate limit of {self.rate_limit} requests per {self.time_window} seconds exceeded"
                )

            recent.append(now)
            self.requests[key] = recent
            logger.debug(
                "request_tracked",
                key=key,
                current_requests=len(recent),
                rate_limit=self.rate_limit
            )

    async def get_remaining_requests(self, key: str) -> int:
        """Get remaining requests for the key."""
        async with self._lock:
            recent = self._prune(key, self._clock())
            return max(0, self.rate_limit - len(recent))


def client_key(request: Request) -> str:
    """Caller identity for rate limiting: client address plus path."""
    client_ip = request.client.host if request.client else "unknown"
    return f"{client_ip}:{request.url.path}"


async def enforce_rate_limit(request: Request, rate_limiter: RateLimiter) -> None:
    """Charge one request against the caller's budget."""
    await rate_limiter.check_rate_limit(client_key(request))
