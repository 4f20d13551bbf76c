"""In-process token store with lazy expiry."""

import asyncio
import copy
import time
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from .base import TokenStore

logger = structlog.get_logger()


class InMemoryTokenStore(TokenStore):
    """Dictionary-backed store; expired keys are dropped on access."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, value: Dict[str, Any], ttl: float) -> None:
        """Store a copy of ``value`` until ``ttl`` seconds from now."""
        async with self._lock:
            self._entries[key] = (self._clock() + ttl, copy.deepcopy(value))

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the stored value if it has not expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                logger.debug("token_store_entry_expired", key_prefix=key.split(":")[0])
                return None
            return copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        """Remove a key."""
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def purge_expired(self) -> int:
        """Drop every expired entry, returning how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, (exp, _) in self._entries.items() if now >= exp]
            for key in expired:
                del self._entries[key]
            return len(expired)
