"""Cache-tier store for short-lived token records."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class TokenStore(ABC):
    """Key/value store with per-key expiry.

    ``put`` and ``delete`` must be atomic per key: a put fully replaces the
    previous value, so concurrent writers never observe a merged record.
    """

    @abstractmethod
    async def put(self, key: str, value: Dict[str, Any], ttl: float) -> None:
        """Store a value that expires after ``ttl`` seconds."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the value for ``key`` or None if missing or expired."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``, returning whether it existed."""
        pass

    async def close(self) -> None:
        """Release any connections held by the store."""
        return None
