"""Redis-backed token store."""

import json
from typing import Any, Dict, Optional

import structlog
from redis.asyncio import Redis

from .base import TokenStore

logger = structlog.get_logger()


class RedisTokenStore(TokenStore):
    """Token store using Redis ``SET ... PX`` for atomic put-with-expiry."""

    def __init__(self, client: Redis, prefix: str = "widget_chat:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "widget_chat:") -> "RedisTokenStore":
        """Create a store from a ``redis://`` URL."""
        client = Redis.from_url(url, decode_responses=True)
        logger.info("redis_token_store_init", prefix=prefix)
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def put(self, key: str, value: Dict[str, Any], ttl: float) -> None:
        """Store ``value`` as JSON with a millisecond expiry."""
        await self._client.set(
            self._key(key), json.dumps(value), px=max(1, int(ttl * 1000))
        )

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Load and decode a stored value."""
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.error("redis_token_store_corrupt_entry", key_prefix=key.split(":")[0])
            return None

    async def delete(self, key: str) -> bool:
        """Remove a key."""
        return bool(await self._client.delete(self._key(key)))

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._client.aclose()
