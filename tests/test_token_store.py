"""Test suite for the cache-tier token stores."""

import pytest

from conftest import FakeClock
from widget_chat.cache.memory import InMemoryTokenStore
from widget_chat.cache.redis_store import RedisTokenStore


@pytest.mark.asyncio
async def test_memory_store_expiry():
    clock = FakeClock()
    store = InMemoryTokenStore(clock=clock)
    await store.put("websocket_guest_token:abc", {"client_id": "v"}, ttl=10)

    clock.advance(9)
    assert await store.get("websocket_guest_token:abc") == {"client_id": "v"}

    clock.advance(1)
    assert await store.get("websocket_guest_token:abc") is None


@pytest.mark.asyncio
async def test_memory_store_put_replaces_and_copies():
    store = InMemoryTokenStore()
    value = {"jti": "one"}
    await store.put("k", value, ttl=60)
    value["jti"] = "mutated"
    assert (await store.get("k"))["jti"] == "one"

    await store.put("k", {"jti": "two"}, ttl=60)
    assert await store.get("k") == {"jti": "two"}
    assert await store.delete("k")
    assert not await store.delete("k")


@pytest.mark.asyncio
async def test_memory_store_purge():
    clock = FakeClock()
    store = InMemoryTokenStore(clock=clock)
    await store.put("short", {}, ttl=1)
    await store.put("long", {}, ttl=100)
    clock.advance(5)
    assert await store.purge_expired() == 1
    assert await store.get("long") == {}


class FakeRedis:
    """Records calls made by the Redis store."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.closed = False

    async def set(self, key, value, px=None):
        self.data[key] = value
        self.expiry[key] = px

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_redis_store_uses_prefixed_json_with_px():
    client = FakeRedis()
    store = RedisTokenStore(client, prefix="test:")
    await store.put("websocket_status", {"available": True}, ttl=120)

    assert client.expiry["test:websocket_status"] == 120_000
    assert await store.get("websocket_status") == {"available": True}
    assert await store.get("missing") is None
    assert await store.delete("websocket_status")

    client.data["test:broken"] = "{not json"
    assert await store.get("broken") is None

    await store.close()
    assert client.closed
