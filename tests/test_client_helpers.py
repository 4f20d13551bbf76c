"""Test suite for the event bus, request deduplication and result normalization."""

import asyncio

import httpx
import pytest

from widget_chat.client.dedup import RequestDeduplicator
from widget_chat.client.events import EventBus
from widget_chat.client.results import normalize


@pytest.mark.asyncio
async def test_event_bus_order_and_disposal():
    bus = EventBus()
    calls = []

    async def async_handler(payload):
        calls.append(("async", payload))

    dispose = bus.subscribe("chat.typing", lambda p: calls.append(("sync", p)))
    bus.subscribe("chat.typing", async_handler)
    bus.subscribe("*", lambda p: calls.append(("any", p)))

    await bus.emit("chat.typing", 1)
    assert calls == [("sync", 1), ("async", 1), ("any", 1)]

    dispose()
    dispose()
    calls.clear()
    await bus.emit("chat.typing", 2)
    assert calls == [("async", 2), ("any", 2)]
    assert bus.handler_count("chat.typing") == 1


@pytest.mark.asyncio
async def test_dedup_shares_in_flight_call():
    dedup = RequestDeduplicator()
    started = []

    async def fetch():
        started.append(1)
        await asyncio.sleep(0.01)
        return "token"

    results = await asyncio.gather(*[dedup.run("guest_token", fetch) for _ in range(5)])
    assert results == ["token"] * 5
    assert started == [1]
    assert not dedup.pending("guest_token")

    await dedup.run("guest_token", fetch)
    assert started == [1, 1]


@pytest.mark.asyncio
async def test_dedup_propagates_errors_to_every_waiter():
    dedup = RequestDeduplicator()

    async def boom():
        await asyncio.sleep(0)
        raise RuntimeError("nope")

    results = await asyncio.gather(
        dedup.run("config", boom), dedup.run("config", boom), return_exceptions=True
    )
    assert all(isinstance(r, RuntimeError) for r in results)


def test_normalize_success_envelope():
    response = httpx.Response(200, json={"status": "success", "data": {"id": "w"}})
    result = normalize(response)
    assert result.ok
    assert result.value == {"id": "w"}


def test_normalize_error_envelope():
    response = httpx.Response(
        403,
        json={"status": "error", "message": "Domain not allowed", "error_code": "domain_not_allowed"},
    )
    result = normalize(response)
    assert not result.ok
    assert result.error == "Domain not allowed"
    assert result.error_code == "domain_not_allowed"
    assert result.status_code == 403


def test_normalize_non_json_error():
    result = normalize(httpx.Response(502, text="<html>bad gateway</html>"))
    assert not result.ok
    assert result.error == "Bad Gateway"
