"""Test suite for concurrent operations."""

import asyncio
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from widget_chat.api.request_queue import SessionQueue
from widget_chat.services.broadcaster import ChannelHub


class RecordingSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.received = []

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket gone")
        self.received.append(data)


@pytest.mark.asyncio
async def test_concurrent_sessions(app):
    """Test handling multiple concurrent widget sessions."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        responses = await asyncio.gather(
            *[client.post("/public/widgets/open-widget/sessions") for _ in range(10)]
        )
        assert all(r.status_code == 201 for r in responses)
        session_ids = [r.json()["data"]["session_id"] for r in responses]
        assert len(set(session_ids)) == 10


@pytest.mark.asyncio
async def test_concurrent_error_handling(app):
    """Test error handling under concurrent load."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        bad_ids = [f"00000000-0000-0000-0000-{i:012d}" for i in range(5)]
        responses = await asyncio.gather(
            *[client.get(f"/public/chat/sessions/{sid}/messages") for sid in bad_ids]
        )
        assert all(r.status_code == 404 for r in responses)


@pytest.mark.asyncio
async def test_queue_serializes_per_session():
    queue = SessionQueue(max_concurrent=10, queue_timeout=1.0)
    session_id = uuid4()
    active = []
    overlaps = []
    order = []

    async def work(i):
        active.append(i)
        if len(active) > 1:
            overlaps.append(i)
        await asyncio.sleep(0.01)
        order.append(i)
        active.remove(i)
        return i

    results = await asyncio.gather(
        *[queue.enqueue_request(session_id, work, i) for i in range(5)]
    )
    assert results == [0, 1, 2, 3, 4]
    assert order == [0, 1, 2, 3, 4]
    assert overlaps == []
    assert await queue.get_queue_length() == 0


@pytest.mark.asyncio
async def test_queue_runs_sessions_in_parallel_up_to_cap():
    queue = SessionQueue(max_concurrent=2, queue_timeout=1.0)
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.02)
        running -= 1

    await asyncio.gather(*[queue.enqueue_request(uuid4(), work) for _ in range(6)])
    assert peak == 2


@pytest.mark.asyncio
async def test_queue_timeout_applies_to_waiting_only():
    queue = SessionQueue(max_concurrent=1, queue_timeout=0.05)
    started = asyncio.Event()
    release = asyncio.Event()

    async def hold():
        started.set()
        await release.wait()
        return "held"

    async def slow():
        await asyncio.sleep(0.1)
        return "done"

    holder = asyncio.create_task(queue.enqueue_request(uuid4(), hold))
    await started.wait()
    with pytest.raises(TimeoutError):
        await queue.enqueue_request(uuid4(), hold)

    release.set()
    assert await holder == "held"
    # a started task outlives the queue timeout
    assert await queue.enqueue_request(uuid4(), slow) == "done"
    assert await queue.get_queue_length() == 0


@pytest.mark.asyncio
async def test_broadcast_is_best_effort():
    """A failing subscriber is dropped without affecting the others."""
    hub = ChannelHub()
    good, bad, elsewhere = RecordingSocket(), RecordingSocket(fail=True), RecordingSocket()
    await hub.subscribe(good, "chat.S")
    await hub.subscribe(bad, "chat.S")
    await hub.subscribe(elsewhere, "chat.T")

    delivered = await hub.broadcast("chat.S", "chat.message", {"content": "hi"})
    assert delivered == 1
    assert good.received[0]["type"] == "chat.message"
    assert good.received[0]["data"] == {"content": "hi"}
    assert good.received[0]["id"]
    assert elsewhere.received == []
    assert await hub.channels_of(bad) == set()

    await hub.unsubscribe(good, "chat.S")
    assert await hub.broadcast("chat.S", "chat.message", {}) == 0


@pytest.mark.asyncio
async def test_concurrent_broadcasts_reach_every_subscriber():
    hub = ChannelHub()
    sockets = [RecordingSocket() for _ in range(20)]
    await asyncio.gather(*[hub.subscribe(s, "public") for s in sockets])

    await asyncio.gather(
        *[hub.broadcast("public", "chat.message", {"n": n}) for n in range(5)]
    )
    assert all(len(s.received) == 5 for s in sockets)
