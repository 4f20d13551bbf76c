"""Test suite for local typing indicators."""

import asyncio

import pytest

from widget_chat.client.typing_status import TYPING_EXPIRY, TypingTracker


def test_default_expiry_is_ten_seconds():
    assert TYPING_EXPIRY == 10.0
    assert TypingTracker().expiry == 10.0


@pytest.mark.asyncio
async def test_typing_clears_without_refresh():
    tracker = TypingTracker(expiry=0.05)
    changes = []
    tracker.listen(lambda user_id, typing: changes.append((user_id, typing)))

    tracker.update("visitor-2", True)
    assert tracker.is_typing("visitor-2")

    await asyncio.sleep(0.1)
    assert not tracker.is_typing("visitor-2")
    assert changes == [("visitor-2", True), ("visitor-2", False)]


@pytest.mark.asyncio
async def test_refresh_extends_indicator():
    tracker = TypingTracker(expiry=0.08)
    tracker.update("v", True)
    await asyncio.sleep(0.05)
    tracker.update("v", True)
    await asyncio.sleep(0.05)
    assert tracker.is_typing("v")
    await asyncio.sleep(0.06)
    assert not tracker.is_typing("v")


@pytest.mark.asyncio
async def test_explicit_stop_and_clear():
    tracker = TypingTracker(expiry=5)
    changes = []
    dispose = tracker.listen(lambda user_id, typing: changes.append(typing))

    tracker.update("a", True)
    tracker.update("b", True)
    tracker.update("a", False)
    assert tracker.typing_users == ["b"]
    assert changes == [True, True, False]

    dispose()
    tracker.clear()
    assert tracker.typing_users == []
    assert changes == [True, True, False]
