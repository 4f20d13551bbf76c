"""Shared fixtures: a seeded application with a deterministic reply generator."""

import asyncio
from typing import List, Optional

import pytest

from widget_chat.api.app import create_app
from widget_chat.cache.memory import InMemoryTokenStore
from widget_chat.config import Settings
from widget_chat.domain.errors import GenerationFailed
from widget_chat.domain.models import ChatMessage, User, Widget
from widget_chat.repositories.memory import InMemoryRepository
from widget_chat.services.llm import GenerationResult

USER_TOKEN = "user-api-token"
OTHER_USER_TOKEN = "other-api-token"


class StubGenerator:
    """Echoes the user message back, fails or stalls on demand."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.calls: List[str] = []

    async def generate(
        self,
        message: str,
        history: Optional[List[ChatMessage]] = None,
        widget: Optional[Widget] = None,
        session_id: Optional[str] = None,
    ) -> GenerationResult:
        self.calls.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise GenerationFailed("provider down")
        return GenerationResult(content=f"Echo: {message}", model="stub")


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def seed_users() -> List[User]:
    return [
        User(id="1", name="Owner", api_token=USER_TOKEN),
        User(id="2", name="Someone Else", api_token=OTHER_USER_TOKEN),
    ]


def seed_widgets() -> List[Widget]:
    return [
        Widget(
            id="open-widget",
            user_id="1",
            name="Open",
            title="Support",
            content_settings={"welcomeMessage": "Hi! How can we help?"},
        ),
        Widget(
            id="restricted-widget",
            user_id="1",
            name="Restricted",
            allowed_domains=["example.com", "*.partner.io"],
        ),
        Widget(id="inactive-widget", user_id="1", name="Off", is_active=False),
    ]


def build_app(**settings_overrides):
    settings = Settings(APP_SECRET="test-secret", _env_file=None, **settings_overrides)
    generator = StubGenerator()
    app = create_app(
        settings=settings,
        repository=InMemoryRepository(users=seed_users(), widgets=seed_widgets()),
        store=InMemoryTokenStore(),
        generator=generator,
    )
    return app


@pytest.fixture
def app():
    return build_app()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {USER_TOKEN}"}
