# backend/tests/conftest.py
import random
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from agents.ai_responder import AIResponder
from config import Settings
from main import app
from routers.ws_router import manager
from services.session_registry import SessionRegistry, get_session_registry


class FakeClock:
    """Wall clock the tests move by hand."""

    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class EventRecorder:
    """Stands in for the hub's broadcast and keeps every event in order."""

    def __init__(self):
        self.events = []

    async def __call__(self, game_id, event):
        self.events.append((game_id, event))

    def of_type(self, event_type):
        return [e for _, e in self.events if e["type"] == event_type]


def make_config(**overrides) -> Settings:
    values = dict(
        gemini_api_key="",
        min_players=4,
        max_players=8,
        discussion_seconds=180.0,
        voting_seconds=30.0,
        ai_reply_min_delay=0.0,
        ai_reply_max_delay=0.0,
        tick_interval=3600.0,  # tests drive deadlines through tick()
        send_timeout=0.5,
    )
    values.update(overrides)
    return Settings(**values)


def canned_responder(text: str = "lol who is typing so fast") -> AIResponder:
    async def provider(system, prompt):
        return text

    return AIResponder(primary=provider, backup=None, timeout=1.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def make_registry(clock, recorder):
    """
    Factory for a registry with deterministic randomness, a fake clock and a
    recording broadcaster. Must be called inside the running event loop.
    """

    def factory(responder=None, **config):
        return SessionRegistry(
            broadcast=recorder,
            responder=responder or canned_responder(),
            rng=random.Random(7),
            clock=clock,
            config=make_config(**config),
        )

    return factory


async def lobby_with(registry, count, creator="Host", code="ROOM1"):
    """Create a room and fill it with ``count`` humans, the creator first."""
    session = await registry.create_room(code, creator)
    players = []
    for i in range(count):
        _, player = await session.join(creator if i == 0 else f"Player{i}")
        players.append(player)
    return session, players


@pytest.fixture
def lobby():
    return lobby_with


@pytest.fixture
def api_registry():
    return SessionRegistry(
        broadcast=manager.broadcast,
        responder=canned_responder("just vibing"),
        rng=random.Random(3),
        config=make_config(),
    )


@pytest.fixture
def client(api_registry):
    """
    TestClient on the real app with the registry swapped out. Used as a
    context manager so every request shares one event loop.
    """
    app.dependency_overrides[get_session_registry] = lambda: api_registry
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
