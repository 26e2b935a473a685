"""Shared fixtures: relays, agents wired in-process, and an HTTP test client."""

import pytest
from fastapi.testclient import TestClient

from callroom.config import Settings
from callroom.main import create_app
from callroom.services.negotiation.agent import NegotiationAgent
from callroom.services.negotiation.channels import InProcessSignalingChannel
from callroom.services.relay import RoomRelay

from fakes import FakeMedia, FakeTransport


@pytest.fixture
def relay() -> RoomRelay:
    return RoomRelay(capacity=2)


@pytest.fixture
def make_agent(relay):
    """Build agents that talk to ``relay`` without any network I/O."""

    def _make(username: str = "", media=None, transport=None) -> NegotiationAgent:
        return NegotiationAgent(
            InProcessSignalingChannel(relay),
            transport or FakeTransport(name=username or "peer"),
            media or FakeMedia(),
            username=username,
        )

    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ROOM_CAPACITY=2,
        CORS_ORIGINS="*",
        STUN_SERVER=None,
        TURN_URL=None,
        TURN_USERNAME=None,
        TURN_PASSWORD=None,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c
