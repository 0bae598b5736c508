"""Shared test fixtures and configuration."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from livesignal.config import Config, SignalingConfig
from livesignal.signaling.rendezvous import RendezvousClient
from tests.fake_peer import FakePeerEngine, make_candidate
from tests.fake_rendezvous import BASE_URL, FakeRendezvous


@pytest.fixture
def events() -> list:
    """Event log shared by fake peers."""
    return []


@pytest.fixture
def config() -> Config:
    """Rendezvous configuration pointing at the fake service."""
    return Config(signaling=SignalingConfig(rendezvous_url=BASE_URL))


@pytest.fixture
def client_peer(events: list) -> FakePeerEngine:
    """Client media engine with three local candidates."""
    return FakePeerEngine(
        name="client",
        candidates=(make_candidate(1), make_candidate(2), make_candidate(3)),
        events=events
    )


@pytest.fixture
def host_peer(events: list) -> FakePeerEngine:
    """Host media engine with one local candidate."""
    return FakePeerEngine(name="host", candidates=(make_candidate(9),), events=events)


@pytest_asyncio.fixture
async def fake_rendezvous() -> AsyncGenerator[FakeRendezvous, None]:
    """In-process rendezvous service."""
    service = FakeRendezvous()
    yield service
    await service.close()


@pytest_asyncio.fixture
async def rendezvous_client(fake_rendezvous: FakeRendezvous) -> AsyncGenerator[RendezvousClient, None]:
    """Rendezvous client wired to the fake service."""
    client = RendezvousClient(BASE_URL, transport=fake_rendezvous.transport)
    yield client
    await client.aclose()
