"""Shared test fixtures for SmallRTS."""

from __future__ import annotations

import asyncio

import pytest

from smallrts.networking.peer import LoopbackNetwork, MockGameLink
from smallrts.relay.rooms import RelayClient, RelayConnection, RelayHub
from smallrts.simulation.state import GameState


class FakeConnection(RelayConnection):
    """Relay connection that records every frame sent to it."""

    def __init__(self) -> None:
        self.sent: list[str] = []

    async def send(self, text: str) -> None:
        self.sent.append(text)


class YieldingConnection(FakeConnection):
    """Records frames but yields to the event loop on every send, like a socket."""

    async def send(self, text: str) -> None:
        await asyncio.sleep(0)
        self.sent.append(text)


@pytest.fixture
def game_state() -> GameState:
    """A fresh, empty game state."""
    return GameState()


@pytest.fixture
def mock_link() -> MockGameLink:
    """A game link that records outgoing messages."""
    return MockGameLink()


@pytest.fixture
def loopback() -> LoopbackNetwork:
    """In-process peer network that opens channels automatically."""
    return LoopbackNetwork()


@pytest.fixture
def make_client():
    """Factory for relay clients backed by a FakeConnection."""
    def _make() -> RelayClient:
        return RelayClient(FakeConnection())
    return _make


@pytest.fixture
def make_yielding_client():
    """Factory for relay clients whose sends suspend, so room locks are contended."""
    def _make() -> RelayClient:
        return RelayClient(YieldingConnection())
    return _make


@pytest.fixture
def scripted_hub() -> RelayHub:
    """Relay hub with predictable ids: room "ab12", peers "p1", "p2", ..."""
    peer_ids = iter(f"p{i}" for i in range(1, 100))
    room_ids = iter(["ab12", "cd34", "ef56", "gh78"])
    return RelayHub(room_id_factory=lambda: next(room_ids),
                    peer_id_factory=lambda: next(peer_ids))
