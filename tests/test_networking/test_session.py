"""Tests for Session wiring and a full relay + loopback game session."""

import asyncio

import pytest
import pytest_asyncio

from smallrts.networking.orchestrator import PeerStatus
from smallrts.networking.rendezvous_client import RendezvousClient, RendezvousError
from smallrts.networking.session import Session
from smallrts.relay.server import RelayServer
from smallrts.simulation.commands import Command
from smallrts.simulation.sync import FollowerEngine, HostEngine


async def _eventually(condition, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition never became true")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
class TestSessionRoles:
    async def test_host_session(self, loopback):
        session = Session(is_host=True, transport_factory=loopback.transport)
        assert isinstance(session.engine, HostEngine)
        session.room_created("ab12", "p1")
        assert session.room_id == "ab12"
        assert session.host_id == "p1"
        assert session.host_ready
        assert session.engine.local_player_id == "p1"
        assert len(session.engine.state.units_of("p1")) == 3

    async def test_host_connects_to_each_new_member_once(self, loopback):
        session = Session(is_host=True, transport_factory=loopback.transport)
        session.room_created("ab12", "p1")
        session.peers_changed("ab12", ("p1", "p2"))
        session.peers_changed("ab12", ("p1", "p2", "p3"))
        assert session.orchestrator.peer_ids == ["p2", "p3"]
        assert session.members == ("p1", "p2", "p3")
        await session.orchestrator.close()

    async def test_follower_learns_host_from_membership(self, loopback):
        session = Session(is_host=False, transport_factory=loopback.transport)
        assert isinstance(session.engine, FollowerEngine)
        session.room_joined("ab12", "p2")
        assert not session.host_ready
        session.peers_changed("ab12", ("p1", "p2"))
        assert session.host_id == "p1"
        assert session.orchestrator.host_id == "p1"
        assert session.orchestrator.peer_ids == []

    async def test_follower_ignores_offers_from_non_host(self, loopback):
        session = Session(is_host=False, transport_factory=loopback.transport)
        session.room_joined("ab12", "p3")
        session.peers_changed("ab12", ("p1", "p2", "p3"))
        session.signal_received("p2", {"type": "offer", "sdp": "loopback-1"})
        assert session.orchestrator.peer_ids == []

    async def test_relay_error_recorded(self, loopback):
        session = Session(is_host=False, transport_factory=loopback.transport)
        session.relay_error("not_found")
        assert session.error == "not_found"

    async def test_join_requires_room(self, loopback):
        session = Session(is_host=False, transport_factory=loopback.transport)
        session.rendezvous.connect = _fake_connect
        with pytest.raises(ValueError):
            await session.open("ws://unused")


async def _fake_connect(url, ssl_context=None):
    return None


@pytest_asyncio.fixture
async def relay_url():
    server = RelayServer()
    await server.start("127.0.0.1", 0)
    yield f"ws://127.0.0.1:{server.port}/signal"
    await server.close()


@pytest.mark.asyncio
class TestRendezvousClient:
    async def test_unreachable_relay(self):
        client = RendezvousClient()
        with pytest.raises(RendezvousError):
            await client.connect("ws://127.0.0.1:1/signal")

    async def test_signal_before_room_dropped(self):
        client = RendezvousClient()
        await client.signal("host", {"type": "offer"})
        assert not client.connected

    async def test_join_unknown_room_reports_error(self, relay_url, loopback):
        session = Session(is_host=False, transport_factory=loopback.transport)
        await session.open(relay_url, room_id="zzzz")
        task = asyncio.create_task(session.run())
        await _eventually(lambda: session.error is not None)
        assert session.error == "not_found"
        await session.close()
        await task


@pytest.mark.asyncio
class TestEndToEnd:
    async def test_host_and_follower_play(self, relay_url, loopback):
        host = Session(is_host=True, transport_factory=loopback.transport)
        await host.open(relay_url)
        host_task = asyncio.create_task(host.run())
        await _eventually(lambda: host.room_id is not None)

        follower = Session(is_host=False, transport_factory=loopback.transport)
        await follower.open(relay_url, room_id=host.room_id)
        follower_task = asyncio.create_task(follower.run())

        await _eventually(lambda: follower.host_ready)
        follower_id = follower.self_id
        assert follower.host_id == host.self_id
        assert host.orchestrator.status(follower_id) == PeerStatus.READY
        assert len(host.engine.state.units_of(follower_id)) == 3

        for _ in range(4):
            host.engine.advance()
        await _eventually(lambda: follower.engine.state.tick == 4)
        assert set(follower.engine.state.players) == {host.self_id, follower_id}
        assert len(follower.engine.state.units) == 6

        follower.engine.issue_command(Command.move(600, 400))
        await _eventually(lambda: all(
            (u.target_x, u.target_y) == (600, 400)
            for u in host.engine.state.units_of(follower_id)
        ))
        assert not any(u.is_moving for u in host.engine.state.units_of(host.self_id))

        await follower.close()
        await follower_task
        await _eventually(lambda: follower_id not in host.engine.state.players)
        assert host.engine.state.units_of(follower_id) == []
        snap = host.engine.snapshot()
        assert {u.owner for u in snap.units} == {host.self_id}

        await host.close()
        await host_task
