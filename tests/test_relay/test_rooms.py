"""Tests for the relay's room registry."""

import asyncio
import json

import pytest

from smallrts.networking.protocol import CreateRoom, JoinRoom, SignalRequest
from smallrts.relay.rooms import RelayHub, random_token


def _received(client) -> list[dict]:
    return [json.loads(text) for text in client.connection.sent]


class TestRandomToken:
    def test_length_and_alphabet(self):
        token = random_token(6)
        assert len(token) == 6
        assert token == token.lower()
        assert token.isalnum()


@pytest.mark.asyncio
class TestCreateAndJoin:
    async def test_create_then_join(self, scripted_hub, make_client):
        a, b = make_client(), make_client()

        await scripted_hub.handle(a, CreateRoom())
        assert _received(a) == [{"type": "created", "room": "ab12", "self": "p1"}]

        await scripted_hub.handle(b, JoinRoom(room="ab12"))
        assert _received(b) == [
            {"type": "joined", "room": "ab12", "self": "p2"},
            {"type": "peers", "room": "ab12", "peers": ["p1", "p2"]},
        ]
        assert _received(a)[-1] == {"type": "peers", "room": "ab12", "peers": ["p1", "p2"]}

    async def test_creator_is_host(self, scripted_hub, make_client):
        a, b, c = make_client(), make_client(), make_client()
        await scripted_hub.create(a)
        await scripted_hub.join(b, "ab12")
        await scripted_hub.join(c, "ab12")
        room = scripted_hub.get_room("ab12")
        assert room.host_id == "p1"
        assert room.peer_ids == ("p1", "p2", "p3")

    async def test_rooms_have_unique_ids(self, make_client):
        ids = iter(["aaaa", "aaaa", "bbbb"])
        hub = RelayHub(room_id_factory=lambda: next(ids))
        first = await hub.create(make_client())
        second = await hub.create(make_client())
        assert (first, second) == ("aaaa", "bbbb")
        assert sorted(hub.room_ids) == ["aaaa", "bbbb"]

    async def test_join_missing_room(self, scripted_hub, make_client):
        a, b = make_client(), make_client()
        await scripted_hub.create(a)
        sent_before = list(a.connection.sent)

        result = await scripted_hub.join(b, "zzzz")

        assert result is None
        assert _received(b) == [{"type": "error", "code": "not_found"}]
        assert b.room_id is None and b.peer_id is None
        assert scripted_hub.room_ids == ["ab12"]
        assert scripted_hub.get_room("ab12").peer_ids == ("p1",)
        assert a.connection.sent == sent_before

    async def test_second_request_from_member_ignored(self, scripted_hub, make_client):
        a = make_client()
        await scripted_hub.create(a)
        assert await scripted_hub.create(a) is None
        assert await scripted_hub.join(a, "ab12") is None
        assert scripted_hub.room_ids == ["ab12"]
        assert len(a.connection.sent) == 1

    async def test_concurrent_joins_see_consistent_membership(self, scripted_hub, make_client):
        host = make_client()
        await scripted_hub.create(host)
        joiners = [make_client() for _ in range(5)]
        await asyncio.gather(*(scripted_hub.join(c, "ab12") for c in joiners))

        peers_lists = [m["peers"] for m in _received(host) if m["type"] == "peers"]
        assert [len(p) for p in peers_lists] == [2, 3, 4, 5, 6]
        assert peers_lists[-1][0] == "p1"


@pytest.mark.asyncio
class TestRelay:
    async def test_forward_to_peer_and_host(self, scripted_hub, make_client):
        a, b = make_client(), make_client()
        await scripted_hub.create(a)
        await scripted_hub.join(b, "ab12")

        await scripted_hub.handle(a, SignalRequest(room="ab12", to="p2", payload={"type": "offer"}))
        assert _received(b)[-1] == {"type": "signal", "from": "p1", "payload": {"type": "offer"}}

        await scripted_hub.handle(b, SignalRequest(room="ab12", to="host", payload={"type": "answer"}))
        assert _received(a)[-1] == {"type": "signal", "from": "p2", "payload": {"type": "answer"}}

    async def test_unroutable_signals_dropped(self, scripted_hub, make_client):
        a, b = make_client(), make_client()
        await scripted_hub.create(a)
        await scripted_hub.join(b, "ab12")
        a_count = len(a.connection.sent)

        assert not await scripted_hub.relay(b, "ab12", "p9", {})
        assert not await scripted_hub.relay(b, "nope", "p1", {})
        assert not await scripted_hub.relay(make_client(), "ab12", "p1", {})
        assert len(a.connection.sent) == a_count

    async def test_cannot_signal_into_another_room(self, scripted_hub, make_client):
        a, b, c = make_client(), make_client(), make_client()
        await scripted_hub.create(a)          # ab12, p1
        await scripted_hub.join(b, "ab12")    # p2
        await scripted_hub.create(c)          # cd34, p3
        a_count, b_count = len(a.connection.sent), len(b.connection.sent)

        assert not await scripted_hub.relay(c, "ab12", "host", {"type": "offer"})
        assert not await scripted_hub.relay(c, "ab12", "p2", {"type": "offer"})
        assert (len(a.connection.sent), len(b.connection.sent)) == (a_count, b_count)

    async def test_departed_member_cannot_signal(self, scripted_hub, make_client):
        a, b = make_client(), make_client()
        await scripted_hub.create(a)
        await scripted_hub.join(b, "ab12")
        await scripted_hub.leave(b)
        a_count = len(a.connection.sent)
        assert not await scripted_hub.relay(b, "ab12", "host", {})
        assert len(a.connection.sent) == a_count

    async def test_host_target_after_host_left(self, scripted_hub, make_client):
        a, b = make_client(), make_client()
        await scripted_hub.create(a)
        await scripted_hub.join(b, "ab12")
        await scripted_hub.leave(a)
        assert not await scripted_hub.relay(b, "ab12", "host", {})


@pytest.mark.asyncio
class TestLeave:
    async def test_remaining_members_notified(self, scripted_hub, make_client):
        a, b = make_client(), make_client()
        await scripted_hub.create(a)
        await scripted_hub.join(b, "ab12")

        await scripted_hub.leave(b)

        assert _received(a)[-1] == {"type": "left", "peer": "p2"}
        assert scripted_hub.get_room("ab12").peer_ids == ("p1",)

    async def test_last_member_removes_room(self, scripted_hub, make_client):
        a, b = make_client(), make_client()
        await scripted_hub.create(a)
        room = scripted_hub.get_room("ab12")
        await scripted_hub.leave(a)

        assert room.closed
        assert scripted_hub.room_ids == []
        assert await scripted_hub.join(b, "ab12") is None
        assert _received(b) == [{"type": "error", "code": "not_found"}]

    async def test_leave_twice_and_without_room(self, scripted_hub, make_client):
        a = make_client()
        await scripted_hub.leave(a)
        await scripted_hub.create(a)
        await scripted_hub.leave(a)
        await scripted_hub.leave(a)
        assert scripted_hub.room_ids == []


def _views(client) -> list[list[str]]:
    """Membership as the client saw it after every peers/left notification."""
    views: list[list[str]] = []
    current: list[str] = []
    for msg in _received(client):
        if msg["type"] == "peers":
            current = list(msg["peers"])
        elif msg["type"] == "left":
            current = [p for p in current if p != msg["peer"]]
        else:
            continue
        views.append(current)
    return views


@pytest.mark.asyncio
class TestContendedRoom:
    async def test_join_racing_leave_keeps_views_consistent(
        self, scripted_hub, make_yielding_client,
    ):
        a, b, e = make_yielding_client(), make_yielding_client(), make_yielding_client()
        await scripted_hub.create(a)
        await scripted_hub.join(b, "ab12")
        await scripted_hub.join(e, "ab12")
        c, d = make_yielding_client(), make_yielding_client()

        await asyncio.gather(
            scripted_hub.join(c, "ab12"),
            scripted_hub.leave(b),
            scripted_hub.join(d, "ab12"),
            scripted_hub.leave(e),
        )

        final = list(scripted_hub.get_room("ab12").peer_ids)
        assert sorted(final) == sorted([a.peer_id, c.peer_id, d.peer_id])
        remaining = [a, c, d]
        for member in remaining:
            assert _views(member)[-1] == final

        # Whoever was present for a change saw the same sequence of lists.
        for first in remaining:
            for second in remaining:
                first_views, second_views = _views(first), _views(second)
                start = second_views[0]
                if start in first_views:
                    tail = first_views[first_views.index(start):]
                    assert tail == second_views[:len(tail)]

    async def test_join_after_room_closed_gets_not_found(
        self, scripted_hub, make_yielding_client,
    ):
        a, b = make_yielding_client(), make_yielding_client()
        await scripted_hub.create(a)
        room = scripted_hub.get_room("ab12")

        async with room.lock:
            leave = asyncio.create_task(scripted_hub.leave(a))
            join = asyncio.create_task(scripted_hub.join(b, "ab12"))
            for _ in range(3):
                await asyncio.sleep(0)
            assert not join.done()

        await leave
        assert await join is None
        assert room.closed
        assert _received(b) == [{"type": "error", "code": "not_found"}]
        assert b.room_id is None
        assert scripted_hub.room_ids == []
