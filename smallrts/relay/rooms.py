"""Room registry for the rendezvous relay.

The relay only knows about rooms and their members. It forwards handshake
payloads between members without looking inside them and has no idea what
game is being played.

CONCURRENCY RULES:
- The hub is the single owner of the room table.
- Every membership change and the broadcast that announces it happen while
  holding that room's lock, so two members can never observe different
  membership lists for the same change.
- A room is marked closed and removed from the table as soon as its last
  member leaves. Operations that acquire the lock of a closed room behave as
  if the room did not exist.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from smallrts.config import ID_ALPHABET, PEER_ID_LENGTH, ROOM_ID_LENGTH
from smallrts.networking.protocol import (
    ERROR_NOT_FOUND,
    HOST_TARGET,
    ClientMessage,
    CreateRoom,
    JoinRoom,
    PeerLeft,
    PeerList,
    RelayError,
    RoomCreated,
    RoomJoined,
    ServerMessage,
    SignalForward,
    SignalRequest,
)
from smallrts.networking.serialization import encode_relay_message

logger = logging.getLogger(__name__)


def random_token(length: int) -> str:
    """Short lowercase base-36 token."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


class RelayConnection(ABC):
    """One participant's connection to the relay, as seen by the hub."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Send one encoded control message. Must not raise on a dead connection."""
        ...


@dataclass(slots=True)
class Member:
    peer_id: str
    connection: RelayConnection


@dataclass
class Room:
    """A live room. Members are kept in join order.

    Attributes:
        room_id: Short token, unique among live rooms.
        host_id: Peer id of the member that created the room. Fixed for the
            lifetime of the room, even after that member leaves.
        members: Peer id -> Member, insertion ordered.
        closed: Set once the last member has left.
    """
    room_id: str
    host_id: str
    members: dict[str, Member] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False

    @property
    def peer_ids(self) -> tuple[str, ...]:
        return tuple(self.members)


@dataclass(slots=True)
class RelayClient:
    """Per-connection bookkeeping: which room and peer id a connection holds."""
    connection: RelayConnection
    peer_id: str | None = None
    room_id: str | None = None


class RelayHub:
    """Owns all rooms and implements create/join/relay/leave."""

    def __init__(
        self,
        room_id_factory: Callable[[], str] | None = None,
        peer_id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._rooms: dict[str, Room] = {}
        self._new_room_id = room_id_factory or (lambda: random_token(ROOM_ID_LENGTH))
        self._new_peer_id = peer_id_factory or (lambda: random_token(PEER_ID_LENGTH))

    @property
    def room_ids(self) -> list[str]:
        return list(self._rooms)

    def get_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    async def handle(self, client: RelayClient, msg: ClientMessage) -> None:
        """Dispatch a decoded client message."""
        if isinstance(msg, CreateRoom):
            await self.create(client)
        elif isinstance(msg, JoinRoom):
            await self.join(client, msg.room)
        elif isinstance(msg, SignalRequest):
            await self.relay(client, msg.room, msg.to, msg.payload)
        else:
            raise TypeError(f"Unhandled client message: {msg!r}")

    async def create(self, client: RelayClient) -> str | None:
        """Create a room with the caller as its only member and host.

        Returns the new room id, or None if the caller is already in a room.
        """
        if client.room_id is not None:
            logger.debug("Ignoring create from %s: already in room %s",
                         client.peer_id, client.room_id)
            return None

        room_id = self._new_room_id()
        while room_id in self._rooms:
            room_id = self._new_room_id()
        peer_id = self._new_peer_id()

        room = Room(room_id=room_id, host_id=peer_id)
        self._rooms[room_id] = room
        async with room.lock:
            room.members[peer_id] = Member(peer_id, client.connection)
            client.peer_id = peer_id
            client.room_id = room_id
            logger.info("Room %s created by %s", room_id, peer_id)
            await self._send(client.connection, RoomCreated(room=room_id, self_id=peer_id))
        return room_id

    async def join(self, client: RelayClient, room_id: str) -> str | None:
        """Add the caller to an existing room.

        Returns the caller's new peer id, or None if the room does not exist
        (the caller is told "not_found") or the caller is already in a room.
        """
        if client.room_id is not None:
            logger.debug("Ignoring join from %s: already in room %s",
                         client.peer_id, client.room_id)
            return None

        room = self._rooms.get(room_id)
        if room is None:
            await self._send(client.connection, RelayError(code=ERROR_NOT_FOUND))
            return None

        async with room.lock:
            if room.closed:
                await self._send(client.connection, RelayError(code=ERROR_NOT_FOUND))
                return None

            peer_id = self._new_peer_id()
            while peer_id in room.members:
                peer_id = self._new_peer_id()
            room.members[peer_id] = Member(peer_id, client.connection)
            client.peer_id = peer_id
            client.room_id = room_id
            logger.info("Peer %s joined room %s (%d members)",
                        peer_id, room_id, len(room.members))

            peers = PeerList(room=room_id, peers=room.peer_ids)
            await self._send(client.connection, RoomJoined(room=room_id, self_id=peer_id))
            await self._send(client.connection, peers)
            await self._broadcast(room, peers, exclude=peer_id)
        return peer_id

    async def relay(self, client: RelayClient, room_id: str, to: str, payload: Any) -> bool:
        """Forward an opaque payload to one member of a room.

        `to` is a peer id or HOST_TARGET. Returns False (and does nothing) if
        the room or the destination no longer exists, or if the sender is
        not a member of that room.
        """
        room = self._rooms.get(room_id)
        if room is None:
            logger.debug("Dropping signal for unknown room %s", room_id)
            return False
        if client.room_id != room_id or client.peer_id not in room.members:
            logger.debug("Dropping signal from %s: not a member of room %s",
                         client.peer_id, room_id)
            return False

        dest_id = room.host_id if to == HOST_TARGET else to
        member = room.members.get(dest_id)
        if member is None:
            logger.debug("Dropping signal to missing peer %s in room %s", dest_id, room_id)
            return False

        await self._send(member.connection, SignalForward(from_peer=client.peer_id, payload=payload))
        return True

    async def leave(self, client: RelayClient) -> None:
        """Remove a disconnected client from its room and notify the rest."""
        if client.room_id is None or client.peer_id is None:
            return
        room = self._rooms.get(client.room_id)
        peer_id = client.peer_id
        client.room_id = None
        if room is None:
            return

        async with room.lock:
            if room.members.pop(peer_id, None) is None:
                return
            logger.info("Peer %s left room %s", peer_id, room.room_id)
            await self._broadcast(room, PeerLeft(peer=peer_id), exclude=peer_id)
            if not room.members:
                room.closed = True
                del self._rooms[room.room_id]
                logger.info("Room %s removed", room.room_id)

    async def _broadcast(self, room: Room, msg: ServerMessage, exclude: str | None = None) -> None:
        for member in list(room.members.values()):
            if member.peer_id != exclude:
                await self._send(member.connection, msg)

    @staticmethod
    async def _send(connection: RelayConnection, msg: ServerMessage) -> None:
        await connection.send(encode_relay_message(msg))
