"""Client side of the rendezvous relay.

Opens the signaling websocket, issues create/join requests and carries
handshake payloads to and from the relay. Everything received is decoded
and handed to a RendezvousListener; frames that fail to decode are dropped.
"""

from __future__ import annotations

import logging
import ssl
from abc import ABC, abstractmethod
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from smallrts.networking.orchestrator import SignalChannel
from smallrts.networking.protocol import (
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
from smallrts.networking.serialization import decode_server_message, encode_relay_message

logger = logging.getLogger(__name__)


class RendezvousError(RuntimeError):
    """The signaling connection could not be used."""


class RendezvousListener(ABC):
    """Receives decoded relay messages."""

    @abstractmethod
    def room_created(self, room_id: str, self_id: str) -> None:
        ...

    @abstractmethod
    def room_joined(self, room_id: str, self_id: str) -> None:
        ...

    @abstractmethod
    def peers_changed(self, room_id: str, peers: tuple[str, ...]) -> None:
        ...

    @abstractmethod
    def signal_received(self, from_peer: str, payload: Any) -> None:
        ...

    @abstractmethod
    def peer_left(self, peer_id: str) -> None:
        ...

    @abstractmethod
    def relay_error(self, code: str) -> None:
        ...


class RendezvousClient(SignalChannel):
    """One participant's connection to the relay."""

    def __init__(self, listener: RendezvousListener | None = None) -> None:
        self.listener = listener
        self.room_id: str | None = None
        self.peer_id: str | None = None
        self._ws: ClientConnection | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self, url: str, ssl_context: ssl.SSLContext | None = None) -> None:
        kwargs: dict[str, Any] = {}
        if ssl_context is not None:
            kwargs["ssl"] = ssl_context
        try:
            self._ws = await connect(url, **kwargs)
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise RendezvousError(f"Cannot reach relay at {url}: {e}") from e
        logger.info("Connected to relay %s", url)

    async def send(self, msg: ClientMessage) -> None:
        if self._ws is None:
            logger.debug("Not connected, dropping %s", type(msg).__name__)
            return
        try:
            await self._ws.send(encode_relay_message(msg))
        except ConnectionClosed:
            logger.debug("Relay connection closed, dropping %s", type(msg).__name__)

    async def create_room(self) -> None:
        await self.send(CreateRoom())

    async def join_room(self, room_id: str) -> None:
        await self.send(JoinRoom(room=room_id))

    async def signal(self, to: str, payload: dict[str, Any]) -> None:
        """Ask the relay to forward a handshake payload to `to` (peer id or "host")."""
        if self.room_id is None:
            logger.debug("No room yet, dropping signal to %s", to)
            return
        await self.send(SignalRequest(room=self.room_id, to=to, payload=payload))

    async def run(self) -> None:
        """Read relay messages until the connection closes."""
        if self._ws is None:
            raise RendezvousError("run() called before connect()")
        try:
            async for raw in self._ws:
                try:
                    msg = decode_server_message(raw)
                except ValueError as e:
                    logger.debug("Dropping malformed relay message: %s", e)
                    continue
                self.dispatch(msg)
        except ConnectionClosed:
            pass
        finally:
            logger.info("Signaling connection closed")

    def dispatch(self, msg: ServerMessage) -> None:
        """Record room identity and forward one message to the listener."""
        if isinstance(msg, (RoomCreated, RoomJoined)):
            self.room_id = msg.room
            self.peer_id = msg.self_id
        listener = self.listener
        if listener is None:
            return

        if isinstance(msg, RoomCreated):
            listener.room_created(msg.room, msg.self_id)
        elif isinstance(msg, RoomJoined):
            listener.room_joined(msg.room, msg.self_id)
        elif isinstance(msg, PeerList):
            listener.peers_changed(msg.room, msg.peers)
        elif isinstance(msg, SignalForward):
            listener.signal_received(msg.from_peer, msg.payload)
        elif isinstance(msg, PeerLeft):
            listener.peer_left(msg.peer)
        elif isinstance(msg, RelayError):
            listener.relay_error(msg.code)
        else:
            raise TypeError(f"Unhandled relay message: {msg!r}")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
