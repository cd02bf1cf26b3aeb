"""Connection orchestrator: one handshake state machine per remote peer.

Lifecycle of a PeerConnectionState:

    NEW -> OFFER_CREATED (initiator) -> REMOTE_DESCRIPTION_SET
        -> ANSWER_CREATED (responder) -> CHANNELS_OPENING -> READY -> CLOSED

CLOSED is terminal and reachable from every state, on transport failure or
when the relay reports that the peer left.

Only two kinds of suspension exist: waiting for the far side's description
(the handshake tasks await the transport and the signaling channel) and
waiting for channels to open (callbacks from the transport). Every inbound
handshake payload runs in its own task, so a slow peer never holds up
another. READY is reported to the listener only once BOTH the reliable and
the fast channel are open.

Closing a peer is synchronous: the entry is removed, its pending handshake
tasks are cancelled and no further sends reach it. The transport itself is
released in the background.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Coroutine

from smallrts.networking.peer import GameLink, PeerEventListener, PeerTransport
from smallrts.networking.protocol import (
    ChannelClass,
    GameMessage,
    HandshakePayload,
    HandshakeType,
    IceCandidate,
)
from smallrts.networking.serialization import (
    decode_game_message,
    encode_game_message,
    handshake_from_wire,
    handshake_to_wire,
)

logger = logging.getLogger(__name__)


class SignalChannel(ABC):
    """Where the orchestrator sends handshake payloads (the rendezvous client)."""

    @abstractmethod
    async def signal(self, to: str, payload: dict[str, Any]) -> None:
        ...


class PeerRole(Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class PeerStatus(IntEnum):
    """Ordered so that a peer only ever moves forward."""
    NEW = 0
    OFFER_CREATED = 1
    REMOTE_DESCRIPTION_SET = 2
    ANSWER_CREATED = 3
    CHANNELS_OPENING = 4
    READY = 5
    CLOSED = 6


@dataclass
class PeerConnectionState:
    """Everything the orchestrator knows about one remote peer."""
    peer_id: str
    role: PeerRole
    transport: PeerTransport
    status: PeerStatus = PeerStatus.NEW
    local_description: str | None = None
    remote_description: str | None = None
    local_candidates: list[IceCandidate] = field(default_factory=list)
    open_channels: set[ChannelClass] = field(default_factory=set)
    tasks: set[asyncio.Task] = field(default_factory=set)

    @property
    def reliable_open(self) -> bool:
        return ChannelClass.RELIABLE in self.open_channels

    @property
    def fast_open(self) -> bool:
        return ChannelClass.FAST in self.open_channels

    @property
    def is_closed(self) -> bool:
        return self.status == PeerStatus.CLOSED


class ConnectionOrchestrator(GameLink):
    """Owns every peer connection of this participant.

    Args:
        signaling: Sends handshake payloads through the relay.
        transport_factory: Creates a PeerTransport for a remote peer id.
        listener: Told about ready/closed peers and inbound game messages.
    """

    def __init__(
        self,
        signaling: SignalChannel,
        transport_factory: Callable[[str], PeerTransport],
        listener: PeerEventListener | None = None,
    ) -> None:
        self.listener = listener
        self.host_id: str | None = None
        self._signaling = signaling
        self._transport_factory = transport_factory
        self._peers: dict[str, PeerConnectionState] = {}
        self._closing: set[asyncio.Task] = set()

    # --- Queries ---

    def get(self, peer_id: str) -> PeerConnectionState | None:
        return self._peers.get(peer_id)

    def status(self, peer_id: str) -> PeerStatus | None:
        state = self._peers.get(peer_id)
        return state.status if state is not None else None

    @property
    def peer_ids(self) -> list[str]:
        return list(self._peers)

    @property
    def ready_peers(self) -> list[str]:
        return [pid for pid, s in self._peers.items() if s.status == PeerStatus.READY]

    # --- Handshake ---

    def connect_to(self, peer_id: str) -> asyncio.Task | None:
        """Start the initiator handshake with a discovered peer.

        Returns the handshake task, or None if a connection already exists.
        """
        if peer_id in self._peers:
            return None
        logger.info("Connecting to peer %s", peer_id)
        state = self._new_peer(peer_id, PeerRole.INITIATOR)
        return self._spawn(state, self._initiate(state))

    def handle_signal(self, from_peer: str, payload: Any) -> asyncio.Task | None:
        """Handle a handshake payload forwarded by the relay.

        Returns the task processing it, or None if the payload was dropped.
        """
        try:
            handshake = handshake_from_wire(payload)
        except ValueError as e:
            logger.debug("Dropping malformed handshake from %s: %s", from_peer, e)
            return None

        state = self._peers.get(from_peer)
        if handshake.type == HandshakeType.OFFER:
            if state is not None:
                logger.debug("Dropping offer from %s: connection exists (%s)",
                             from_peer, state.status.name)
                return None
            state = self._new_peer(from_peer, PeerRole.RESPONDER)
            return self._spawn(state, self._respond(state, handshake))

        if handshake.type == HandshakeType.ANSWER:
            if (
                state is None
                or state.role != PeerRole.INITIATOR
                or state.status != PeerStatus.OFFER_CREATED
            ):
                logger.debug("Dropping unexpected answer from %s", from_peer)
                return None
            return self._spawn(state, self._accept_answer(state, handshake))

        raise ValueError(f"Unhandled handshake type: {handshake.type}")

    def handle_peer_left(self, peer_id: str) -> None:
        """The relay reported that `peer_id` left the room."""
        self._close_peer(peer_id, "left the room")

    async def _initiate(self, state: PeerConnectionState) -> None:
        transport = state.transport
        transport.open_channels()
        sdp = await transport.create_offer()
        if state.is_closed:
            return
        state.local_description = sdp
        state.local_candidates = transport.local_candidates()
        self._advance(state, PeerStatus.OFFER_CREATED)
        payload = HandshakePayload(HandshakeType.OFFER, sdp, tuple(state.local_candidates))
        await self._signaling.signal(state.peer_id, handshake_to_wire(payload))

    async def _respond(self, state: PeerConnectionState, offer: HandshakePayload) -> None:
        transport = state.transport
        await transport.set_remote_description(HandshakeType.OFFER, offer.sdp)
        if state.is_closed:
            return
        state.remote_description = offer.sdp
        self._advance(state, PeerStatus.REMOTE_DESCRIPTION_SET)
        for candidate in offer.candidates:
            await transport.add_candidate(candidate)
            if state.is_closed:
                return

        sdp = await transport.create_answer()
        if state.is_closed:
            return
        state.local_description = sdp
        state.local_candidates = transport.local_candidates()
        self._advance(state, PeerStatus.ANSWER_CREATED)
        payload = HandshakePayload(HandshakeType.ANSWER, sdp, tuple(state.local_candidates))
        await self._signaling.signal(state.peer_id, handshake_to_wire(payload))
        if state.is_closed:
            return
        self._advance(state, PeerStatus.CHANNELS_OPENING)

    async def _accept_answer(self, state: PeerConnectionState, answer: HandshakePayload) -> None:
        transport = state.transport
        await transport.set_remote_description(HandshakeType.ANSWER, answer.sdp)
        if state.is_closed:
            return
        state.remote_description = answer.sdp
        self._advance(state, PeerStatus.REMOTE_DESCRIPTION_SET)
        for candidate in answer.candidates:
            await transport.add_candidate(candidate)
            if state.is_closed:
                return
        self._advance(state, PeerStatus.CHANNELS_OPENING)

    # --- Peer bookkeeping ---

    def _new_peer(self, peer_id: str, role: PeerRole) -> PeerConnectionState:
        transport = self._transport_factory(peer_id)
        state = PeerConnectionState(peer_id=peer_id, role=role, transport=transport)
        transport.on_channel_open = lambda channel: self._on_channel_open(state, channel)
        transport.on_message = lambda channel, data: self._on_message(state, channel, data)
        transport.on_closed = lambda: self._on_transport_closed(state)
        self._peers[peer_id] = state
        return state

    def _spawn(
        self,
        state: PeerConnectionState,
        step: Coroutine[Any, Any, None],
    ) -> asyncio.Task:
        task = asyncio.create_task(self._run_step(state, step))
        state.tasks.add(task)
        task.add_done_callback(state.tasks.discard)
        return task

    async def _run_step(self, state: PeerConnectionState, step: Coroutine[Any, Any, None]) -> None:
        try:
            await step
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Handshake with %s failed: %s", state.peer_id, e)
            self._close_peer(state.peer_id, "handshake failed", state)

    def _advance(self, state: PeerConnectionState, status: PeerStatus) -> None:
        if state.is_closed or status <= state.status:
            return
        logger.debug("Peer %s: %s -> %s", state.peer_id, state.status.name, status.name)
        state.status = status
        self._check_ready(state)

    def _check_ready(self, state: PeerConnectionState) -> None:
        if state.status >= PeerStatus.READY:
            return
        if not (state.reliable_open and state.fast_open):
            return
        state.status = PeerStatus.READY
        logger.info("Peer %s ready", state.peer_id)
        if self.listener is not None:
            self.listener.peer_ready(state.peer_id)

    def _on_channel_open(self, state: PeerConnectionState, channel: ChannelClass) -> None:
        if state.is_closed:
            return
        logger.debug("Channel %s open with %s", channel.value, state.peer_id)
        state.open_channels.add(channel)
        self._check_ready(state)

    def _on_message(self, state: PeerConnectionState, channel: ChannelClass, data: str) -> None:
        if state.status != PeerStatus.READY:
            logger.debug("Dropping %s message from %s before ready", channel.value, state.peer_id)
            return
        try:
            msg = decode_game_message(data)
        except ValueError as e:
            logger.debug("Dropping malformed game message from %s: %s", state.peer_id, e)
            return
        if self.listener is not None:
            self.listener.peer_message(state.peer_id, msg)

    def _on_transport_closed(self, state: PeerConnectionState) -> None:
        self._close_peer(state.peer_id, "transport closed", state)

    def _close_peer(
        self,
        peer_id: str,
        reason: str,
        expected: PeerConnectionState | None = None,
    ) -> bool:
        state = self._peers.get(peer_id)
        if state is None or (expected is not None and state is not expected):
            return False
        del self._peers[peer_id]
        state.status = PeerStatus.CLOSED
        state.open_channels.clear()
        logger.info("Peer %s closed: %s", peer_id, reason)

        current = asyncio.current_task()
        for task in list(state.tasks):
            if task is not current:
                task.cancel()

        transport = state.transport
        transport.on_channel_open = None
        transport.on_message = None
        transport.on_closed = None
        closer = asyncio.get_running_loop().create_task(transport.close())
        self._closing.add(closer)
        closer.add_done_callback(self._closing.discard)

        if self.listener is not None:
            self.listener.peer_closed(peer_id)
        return True

    async def close(self) -> None:
        """Close every peer connection and wait for the transports to shut down."""
        for peer_id in list(self._peers):
            self._close_peer(peer_id, "shutting down")
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    # --- Sending (GameLink) ---

    def send(self, peer_id: str, channel: ChannelClass, message: GameMessage) -> None:
        """Send one game message. Dropped if the channel is not open."""
        state = self._peers.get(peer_id)
        if state is None:
            return
        self._send_raw(state, channel, encode_game_message(message))

    def broadcast(self, channel: ChannelClass, message: GameMessage) -> None:
        data = encode_game_message(message)
        for state in list(self._peers.values()):
            if state.status == PeerStatus.READY:
                self._send_raw(state, channel, data)

    def send_to_host(self, channel: ChannelClass, message: GameMessage) -> None:
        if self.host_id is None:
            return
        self.send(self.host_id, channel, message)

    @staticmethod
    def _send_raw(state: PeerConnectionState, channel: ChannelClass, data: str) -> None:
        if not state.transport.is_open(channel):
            return
        try:
            state.transport.send(channel, data)
        except Exception as e:
            logger.debug("Send to %s on %s failed: %s", state.peer_id, channel.value, e)
