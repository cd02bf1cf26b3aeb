"""Peer interfaces and in-process implementations.

GameLink is the interface between the sync engine and the networking layer:
the engine codes against it and never sees transports or handshakes.
PeerEventListener is the reverse direction, how the orchestrator reports
peers becoming ready, peers going away and decoded game messages.
PeerTransport is one direct connection to a remote participant; the real
implementation is RtcPeerTransport (rtc_peer.py).

In-process stand-ins are provided so the whole stack can be tested and
played locally without real networking:
- MockGameLink records what the engine sends.
- LoopbackNetwork / LoopbackTransport connect orchestrators in the same
  process through the normal offer/answer flow.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Callable

from smallrts.networking.protocol import (
    ChannelClass,
    GameMessage,
    HandshakeType,
    IceCandidate,
)

logger = logging.getLogger(__name__)


class GameLink(ABC):
    """Outbound game traffic. Every send is fire-and-forget."""

    @abstractmethod
    def broadcast(self, channel: ChannelClass, message: GameMessage) -> None:
        """Send to every ready peer."""
        ...

    @abstractmethod
    def send_to_host(self, channel: ChannelClass, message: GameMessage) -> None:
        """Send to the room's host, if connected."""
        ...


class PeerEventListener(ABC):
    """Receives peer lifecycle events and game messages from the orchestrator."""

    @abstractmethod
    def peer_ready(self, peer_id: str) -> None:
        """Both channels to `peer_id` are open."""
        ...

    @abstractmethod
    def peer_closed(self, peer_id: str) -> None:
        """`peer_id` is gone: transport failure or it left the room."""
        ...

    @abstractmethod
    def peer_message(self, peer_id: str, msg: GameMessage) -> None:
        """A validated game message arrived from `peer_id`."""
        ...


class MockGameLink(GameLink):
    """Records outbound messages instead of sending them."""

    def __init__(self) -> None:
        self.broadcasts: list[tuple[ChannelClass, GameMessage]] = []
        self.to_host: list[tuple[ChannelClass, GameMessage]] = []

    def broadcast(self, channel: ChannelClass, message: GameMessage) -> None:
        self.broadcasts.append((channel, message))

    def send_to_host(self, channel: ChannelClass, message: GameMessage) -> None:
        self.to_host.append((channel, message))


class PeerTransport(ABC):
    """A direct connection to one remote participant carrying two channels.

    The owner sets the callbacks before starting the handshake:
        on_channel_open(channel)   a channel reported open
        on_message(channel, data)  text arrived on a channel
        on_closed()                the transport failed or was closed remotely
    """

    def __init__(self) -> None:
        self.on_channel_open: Callable[[ChannelClass], None] | None = None
        self.on_message: Callable[[ChannelClass, str], None] | None = None
        self.on_closed: Callable[[], None] | None = None

    @abstractmethod
    def open_channels(self) -> None:
        """Create the reliable and fast channels locally (initiator only)."""
        ...

    @abstractmethod
    async def create_offer(self) -> str:
        """Create and apply the local offer. Returns its SDP."""
        ...

    @abstractmethod
    async def create_answer(self) -> str:
        """Create and apply the local answer. Returns its SDP."""
        ...

    @abstractmethod
    async def set_remote_description(self, kind: HandshakeType, sdp: str) -> None:
        ...

    @abstractmethod
    async def add_candidate(self, candidate: IceCandidate) -> None:
        ...

    @abstractmethod
    def local_candidates(self) -> list[IceCandidate]:
        """Candidates discovered locally so far."""
        ...

    @abstractmethod
    def is_open(self, channel: ChannelClass) -> bool:
        ...

    @abstractmethod
    def send(self, channel: ChannelClass, data: str) -> None:
        """Transmit on an open channel. May raise on transport errors."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def _emit_open(self, channel: ChannelClass) -> None:
        if self.on_channel_open is not None:
            self.on_channel_open(channel)

    def _emit_message(self, channel: ChannelClass, data: str) -> None:
        if self.on_message is not None:
            self.on_message(channel, data)

    def _emit_closed(self) -> None:
        if self.on_closed is not None:
            self.on_closed()


class LoopbackNetwork:
    """Connects LoopbackTransports created in the same process.

    An offer or answer SDP is just a token naming the transport that made
    it; applying it as the remote description links the two transports.

    Args:
        auto_open: Open both channels on both sides as soon as the
            initiator applies the answer. With False, tests open channels
            one at a time with LoopbackTransport.open_channel().
    """

    def __init__(self, auto_open: bool = True) -> None:
        self.auto_open = auto_open
        self.transports: list[LoopbackTransport] = []
        self._by_token: dict[str, LoopbackTransport] = {}
        self._ids = itertools.count(1)

    def transport(self, remote_peer_id: str) -> LoopbackTransport:
        """Transport factory for a ConnectionOrchestrator."""
        transport = LoopbackTransport(self, remote_peer_id)
        self.transports.append(transport)
        return transport

    def _register(self, transport: LoopbackTransport) -> str:
        token = f"loopback-{next(self._ids)}"
        self._by_token[token] = transport
        return token

    def _lookup(self, sdp: str) -> LoopbackTransport:
        transport = self._by_token.get(sdp)
        if transport is None:
            raise ValueError(f"Unknown loopback description: {sdp!r}")
        return transport


class LoopbackTransport(PeerTransport):
    """In-process transport. Delivery is asynchronous via the event loop."""

    def __init__(self, network: LoopbackNetwork, remote_peer_id: str) -> None:
        super().__init__()
        self.remote_peer_id = remote_peer_id
        self.remote_candidates: list[IceCandidate] = []
        self.closed = False
        self._network = network
        self._token: str | None = None
        self._remote: LoopbackTransport | None = None
        self._open: set[ChannelClass] = set()

    @property
    def remote(self) -> LoopbackTransport | None:
        return self._remote

    def open_channels(self) -> None:
        pass  # channels exist implicitly; they open when linked

    async def create_offer(self) -> str:
        self._token = self._network._register(self)
        return self._token

    async def create_answer(self) -> str:
        if self._remote is None:
            raise RuntimeError("Answer requested before remote offer was applied")
        self._token = self._network._register(self)
        return self._token

    async def set_remote_description(self, kind: HandshakeType, sdp: str) -> None:
        remote = self._network._lookup(sdp)
        self._remote = remote
        if kind == HandshakeType.ANSWER:
            remote._remote = self
            if self._network.auto_open:
                loop = asyncio.get_running_loop()
                for channel in ChannelClass:
                    loop.call_soon(self.open_channel, channel)
                    loop.call_soon(remote.open_channel, channel)

    async def add_candidate(self, candidate: IceCandidate) -> None:
        self.remote_candidates.append(candidate)

    def local_candidates(self) -> list[IceCandidate]:
        if self._token is None:
            return []
        return [IceCandidate(candidate=f"candidate:1 1 udp 1 127.0.0.1 9 typ host {self._token}",
                             sdp_mid="0", sdp_mline_index=0)]

    def is_open(self, channel: ChannelClass) -> bool:
        return channel in self._open

    def open_channel(self, channel: ChannelClass) -> None:
        """Report one channel open on this side."""
        if self.closed or channel in self._open:
            return
        self._open.add(channel)
        self._emit_open(channel)

    def send(self, channel: ChannelClass, data: str) -> None:
        if self._remote is None or not self.is_open(channel):
            raise ConnectionError(f"Channel {channel.value} is not open")
        asyncio.get_running_loop().call_soon(self._remote._deliver, channel, data)

    def _deliver(self, channel: ChannelClass, data: str) -> None:
        if not self.closed and channel in self._open:
            self._emit_message(channel, data)

    def fail(self) -> None:
        """Simulate a transport failure on this side."""
        if self.closed:
            return
        self.closed = True
        self._open.clear()
        self._emit_closed()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._open.clear()
        remote = self._remote
        if remote is not None and not remote.closed:
            asyncio.get_running_loop().call_soon(remote.fail)
