"""Session: wires the rendezvous client, the orchestrator and the sync engine.

The host connects to every member that shows up in the room's membership
list; followers only answer the host's offer. Once a peer's channels are
ready the engine takes over and the relay carries no game traffic.
"""

from __future__ import annotations

import logging
import ssl
from typing import Any, Callable

from smallrts.networking.orchestrator import ConnectionOrchestrator, PeerStatus
from smallrts.networking.peer import PeerEventListener, PeerTransport
from smallrts.networking.protocol import GameMessage
from smallrts.networking.rendezvous_client import RendezvousClient, RendezvousListener
from smallrts.simulation.sync import FollowerEngine, HostEngine, SyncEngine

logger = logging.getLogger(__name__)


class Session(RendezvousListener, PeerEventListener):
    """One participant's view of a room.

    Args:
        is_host: Create a room and run the authoritative engine, or join
            one and follow.
        transport_factory: Creates a PeerTransport per remote peer.
        rendezvous: Relay client to use (a fresh one by default).
    """

    def __init__(
        self,
        is_host: bool,
        transport_factory: Callable[[str], PeerTransport],
        rendezvous: RendezvousClient | None = None,
    ) -> None:
        self.rendezvous = rendezvous or RendezvousClient()
        self.rendezvous.listener = self
        self.orchestrator = ConnectionOrchestrator(self.rendezvous, transport_factory, listener=self)
        self.engine: SyncEngine = (
            HostEngine(self.orchestrator) if is_host else FollowerEngine(self.orchestrator)
        )
        self.room_id: str | None = None
        self.self_id: str | None = None
        self.host_id: str | None = None
        self.members: tuple[str, ...] = ()
        self.error: str | None = None
        self._contacted: set[str] = set()

    @property
    def is_host(self) -> bool:
        return self.engine.is_authoritative

    @property
    def host_ready(self) -> bool:
        """Whether this participant can exchange game traffic with the host."""
        if self.is_host:
            return self.self_id is not None
        return self.host_id is not None and self.orchestrator.status(self.host_id) == PeerStatus.READY

    async def open(
        self,
        url: str,
        room_id: str | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        """Connect to the relay, then create (host) or join (follower) a room."""
        await self.rendezvous.connect(url, ssl_context)
        if self.is_host:
            await self.rendezvous.create_room()
        else:
            if room_id is None:
                raise ValueError("A room id is required to join")
            await self.rendezvous.join_room(room_id)

    async def run(self) -> None:
        await self.rendezvous.run()

    async def close(self) -> None:
        await self.orchestrator.close()
        await self.rendezvous.close()

    # --- RendezvousListener ---

    def room_created(self, room_id: str, self_id: str) -> None:
        logger.info("Room created: %s (share this code)", room_id)
        self.room_id = room_id
        self.self_id = self_id
        self.host_id = self_id
        self.members = (self_id,)
        self.orchestrator.host_id = self_id
        self.engine.start(self_id)

    def room_joined(self, room_id: str, self_id: str) -> None:
        logger.info("Joined room %s as %s", room_id, self_id)
        self.room_id = room_id
        self.self_id = self_id
        self.engine.start(self_id)

    def peers_changed(self, room_id: str, peers: tuple[str, ...]) -> None:
        self.members = peers
        if self.host_id is None and peers:
            # Membership is in join order; the first entry created the room.
            self.host_id = peers[0]
            self.orchestrator.host_id = self.host_id
        logger.info("Room %s members: %s", room_id, ", ".join(peers))

        if not self.is_host:
            return  # followers wait for the host's offer
        for peer_id in peers:
            if peer_id == self.self_id or peer_id in self._contacted:
                continue
            self._contacted.add(peer_id)
            self.orchestrator.connect_to(peer_id)

    def signal_received(self, from_peer: str, payload: Any) -> None:
        if not self.is_host and self.host_id is not None and from_peer != self.host_id:
            logger.debug("Ignoring handshake from non-host %s", from_peer)
            return
        self.orchestrator.handle_signal(from_peer, payload)

    def peer_left(self, peer_id: str) -> None:
        self.members = tuple(p for p in self.members if p != peer_id)
        self.orchestrator.handle_peer_left(peer_id)

    def relay_error(self, code: str) -> None:
        logger.warning("Relay error: %s", code)
        self.error = code

    # --- PeerEventListener ---

    def peer_ready(self, peer_id: str) -> None:
        self.engine.peer_ready(peer_id)

    def peer_closed(self, peer_id: str) -> None:
        self.engine.peer_closed(peer_id)

    def peer_message(self, peer_id: str, msg: GameMessage) -> None:
        self.engine.peer_message(peer_id, msg)
