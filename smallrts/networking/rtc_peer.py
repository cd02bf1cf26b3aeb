"""WebRTC-based PeerTransport implementation.

Uses aiortc for the peer connection and its two data channels:
    reliable   ordered, retransmitted
    fast       unordered, maxRetransmits=0

aiortc gathers all ICE candidates during setLocalDescription() and embeds
them in the SDP, so local_candidates() is always empty. Candidates that a
browser-style peer sends separately are still applied.
"""

from __future__ import annotations

import logging

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from smallrts.config import ICE_SERVERS
from smallrts.networking.peer import PeerTransport
from smallrts.networking.protocol import ChannelClass, HandshakeType, IceCandidate

logger = logging.getLogger(__name__)


class RtcPeerTransport(PeerTransport):
    """Real WebRTC transport to one remote peer."""

    def __init__(self, remote_peer_id: str, ice_servers: list[str] | None = None) -> None:
        super().__init__()
        self.remote_peer_id = remote_peer_id
        servers = ICE_SERVERS if ice_servers is None else ice_servers
        self._pc = RTCPeerConnection(
            RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in servers])
        )
        self._channels: dict[ChannelClass, RTCDataChannel] = {}
        self._closed = False

        @self._pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel) -> None:
            self._setup_channel(channel)

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            state = self._pc.connectionState
            logger.info("Peer %s connection state: %s", self.remote_peer_id, state)
            if state in ("failed", "closed"):
                self._report_closed()

    def _setup_channel(self, channel: RTCDataChannel) -> None:
        try:
            channel_class = ChannelClass(channel.label)
        except ValueError:
            logger.warning("Ignoring unknown channel %r from %s", channel.label, self.remote_peer_id)
            return
        self._channels[channel_class] = channel

        @channel.on("open")
        def on_open() -> None:
            logger.debug("Channel %s opened with %s", channel.label, self.remote_peer_id)
            self._emit_open(channel_class)

        @channel.on("message")
        def on_message(message: str | bytes) -> None:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            self._emit_message(channel_class, message)

        # Remote-created channels can already be open when announced
        if channel.readyState == "open":
            self._emit_open(channel_class)

    def open_channels(self) -> None:
        self._setup_channel(self._pc.createDataChannel(ChannelClass.RELIABLE.value, ordered=True))
        self._setup_channel(self._pc.createDataChannel(
            ChannelClass.FAST.value, ordered=False, maxRetransmits=0,
        ))

    async def create_offer(self) -> str:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._pc.localDescription.sdp

    async def create_answer(self) -> str:
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._pc.localDescription.sdp

    async def set_remote_description(self, kind: HandshakeType, sdp: str) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type=kind.value))

    async def add_candidate(self, candidate: IceCandidate) -> None:
        text = candidate.candidate
        if text.startswith("candidate:"):
            text = text[len("candidate:"):]
        if not text:
            return  # end-of-candidates marker
        ice = candidate_from_sdp(text)
        ice.sdpMid = candidate.sdp_mid
        ice.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(ice)

    def local_candidates(self) -> list[IceCandidate]:
        return []

    def is_open(self, channel: ChannelClass) -> bool:
        dc = self._channels.get(channel)
        return dc is not None and dc.readyState == "open"

    def send(self, channel: ChannelClass, data: str) -> None:
        self._channels[channel].send(data)

    def _report_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._emit_closed()

    async def close(self) -> None:
        self._closed = True
        await self._pc.close()
