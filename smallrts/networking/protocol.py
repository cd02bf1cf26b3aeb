"""Network protocol definitions.

Defines the three closed message families exchanged by SmallRTS and their
field layout. The JSON encoding lives in serialization.py; these types are
the shared contract between the relay, the rendezvous client, the connection
orchestrator and the sync engine.

Families:
    Relay control   client <-> relay, over the signaling websocket.
    Handshake       opaque to the relay, meaningful to the orchestrator.
    Game            peer <-> peer, over the direct data channels only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Union

from smallrts.config import FAST_LABEL, RELIABLE_LABEL
from smallrts.simulation.commands import Command

HOST_TARGET = "host"  # signal destination alias for the room's host


class ChannelClass(str, Enum):
    """The two logical channels opened between every pair of peers."""
    RELIABLE = RELIABLE_LABEL  # ordered, guaranteed delivery (snapshots)
    FAST = FAST_LABEL          # unordered, no retransmits (inputs)


# --- Relay control ---

class RelayMessageType(str, Enum):
    """Wire tags of relay control messages (the "type" field)."""
    CREATE = "create"     # client -> relay
    CREATED = "created"   # relay -> client
    JOIN = "join"         # client -> relay
    JOINED = "joined"     # relay -> client
    PEERS = "peers"       # relay -> client
    SIGNAL = "signal"     # both directions, different fields
    LEFT = "left"         # relay -> client
    ERROR = "error"       # relay -> client


@dataclass(frozen=True, slots=True)
class CreateRoom:
    """Request a new room. The sender becomes its host."""
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.CREATE


@dataclass(frozen=True, slots=True)
class RoomCreated:
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.CREATED
    room: str
    self_id: str  # "self" on the wire


@dataclass(frozen=True, slots=True)
class JoinRoom:
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.JOIN
    room: str


@dataclass(frozen=True, slots=True)
class RoomJoined:
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.JOINED
    room: str
    self_id: str


@dataclass(frozen=True, slots=True)
class PeerList:
    """Full membership of a room in join order. Index 0 is the host."""
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.PEERS
    room: str
    peers: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SignalRequest:
    """Client asks the relay to forward an opaque payload."""
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.SIGNAL
    room: str
    to: str  # peer id or HOST_TARGET
    payload: Any


@dataclass(frozen=True, slots=True)
class SignalForward:
    """Relay delivers a payload, tagged with the sender's peer id."""
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.SIGNAL
    from_peer: str  # "from" on the wire
    payload: Any


@dataclass(frozen=True, slots=True)
class PeerLeft:
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.LEFT
    peer: str


@dataclass(frozen=True, slots=True)
class RelayError:
    TYPE: ClassVar[RelayMessageType] = RelayMessageType.ERROR
    code: str


ERROR_NOT_FOUND = "not_found"

# Messages a client may send to the relay.
ClientMessage = Union[CreateRoom, JoinRoom, SignalRequest]
# Messages the relay sends to a client.
ServerMessage = Union[RoomCreated, RoomJoined, PeerList, SignalForward, PeerLeft, RelayError]


# --- Handshake payloads ---

class HandshakeType(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"


@dataclass(frozen=True, slots=True)
class IceCandidate:
    """A network candidate in browser form (candidate, sdpMid, sdpMLineIndex)."""
    candidate: str
    sdp_mid: str | None = None
    sdp_mline_index: int | None = None


@dataclass(frozen=True, slots=True)
class HandshakePayload:
    """Session description plus any candidates gathered so far."""
    type: HandshakeType
    sdp: str
    candidates: tuple[IceCandidate, ...] = ()


# --- Game envelopes ---

class GameMessageType(str, Enum):
    """Wire tags of game messages (the "t" field)."""
    INPUT = "in"      # follower -> host, fast channel
    SNAPSHOT = "snap"  # host -> follower, reliable channel


@dataclass(frozen=True, slots=True)
class UnitDTO:
    """Serialized unit. Coordinates are rounded to integers."""
    id: int
    x: int
    y: int
    tx: int
    ty: int
    hp: int
    owner: str


@dataclass(frozen=True, slots=True)
class InputMessage:
    TYPE: ClassVar[GameMessageType] = GameMessageType.INPUT
    commands: tuple[Command, ...]  # "cmd" on the wire


@dataclass(frozen=True, slots=True)
class SnapshotMessage:
    TYPE: ClassVar[GameMessageType] = GameMessageType.SNAPSHOT
    tick: int
    units: tuple[UnitDTO, ...]


GameMessage = Union[InputMessage, SnapshotMessage]
