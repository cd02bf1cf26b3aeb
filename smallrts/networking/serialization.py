"""JSON serialization for relay, handshake and game messages.

Every message is a single JSON object. Relay control messages carry their
tag in "type", game messages in "t". Handshake payloads are the value of a
relay "signal" message's "payload" field and are never inspected by the
relay itself.

Wire formats:
    relay      {"type": "join", "room": "ab12"}
    handshake  {"type": "offer", "sdp": "...", "candidates": [{...}]}
    game       {"t": "in", "cmd": [["move", 50, 60]]}
               {"t": "snap", "tick": 40, "units": [{id, x, y, tx, ty, hp, owner}]}

All decode_* functions raise ValueError on malformed input (bad JSON,
unknown tag, missing or mistyped fields). Field validation is done with
pydantic type adapters built from the protocol dataclasses.
"""

from __future__ import annotations

import json
from dataclasses import fields
from typing import Any

from pydantic import FiniteFloat, TypeAdapter

from smallrts.networking.protocol import (
    ClientMessage,
    CreateRoom,
    GameMessage,
    GameMessageType,
    HandshakePayload,
    IceCandidate,
    InputMessage,
    JoinRoom,
    PeerLeft,
    PeerList,
    RelayError,
    RelayMessageType,
    RoomCreated,
    RoomJoined,
    ServerMessage,
    SignalForward,
    SignalRequest,
    SnapshotMessage,
)
from smallrts.simulation.commands import Command, CommandType


def _dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"))


def _loads_object(raw: str | bytes) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Message is not a JSON object")
    return data


# Wire names that are Python keywords or builtins.
_TO_WIRE = {"self_id": "self", "from_peer": "from"}
_FROM_WIRE = {v: k for k, v in _TO_WIRE.items()}

_ADAPTERS: dict[type, TypeAdapter] = {}


def _adapter(cls: type) -> TypeAdapter:
    adapter = _ADAPTERS.get(cls)
    if adapter is None:
        adapter = _ADAPTERS[cls] = TypeAdapter(cls)
    return adapter


def _validate(cls: type, data: dict[str, Any]) -> Any:
    """Build a protocol dataclass from wire fields, validating types."""
    values = {_FROM_WIRE.get(k, k): v for k, v in data.items()}
    names = {f.name for f in fields(cls)}
    return _adapter(cls).validate_python({k: v for k, v in values.items() if k in names})


# --- Relay control ---

_CLIENT_TYPES: dict[RelayMessageType, type] = {
    RelayMessageType.CREATE: CreateRoom,
    RelayMessageType.JOIN: JoinRoom,
    RelayMessageType.SIGNAL: SignalRequest,
}

_SERVER_TYPES: dict[RelayMessageType, type] = {
    RelayMessageType.CREATED: RoomCreated,
    RelayMessageType.JOINED: RoomJoined,
    RelayMessageType.PEERS: PeerList,
    RelayMessageType.SIGNAL: SignalForward,
    RelayMessageType.LEFT: PeerLeft,
    RelayMessageType.ERROR: RelayError,
}


def encode_relay_message(msg: ClientMessage | ServerMessage) -> str:
    """Encode a relay control message as a JSON object string."""
    obj: dict[str, Any] = {"type": msg.TYPE.value}
    for f in fields(msg):
        value = getattr(msg, f.name)
        if isinstance(value, tuple):
            value = list(value)
        obj[_TO_WIRE.get(f.name, f.name)] = value
    return _dumps(obj)


def _decode_relay(raw: str | bytes, table: dict[RelayMessageType, type]) -> Any:
    data = _loads_object(raw)
    try:
        msg_type = RelayMessageType(data.pop("type", None))
    except ValueError:
        raise ValueError(f"Unknown relay message type: {data!r}") from None
    cls = table.get(msg_type)
    if cls is None:
        raise ValueError(f"Unexpected relay message type: {msg_type.value}")
    return _validate(cls, data)


def decode_client_message(raw: str | bytes) -> ClientMessage:
    """Decode a message sent by a client to the relay."""
    return _decode_relay(raw, _CLIENT_TYPES)


def decode_server_message(raw: str | bytes) -> ServerMessage:
    """Decode a message sent by the relay to a client."""
    return _decode_relay(raw, _SERVER_TYPES)


# --- Handshake ---

_HANDSHAKE = TypeAdapter(HandshakePayload)


def handshake_to_wire(payload: HandshakePayload) -> dict[str, Any]:
    """Convert a handshake payload to the JSON-compatible dict carried by a signal."""
    return {
        "type": payload.type.value,
        "sdp": payload.sdp,
        "candidates": [
            {
                "candidate": c.candidate,
                "sdpMid": c.sdp_mid,
                "sdpMLineIndex": c.sdp_mline_index,
            }
            for c in payload.candidates
        ],
    }


def handshake_from_wire(data: Any) -> HandshakePayload:
    """Validate a signal payload as a handshake payload.

    Raises ValueError if the payload is not a well-formed offer or answer.
    """
    if not isinstance(data, dict):
        raise ValueError("Handshake payload is not an object")
    candidates = data.get("candidates") or []
    if not isinstance(candidates, list):
        raise ValueError("Handshake candidates is not a list")
    normalized = {
        "type": data.get("type"),
        "sdp": data.get("sdp"),
        "candidates": [
            {
                "candidate": c.get("candidate"),
                "sdp_mid": c.get("sdpMid"),
                "sdp_mline_index": c.get("sdpMLineIndex"),
            } if isinstance(c, dict) else c
            for c in candidates
        ],
    }
    return _HANDSHAKE.validate_python(normalized)


# --- Commands ---

_COORDS = TypeAdapter(tuple[FiniteFloat, FiniteFloat])  # inf/nan cannot be rounded
_UNIT_IDS = TypeAdapter(tuple[int, ...])


def encode_command(cmd: Command) -> list[Any]:
    """Encode a command as a tagged array: ["move", x, y, *ids] or ["stop", *ids]."""
    if cmd.command_type == CommandType.MOVE:
        return [cmd.command_type.value, cmd.target_x, cmd.target_y, *cmd.unit_ids]
    return [cmd.command_type.value, *cmd.unit_ids]


def decode_command(data: Any) -> Command:
    """Decode a tagged command array. Raises ValueError if malformed."""
    if not isinstance(data, list) or not data:
        raise ValueError(f"Command is not a non-empty array: {data!r}")
    tag, *args = data
    try:
        command_type = CommandType(tag)
    except ValueError:
        raise ValueError(f"Unknown command: {tag!r}") from None
    if command_type == CommandType.MOVE:
        if len(args) < 2:
            raise ValueError("move requires x and y")
        x, y = _COORDS.validate_python(tuple(args[:2]))
        unit_ids = _UNIT_IDS.validate_python(tuple(args[2:]))
        return Command.move(round(x), round(y), unit_ids)
    return Command.stop(_UNIT_IDS.validate_python(tuple(args)))


# --- Game envelopes ---

_SNAPSHOT = TypeAdapter(SnapshotMessage)


def encode_game_message(msg: GameMessage) -> str:
    """Encode a game message as a JSON object string."""
    if isinstance(msg, InputMessage):
        return _dumps({
            "t": msg.TYPE.value,
            "cmd": [encode_command(c) for c in msg.commands],
        })
    if isinstance(msg, SnapshotMessage):
        return _dumps({
            "t": msg.TYPE.value,
            "tick": msg.tick,
            "units": [
                {
                    "id": u.id, "x": u.x, "y": u.y, "tx": u.tx, "ty": u.ty,
                    "hp": u.hp, "owner": u.owner,
                }
                for u in msg.units
            ],
        })
    raise TypeError(f"Not a game message: {msg!r}")


def decode_game_message(raw: str | bytes) -> GameMessage:
    """Decode and validate a game message received on a data channel."""
    data = _loads_object(raw)
    try:
        msg_type = GameMessageType(data.get("t"))
    except ValueError:
        raise ValueError(f"Unknown game message type: {data.get('t')!r}") from None

    if msg_type == GameMessageType.INPUT:
        cmds = data.get("cmd")
        if not isinstance(cmds, list):
            raise ValueError("Input message without command list")
        return InputMessage(commands=tuple(decode_command(c) for c in cmds))
    if msg_type == GameMessageType.SNAPSHOT:
        return _SNAPSHOT.validate_python({
            "tick": data.get("tick"),
            "units": data.get("units"),
        })
    raise ValueError(f"Unhandled game message type: {msg_type.value}")
