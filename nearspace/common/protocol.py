"""Wire protocol for client-server communication."""

import enum
import struct
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass


class MessageType(enum.IntEnum):
    ID = 0x01  # Server -> Client: caller's own identity
    PLAYERS = 0x02  # Server -> Client: snapshot of existing participants
    JOIN = 0x03  # Server -> Client: a new participant connected
    POSITION = 0x04  # Client -> Server: x, y; Server -> Client: identity, x, y
    LEAVE = 0x05  # Server -> Client: a participant disconnected
    # Call signalling, relayed by the server and addressed by identity
    CALL_OFFER = 0x10  # SDP offer
    CALL_ANSWER = 0x11  # SDP answer


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0


@dataclass
class PlayerInfo:
    identity: str
    position: Position


@dataclass
class CallSignal:
    peer: str  # Target when sent by a client, source when relayed by the server
    sdp: str


def encode_message(msg_type: MessageType, payload: bytes = b"") -> bytes:
    """Frame a message: 4-byte length, 1-byte type, payload."""
    return struct.pack(">IB", 1 + len(payload), msg_type) + payload


async def read_message(reader: StreamReader) -> tuple[MessageType, bytes]:
    """Read a length-prefixed message from the stream."""
    length_data = await reader.readexactly(4)
    length = struct.unpack(">I", length_data)[0]
    if length < 1:
        raise ValueError("Invalid message length")
    msg_type = struct.unpack("B", await reader.readexactly(1))[0]
    payload = await reader.readexactly(length - 1) if length > 1 else b""
    return MessageType(msg_type), payload


async def write_message(
    writer: StreamWriter, msg_type: MessageType, payload: bytes = b""
) -> None:
    """Write a length-prefixed message to the stream."""
    writer.write(encode_message(msg_type, payload))
    await writer.drain()


def _pack_identity(identity: str) -> bytes:
    identity_bytes = identity.encode("utf-8")
    return struct.pack(">H", len(identity_bytes)) + identity_bytes


def _unpack_identity(data: bytes, offset: int = 0) -> tuple[str, int]:
    (length,) = struct.unpack_from(">H", data, offset)
    offset += 2
    if offset + length > len(data):
        raise ValueError("Truncated identity")
    return data[offset : offset + length].decode("utf-8"), offset + length


def _unpack_position(data: bytes, offset: int) -> tuple[Position, int]:
    x, y = struct.unpack_from(">dd", data, offset)
    return Position(x, y), offset + 16


# ID: identity
def serialize_identity(identity: str) -> bytes:
    return _pack_identity(identity)


def deserialize_identity(data: bytes) -> str:
    identity, _ = _unpack_identity(data)
    return identity


# PLAYERS: count, then (identity, x, y) per player
def serialize_players(players: list[PlayerInfo]) -> bytes:
    result = struct.pack(">H", len(players))
    for p in players:
        result += _pack_identity(p.identity)
        result += struct.pack(">dd", p.position.x, p.position.y)
    return result


def deserialize_players(data: bytes) -> list[PlayerInfo]:
    (count,) = struct.unpack_from(">H", data, 0)
    offset = 2
    players = []
    for _ in range(count):
        identity, offset = _unpack_identity(data, offset)
        position, offset = _unpack_position(data, offset)
        players.append(PlayerInfo(identity, position))
    return players


# JOIN: identity, x, y
def serialize_player_joined(player: PlayerInfo) -> bytes:
    return _pack_identity(player.identity) + struct.pack(
        ">dd", player.position.x, player.position.y
    )


def deserialize_player_joined(data: bytes) -> PlayerInfo:
    identity, offset = _unpack_identity(data)
    position, _ = _unpack_position(data, offset)
    return PlayerInfo(identity, position)


# POSITION (client -> server): x, y
def serialize_position_report(x: float, y: float) -> bytes:
    return struct.pack(">dd", x, y)


def deserialize_position_report(data: bytes) -> tuple[float, float]:
    if len(data) != 16:
        raise ValueError(f"Position report must be 16 bytes, got {len(data)}")
    x, y = struct.unpack(">dd", data)
    return x, y


# POSITION (server -> client): identity, x, y
def serialize_position_relay(identity: str, position: Position) -> bytes:
    return serialize_player_joined(PlayerInfo(identity, position))


def deserialize_position_relay(data: bytes) -> PlayerInfo:
    return deserialize_player_joined(data)


# LEAVE: identity
def serialize_player_left(identity: str) -> bytes:
    return _pack_identity(identity)


def deserialize_player_left(data: bytes) -> str:
    identity, _ = _unpack_identity(data)
    return identity


# CALL_OFFER / CALL_ANSWER: peer identity, SDP (UTF-8, length-prefixed)
def serialize_call_signal(signal: CallSignal) -> bytes:
    sdp_bytes = signal.sdp.encode("utf-8")
    return _pack_identity(signal.peer) + struct.pack(">I", len(sdp_bytes)) + sdp_bytes


def deserialize_call_signal(data: bytes) -> CallSignal:
    peer, offset = _unpack_identity(data)
    (sdp_len,) = struct.unpack_from(">I", data, offset)
    offset += 4
    if offset + sdp_len > len(data):
        raise ValueError("Truncated SDP")
    return CallSignal(peer, data[offset : offset + sdp_len].decode("utf-8"))
