"""Presence relay: roster membership and position fan-out."""

from __future__ import annotations

import asyncio
import logging
import struct
from asyncio import StreamReader, StreamWriter

from ..common.protocol import (
    CallSignal,
    MessageType,
    PlayerInfo,
    Position,
    deserialize_call_signal,
    deserialize_position_report,
    encode_message,
    read_message,
    serialize_call_signal,
    serialize_identity,
    serialize_player_joined,
    serialize_player_left,
    serialize_players,
    serialize_position_relay,
)
from .roster import Roster

logger = logging.getLogger(__name__)

# Errors that mean the peer went away
CONNECTION_ERRORS = (
    asyncio.IncompleteReadError,
    ConnectionResetError,
    BrokenPipeError,
    OSError,
)


class PresenceServer:
    """Thin relay around a Roster.

    Every handler writes all of its frames before yielding to the loop, so
    each connection sees events in the order they were handled.
    """

    def __init__(self, host: str, port: int, roster: Roster | None = None) -> None:
        self.host = host
        self.port = port
        self.roster = roster if roster is not None else Roster()
        self.connections: dict[str, StreamWriter] = {}

    async def start(self) -> None:
        server = await asyncio.start_server(
            self.handle_client, self.host, self.port, reuse_address=True
        )
        addr = server.sockets[0].getsockname()
        logger.info(f"Presence server listening on {addr[0]}:{addr[1]}")
        async with server:
            await server.serve_forever()

    async def handle_client(self, reader: StreamReader, writer: StreamWriter) -> None:
        identity = await self.register(writer)
        try:
            while True:
                msg_type, payload = await read_message(reader)
                await self.handle_message(identity, msg_type, payload)
        except CONNECTION_ERRORS:
            pass
        except ValueError as e:
            # Bad length or unknown message type: the stream is out of sync
            logger.warning(f"Dropping {identity}: {e}")
        finally:
            await self.unregister(identity)
            writer.close()
            try:
                await writer.wait_closed()
            except CONNECTION_ERRORS:
                pass

    async def register(self, writer: StreamWriter) -> str:
        """Admit a connection: identity and snapshot to it, join to everyone else."""
        identity = self.roster.connect()
        existing = self.roster.snapshot(excluding=identity)
        # Newcomers always start at the origin
        joined = PlayerInfo(identity, Position())

        writer.write(encode_message(MessageType.ID, serialize_identity(identity)))
        writer.write(encode_message(MessageType.PLAYERS, serialize_players(existing)))
        self.connections[identity] = writer
        logger.info(f"Participant connected: {identity} ({len(self.roster)} online)")

        await self._broadcast(
            MessageType.JOIN, serialize_player_joined(joined), identity
        )
        await self._drain(writer)
        return identity

    async def unregister(self, identity: str) -> None:
        """Forget a connection. Late or repeated calls are no-ops."""
        self.connections.pop(identity, None)
        if not self.roster.disconnect(identity):
            return
        logger.info(f"Participant disconnected: {identity} ({len(self.roster)} online)")
        await self._broadcast(MessageType.LEAVE, serialize_player_left(identity))

    async def handle_message(
        self, identity: str, msg_type: MessageType, payload: bytes
    ) -> None:
        if msg_type == MessageType.POSITION:
            await self._handle_position(identity, payload)
        elif msg_type in (MessageType.CALL_OFFER, MessageType.CALL_ANSWER):
            await self._relay_call_signal(identity, msg_type, payload)
        else:
            logger.debug(f"Ignoring {msg_type.name} from {identity}")

    async def _handle_position(self, identity: str, payload: bytes) -> None:
        try:
            x, y = deserialize_position_report(payload)
        except (ValueError, struct.error):
            return
        position = self.roster.update_position(identity, x, y)
        if position is None:
            return
        await self._broadcast(
            MessageType.POSITION, serialize_position_relay(identity, position), identity
        )

    async def _relay_call_signal(
        self, identity: str, msg_type: MessageType, payload: bytes
    ) -> None:
        try:
            signal = deserialize_call_signal(payload)
        except (ValueError, struct.error, UnicodeDecodeError) as e:
            logger.debug(f"Malformed {msg_type.name} from {identity}: {e}")
            return
        target = self.connections.get(signal.peer)
        if target is None or signal.peer == identity:
            logger.debug(f"{msg_type.name} from {identity} to absent {signal.peer}")
            return
        target.write(
            encode_message(msg_type, serialize_call_signal(CallSignal(identity, signal.sdp)))
        )
        await self._drain(target)

    async def _broadcast(
        self, msg_type: MessageType, payload: bytes, exclude: str | None = None
    ) -> None:
        frame = encode_message(msg_type, payload)
        writers = [w for ident, w in self.connections.items() if ident != exclude]
        for writer in writers:
            writer.write(frame)
        for writer in writers:
            await self._drain(writer)

    async def _drain(self, writer: StreamWriter) -> None:
        try:
            await writer.drain()
        except CONNECTION_ERRORS:
            # The reader side of that connection handles the disconnect
            pass
