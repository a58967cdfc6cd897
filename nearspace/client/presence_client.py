"""Client: presence link, event dispatch and the frame loop."""

from __future__ import annotations

import asyncio
import logging
import struct
import time
from asyncio import StreamReader, StreamWriter
from typing import TYPE_CHECKING, Any

from ..audio.mixer import ChannelSplitter, stereo_gains
from ..common.constants import (
    FRAME_INTERVAL,
    POINTER_STEP,
    POSITION_LIMIT,
    RECONNECT_DELAY,
)
from ..common.protocol import (
    CallSignal,
    MessageType,
    deserialize_call_signal,
    deserialize_identity,
    deserialize_player_joined,
    deserialize_player_left,
    deserialize_players,
    deserialize_position_relay,
    encode_message,
    read_message,
    serialize_call_signal,
    serialize_position_report,
    write_message,
)
from .audio_capture import LocalAudio
from .broker import CallBroker, PeerCallBroker
from .calls import CallController, OpenChannel
from .input_handler import (
    get_pointer_move,
    is_center_key,
    is_mute_key,
    is_quit_key,
    is_walk_key,
)
from .motion import MotionEngine, Pointer

if TYPE_CHECKING:
    from blessed.keyboard import Keystroke

    from .terminal_ui import TerminalUI

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (
    asyncio.IncompleteReadError,
    ConnectionResetError,
    BrokenPipeError,
    OSError,
)


class PresenceClient:
    def __init__(
        self,
        host: str,
        port: int,
        audio_enabled: bool = True,
        open_channel: OpenChannel = ChannelSplitter.open,
        broker: CallBroker | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.reader: StreamReader | None = None
        self.writer: StreamWriter | None = None
        self.running = False
        self.pointer = Pointer()
        self.engine = MotionEngine(self._report_position)
        self.local_audio = LocalAudio(enabled=audio_enabled)
        if broker is None:
            broker = PeerCallBroker(self._send_signal)
        self.broker = broker
        self.calls = CallController(
            self.engine, self.broker, self.local_audio.get_stream, open_channel
        )
        self.term: Any = None
        self.ui: TerminalUI | None = None

    @property
    def identity(self) -> str | None:
        return self.calls.identity

    async def connect(self) -> bool:
        """Open the presence connection."""
        try:
            self.reader, self.writer = await asyncio.open_connection(
                self.host, self.port
            )
        except OSError as e:
            logger.error(f"Failed to connect to {self.host}:{self.port}: {e}")
            return False
        logger.info(f"Connected to {self.host}:{self.port}")
        return True

    async def run(self) -> None:
        """Main client loop."""
        from blessed import Terminal

        from .terminal_ui import TerminalUI

        self.term = Terminal()
        ui = self.ui = TerminalUI(self.term)
        self.running = True
        receiver_task = asyncio.create_task(self._receive_messages())

        try:
            with self.term.fullscreen(), self.term.cbreak(), self.term.hidden_cursor():
                last = time.monotonic()
                while self.running:
                    while True:
                        key = self.term.inkey(timeout=0)
                        if not key:
                            break
                        self.handle_key(key)

                    now = time.monotonic()
                    self.frame(now - last)
                    last = now
                    self._render()

                    # Let network and call tasks run
                    await asyncio.sleep(FRAME_INTERVAL)
        finally:
            self.running = False
            receiver_task.cancel()
            try:
                await receiver_task
            except asyncio.CancelledError:
                pass
            await self.calls.close()
            self.local_audio.stop()
            if self.writer:
                self.writer.close()
            ui.cleanup()

    def frame(self, dt: float) -> None:
        """Advance motion and refresh every live channel's stereo gains."""
        self.engine.step(dt, self.pointer)
        me = self.engine.me.pos
        for view in self.engine.peers.values():
            if view.audio_channel is not None:
                view.audio_channel.set_gains(
                    *stereo_gains(view.pos.x - me.x, view.pos.y - me.y)
                )

    def handle_key(self, key: Keystroke) -> None:
        if is_quit_key(key):
            self.running = False
        elif is_mute_key(key):
            self.local_audio.set_muted(not self.local_audio.muted)
        elif is_walk_key(key):
            self.pointer.down = not self.pointer.down
        elif is_center_key(key):
            self.pointer.x = self.engine.me.pos.x
            self.pointer.y = self.engine.me.pos.y
        else:
            move = get_pointer_move(key)
            if move is not None:
                dx, dy = move
                self.pointer.x = _clamp(self.pointer.x + dx * POINTER_STEP)
                self.pointer.y = _clamp(self.pointer.y + dy * POINTER_STEP)

    async def handle_server_message(self, msg_type: MessageType, payload: bytes) -> None:
        """Apply one message from the server."""
        try:
            if msg_type == MessageType.ID:
                self.calls.on_identity(deserialize_identity(payload))
            elif msg_type == MessageType.PLAYERS:
                self.calls.on_players(deserialize_players(payload))
            elif msg_type == MessageType.JOIN:
                player = deserialize_player_joined(payload)
                self.calls.on_join(player.identity, player.position)
            elif msg_type == MessageType.POSITION:
                player = deserialize_position_relay(payload)
                self.calls.on_position(player.identity, player.position)
            elif msg_type == MessageType.LEAVE:
                self.calls.on_leave(deserialize_player_left(payload))
            elif msg_type in (MessageType.CALL_OFFER, MessageType.CALL_ANSWER):
                self.broker.handle_signal(msg_type, deserialize_call_signal(payload))
        except (ValueError, struct.error) as e:
            logger.warning(f"Malformed {msg_type.name} from server: {e}")

    async def _receive_messages(self) -> None:
        """Read server messages, reconnecting whenever the link drops."""
        while self.running:
            if self.reader is None:
                await asyncio.sleep(RECONNECT_DELAY)
                await self.connect()
                continue
            try:
                msg_type, payload = await read_message(self.reader)
            except CONNECTION_ERRORS + (ValueError,) as e:
                logger.warning(f"Lost connection to server: {e}")
                self._drop_connection()
                continue
            await self.handle_server_message(msg_type, payload)

    def _drop_connection(self) -> None:
        if self.writer:
            self.writer.close()
        self.reader = None
        self.writer = None

    def _report_position(self, x: float, y: float) -> None:
        if self.writer is None:
            return
        # Write without drain() so the frame loop never blocks on the network
        self.writer.write(
            encode_message(MessageType.POSITION, serialize_position_report(x, y))
        )

    async def _send_signal(self, msg_type: MessageType, signal: CallSignal) -> None:
        if self.writer is None:
            raise ConnectionError("Not connected to the presence server")
        await write_message(self.writer, msg_type, serialize_call_signal(signal))

    def _render(self) -> None:
        if self.ui is None:
            return
        self.ui.render(
            self.engine.me,
            list(self.engine.peers.values()),
            self.pointer,
            self.identity,
            self.local_audio.muted,
            self.local_audio.level,
        )


def _clamp(value: float) -> float:
    return max(-POSITION_LIMIT, min(POSITION_LIMIT, value))
