"""Tests for the client's connection handling and key dispatch."""

from __future__ import annotations

import asyncio

import pytest
from blessed.keyboard import Keystroke

from nearspace.client import presence_client
from nearspace.client.presence_client import PresenceClient
from nearspace.common.protocol import (
    CallSignal,
    MessageType,
    PlayerInfo,
    Position,
    deserialize_call_signal,
    deserialize_position_report,
    encode_message,
    serialize_identity,
)

from tests.conftest import (
    FakeBroker,
    FakeChannel,
    FakeTrack,
    MockStreamReader,
    MockStreamWriter,
    read_all_messages,
)


@pytest.fixture
def client(broker: FakeBroker) -> PresenceClient:
    return PresenceClient(
        "127.0.0.1", 0, audio_enabled=False, open_channel=FakeChannel, broker=broker
    )


class TestReconnect:
    """Tests for the receive loop dropping and reacquiring the link."""

    @pytest.mark.asyncio
    async def test_eof_reconnects_under_new_identity(
        self,
        client: PresenceClient,
        broker: FakeBroker,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A lost link is closed, reopened, and the old session torn down."""
        monkeypatch.setattr(presence_client, "RECONNECT_DELAY", 0)
        client.calls.on_identity("a1")
        client.calls.on_players([PlayerInfo("b1", Position(10.0, 0.0))])
        channel = FakeChannel("b1", FakeTrack("from-b1"))
        client.engine.peers["b1"].audio_channel = channel  # type: ignore[assignment]

        old_writer = MockStreamWriter()
        client.reader = MockStreamReader(b"")  # type: ignore[assignment]
        client.writer = old_writer  # type: ignore[assignment]
        writers: list[MockStreamWriter] = []

        async def reconnect() -> bool:
            if writers:
                # Second drop: stop the loop instead of connecting again
                client.running = False
                return False
            writers.append(MockStreamWriter())
            client.reader = MockStreamReader(  # type: ignore[assignment]
                encode_message(MessageType.ID, serialize_identity("a2"))
            )
            client.writer = writers[0]  # type: ignore[assignment]
            return True

        monkeypatch.setattr(client, "connect", reconnect)
        client.running = True
        await asyncio.wait_for(client._receive_messages(), timeout=1.0)

        assert old_writer._closed
        assert len(writers) == 1
        assert client.identity == "a2"
        assert client.engine.peers == {}
        assert channel.closed
        assert "b1" in broker.hung_up

    @pytest.mark.asyncio
    async def test_malformed_frame_drops_connection(
        self, client: PresenceClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A frame with an unknown type is treated as a lost link."""
        monkeypatch.setattr(presence_client, "RECONNECT_DELAY", 0)
        writer = MockStreamWriter()
        reader = MockStreamReader(b"\x00\x00\x00\x01\x7f")
        client.reader = reader  # type: ignore[assignment]
        client.writer = writer  # type: ignore[assignment]

        async def give_up() -> bool:
            client.running = False
            return False

        monkeypatch.setattr(client, "connect", give_up)
        client.running = True
        await asyncio.wait_for(client._receive_messages(), timeout=1.0)

        assert writer._closed
        assert client.reader is None
        assert client.writer is None


class TestHandleKey:
    """Tests for keyboard dispatch."""

    def test_pointer_moves_by_step(self, client: PresenceClient) -> None:
        client.handle_key(Keystroke("d"))
        client.handle_key(Keystroke("w"))
        assert (client.pointer.x, client.pointer.y) == (8.0, -8.0)

    def test_arrow_key_moves_pointer(self, client: PresenceClient) -> None:
        client.handle_key(Keystroke("\x1b[D", code=260, name="KEY_LEFT"))
        assert (client.pointer.x, client.pointer.y) == (-8.0, 0.0)

    def test_pointer_clamped_to_world(self, client: PresenceClient) -> None:
        """The pointer never leaves the world bounds."""
        client.pointer.x = 198.0
        client.pointer.y = -196.0
        client.handle_key(Keystroke("d"))
        client.handle_key(Keystroke("k"))
        assert (client.pointer.x, client.pointer.y) == (200.0, -200.0)

    def test_space_toggles_walking(self, client: PresenceClient) -> None:
        client.handle_key(Keystroke(" "))
        assert client.pointer.down
        client.handle_key(Keystroke(" "))
        assert not client.pointer.down

    def test_center_on_self(self, client: PresenceClient) -> None:
        client.engine.me.pos = Position(30.0, -40.0)
        client.pointer.x = 150.0
        client.handle_key(Keystroke("c"))
        assert (client.pointer.x, client.pointer.y) == (30.0, -40.0)

    def test_mute_toggles(self, client: PresenceClient) -> None:
        client.handle_key(Keystroke("m"))
        assert client.local_audio.muted
        client.handle_key(Keystroke("M"))
        assert not client.local_audio.muted

    def test_quit(self, client: PresenceClient) -> None:
        client.running = True
        client.handle_key(Keystroke("q"))
        assert not client.running

    def test_unmapped_key_ignored(self, client: PresenceClient) -> None:
        client.handle_key(Keystroke("x"))
        assert (client.pointer.x, client.pointer.y, client.pointer.down) == (
            0.0,
            0.0,
            False,
        )


class TestOutbound:
    """Tests for frames the client writes to the server."""

    def test_report_without_connection(self, client: PresenceClient) -> None:
        """Reports made while disconnected are dropped silently."""
        client._report_position(1.0, 2.0)
        assert client.writer is None

    @pytest.mark.asyncio
    async def test_report_writes_position_frame(self, client: PresenceClient) -> None:
        writer = MockStreamWriter()
        client.writer = writer  # type: ignore[assignment]
        client._report_position(1.5, -2.0)

        messages = await read_all_messages(writer)
        assert [t for t, _ in messages] == [MessageType.POSITION]
        assert deserialize_position_report(messages[0][1]) == (1.5, -2.0)

    @pytest.mark.asyncio
    async def test_signal_requires_connection(self, client: PresenceClient) -> None:
        with pytest.raises(ConnectionError):
            await client._send_signal(MessageType.CALL_OFFER, CallSignal("b1", "v=0"))

    @pytest.mark.asyncio
    async def test_signal_written(self, client: PresenceClient) -> None:
        writer = MockStreamWriter()
        client.writer = writer  # type: ignore[assignment]
        await client._send_signal(MessageType.CALL_ANSWER, CallSignal("b1", "v=0"))

        messages = await read_all_messages(writer)
        assert [t for t, _ in messages] == [MessageType.CALL_ANSWER]
        assert deserialize_call_signal(messages[0][1]) == CallSignal("b1", "v=0")
