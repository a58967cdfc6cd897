"""Shared fixtures for nearspace tests."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from nearspace.client.broker import CallBroker, IncomingCall
from nearspace.common.protocol import CallSignal, MessageType, read_message


# Mock StreamReader/StreamWriter for protocol tests
class MockStreamReader:
    """Mock asyncio.StreamReader for testing protocol reads."""

    def __init__(self, data: bytes = b"") -> None:
        self._data = data
        self._offset = 0

    def feed_data(self, data: bytes) -> None:
        """Add data to the stream."""
        self._data = self._data[self._offset :] + data
        self._offset = 0

    async def readexactly(self, n: int) -> bytes:
        """Read exactly n bytes."""
        if self._offset + n > len(self._data):
            raise asyncio.IncompleteReadError(
                self._data[self._offset :], n - (len(self._data) - self._offset)
            )
        result = self._data[self._offset : self._offset + n]
        self._offset += n
        return result


class MockStreamWriter:
    """Mock asyncio.StreamWriter for testing protocol writes."""

    def __init__(self) -> None:
        self._data = b""
        self._closed = False

    def write(self, data: bytes) -> None:
        self._data += data

    async def drain(self) -> None:
        pass

    def get_data(self) -> bytes:
        return self._data

    def clear(self) -> None:
        self._data = b""

    def close(self) -> None:
        self._closed = True

    async def wait_closed(self) -> None:
        pass


async def read_all_messages(
    writer: MockStreamWriter,
) -> list[tuple[MessageType, bytes]]:
    """Decode every frame written to a mock writer, then clear it."""
    reader = MockStreamReader(writer.get_data())
    writer.clear()
    messages = []
    while True:
        try:
            messages.append(await read_message(reader))  # type: ignore[arg-type]
        except asyncio.IncompleteReadError:
            return messages


class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Manual clock with a call_later compatible with Throttle."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def clock(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance_to(self, when: float) -> None:
        """Move the clock forward, firing due timers in order."""
        while True:
            due = sorted(
                (t for t in self.pending if t.due <= when), key=lambda t: t.due
            )
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = when


class FakeTrack:
    """Stands in for a remote aiortc MediaStreamTrack."""

    kind = "audio"

    def __init__(self, label: str = "") -> None:
        self.label = label

    async def recv(self) -> Any:
        await asyncio.sleep(3600)


class FakeChannel:
    """Records what the controller does with a peer's audio channel."""

    def __init__(self, identity: str, track: Any) -> None:
        self.identity = identity
        self.track = track
        self.left = 0.0
        self.right = 0.0
        self.closed = False

    def set_gains(self, left: float, right: float) -> None:
        self.left = left
        self.right = right

    def close(self) -> None:
        self.closed = True


class FakeIncomingCall(IncomingCall):
    def __init__(self, caller: str, fail: bool = False) -> None:
        super().__init__(caller)
        self.fail = fail
        self.answered_with: Any = None

    async def answer(self, stream: Any) -> Any:
        if self.fail:
            raise ConnectionError("negotiation failed")
        self.answered_with = stream
        return FakeTrack(f"from-{self.caller}")


class FakeBroker(CallBroker):
    """Broker whose calls complete when the test releases them."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[str] = []
        self.hung_up: list[str] = []
        self.closed = False
        self.failing: set[str] = set()
        self.signals: list[tuple[MessageType, CallSignal]] = []
        self._answers: dict[str, asyncio.Future[Any]] = {}

    async def call(self, target: str, stream: Any) -> Any:
        self.calls.append(target)
        if target in self.failing:
            raise ConnectionError(f"{target} unreachable")
        answer = asyncio.get_running_loop().create_future()
        self._answers[target] = answer
        return await answer

    def answer(self, target: str) -> FakeTrack:
        track = FakeTrack(f"from-{target}")
        self._answers.pop(target).set_result(track)
        return track

    def handle_signal(self, msg_type: MessageType, signal: CallSignal) -> None:
        self.signals.append((msg_type, signal))

    def hang_up(self, peer: str) -> None:
        self.hung_up.append(peer)

    async def close(self) -> None:
        self.closed = True


async def fake_stream() -> FakeTrack:
    return FakeTrack("local")


def sequential_identities(*names: str) -> Callable[[], str]:
    """Identity factory that hands out the given names, then numbered ones."""
    counter = itertools.count(1)
    remaining: Iterator[str] = iter(names)

    def factory() -> str:
        for name in remaining:
            return name
        return f"p{next(counter)}"

    return factory


async def settle() -> None:
    """Let pending tasks run a few steps."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def mock_reader() -> MockStreamReader:
    return MockStreamReader()


@pytest.fixture
def mock_writer() -> MockStreamWriter:
    return MockStreamWriter()


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()
