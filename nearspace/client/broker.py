"""Peer-to-peer call setup.

Calls are addressed by presence identity. ``PeerCallBroker`` negotiates one
aiortc RTCPeerConnection per peer and carries the SDP offer/answer over the
presence connection, which the server relays to the target identity.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription

from ..common.constants import CALL_TIMEOUT
from ..common.protocol import CallSignal, MessageType

logger = logging.getLogger(__name__)

SendSignal = Callable[[MessageType, CallSignal], Awaitable[None]]


class CallHungUp(ConnectionError):
    """The session was torn down while the call was being set up."""


class IncomingCall(ABC):
    def __init__(self, caller: str) -> None:
        self.caller = caller

    @abstractmethod
    async def answer(self, stream: MediaStreamTrack) -> MediaStreamTrack:
        """Answer with our stream; returns the caller's stream."""
        ...


class CallBroker(ABC):
    def __init__(self) -> None:
        self.on_call: Callable[[IncomingCall], None] | None = None

    @abstractmethod
    async def call(self, target: str, stream: MediaStreamTrack) -> MediaStreamTrack:
        """Call ``target`` with our stream; returns the answered remote stream."""
        ...

    @abstractmethod
    def handle_signal(self, msg_type: MessageType, signal: CallSignal) -> None:
        """Dispatch a relayed CALL_OFFER / CALL_ANSWER from ``signal.peer``."""
        ...

    @abstractmethod
    def hang_up(self, peer: str) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


class PeerIncomingCall(IncomingCall):
    def __init__(self, broker: PeerCallBroker, caller: str, offer_sdp: str) -> None:
        super().__init__(caller)
        self._broker = broker
        self._offer_sdp = offer_sdp

    async def answer(self, stream: MediaStreamTrack) -> MediaStreamTrack:
        broker = self._broker
        pc = broker._new_session(self.caller)
        remote = _expect_audio_track(pc)
        try:
            # on("track") fires during setRemoteDescription
            await pc.setRemoteDescription(
                RTCSessionDescription(sdp=self._offer_sdp, type="offer")
            )
            pc.addTrack(stream)
            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
            answer_sdp = pc.localDescription.sdp if pc.localDescription else ""
            await broker._send_signal(
                MessageType.CALL_ANSWER, CallSignal(self.caller, answer_sdp)
            )
            return await asyncio.wait_for(remote, broker.timeout)
        except BaseException:
            broker._discard(self.caller, pc)
            raise


class PeerCallBroker(CallBroker):
    def __init__(self, send_signal: SendSignal, timeout: float = CALL_TIMEOUT) -> None:
        super().__init__()
        self._send_signal = send_signal
        self.timeout = timeout
        self._sessions: dict[str, RTCPeerConnection] = {}
        self._answers: dict[str, asyncio.Future[str]] = {}
        self._closing: set[asyncio.Task[None]] = set()

    async def call(self, target: str, stream: MediaStreamTrack) -> MediaStreamTrack:
        pc = self._new_session(target)
        remote = _expect_audio_track(pc)
        answer: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._answers[target] = answer
        try:
            pc.addTrack(stream)
            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
            offer_sdp = pc.localDescription.sdp if pc.localDescription else ""
            await self._send_signal(MessageType.CALL_OFFER, CallSignal(target, offer_sdp))

            answer_sdp = await asyncio.wait_for(answer, self.timeout)
            await pc.setRemoteDescription(
                RTCSessionDescription(sdp=answer_sdp, type="answer")
            )
            return await asyncio.wait_for(remote, self.timeout)
        except BaseException:
            self._discard(target, pc)
            raise
        finally:
            if self._answers.get(target) is answer:
                del self._answers[target]

    def handle_signal(self, msg_type: MessageType, signal: CallSignal) -> None:
        if msg_type == MessageType.CALL_OFFER:
            if self.on_call is None:
                logger.debug(f"No handler for call from {signal.peer}")
                return
            self.on_call(PeerIncomingCall(self, signal.peer, signal.sdp))
        elif msg_type == MessageType.CALL_ANSWER:
            pending = self._answers.get(signal.peer)
            if pending is None or pending.done():
                logger.debug(f"Unexpected answer from {signal.peer}")
                return
            pending.set_result(signal.sdp)

    def hang_up(self, peer: str) -> None:
        pending = self._answers.pop(peer, None)
        if pending is not None and not pending.done():
            pending.set_exception(CallHungUp(peer))
        pc = self._sessions.pop(peer, None)
        if pc is not None:
            self._close_later(pc)

    async def close(self) -> None:
        for peer in list(self._answers):
            self.hang_up(peer)
        sessions = list(self._sessions.values())
        self._sessions.clear()
        await asyncio.gather(*(pc.close() for pc in sessions), return_exceptions=True)

    def _new_session(self, peer: str) -> RTCPeerConnection:
        if peer in self._sessions:
            self.hang_up(peer)
        pc = RTCPeerConnection()
        self._sessions[peer] = pc

        @pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            logger.debug(f"Call with {peer}: {pc.connectionState}")
            if pc.connectionState == "failed":
                self._discard(peer, pc)

        return pc

    def _discard(self, peer: str, pc: RTCPeerConnection) -> None:
        if self._sessions.get(peer) is pc:
            del self._sessions[peer]
        self._close_later(pc)

    def _close_later(self, pc: RTCPeerConnection) -> None:
        task = asyncio.ensure_future(pc.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)


def _expect_audio_track(pc: RTCPeerConnection) -> asyncio.Future[MediaStreamTrack]:
    remote: asyncio.Future[MediaStreamTrack] = asyncio.get_running_loop().create_future()

    @pc.on("track")
    def on_track(track: Any) -> None:
        if track.kind == "audio" and not remote.done():
            remote.set_result(track)

    return remote
