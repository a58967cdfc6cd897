"""Starts and stops peer audio calls as the roster changes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from aiortc import MediaStreamTrack

from ..audio.mixer import ChannelSplitter
from ..common.protocol import PlayerInfo, Position
from .broker import CallBroker, IncomingCall
from .motion import MotionEngine

logger = logging.getLogger(__name__)

GetStream = Callable[[], Awaitable[MediaStreamTrack]]
OpenChannel = Callable[[str, MediaStreamTrack], ChannelSplitter]


class CallController:
    """Keeps peer views, calls and audio channels in step with presence events.

    Existing participants call each newcomer; the newcomer only answers.
    Call attempts run as tasks and are abandoned, not awaited, when the
    peer leaves. Failed calls are logged and never retried.
    """

    def __init__(
        self,
        engine: MotionEngine,
        broker: CallBroker,
        get_stream: GetStream,
        open_channel: OpenChannel = ChannelSplitter.open,
    ) -> None:
        self.engine = engine
        self.broker = broker
        self.identity: str | None = None
        self._get_stream = get_stream
        self._open_channel = open_channel
        self._calls: dict[str, asyncio.Task[None]] = {}
        broker.on_call = self.handle_incoming

    def on_identity(self, identity: str) -> bool:
        """Record our identity. A different identity means the connection was
        lost and reacquired: everything from the old session is torn down.
        Returns True if a reset happened."""
        previous = self.identity
        self.identity = identity
        if previous is None or previous == identity:
            return False
        logger.info(f"Identity replaced: {previous} -> {identity}")
        self.reset()
        return True

    def on_players(self, players: list[PlayerInfo]) -> None:
        for player in players:
            if player.identity != self.identity:
                self.engine.add_peer(player.identity, player.position)

    def on_join(self, identity: str, position: Position) -> None:
        if identity == self.identity:
            return
        self.engine.add_peer(identity, position)
        logger.info(f"Calling {identity}")
        self._track_call(identity, self._start_call(identity))

    def on_position(self, identity: str, position: Position) -> None:
        self.engine.set_goal(identity, position)

    def on_leave(self, identity: str) -> None:
        task = self._calls.pop(identity, None)
        if task is not None:
            task.cancel()
        self.broker.hang_up(identity)
        view = self.engine.remove_peer(identity)
        if view is not None and view.audio_channel is not None:
            view.audio_channel.close()
            view.audio_channel = None
        logger.info(f"Call dropped from {identity}")

    def handle_incoming(self, call: IncomingCall) -> None:
        logger.info(f"Call from {call.caller}")
        self._track_call(call.caller, self._answer_call(call))

    def reset(self) -> None:
        """Abandon all calls, close all channels and forget all peers."""
        peers = set(self._calls) | set(self.engine.peers)
        for task in self._calls.values():
            task.cancel()
        self._calls.clear()
        for identity in peers:
            self.broker.hang_up(identity)
        for view in self.engine.peers.values():
            if view.audio_channel is not None:
                view.audio_channel.close()
                view.audio_channel = None
        self.engine.clear()

    async def close(self) -> None:
        self.reset()
        await self.broker.close()

    def _track_call(self, identity: str, coro: Awaitable[None]) -> None:
        previous = self._calls.pop(identity, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.ensure_future(coro)
        self._calls[identity] = task

        def forget(done: asyncio.Task[None]) -> None:
            if self._calls.get(identity) is done:
                del self._calls[identity]

        task.add_done_callback(forget)

    async def _start_call(self, identity: str) -> None:
        try:
            stream = await self._get_stream()
            remote = await self.broker.call(identity, stream)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Call to {identity} failed: {type(e).__name__}: {e}")
            return
        self._attach(identity, remote)

    async def _answer_call(self, call: IncomingCall) -> None:
        try:
            stream = await self._get_stream()
            remote = await call.answer(stream)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Answering {call.caller} failed: {type(e).__name__}: {e}")
            return
        self._attach(call.caller, remote)

    def _attach(self, identity: str, remote: MediaStreamTrack) -> None:
        view = self.engine.peers.get(identity)
        if view is None:
            # Answer arrived after the peer left
            logger.debug(f"No view for {identity}, dropping its stream")
            return
        try:
            channel = self._open_channel(identity, remote)
        except Exception as e:
            logger.error(f"Audio channel for {identity} failed: {e}")
            return
        if view.audio_channel is not None:
            view.audio_channel.close()
        view.audio_channel = channel
        logger.info(f"Created stream for {identity}")
