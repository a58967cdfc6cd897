"""Spatial stereo mixing of peer voices."""

from __future__ import annotations

import asyncio
import logging
import math

from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError
from av.error import FFmpegError

from ..common.constants import AUDIO_FULL_VOLUME_DISTANCE, AUDIO_MAX_DISTANCE
from .backend import AudioOutputStream, create_output_stream
from .pcm import frame_to_mono, interleave_stereo

logger = logging.getLogger(__name__)


def stereo_gains(
    dx: float,
    dy: float,
    near: float = AUDIO_FULL_VOLUME_DISTANCE,
    cutoff: float = AUDIO_MAX_DISTANCE,
) -> tuple[float, float]:
    """(left, right) gains for a source at offset (dx, dy) from the listener.

    Full volume on both sides within ``near``, silence from ``cutoff`` on, a
    linear falloff in between. The side the source lies on gets more; the
    sin term keeps both ears live when the source is straight ahead/behind.
    """
    if near >= cutoff:
        raise ValueError(f"near ({near}) must be less than cutoff ({cutoff})")
    distance = math.hypot(dx, dy)
    if distance >= cutoff:
        return 0.0, 0.0
    if distance <= near:
        return 1.0, 1.0

    scale = 1.0 - (distance - near) / (cutoff - near)
    theta = math.atan2(dy, dx)
    cos_t = math.cos(theta)
    sin_sq = math.sin(theta) ** 2
    left = (max(-cos_t, 0.0) ** 2 + sin_sq) * scale
    right = (max(cos_t, 0.0) ** 2 + sin_sq) * scale
    return min(left, 1.0), min(right, 1.0)


class ChannelSplitter:
    """Plays one peer's inbound track as stereo with a gain per side.

    Gains are set from the render loop every frame and read by the receive
    task as each audio frame arrives.
    """

    def __init__(
        self, identity: str, track: MediaStreamTrack, output: AudioOutputStream
    ) -> None:
        self.identity = identity
        self.track = track
        self.left = 0.0
        self.right = 0.0
        self.closed = False
        self._output = output
        self._task: asyncio.Task[None] | None = None
        self._stopping: asyncio.Future[None] | None = None

    @classmethod
    def open(cls, identity: str, track: MediaStreamTrack) -> ChannelSplitter:
        """Splitter on the default output device, already receiving."""
        output = create_output_stream(stream_name=f"peer:{identity[:8]}", channels=2)
        splitter = cls(identity, track, output)
        splitter.start()
        return splitter

    def set_gains(self, left: float, right: float) -> None:
        self.left = left
        self.right = right

    def start(self) -> None:
        if self.closed or self._task is not None:
            return
        try:
            self._output.start()
        except (OSError, FFmpegError, NotImplementedError) as e:
            # Keep consuming the track so the peer connection does not stall
            logger.error(f"Audio output for {self.identity} unavailable: {e}")
        self._task = asyncio.create_task(self._receive_loop())

    def close(self) -> None:
        """Stop receiving and release the output. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        if self._task is not None:
            self._task.cancel()
            self._task = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._output.stop()
        else:
            # Stopping joins the device thread, so keep it off the loop
            self._stopping = loop.run_in_executor(None, self._output.stop)
        logger.debug(f"Closed audio channel for {self.identity}")

    async def wait_closed(self) -> None:
        """Wait until the output device has been released."""
        if self._stopping is not None:
            await self._stopping

    async def _receive_loop(self) -> None:
        while not self.closed:
            try:
                frame = await self.track.recv()
            except MediaStreamError:
                logger.debug(f"Audio track from {self.identity} ended")
                break
            mono = frame_to_mono(frame)
            self._output.write(interleave_stereo(mono, self.left, self.right))
