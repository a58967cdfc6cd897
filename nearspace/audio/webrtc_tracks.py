"""WebRTC audio track implementations for aiortc."""

from __future__ import annotations

import asyncio
import fractions
import logging
from typing import Any

import av
import numpy as np
import numpy.typing as npt
from aiortc import MediaStreamTrack

from ..common.constants import FRAME_SIZE, SAMPLE_RATE
from .pcm import float32_to_int16

logger = logging.getLogger(__name__)


class MicrophoneTrack(MediaStreamTrack):
    """Outbound audio track fed with captured microphone frames.

    Sends silence whenever no captured frame is ready, so a missing or
    muted microphone still yields a live track.
    """

    kind = "audio"

    def __init__(self) -> None:
        super().__init__()
        self._queue: asyncio.Queue[npt.NDArray[np.float32]] = asyncio.Queue(maxsize=10)
        self._timestamp = 0
        self.muted = False
        # Peak level of the last captured frame, for the UI
        self.last_level: float = 0.0
        self._drop_count = 0

    def feed_audio(self, pcm_data: npt.NDArray[np.float32]) -> None:
        """Queue a captured frame. Must be called on the event loop thread."""
        self.last_level = float(np.abs(pcm_data).max()) if len(pcm_data) else 0.0
        try:
            self._queue.put_nowait(pcm_data)
        except asyncio.QueueFull:
            self._drop_count += 1
            if self._drop_count % 50 == 1:
                logger.debug(f"MicrophoneTrack: dropped {self._drop_count} frames")

    async def recv(self) -> Any:
        try:
            pcm_data = await asyncio.wait_for(self._queue.get(), timeout=0.1)
        except asyncio.TimeoutError:
            pcm_data = np.zeros(FRAME_SIZE, dtype=np.float32)
        if self.muted:
            pcm_data = np.zeros(len(pcm_data), dtype=np.float32)

        pcm_int16 = float32_to_int16(pcm_data)
        frame = av.AudioFrame(format="s16", layout="mono", samples=len(pcm_int16))
        frame.sample_rate = SAMPLE_RATE
        frame.pts = self._timestamp
        frame.time_base = fractions.Fraction(1, SAMPLE_RATE)
        frame.planes[0].update(pcm_int16.tobytes())
        self._timestamp += len(pcm_int16)
        return frame
