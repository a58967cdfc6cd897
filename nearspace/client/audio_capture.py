"""Microphone capture and the shared local audio stream."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable

import numpy as np
import numpy.typing as npt
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaRelay
from av.error import FFmpegError

from ..audio.backend import AudioInputStream, create_input_stream
from ..audio.webrtc_tracks import MicrophoneTrack

logger = logging.getLogger(__name__)


class AudioCapture:
    """Reads microphone frames on a background thread.

    With WebRTC the Opus encoding is done by aiortc, so raw PCM is handed
    straight to the callback.
    """

    def __init__(self, on_frame: Callable[[npt.NDArray[np.float32]], None]) -> None:
        self.on_frame = on_frame
        self._stream: AudioInputStream | None = None
        self._running = False
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stream = create_input_stream(stream_name="microphone")
        self._stream.start()
        self._running = True
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._stream:
            self._stream.stop()
            self._stream = None

    def _capture_loop(self) -> None:
        while self._running and self._stream is not None:
            pcm = self._stream.read()
            if pcm is None:
                time.sleep(0.001)
                continue
            self.on_frame(pcm.flatten())


class LocalAudio:
    """Lazily opened microphone, shared by every call through a MediaRelay."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._track: MicrophoneTrack | None = None
        self._capture: AudioCapture | None = None
        self._relay = MediaRelay()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._muted = False

    @property
    def level(self) -> float:
        return self._track.last_level if self._track else 0.0

    @property
    def muted(self) -> bool:
        return self._muted

    def set_muted(self, muted: bool) -> None:
        self._muted = muted
        if self._track:
            self._track.muted = muted

    async def get_stream(self) -> MediaStreamTrack:
        """A fresh subscription to the local microphone track."""
        if self._track is None:
            self._track = MicrophoneTrack()
            self._track.muted = self._muted
            self._loop = asyncio.get_running_loop()
            if self.enabled:
                self._start_capture()
        return self._relay.subscribe(self._track)

    def _start_capture(self) -> None:
        capture = AudioCapture(self._on_captured)
        try:
            capture.start()
        except (OSError, FFmpegError, NotImplementedError) as e:
            # The track still sends silence, so calls go ahead
            logger.error(f"Microphone unavailable: {e}")
            return
        self._capture = capture

    def _on_captured(self, pcm: npt.NDArray[np.float32]) -> None:
        """Called from the capture thread."""
        if self._loop is None or self._track is None:
            return
        self._loop.call_soon_threadsafe(self._track.feed_audio, pcm)

    def stop(self) -> None:
        if self._capture:
            self._capture.stop()
            self._capture = None
        if self._track:
            self._track.stop()
            self._track = None
