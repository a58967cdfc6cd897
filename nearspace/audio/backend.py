"""Audio device streams.

PulseAudio/PipeWire (with PulseAudio compatibility) is reached through
PyAV's ffmpeg ``pulse`` device, so every peer shows up as its own named
stream in mixer applications.
"""

from __future__ import annotations

import logging
import queue
import sys
import threading
from abc import ABC, abstractmethod
from typing import Any

import av
import numpy as np
import numpy.typing as npt
from av.error import FFmpegError

from ..common.constants import FRAME_SIZE, SAMPLE_RATE
from .pcm import frame_to_mono

logger = logging.getLogger(__name__)

# Application name shown in mixer
APPLICATION_NAME = "nearspace"


class AudioOutputStream(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def write(self, data: npt.NDArray[np.float32]) -> None:
        """Queue float32 samples (interleaved when stereo) for playback."""
        ...


class AudioInputStream(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def read(self) -> npt.NDArray[np.float32] | None:
        """Next captured mono frame, or None if nothing is buffered."""
        ...


def _layout(channels: int) -> str:
    return "mono" if channels == 1 else "stereo"


def _require_pulse() -> None:
    if sys.platform != "linux":
        raise NotImplementedError(f"No audio backend for platform: {sys.platform}")


class PulseOutputStream(AudioOutputStream):
    """Plays float32 frames on a background thread."""

    def __init__(
        self, stream_name: str, samplerate: int = SAMPLE_RATE, channels: int = 2
    ) -> None:
        self.stream_name = stream_name
        self.samplerate = samplerate
        self.channels = channels
        self._container: Any | None = None
        self._stream: Any | None = None
        self._running = False
        self._thread: threading.Thread | None = None
        # ~200ms of 20ms frames
        self._queue: queue.Queue[npt.NDArray[np.float32] | None] = queue.Queue(
            maxsize=10
        )
        self._pts = 0
        self._drop_count = 0

    def start(self) -> None:
        if self._running:
            return
        self._container = av.open(
            "default",
            mode="w",
            format="pulse",
            options={"name": f"{APPLICATION_NAME}:{self.stream_name}"},
        )
        self._stream = self._container.add_stream(
            "pcm_f32le", rate=self.samplerate, layout=_layout(self.channels)
        )
        self._running = True
        self._thread = threading.Thread(target=self._write_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._container:
            try:
                self._container.close()
            except (OSError, FFmpegError) as e:
                logger.debug(f"Closing output {self.stream_name}: {e}")
            self._container = None
            self._stream = None

    def write(self, data: npt.NDArray[np.float32]) -> None:
        if not self._running:
            return
        try:
            self._queue.put_nowait(data)
        except queue.Full:
            self._drop_count += 1
            if self._drop_count % 50 == 1:
                logger.debug(
                    f"Output {self.stream_name}: dropped {self._drop_count} frames"
                )

    def _write_loop(self) -> None:
        while self._running:
            try:
                data = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            if data is None or self._stream is None or self._container is None:
                break
            frame = av.AudioFrame.from_ndarray(
                data.reshape(1, -1), format="flt", layout=_layout(self.channels)
            )
            frame.sample_rate = self.samplerate
            frame.pts = self._pts
            self._pts += len(data) // self.channels
            try:
                for packet in self._stream.encode(frame):
                    self._container.mux(packet)
            except (OSError, FFmpegError) as e:
                logger.error(f"Output {self.stream_name} failed: {e}")
                break


class PulseInputStream(AudioInputStream):
    """Captures mono float32 frames on a background thread."""

    def __init__(self, stream_name: str, samplerate: int = SAMPLE_RATE) -> None:
        self.stream_name = stream_name
        self.samplerate = samplerate
        self._container: Any | None = None
        self._running = False
        self._thread: threading.Thread | None = None
        # Small buffer to keep latency low (~100ms)
        self._queue: queue.Queue[npt.NDArray[np.float32]] = queue.Queue(maxsize=5)

    def start(self) -> None:
        if self._running:
            return
        self._container = av.open(
            "default",
            mode="r",
            format="pulse",
            options={
                "name": f"{APPLICATION_NAME}:{self.stream_name}",
                "sample_rate": str(self.samplerate),
                "channels": "1",
                # int16 bytes per frame
                "fragment_size": str(FRAME_SIZE * 2),
            },
        )
        self._running = True
        self._thread = threading.Thread(target=self._read_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._container:
            try:
                self._container.close()
            except (OSError, FFmpegError) as e:
                logger.debug(f"Closing input {self.stream_name}: {e}")
            self._container = None

    def read(self) -> npt.NDArray[np.float32] | None:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def _read_loop(self) -> None:
        if self._container is None:
            return
        try:
            for frame in self._container.decode(audio=0):
                if not self._running:
                    break
                try:
                    self._queue.put_nowait(frame_to_mono(frame))
                except queue.Full:
                    pass
        except (OSError, FFmpegError) as e:
            if self._running:
                logger.error(f"Input {self.stream_name} failed: {e}")


def create_output_stream(
    stream_name: str, samplerate: int = SAMPLE_RATE, channels: int = 2
) -> AudioOutputStream:
    _require_pulse()
    return PulseOutputStream(stream_name, samplerate, channels)


def create_input_stream(
    stream_name: str, samplerate: int = SAMPLE_RATE
) -> AudioInputStream:
    _require_pulse()
    return PulseInputStream(stream_name, samplerate)
