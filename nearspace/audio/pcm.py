"""PCM sample conversions between av frames and float32 arrays."""

from typing import Any

import numpy as np
import numpy.typing as npt


def to_float32(pcm: npt.NDArray[Any]) -> npt.NDArray[np.float32]:
    """Normalize integer or float samples to float32 in [-1.0, 1.0]."""
    if pcm.dtype == np.int16:
        return pcm.astype(np.float32) / 32768.0
    if pcm.dtype == np.int32:
        return pcm.astype(np.float32) / 2147483648.0
    return pcm.astype(np.float32)


def float32_to_int16(pcm: npt.NDArray[np.float32]) -> npt.NDArray[np.int16]:
    return (np.clip(pcm, -1.0, 1.0) * 32767).astype(np.int16)


def frame_to_mono(frame: Any) -> npt.NDArray[np.float32]:
    """Extract the first channel of an av.AudioFrame as float32 samples."""
    pcm_data = frame.to_ndarray()
    if pcm_data.ndim == 2:
        channels = len(frame.layout.channels) if hasattr(frame, "layout") else 1
        if pcm_data.shape[0] == 1 and channels > 1:
            # Packed interleaved: shape (1, samples * channels)
            pcm_data = pcm_data[0, ::channels]
        else:
            # Planar: shape (channels, samples)
            pcm_data = pcm_data[0]
    else:
        pcm_data = pcm_data.flatten()
    return to_float32(pcm_data)


def interleave_stereo(
    mono: npt.NDArray[np.float32], left: float, right: float
) -> npt.NDArray[np.float32]:
    """Split mono into interleaved L/R samples with a gain per side."""
    stereo = np.empty(len(mono) * 2, dtype=np.float32)
    stereo[0::2] = mono * left
    stereo[1::2] = mono * right
    return stereo
