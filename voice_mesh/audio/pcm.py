"""PCM sample conversions shared by capture and playback."""

from __future__ import annotations

import numpy as np
import numpy.typing as npt


def to_float32(pcm: npt.NDArray[np.generic]) -> npt.NDArray[np.float32]:
    """Normalize integer samples to float32 in [-1.0, 1.0]."""
    if pcm.dtype == np.int16:
        return pcm.astype(np.float32) / 32768.0
    if pcm.dtype == np.int32:
        return pcm.astype(np.float32) / 2147483648.0
    return pcm.astype(np.float32, copy=False)


def float32_to_int16(pcm: npt.NDArray[np.float32]) -> npt.NDArray[np.int16]:
    """Convert float32 samples to int16, clipping out-of-range values."""
    clipped = np.clip(pcm, -1.0, 1.0)
    return (clipped * 32767.0).astype(np.int16)


def to_mono(pcm: npt.NDArray[np.generic], channels: int = 1) -> npt.NDArray[np.generic]:
    """Extract the first channel of a decoded frame as a flat array.

    Packed frames arrive as shape (1, samples * channels), planar frames as
    (channels, samples).
    """
    if pcm.ndim == 2:
        if pcm.shape[0] == 1:
            return pcm[0, ::channels] if channels > 1 else pcm[0]
        return pcm[0]
    return pcm.flatten()


def scale(pcm: npt.NDArray[np.float32], volume: float) -> npt.NDArray[np.float32]:
    """Apply a 0.0-1.0 gain."""
    if volume >= 1.0:
        return pcm
    return (pcm * max(volume, 0.0)).astype(np.float32, copy=False)
