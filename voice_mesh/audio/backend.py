"""Abstract audio device interface.

Capture and playback talk to these ABCs, so the platform device code stays
in one place (PulseAudio/PipeWire on Linux) and tests can use fakes.
"""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod

import numpy as np
import numpy.typing as npt


class AudioDeviceError(RuntimeError):
    """An audio device could not be opened."""


class AudioOutputStream(ABC):
    """A named playback stream."""

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def write(self, data: npt.NDArray[np.float32]) -> None:
        """Queue float32 samples in [-1.0, 1.0] for playback."""
        ...


class AudioInputStream(ABC):
    """A named capture stream."""

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def read(self) -> npt.NDArray[np.float32] | None:
        """Return the next captured frame, or None if nothing is buffered."""
        ...


def get_backend() -> str:
    """Determine the audio backend for the current platform."""
    if sys.platform == "linux":
        return "pulse"
    raise AudioDeviceError(f"No audio backend for platform: {sys.platform}")


def create_output_stream(
    stream_name: str, samplerate: int = 48000, channels: int = 1
) -> AudioOutputStream:
    backend = get_backend()
    if backend == "pulse":
        from .backend_pulse import PulseOutputStream

        return PulseOutputStream(stream_name, samplerate, channels)
    raise AudioDeviceError(f"Backend '{backend}' not implemented")


def create_input_stream(
    stream_name: str, samplerate: int = 48000, channels: int = 1
) -> AudioInputStream:
    backend = get_backend()
    if backend == "pulse":
        from .backend_pulse import PulseInputStream

        return PulseInputStream(stream_name, samplerate, channels)
    raise AudioDeviceError(f"Backend '{backend}' not implemented")
