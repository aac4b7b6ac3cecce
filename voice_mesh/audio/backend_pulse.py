"""PulseAudio/PipeWire streams opened through PyAV (ffmpeg's pulse device).

Each stream owns a pulse client named ``voice_mesh:<stream name>``, so every
remote participant shows up as its own entry in the system mixer. Device I/O
runs on one daemon thread per stream; the asyncio side only touches the
bounded queue.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any

import av
import numpy as np
import numpy.typing as npt
from av.error import FFmpegError

from ..common.constants import FRAME_SIZE
from .backend import AudioDeviceError, AudioInputStream, AudioOutputStream
from .pcm import to_float32, to_mono

logger = logging.getLogger(__name__)

# Application name shown in mixer applications
APPLICATION_NAME = "voice_mesh"


def _layout(channels: int) -> str:
    return "mono" if channels == 1 else "stereo"


class _PulseStream:
    """Container lifecycle plus the worker thread shared by both directions."""

    mode = ""

    def __init__(self, stream_name: str, samplerate: int, channels: int, depth: int):
        self.stream_name = stream_name
        self.samplerate = samplerate
        self.channels = channels
        self._queue: queue.Queue[npt.NDArray[np.float32] | None] = queue.Queue(
            maxsize=depth
        )
        self._container: Any | None = None
        self._thread: threading.Thread | None = None
        self._running = False
        self.dropped = 0

    def _device_options(self) -> dict[str, str]:
        return {}

    def start(self) -> None:
        if self._running:
            return
        try:
            self._container = av.open(
                "default",
                mode=self.mode,
                format="pulse",
                options={
                    "name": f"{APPLICATION_NAME}:{self.stream_name}",
                    **self._device_options(),
                },
            )
        except (FFmpegError, OSError, ValueError) as e:
            raise AudioDeviceError(
                f"Cannot open pulse device for {self.stream_name}: {e}"
            ) from e
        self._prepare()
        self._running = True
        self._thread = threading.Thread(target=self._run_guarded, daemon=True)
        self._thread.start()

    def _prepare(self) -> None:
        pass

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._wake()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._container is not None:
            try:
                self._container.close()
            except (FFmpegError, OSError) as e:
                logger.debug(f"Closing {self.stream_name}: {e}")
            self._container = None
        if self.dropped:
            logger.debug(f"{self.stream_name}: dropped {self.dropped} frames")

    def _wake(self) -> None:
        pass

    def _offer(self, data: npt.NDArray[np.float32]) -> None:
        """Queue a frame, dropping it rather than adding latency."""
        try:
            self._queue.put_nowait(data)
        except queue.Full:
            self.dropped += 1

    def _run_guarded(self) -> None:
        try:
            self._run()
        except (FFmpegError, OSError, ValueError) as e:
            if self._running:
                logger.warning(f"Audio stream {self.stream_name} stopped: {e}")

    def _run(self) -> None:
        raise NotImplementedError


class PulseOutputStream(_PulseStream, AudioOutputStream):
    """Playback of one remote participant."""

    mode = "w"

    def __init__(self, stream_name: str, samplerate: int = 48000, channels: int = 1):
        # ~200ms of 20ms frames
        super().__init__(stream_name, samplerate, channels, depth=10)
        self._encoder: Any | None = None
        self._pts = 0

    def _prepare(self) -> None:
        assert self._container is not None
        self._encoder = self._container.add_stream(
            "pcm_f32le", rate=self.samplerate, layout=_layout(self.channels)
        )

    def _wake(self) -> None:
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass

    def write(self, data: npt.NDArray[np.float32]) -> None:
        if self._running:
            self._offer(data.copy())

    def _run(self) -> None:
        while self._running:
            try:
                data = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            if data is None or self._container is None or self._encoder is None:
                return
            frame = av.AudioFrame.from_ndarray(
                data.reshape(1, -1), format="flt", layout=_layout(self.channels)
            )
            frame.sample_rate = self.samplerate
            frame.pts = self._pts
            self._pts += len(data)
            for packet in self._encoder.encode(frame):
                self._container.mux(packet)


class PulseInputStream(_PulseStream, AudioInputStream):
    """Microphone capture."""

    mode = "r"

    def __init__(self, stream_name: str, samplerate: int = 48000, channels: int = 1):
        # ~100ms of 20ms frames
        super().__init__(stream_name, samplerate, channels, depth=5)

    def _device_options(self) -> dict[str, str]:
        # fragment_size is in bytes: one frame of int16 samples
        return {
            "sample_rate": str(self.samplerate),
            "channels": str(self.channels),
            "fragment_size": str(FRAME_SIZE * 2 * self.channels),
        }

    def read(self) -> npt.NDArray[np.float32] | None:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def _run(self) -> None:
        if self._container is None:
            return
        for frame in self._container.decode(audio=0):
            if not self._running:
                return
            self._offer(to_float32(to_mono(frame.to_ndarray(), self.channels)))
