"""Microphone capture feeding the shared WebRTC track."""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable

import numpy as np

from ..audio.backend import AudioDeviceError, AudioInputStream, create_input_stream
from ..audio.webrtc_tracks import MicrophoneTrack
from ..common.constants import CHANNELS, FRAME_SIZE, SAMPLE_RATE


class CaptureError(RuntimeError):
    """The local microphone could not be opened."""


def _default_input() -> AudioInputStream:
    return create_input_stream(
        stream_name="microphone", samplerate=SAMPLE_RATE, channels=CHANNELS
    )


class LocalCapture:
    """Captures audio from the microphone and feeds a MicrophoneTrack.

    The track is the single local source shared read-only by every peer
    link. Disabling the microphone sends silence instead of stopping the
    track, so links keep their media flowing.
    """

    def __init__(
        self, input_factory: Callable[[], AudioInputStream] = _default_input
    ) -> None:
        self._input_factory = input_factory
        self._stream: AudioInputStream | None = None
        self._running = False
        self._thread: threading.Thread | None = None
        self.track: MicrophoneTrack | None = None
        self.enabled = True

    def start(self) -> None:
        """Open the microphone. Raises CaptureError if it is unavailable."""
        if self._running:
            return
        loop = asyncio.get_running_loop()
        try:
            stream = self._input_factory()
            stream.start()
        except (AudioDeviceError, OSError) as e:
            raise CaptureError(f"Microphone unavailable: {e}") from e
        self._stream = stream
        self.track = MicrophoneTrack(loop)
        self._running = True
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop capturing and end the local track. Safe to call twice."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._stream:
            self._stream.stop()
            self._stream = None
        if self.track:
            self.track.stop()

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def _capture_loop(self) -> None:
        """Background thread that moves captured frames onto the track."""
        while self._running and self._stream is not None and self.track is not None:
            pcm = self._stream.read()
            if pcm is None:
                time.sleep(0.001)
                continue
            if not self.enabled:
                pcm = np.zeros(len(pcm) or FRAME_SIZE, dtype=np.float32)
            self.track.feed_audio(pcm)
