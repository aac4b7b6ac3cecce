"""WebRTC audio track implementations for aiortc."""

from __future__ import annotations

import asyncio
import fractions
import logging
from collections.abc import Callable
from typing import Any

import av
import numpy as np
import numpy.typing as npt
from aiortc import MediaStreamTrack

from ..common.constants import FRAME_SIZE, SAMPLE_RATE
from .backend import AudioOutputStream, create_output_stream
from .pcm import float32_to_int16, scale, to_float32, to_mono

logger = logging.getLogger(__name__)


class MicrophoneTrack(MediaStreamTrack):
    """Local capture track, shared (through a MediaRelay) by every peer link."""

    kind = "audio"

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self._loop = loop
        self._queue: asyncio.Queue[npt.NDArray[np.float32]] = asyncio.Queue(maxsize=10)
        self._timestamp = 0
        self._drop_count = 0

    def feed_audio(self, pcm_data: npt.NDArray[np.float32]) -> None:
        """Feed a captured frame. Safe to call from the capture thread."""
        self._loop.call_soon_threadsafe(self._enqueue, pcm_data.copy())

    def _enqueue(self, pcm_data: npt.NDArray[np.float32]) -> None:
        try:
            self._queue.put_nowait(pcm_data)
        except asyncio.QueueFull:
            self._drop_count += 1
            if self._drop_count % 50 == 1:
                logger.debug(f"MicrophoneTrack: dropped {self._drop_count} frames")

    async def recv(self) -> Any:
        """Called by aiortc to get the next audio frame."""
        try:
            pcm_data = await asyncio.wait_for(self._queue.get(), timeout=0.1)
        except asyncio.TimeoutError:
            # Keep the RTP clock running with silence
            pcm_data = np.zeros(FRAME_SIZE, dtype=np.float32)

        pcm_int16 = float32_to_int16(pcm_data)
        frame = av.AudioFrame(format="s16", layout="mono", samples=len(pcm_int16))
        frame.sample_rate = SAMPLE_RATE
        frame.pts = self._timestamp
        frame.time_base = fractions.Fraction(1, SAMPLE_RATE)
        frame.planes[0].update(pcm_int16.tobytes())

        self._timestamp += len(pcm_int16)
        return frame


OutputFactory = Callable[[str], AudioOutputStream]


def default_output_stream(stream_name: str) -> AudioOutputStream:
    return create_output_stream(stream_name=stream_name, samplerate=SAMPLE_RATE)


class RemotePlayback:
    """Plays one remote participant's track on its own output stream.

    Owned by exactly one peer link. Volume is read on every frame, so volume
    changes apply without restarting playback.
    """

    def __init__(
        self,
        peer_id: str,
        track: MediaStreamTrack,
        get_volume: Callable[[], float],
        output_factory: OutputFactory = default_output_stream,
    ) -> None:
        self.peer_id = peer_id
        self._track = track
        self._get_volume = get_volume
        self._output_factory = output_factory
        self._output: AudioOutputStream | None = None
        self._task: asyncio.Task[None] | None = None
        self._frame_count = 0
        self.stopped = False

    def start(self) -> None:
        """Open the output stream and start pulling frames from the track."""
        if self._task is not None or self.stopped:
            return
        self._output = self._output_factory(f"peer:{self.peer_id}")
        self._output.start()
        self._task = asyncio.create_task(self._receive_loop())

    async def stop(self) -> None:
        """Stop playback and release the output stream. Safe to call twice."""
        if self.stopped:
            return
        self.stopped = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._output:
            self._output.stop()
            self._output = None

    async def _receive_loop(self) -> None:
        while True:
            try:
                frame = await self._track.recv()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # MediaStreamError when the remote track ends
                logger.debug(f"Playback of {self.peer_id} ended: {e}")
                return

            if not hasattr(frame, "to_ndarray"):
                continue
            layout = getattr(getattr(frame, "layout", None), "channels", None)
            channels = len(layout) if layout else 1
            pcm = to_float32(to_mono(frame.to_ndarray(), channels))

            self._frame_count += 1
            if self._frame_count == 1:
                logger.debug(
                    f"First frame from {self.peer_id}: "
                    f"rate={getattr(frame, 'sample_rate', '?')}, channels={channels}"
                )
            if self._output:
                self._output.write(scale(pcm, self._get_volume()))
