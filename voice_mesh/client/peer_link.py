"""Peer link transports: the direct audio connection to one remote participant."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from ..audio.backend import AudioDeviceError
from ..audio.webrtc_tracks import (
    OutputFactory,
    RemotePlayback,
    default_output_stream,
)
from ..common.constants import ICE_SERVERS
from .mesh import Role

logger = logging.getLogger(__name__)


@dataclass
class LinkCallbacks:
    """How a transport reports back to its coordinator."""

    send_signal: Callable[[Any], Awaitable[None]]
    on_stream: Callable[[], None]
    on_failed: Callable[[], None]


class PeerTransport(ABC):
    """One end of a direct connection to a single remote participant."""

    def __init__(self, peer_id: str, role: Role, callbacks: LinkCallbacks) -> None:
        self.peer_id = peer_id
        self.role = role
        self.callbacks = callbacks

    @abstractmethod
    async def start(self) -> None:
        """Begin negotiation. Initiators send their offer here."""
        ...

    @abstractmethod
    async def handle_signal(self, payload: Any) -> None:
        """Apply a handshake payload relayed from the remote participant."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection and its playback. Must be idempotent."""
        ...


TransportFactory = Callable[[str, Role, LinkCallbacks], PeerTransport]


class RtcPeerTransport(PeerTransport):
    """aiortc peer connection carrying audio in both directions.

    aiortc gathers ICE candidates before ``setLocalDescription`` returns, so
    offers and answers are complete and no trickle candidates are sent.
    """

    def __init__(
        self,
        peer_id: str,
        role: Role,
        callbacks: LinkCallbacks,
        source_track: MediaStreamTrack | None,
        get_volume: Callable[[], float],
        ice_servers: Sequence[str] = ICE_SERVERS,
        output_factory: OutputFactory = default_output_stream,
    ) -> None:
        super().__init__(peer_id, role, callbacks)
        self._get_volume = get_volume
        self._output_factory = output_factory
        self._closed = False
        self.playback: RemotePlayback | None = None

        self._pc = RTCPeerConnection(
            RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])
        )
        if source_track is not None:
            self._pc.addTrack(source_track)
        else:
            self._pc.addTransceiver("audio", direction="recvonly")

        @self._pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            if track.kind != "audio" or self._closed or self.playback is not None:
                return
            logger.debug(f"Audio track received from {self.peer_id}")
            self.playback = RemotePlayback(
                self.peer_id, track, self._get_volume, self._output_factory
            )
            try:
                self.playback.start()
            except AudioDeviceError as e:
                logger.warning(f"No playback for {self.peer_id}: {e}")
            self.callbacks.on_stream()

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            state = self._pc.connectionState
            logger.debug(f"Link {self.peer_id} connection state: {state}")
            if state == "failed" and not self._closed:
                self.callbacks.on_failed()

    async def start(self) -> None:
        if self.role is not Role.INITIATOR:
            return
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        await self._send_local_description()

    async def handle_signal(self, payload: Any) -> None:
        if self._closed:
            return
        try:
            await self._apply_signal(payload)
        except Exception as e:
            logger.error(
                f"Bad handshake payload from {self.peer_id}: {type(e).__name__}: {e}"
            )
            self.callbacks.on_failed()

    async def _apply_signal(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ValueError("payload is not an object")
        kind = payload.get("type")

        if kind == "offer":
            await self._pc.setRemoteDescription(
                RTCSessionDescription(sdp=payload["sdp"], type="offer")
            )
            answer = await self._pc.createAnswer()
            await self._pc.setLocalDescription(answer)
            await self._send_local_description()

        elif kind == "answer":
            await self._pc.setRemoteDescription(
                RTCSessionDescription(sdp=payload["sdp"], type="answer")
            )

        elif kind == "candidate":
            # Trickled candidate from a browser peer
            data = payload["candidate"]
            line = data["candidate"]
            if not line:
                return  # End of candidates
            candidate = candidate_from_sdp(line.split(":", 1)[1])
            candidate.sdpMid = data.get("sdpMid")
            candidate.sdpMLineIndex = data.get("sdpMLineIndex")
            await self._pc.addIceCandidate(candidate)

        else:
            logger.warning(f"Ignoring handshake payload of type {kind!r}")

    async def _send_local_description(self) -> None:
        description = self._pc.localDescription
        await self.callbacks.send_signal(
            {"type": description.type, "sdp": description.sdp}
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.playback:
            await self.playback.stop()
        await self._pc.close()


class LinkWorker:
    """Runs one link's transport operations in order.

    Each link negotiates on its own task, so a slow offer on one link never
    holds up events for another.
    """

    def __init__(self, peer_id: str) -> None:
        self.peer_id = peer_id
        self.transport: PeerTransport | None = None
        self._ops: asyncio.Queue[Callable[[], Awaitable[None]]] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self.closed = False

    def attach(self, transport: PeerTransport) -> None:
        self.transport = transport
        self._task = asyncio.create_task(self._run())

    def start(self) -> None:
        if self.transport is not None and not self.closed:
            self._ops.put_nowait(self.transport.start)

    def deliver(self, payload: Any) -> None:
        transport = self.transport
        if transport is not None and not self.closed:
            self._ops.put_nowait(lambda: transport.handle_signal(payload))

    async def _run(self) -> None:
        while True:
            op = await self._ops.get()
            try:
                await op()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Link {self.peer_id} operation failed: {type(e).__name__}: {e}",
                    exc_info=True,
                )

    async def close(self) -> None:
        """Cancel pending operations and close the transport. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.transport:
            await self.transport.close()
