"""Mesh coordinator: keeps one peer link per co-member of a room."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Callable, Coroutine

from aiortc.contrib.media import MediaRelay

from ..common.constants import DEFAULT_VOLUME, ICE_SERVERS, MAX_VOLUME
from ..common.protocol import (
    MessageType,
    deserialize_receive_signal,
    deserialize_user_joined,
    deserialize_user_left,
    deserialize_users_in_room,
)
from .audio_capture import LocalCapture
from .mesh import (
    ChannelClosed,
    CloseLink,
    DeliverSignal,
    Effect,
    LinkFailed,
    LocalLeave,
    MembershipSnapshot,
    MeshEvent,
    MeshState,
    OpenLink,
    PeerJoined,
    PeerLeft,
    PeerLink,
    Role,
    SignalReceived,
    StreamStarted,
)
from .peer_link import (
    LinkCallbacks,
    LinkWorker,
    PeerTransport,
    RtcPeerTransport,
    TransportFactory,
)
from .signaling_client import SignalingClient

logger = logging.getLogger(__name__)


# Type aliases for event callbacks
MembershipCallback = Callable[[list[str]], Coroutine[Any, Any, None]]
PeerCallback = Callable[[str], Coroutine[Any, Any, None]]


class MeshCoordinator:
    """Turns room membership and relayed handshakes into a full mesh.

    All state transitions run on one reactor task that consumes a queue of
    membership events, handshake payloads and transport callbacks. Transport
    work for each link runs on that link's LinkWorker.

    Example usage:
        async def main():
            mesh = MeshCoordinator("localhost", 3001, "r1")

            @mesh.on_peer_joined
            async def joined(peer_id):
                print(f"{peer_id} joined")

            await mesh.start()
            try:
                await mesh.run()
            finally:
                await mesh.leave()
    """

    def __init__(
        self,
        host: str,
        port: int,
        room_id: str,
        capture: LocalCapture | None = None,
        transport_factory: TransportFactory | None = None,
        volume: int = DEFAULT_VOLUME,
        ice_servers: Sequence[str] = ICE_SERVERS,
    ) -> None:
        self.room_id = room_id
        self.volume = max(0, min(MAX_VOLUME, volume))
        self.is_muted = False
        self._signaling = SignalingClient(host, port)
        self._capture = capture if capture is not None else LocalCapture()
        self._transport_factory = transport_factory
        self._ice_servers = tuple(ice_servers)
        self._media_relay = MediaRelay()

        self._mesh: MeshState | None = None
        self._workers: dict[str, LinkWorker] = {}
        self._closing: set[asyncio.Task[None]] = set()
        self._events: asyncio.Queue[MeshEvent | None] = asyncio.Queue()
        self._reactor_task: asyncio.Task[None] | None = None
        self._receiver_task: asyncio.Task[None] | None = None
        self._finished = asyncio.Event()
        self._left = False

        self._on_membership_callbacks: list[MembershipCallback] = []
        self._on_peer_joined_callbacks: list[PeerCallback] = []
        self._on_peer_left_callbacks: list[PeerCallback] = []

    # Event decorator methods

    def on_membership(self, callback: MembershipCallback) -> MembershipCallback:
        """Decorator for membership snapshots (other participants only)."""
        self._on_membership_callbacks.append(callback)
        return callback

    def on_peer_joined(self, callback: PeerCallback) -> PeerCallback:
        """Decorator for participants joining after us."""
        self._on_peer_joined_callbacks.append(callback)
        return callback

    def on_peer_left(self, callback: PeerCallback) -> PeerCallback:
        """Decorator for participants leaving the room."""
        self._on_peer_left_callbacks.append(callback)
        return callback

    # State

    @property
    def participant_id(self) -> str:
        return self._signaling.participant_id

    @property
    def connected_peers(self) -> list[str]:
        """Other members of the room, per the latest snapshot."""
        return list(self._mesh.peers) if self._mesh else []

    @property
    def links(self) -> dict[str, PeerLink]:
        return dict(self._mesh.links) if self._mesh else {}

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    # Lifecycle

    async def start(self) -> None:
        """Open the microphone, connect, and join the room.

        Raises CaptureError if the microphone is unavailable (nothing else is
        attempted) and ConnectionError if the signaling server is unreachable.
        """
        if self._mesh is not None:
            raise RuntimeError("Coordinator already started")

        self._capture.start()
        self._capture.set_enabled(not self.is_muted)

        if not await self._signaling.connect():
            self._capture.stop()
            raise ConnectionError(
                f"Could not reach signaling server at "
                f"{self._signaling.host}:{self._signaling.port}"
            )

        self._mesh = MeshState(self._signaling.participant_id)
        self._reactor_task = asyncio.create_task(self._reactor())
        self._receiver_task = asyncio.create_task(self._receive_loop())
        await self._signaling.join_room(self.room_id)
        logger.info(f"Joining room {self.room_id!r} as {self.participant_id}")

    async def run(self) -> None:
        """Block until the session ends (leave() or loss of the signaling channel)."""
        await self._finished.wait()

    async def leave(self) -> None:
        """Leave the room and release everything. Safe to call more than once."""
        if self._left:
            return
        self._left = True

        if self._mesh is None:
            self._capture.stop()
            self._finished.set()
            return

        # Tell the room first, while peers can still be notified
        await self._signaling.leave_room()
        self._capture.stop()

        self._events.put_nowait(LocalLeave())
        self._events.put_nowait(None)
        if self._reactor_task:
            await self._reactor_task
        for peer_id in list(self._workers):
            self._close_link(peer_id)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

        if self._receiver_task:
            self._receiver_task.cancel()
            try:
                await self._receiver_task
            except asyncio.CancelledError:
                pass
        await self._signaling.close()
        self._finished.set()
        logger.info(f"Left room {self.room_id!r}")

    # Local controls (do not affect link state)

    def set_microphone_enabled(self, enabled: bool) -> None:
        self.is_muted = not enabled
        self._capture.set_enabled(enabled)

    def toggle_mute(self) -> bool:
        """Toggle the microphone; returns the new muted state."""
        self.set_microphone_enabled(self.is_muted)
        return self.is_muted

    def set_volume(self, volume: int) -> None:
        """Set playback volume (0-100) for every current and future link."""
        self.volume = max(0, min(MAX_VOLUME, volume))

    # Signaling channel

    async def _receive_loop(self) -> None:
        try:
            while True:
                msg_type, payload = await self._signaling.receive()
                if msg_type == MessageType.PING:
                    await self._signaling.pong()
                    continue
                event = self._translate(msg_type, payload)
                if event is not None:
                    self._events.put_nowait(event)
        except (asyncio.IncompleteReadError, OSError):
            pass
        except ValueError as e:
            logger.warning(f"Protocol error from signaling server: {e}")

        if not self._left:
            logger.warning("Signaling connection lost")
        self._events.put_nowait(ChannelClosed())

    def _translate(self, msg_type: MessageType, payload: bytes) -> MeshEvent | None:
        if msg_type == MessageType.USERS_IN_ROOM:
            return MembershipSnapshot(tuple(deserialize_users_in_room(payload)))
        if msg_type == MessageType.USER_JOINED:
            return PeerJoined(deserialize_user_joined(payload))
        if msg_type == MessageType.USER_LEFT:
            return PeerLeft(deserialize_user_left(payload))
        if msg_type == MessageType.RECEIVE_SIGNAL:
            sender_id, signal = deserialize_receive_signal(payload)
            return SignalReceived(sender_id, signal)
        logger.debug(f"Ignoring {msg_type.name} from signaling server")
        return None

    # Reactor

    async def _reactor(self) -> None:
        assert self._mesh is not None
        while True:
            event = await self._events.get()
            if event is None:
                break
            for effect in self._mesh.handle(event):
                self._apply(effect)
            await self._notify(event)
            if isinstance(event, ChannelClosed):
                self._finished.set()

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, OpenLink):
            self._open_link(effect.peer_id, effect.role)
        elif isinstance(effect, DeliverSignal):
            worker = self._workers.get(effect.peer_id)
            if worker is not None:
                worker.deliver(effect.payload)
        elif isinstance(effect, CloseLink):
            self._close_link(effect.peer_id)

    def _open_link(self, peer_id: str, role: Role) -> None:
        worker = LinkWorker(peer_id)

        def is_current() -> bool:
            return self._workers.get(peer_id) is worker

        async def send_signal(payload: Any) -> None:
            if is_current():
                await self._signaling.send_signal(peer_id, payload)

        def on_stream() -> None:
            if is_current():
                self._events.put_nowait(StreamStarted(peer_id))

        def on_failed() -> None:
            if is_current():
                self._events.put_nowait(LinkFailed(peer_id))

        callbacks = LinkCallbacks(send_signal, on_stream, on_failed)
        try:
            transport = self._create_transport(peer_id, role, callbacks)
        except Exception as e:
            logger.error(
                f"Cannot open link to {peer_id}: {type(e).__name__}: {e}",
                exc_info=True,
            )
            self._events.put_nowait(LinkFailed(peer_id))
            return
        self._workers[peer_id] = worker
        worker.attach(transport)
        worker.start()
        logger.info(f"Opened {role.value} link to {peer_id}")

    def _create_transport(
        self, peer_id: str, role: Role, callbacks: LinkCallbacks
    ) -> PeerTransport:
        if self._transport_factory is not None:
            return self._transport_factory(peer_id, role, callbacks)
        track = self._capture.track
        return RtcPeerTransport(
            peer_id,
            role,
            callbacks,
            source_track=self._media_relay.subscribe(track) if track else None,
            get_volume=lambda: self.volume / MAX_VOLUME,
            ice_servers=self._ice_servers,
        )

    def _close_link(self, peer_id: str) -> None:
        worker = self._workers.pop(peer_id, None)
        if worker is None:
            return
        task = asyncio.create_task(worker.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        logger.info(f"Closed link to {peer_id}")

    async def _notify(self, event: MeshEvent) -> None:
        if isinstance(event, MembershipSnapshot):
            peers = self.connected_peers
            for membership_cb in self._on_membership_callbacks:
                try:
                    await membership_cb(peers)
                except Exception as e:
                    logger.error(f"Error in on_membership callback: {e}")
        elif isinstance(event, PeerJoined):
            for joined_cb in self._on_peer_joined_callbacks:
                try:
                    await joined_cb(event.peer_id)
                except Exception as e:
                    logger.error(f"Error in on_peer_joined callback: {e}")
        elif isinstance(event, PeerLeft):
            for left_cb in self._on_peer_left_callbacks:
                try:
                    await left_cb(event.peer_id)
                except Exception as e:
                    logger.error(f"Error in on_peer_left callback: {e}")
