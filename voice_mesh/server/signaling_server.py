"""Signaling server: room membership plus handshake relay over TCP."""

from __future__ import annotations

import asyncio
import logging
import time
from asyncio import StreamReader, StreamWriter

from ..common.constants import PING_INTERVAL, PING_TIMEOUT, SEND_TIMEOUT
from ..common.protocol import (
    MessageType,
    deserialize_join_room,
    deserialize_signal,
    read_message,
    serialize_welcome,
)
from .participant import Participant, new_participant_id
from .room_registry import RoomRegistry
from .signal_relay import SignalRelay

logger = logging.getLogger(__name__)


class SignalingServer:
    def __init__(
        self,
        host: str,
        port: int,
        ping_interval: float = PING_INTERVAL,
        ping_timeout: float = PING_TIMEOUT,
        send_timeout: float = SEND_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.send_timeout = send_timeout
        self.participants: dict[str, Participant] = {}
        self.registry = RoomRegistry(self._deliver)
        self.relay = SignalRelay(self._deliver)
        self._server: asyncio.Server | None = None

    async def listen(self) -> asyncio.Server:
        """Bind the listening socket without blocking."""
        self._server = await asyncio.start_server(
            self.handle_client, self.host, self.port, reuse_address=True
        )
        addr = self._server.sockets[0].getsockname()
        logger.info(f"Signaling server listening on {addr[0]}:{addr[1]}")
        return self._server

    @property
    def bound_port(self) -> int:
        if self._server is None:
            raise RuntimeError("Server is not listening")
        port: int = self._server.sockets[0].getsockname()[1]
        return port

    async def start(self) -> None:
        server = await self.listen()
        async with server:
            await server.serve_forever()

    async def stop(self) -> None:
        """Stop accepting connections and drop every connected participant."""
        if self._server is not None:
            self._server.close()
        for participant in list(self.participants.values()):
            participant.close()
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None

    async def _deliver(
        self, recipient_id: str, msg_type: MessageType, payload: bytes
    ) -> bool:
        participant = self.participants.get(recipient_id)
        if participant is None:
            return False
        return await participant.send(msg_type, payload)

    async def handle_client(self, reader: StreamReader, writer: StreamWriter) -> None:
        participant = Participant(new_participant_id(), writer, self.send_timeout)
        self.participants[participant.id] = participant
        peer = writer.get_extra_info("peername")
        logger.info(f"Participant {participant.id} connected from {peer}")

        ping_task: asyncio.Task[None] | None = None
        try:
            await participant.send(
                MessageType.WELCOME, serialize_welcome(participant.id)
            )
            ping_task = asyncio.create_task(self._ping_loop(participant))
            while True:
                msg_type, payload = await read_message(reader)
                await self._handle_message(participant, msg_type, payload)
        except (
            asyncio.IncompleteReadError,
            ConnectionResetError,
            BrokenPipeError,
            OSError,
        ):
            pass  # Client disconnected
        except ValueError as e:
            logger.warning(f"Protocol error from {participant.id}: {e}")
        except Exception as e:
            logger.error(
                f"Unexpected error for {participant.id}: {type(e).__name__}: {e}",
                exc_info=True,
            )
        finally:
            if ping_task:
                ping_task.cancel()
                try:
                    await ping_task
                except asyncio.CancelledError:
                    pass

            # Unregister before leaving so nothing is sent to the departed
            self.participants.pop(participant.id, None)
            await self.registry.leave(participant.id)
            logger.info(f"Participant {participant.id} disconnected")

            participant.close()
            try:
                await asyncio.wait_for(writer.wait_closed(), self.send_timeout)
            except asyncio.TimeoutError:
                # Unflushed data to a peer that stopped reading
                participant.abort()
            except Exception:
                pass

    async def _handle_message(
        self, participant: Participant, msg_type: MessageType, payload: bytes
    ) -> None:
        if msg_type == MessageType.JOIN_ROOM:
            await self.registry.join(participant.id, deserialize_join_room(payload))

        elif msg_type == MessageType.LEAVE_ROOM:
            await self.registry.leave(participant.id)

        elif msg_type == MessageType.SIGNAL:
            recipient_id, signal = deserialize_signal(payload)
            await self.relay.relay(participant.id, recipient_id, signal)

        elif msg_type == MessageType.PONG:
            participant.last_pong_time = time.monotonic()

        else:
            logger.debug(f"Unexpected message {msg_type.name} from {participant.id}")

    async def _ping_loop(self, participant: Participant) -> None:
        """Send periodic pings and drop participants that stop answering.

        Sends are bounded by the send timeout, so the pong check runs at least
        once per ping interval plus send timeout even for a stalled reader.
        """
        while True:
            await asyncio.sleep(self.ping_interval)

            time_since_pong = time.monotonic() - participant.last_pong_time
            if time_since_pong > self.ping_timeout:
                logger.info(
                    f"Participant {participant.id} timed out "
                    f"(no pong for {time_since_pong:.1f}s)"
                )
                participant.abort()
                return

            if not await participant.send(MessageType.PING):
                participant.close()
                return
