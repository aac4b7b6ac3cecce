"""Client side of the signaling channel."""

from __future__ import annotations

import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from typing import Any

from ..common.protocol import (
    MessageType,
    deserialize_welcome,
    read_message,
    serialize_join_room,
    serialize_signal,
    write_message,
)

logger = logging.getLogger(__name__)


class SignalingClient:
    """One participant's reliable, ordered connection to the signaling server."""

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.participant_id: str = ""
        self.reader: StreamReader | None = None
        self.writer: StreamWriter | None = None

    async def connect(self) -> bool:
        """Connect and receive the server-assigned participant id."""
        try:
            self.reader, self.writer = await asyncio.open_connection(
                self.host, self.port
            )
        except (ConnectionRefusedError, OSError) as e:
            logger.error(f"Failed to connect to {self.host}:{self.port}: {e}")
            return False

        try:
            msg_type, payload = await read_message(self.reader)
        except (asyncio.IncompleteReadError, ConnectionResetError, ValueError) as e:
            logger.error(f"Signaling handshake failed: {e}")
            await self.close()
            return False
        if msg_type != MessageType.WELCOME:
            logger.error(f"Unexpected response from server (got {msg_type.name})")
            await self.close()
            return False

        self.participant_id = deserialize_welcome(payload)
        logger.info(f"Connected as participant {self.participant_id}")
        return True

    async def receive(self) -> tuple[MessageType, bytes]:
        """Read the next server message. Raises IncompleteReadError on EOF."""
        if self.reader is None:
            raise ConnectionError("Not connected")
        return await read_message(self.reader)

    async def _send(self, msg_type: MessageType, payload: bytes = b"") -> bool:
        if self.writer is None:
            return False
        try:
            await write_message(self.writer, msg_type, payload)
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            logger.debug(f"Send of {msg_type.name} failed: {e}")
            return False
        return True

    async def join_room(self, room_id: str) -> bool:
        return await self._send(MessageType.JOIN_ROOM, serialize_join_room(room_id))

    async def leave_room(self) -> bool:
        return await self._send(MessageType.LEAVE_ROOM)

    async def send_signal(self, recipient_id: str, payload: Any) -> bool:
        return await self._send(
            MessageType.SIGNAL, serialize_signal(recipient_id, payload)
        )

    async def pong(self) -> bool:
        return await self._send(MessageType.PONG)

    async def close(self) -> None:
        if self.writer is None:
            return
        writer = self.writer
        self.writer = None
        writer.close()
        try:
            await writer.wait_closed()
        except Exception:
            pass
