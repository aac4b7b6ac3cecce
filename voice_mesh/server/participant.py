"""Participant state for the server."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from asyncio import StreamWriter
from dataclasses import dataclass, field

from ..common.constants import SEND_TIMEOUT
from ..common.protocol import MessageType, write_message

logger = logging.getLogger(__name__)


def new_participant_id() -> str:
    """Generate a random, url-safe participant id (20 characters)."""
    return secrets.token_urlsafe(15)


@dataclass
class Participant:
    id: str
    writer: StreamWriter
    send_timeout: float = SEND_TIMEOUT
    # State
    last_pong_time: float = field(default_factory=time.monotonic)
    closed: bool = False

    async def send(self, msg_type: MessageType, payload: bytes = b"") -> bool:
        """Send a message to this participant. Returns False if the connection is gone.

        A participant that stops reading is dropped once a write has waited
        ``send_timeout`` seconds for buffer space, so callers never block on
        it for longer than that.
        """
        if self.closed:
            return False
        try:
            await asyncio.wait_for(
                write_message(self.writer, msg_type, payload), self.send_timeout
            )
        except asyncio.TimeoutError:
            logger.info(f"Participant {self.id} stopped reading; dropping connection")
            self.abort()
            return False
        except (ConnectionResetError, BrokenPipeError, OSError):
            self.closed = True
            return False
        return True

    def close(self) -> None:
        """Close the connection; the read loop sees EOF and cleans up."""
        self.closed = True
        self.writer.close()

    def abort(self) -> None:
        """Drop the connection at once, discarding anything still buffered."""
        self.closed = True
        self.writer.transport.abort()
