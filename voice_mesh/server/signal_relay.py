"""Point-to-point forwarding of handshake payloads."""

from __future__ import annotations

import logging
from typing import Any

from ..common.protocol import MessageType, serialize_receive_signal
from .room_registry import Deliver

logger = logging.getLogger(__name__)


class SignalRelay:
    """Forwards opaque handshake payloads from one participant to another.

    Payloads are never inspected. Delivery is best-effort: a recipient that
    has disconnected is skipped without telling the sender.
    """

    def __init__(self, deliver: Deliver) -> None:
        self._deliver = deliver
        self.forwarded = 0
        self.dropped = 0

    async def relay(self, sender_id: str, recipient_id: str, payload: Any) -> bool:
        """Deliver ``{senderId, payload}`` to the recipient if it is connected."""
        delivered = await self._deliver(
            recipient_id,
            MessageType.RECEIVE_SIGNAL,
            serialize_receive_signal(sender_id, payload),
        )
        if delivered:
            self.forwarded += 1
            logger.debug(f"Forwarded signal {sender_id} -> {recipient_id}")
        else:
            self.dropped += 1
            logger.debug(
                f"Dropped signal {sender_id} -> {recipient_id}: recipient not connected"
            )
        return delivered
