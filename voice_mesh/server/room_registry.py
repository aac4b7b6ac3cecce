"""Room membership registry.

The registry is the authoritative source of which participants are in which
room. Every membership change is broadcast to the room's members:

- ``USERS_IN_ROOM`` (full snapshot) to every member, and
- ``USER_JOINED`` to pre-existing members only, or ``USER_LEFT`` to the
  remaining members.

Only pre-existing members learn about a joiner, so only they initiate peer
links to it. The joiner waits for their offers, which keeps two sides from
initiating the same link.

Mutations of one room are serialized by a per-room lock, held across the
broadcast, so members never see interleaved partial updates. Different rooms
do not share a lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from ..common.protocol import (
    MessageType,
    serialize_user_joined,
    serialize_user_left,
    serialize_users_in_room,
)

logger = logging.getLogger(__name__)

# deliver(recipient_id, msg_type, payload) -> True if the message was written
Deliver = Callable[[str, MessageType, bytes], Awaitable[bool]]


class RoomRegistry:
    def __init__(self, deliver: Deliver) -> None:
        self._deliver = deliver
        # room_id -> member ids (dict used as an insertion-ordered set)
        self._rooms: dict[str, dict[str, None]] = {}
        # participant_id -> room_id
        self._participant_rooms: dict[str, str] = {}
        self._room_locks: dict[str, asyncio.Lock] = {}

    def members(self, room_id: str) -> list[str]:
        """Current members of a room (empty if the room does not exist)."""
        return list(self._rooms.get(room_id, ()))

    def room_of(self, participant_id: str) -> str | None:
        """The room a participant is in, if any."""
        return self._participant_rooms.get(participant_id)

    def room_ids(self) -> list[str]:
        """Ids of all rooms that currently have members."""
        return list(self._rooms)

    @asynccontextmanager
    async def _locked_room(self, room_id: str) -> AsyncIterator[None]:
        """Hold the lock for one room.

        The lock of a room is dropped when the room is destroyed. A waiter that
        wakes up holding a dropped lock retries on the current one.
        """
        while True:
            lock = self._room_locks.setdefault(room_id, asyncio.Lock())
            await lock.acquire()
            if self._room_locks.get(room_id) is lock:
                break
            lock.release()
        try:
            yield
        finally:
            if room_id not in self._rooms:
                self._room_locks.pop(room_id, None)
            lock.release()

    async def join(self, participant_id: str, room_id: str) -> None:
        """Add a participant to a room, creating the room if needed."""
        if not room_id:
            logger.warning(f"Ignoring join without room id from {participant_id}")
            return

        current = self._participant_rooms.get(participant_id)
        if current == room_id:
            # Already a member: resend the snapshot, announce nothing
            async with self._locked_room(room_id):
                await self._deliver(
                    participant_id,
                    MessageType.USERS_IN_ROOM,
                    serialize_users_in_room(self.members(room_id)),
                )
            return
        if current is not None:
            await self.leave(participant_id)

        async with self._locked_room(room_id):
            members = self._rooms.setdefault(room_id, {})
            members[participant_id] = None
            self._participant_rooms[participant_id] = room_id
            snapshot = list(members)
            logger.info(
                f"{participant_id} joined room {room_id!r} ({len(snapshot)} members)"
            )

            snapshot_payload = serialize_users_in_room(snapshot)
            for member_id in snapshot:
                await self._deliver(
                    member_id, MessageType.USERS_IN_ROOM, snapshot_payload
                )

            joined_payload = serialize_user_joined(participant_id)
            for member_id in snapshot:
                if member_id != participant_id:
                    await self._deliver(
                        member_id, MessageType.USER_JOINED, joined_payload
                    )

    async def leave(self, participant_id: str) -> None:
        """Remove a participant from its room. No-op if it is in no room."""
        room_id = self._participant_rooms.get(participant_id)
        if room_id is None:
            return

        async with self._locked_room(room_id):
            self._participant_rooms.pop(participant_id, None)
            members = self._rooms.get(room_id)
            if members is None:
                return
            members.pop(participant_id, None)

            if not members:
                del self._rooms[room_id]
                logger.info(f"{participant_id} left room {room_id!r}; room removed")
                return

            remaining = list(members)
            logger.info(
                f"{participant_id} left room {room_id!r} ({len(remaining)} members)"
            )

            snapshot_payload = serialize_users_in_room(remaining)
            left_payload = serialize_user_left(participant_id)
            for member_id in remaining:
                await self._deliver(
                    member_id, MessageType.USERS_IN_ROOM, snapshot_payload
                )
            for member_id in remaining:
                await self._deliver(member_id, MessageType.USER_LEFT, left_payload)
