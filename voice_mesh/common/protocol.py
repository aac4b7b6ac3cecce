"""Wire protocol for client-server signaling."""

import enum
import json
import struct
from asyncio import StreamReader, StreamWriter
from typing import Any

from .constants import MAX_MESSAGE_SIZE


class MessageType(enum.IntEnum):
    WELCOME = 0x01  # Server -> Client: assigned participant id
    JOIN_ROOM = 0x02  # Client -> Server: room id
    LEAVE_ROOM = 0x03  # Client -> Server: leave current room
    USERS_IN_ROOM = 0x04  # Server -> Client: full membership snapshot
    USER_JOINED = 0x05  # Server -> pre-existing members: joiner id
    USER_LEFT = 0x06  # Server -> remaining members: leaver id
    SIGNAL = 0x10  # Client -> Server: {recipientId, payload}
    RECEIVE_SIGNAL = 0x11  # Server -> Client: {senderId, payload}
    PING = 0x30  # Server -> Client: keepalive ping
    PONG = 0x31  # Client -> Server: keepalive pong


async def read_message(reader: StreamReader) -> tuple[MessageType, bytes]:
    """Read a length-prefixed message from the stream."""
    length_data = await reader.readexactly(4)
    length = struct.unpack(">I", length_data)[0]
    if length < 1:
        raise ValueError("Invalid message length")
    if length > MAX_MESSAGE_SIZE:
        raise ValueError(f"Message too large: {length} bytes")
    msg_type = struct.unpack("B", await reader.readexactly(1))[0]
    payload = await reader.readexactly(length - 1) if length > 1 else b""
    return MessageType(msg_type), payload


async def write_message(
    writer: StreamWriter, msg_type: MessageType, payload: bytes = b""
) -> None:
    """Write a length-prefixed message to the stream."""
    length = 1 + len(payload)
    writer.write(struct.pack(">I", length))
    writer.write(struct.pack("B", msg_type))
    writer.write(payload)
    await writer.drain()


def _pack_string(value: str) -> bytes:
    value_bytes = value.encode("utf-8")
    return struct.pack(">H", len(value_bytes)) + value_bytes


def _unpack_string(data: bytes, offset: int = 0) -> tuple[str, int]:
    if len(data) < offset + 2:
        raise ValueError("Truncated string length")
    str_len = struct.unpack(">H", data[offset : offset + 2])[0]
    offset += 2
    if len(data) < offset + str_len:
        raise ValueError("Truncated string data")
    return data[offset : offset + str_len].decode("utf-8"), offset + str_len


# WELCOME: participant_id
def serialize_welcome(participant_id: str) -> bytes:
    return _pack_string(participant_id)


def deserialize_welcome(data: bytes) -> str:
    return _unpack_string(data)[0]


# JOIN_ROOM: room_id (opaque, used verbatim)
def serialize_join_room(room_id: str) -> bytes:
    return _pack_string(room_id)


def deserialize_join_room(data: bytes) -> str:
    return _unpack_string(data)[0]


# USERS_IN_ROOM: count, then participant ids
def serialize_users_in_room(participant_ids: list[str]) -> bytes:
    result = struct.pack(">I", len(participant_ids))
    for participant_id in participant_ids:
        result += _pack_string(participant_id)
    return result


def deserialize_users_in_room(data: bytes) -> list[str]:
    if len(data) < 4:
        raise ValueError("Truncated member count")
    count = struct.unpack(">I", data[:4])[0]
    offset = 4
    participant_ids = []
    for _ in range(count):
        participant_id, offset = _unpack_string(data, offset)
        participant_ids.append(participant_id)
    return participant_ids


# USER_JOINED: participant_id
def serialize_user_joined(participant_id: str) -> bytes:
    return _pack_string(participant_id)


def deserialize_user_joined(data: bytes) -> str:
    return _unpack_string(data)[0]


# USER_LEFT: participant_id
def serialize_user_left(participant_id: str) -> bytes:
    return _pack_string(participant_id)


def deserialize_user_left(data: bytes) -> str:
    return _unpack_string(data)[0]


def _decode_envelope(data: bytes, id_field: str) -> tuple[str, Any]:
    envelope = json.loads(data.decode("utf-8"))
    if not isinstance(envelope, dict):
        raise ValueError("Signal envelope must be a JSON object")
    participant_id = envelope.get(id_field)
    if not isinstance(participant_id, str) or "payload" not in envelope:
        raise ValueError(f"Signal envelope needs '{id_field}' and 'payload'")
    return participant_id, envelope["payload"]


# SIGNAL: JSON {"recipientId": str, "payload": any}. The payload is opaque.
def serialize_signal(recipient_id: str, payload: Any) -> bytes:
    return json.dumps({"recipientId": recipient_id, "payload": payload}).encode(
        "utf-8"
    )


def deserialize_signal(data: bytes) -> tuple[str, Any]:
    return _decode_envelope(data, "recipientId")


# RECEIVE_SIGNAL: JSON {"senderId": str, "payload": any}
def serialize_receive_signal(sender_id: str, payload: Any) -> bytes:
    return json.dumps({"senderId": sender_id, "payload": payload}).encode("utf-8")


def deserialize_receive_signal(data: bytes) -> tuple[str, Any]:
    return _decode_envelope(data, "senderId")
