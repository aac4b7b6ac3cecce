"""Integration tests for full protocol message write/read cycles."""

from __future__ import annotations

import asyncio

import pytest

from voice_mesh.common.protocol import (
    MessageType,
    deserialize_receive_signal,
    deserialize_users_in_room,
    read_message,
    serialize_join_room,
    serialize_receive_signal,
    serialize_users_in_room,
    write_message,
)

from tests.conftest import MockStreamReader, MockStreamWriter


@pytest.mark.integration
class TestProtocolRoundtrip:
    """Integration tests for protocol message roundtrips using mock streams."""

    @pytest.mark.asyncio
    async def test_write_read_join_room(
        self, mock_writer: MockStreamWriter, mock_reader: MockStreamReader
    ) -> None:
        """Test writing and reading a JOIN_ROOM message."""
        payload = serialize_join_room("r1")

        await write_message(mock_writer, MessageType.JOIN_ROOM, payload)
        mock_reader.feed_data(mock_writer.get_data())

        msg_type, received_payload = await read_message(mock_reader)

        assert msg_type == MessageType.JOIN_ROOM
        assert received_payload == payload

    @pytest.mark.asyncio
    async def test_write_read_empty_payload(
        self, mock_writer: MockStreamWriter, mock_reader: MockStreamReader
    ) -> None:
        """Test a message with no payload (LEAVE_ROOM)."""
        await write_message(mock_writer, MessageType.LEAVE_ROOM)
        mock_reader.feed_data(mock_writer.get_data())

        msg_type, received_payload = await read_message(mock_reader)

        assert msg_type == MessageType.LEAVE_ROOM
        assert received_payload == b""

    @pytest.mark.asyncio
    async def test_multiple_messages_in_sequence(
        self, mock_writer: MockStreamWriter, mock_reader: MockStreamReader
    ) -> None:
        """Test a snapshot followed by a relayed signal on one stream."""
        signal = {"type": "offer", "sdp": "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\n"}
        await write_message(
            mock_writer,
            MessageType.USERS_IN_ROOM,
            serialize_users_in_room(["alice", "bob"]),
        )
        await write_message(
            mock_writer,
            MessageType.RECEIVE_SIGNAL,
            serialize_receive_signal("alice", signal),
        )
        mock_reader.feed_data(mock_writer.get_data())

        msg_type, payload = await read_message(mock_reader)
        assert msg_type == MessageType.USERS_IN_ROOM
        assert deserialize_users_in_room(payload) == ["alice", "bob"]

        msg_type, payload = await read_message(mock_reader)
        assert msg_type == MessageType.RECEIVE_SIGNAL
        assert deserialize_receive_signal(payload) == ("alice", signal)

    @pytest.mark.asyncio
    async def test_partial_frame_raises_incomplete_read(
        self, mock_writer: MockStreamWriter, mock_reader: MockStreamReader
    ) -> None:
        """Test a truncated frame surfaces as IncompleteReadError."""
        await write_message(
            mock_writer,
            MessageType.JOIN_ROOM,
            serialize_join_room("room"),
        )
        mock_reader.feed_data(mock_writer.get_data()[:-2])

        with pytest.raises(asyncio.IncompleteReadError):
            await read_message(mock_reader)
