"""Tests for the wire protocol serialization/deserialization."""

from __future__ import annotations

import json
import struct

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from voice_mesh.common.constants import MAX_MESSAGE_SIZE
from voice_mesh.common.protocol import (
    MessageType,
    deserialize_join_room,
    deserialize_receive_signal,
    deserialize_signal,
    deserialize_user_joined,
    deserialize_user_left,
    deserialize_users_in_room,
    deserialize_welcome,
    read_message,
    serialize_join_room,
    serialize_receive_signal,
    serialize_signal,
    serialize_user_joined,
    serialize_user_left,
    serialize_users_in_room,
    serialize_welcome,
)

from tests.conftest import MockStreamReader

participant_ids = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",)), max_size=40
)

json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(max_size=20),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=10), children, max_size=4),
    max_leaves=10,
)


class TestMessageType:
    """Tests for message type codes."""

    def test_codes_are_unique(self) -> None:
        """Test that no two message types share a code."""
        values = [m.value for m in MessageType]
        assert len(values) == len(set(values))

    def test_codes_fit_in_one_byte(self) -> None:
        """Test that every code fits the one-byte type field."""
        assert all(0 <= m.value <= 0xFF for m in MessageType)


class TestStringMessages:
    """Tests for the single-id messages (WELCOME, JOIN_ROOM, USER_JOINED, USER_LEFT)."""

    def test_welcome_roundtrip(self) -> None:
        """Test WELCOME carries the assigned id."""
        assert deserialize_welcome(serialize_welcome("aB3_-x")) == "aB3_-x"

    def test_join_room_unicode(self) -> None:
        """Test room ids are opaque and may contain any characters."""
        room = "räum / 1 ✓"
        assert deserialize_join_room(serialize_join_room(room)) == room

    def test_join_room_empty(self) -> None:
        """Test an empty room id survives encoding."""
        assert deserialize_join_room(serialize_join_room("")) == ""

    def test_user_joined_and_left(self) -> None:
        """Test USER_JOINED and USER_LEFT carry the participant id."""
        assert deserialize_user_joined(serialize_user_joined("bob")) == "bob"
        assert deserialize_user_left(serialize_user_left("bob")) == "bob"

    def test_truncated_length_raises(self) -> None:
        """Test a payload shorter than the length prefix is rejected."""
        with pytest.raises(ValueError):
            deserialize_user_joined(b"\x00")

    def test_truncated_data_raises(self) -> None:
        """Test a payload shorter than its declared length is rejected."""
        with pytest.raises(ValueError):
            deserialize_user_left(struct.pack(">H", 10) + b"abc")

    @given(participant_ids)
    @settings(max_examples=50)
    def test_roundtrip_hypothesis(self, participant_id: str) -> None:
        """Property: any id survives a roundtrip."""
        data = serialize_user_joined(participant_id)
        assert deserialize_user_joined(data) == participant_id


class TestUsersInRoom:
    """Tests for USERS_IN_ROOM snapshots."""

    def test_preserves_order(self) -> None:
        """Test members come back in join order."""
        members = ["alice", "bob", "carol"]
        assert deserialize_users_in_room(serialize_users_in_room(members)) == members

    def test_empty(self) -> None:
        """Test an empty snapshot."""
        assert deserialize_users_in_room(serialize_users_in_room([])) == []

    def test_missing_count_raises(self) -> None:
        """Test a payload without the member count is rejected."""
        with pytest.raises(ValueError):
            deserialize_users_in_room(b"\x00\x00")

    def test_count_larger_than_data_raises(self) -> None:
        """Test a count promising more members than present is rejected."""
        data = struct.pack(">I", 3) + serialize_user_joined("alice")
        with pytest.raises(ValueError):
            deserialize_users_in_room(data)

    @given(st.lists(participant_ids, max_size=20))
    @settings(max_examples=50)
    def test_roundtrip_hypothesis(self, members: list[str]) -> None:
        """Property: any member list survives a roundtrip."""
        assert deserialize_users_in_room(serialize_users_in_room(members)) == members


class TestSignalEnvelopes:
    """Tests for SIGNAL and RECEIVE_SIGNAL."""

    def test_signal_wire_shape(self) -> None:
        """Test SIGNAL is JSON with recipientId and payload."""
        data = serialize_signal("bob", {"type": "offer", "sdp": "v=0"})
        assert json.loads(data) == {
            "recipientId": "bob",
            "payload": {"type": "offer", "sdp": "v=0"},
        }

    def test_receive_signal_wire_shape(self) -> None:
        """Test RECEIVE_SIGNAL is JSON with senderId and payload."""
        data = serialize_receive_signal("alice", "opaque")
        assert json.loads(data) == {"senderId": "alice", "payload": "opaque"}

    def test_null_payload_is_kept(self) -> None:
        """Test a null payload is distinct from a missing one."""
        assert deserialize_signal(serialize_signal("bob", None)) == ("bob", None)

    def test_missing_payload_raises(self) -> None:
        """Test an envelope without payload is rejected."""
        with pytest.raises(ValueError):
            deserialize_signal(b'{"recipientId": "bob"}')

    def test_non_string_id_raises(self) -> None:
        """Test an envelope with a numeric id is rejected."""
        with pytest.raises(ValueError):
            deserialize_receive_signal(b'{"senderId": 7, "payload": {}}')

    def test_not_an_object_raises(self) -> None:
        """Test a JSON array is not accepted as an envelope."""
        with pytest.raises(ValueError):
            deserialize_signal(b'["bob", {}]')

    def test_invalid_json_raises(self) -> None:
        """Test malformed JSON surfaces as ValueError."""
        with pytest.raises(ValueError):
            deserialize_signal(b"{not json")

    @given(participant_ids, json_values)
    @settings(max_examples=50)
    def test_payload_is_opaque(self, recipient_id: str, payload: object) -> None:
        """Property: any JSON payload is carried unchanged."""
        assert deserialize_signal(serialize_signal(recipient_id, payload)) == (
            recipient_id,
            payload,
        )


class TestReadMessage:
    """Tests for frame validation in read_message."""

    @pytest.mark.asyncio
    async def test_zero_length_rejected(self) -> None:
        """Test a frame without a type byte is rejected."""
        reader = MockStreamReader(struct.pack(">I", 0))
        with pytest.raises(ValueError):
            await read_message(reader)

    @pytest.mark.asyncio
    async def test_oversized_frame_rejected(self) -> None:
        """Test a frame above the size cap is rejected before reading it."""
        reader = MockStreamReader(struct.pack(">I", MAX_MESSAGE_SIZE + 1))
        with pytest.raises(ValueError):
            await read_message(reader)

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self) -> None:
        """Test an unknown message type is rejected."""
        reader = MockStreamReader(struct.pack(">IB", 1, 0xEE))
        with pytest.raises(ValueError):
            await read_message(reader)
