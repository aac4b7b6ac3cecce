"""Shared fixtures for voice-mesh tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from voice_mesh.client.audio_capture import CaptureError, LocalCapture
from voice_mesh.client.mesh import Role
from voice_mesh.client.peer_link import LinkCallbacks, PeerTransport
from voice_mesh.common.protocol import MessageType


# Mock StreamReader/StreamWriter for protocol tests
class MockStreamReader:
    """Mock asyncio.StreamReader for testing protocol reads."""

    def __init__(self, data: bytes = b"") -> None:
        self._data = data
        self._offset = 0

    def feed_data(self, data: bytes) -> None:
        """Add data to the stream."""
        self._data = self._data[self._offset :] + data
        self._offset = 0

    async def readexactly(self, n: int) -> bytes:
        """Read exactly n bytes."""
        if self._offset + n > len(self._data):
            raise asyncio.IncompleteReadError(
                self._data[self._offset :], n - (len(self._data) - self._offset)
            )
        result = self._data[self._offset : self._offset + n]
        self._offset += n
        return result


class MockStreamWriter:
    """Mock asyncio.StreamWriter for testing protocol writes."""

    def __init__(self) -> None:
        self._data = b""
        self._closed = False

    def write(self, data: bytes) -> None:
        """Write data to the stream."""
        self._data += data

    async def drain(self) -> None:
        """Drain the write buffer (no-op for mock)."""
        pass

    def get_data(self) -> bytes:
        """Get all written data."""
        return self._data

    def close(self) -> None:
        """Close the writer."""
        self._closed = True

    async def wait_closed(self) -> None:
        """Wait for writer to close."""
        pass


@dataclass
class DeliveryRecorder:
    """Stands in for the server's deliver function.

    Records every message per recipient. Recipients in ``offline`` are treated
    as disconnected.
    """

    sent: list[tuple[str, MessageType, bytes]] = field(default_factory=list)
    offline: set[str] = field(default_factory=set)

    async def __call__(
        self, recipient_id: str, msg_type: MessageType, payload: bytes
    ) -> bool:
        if recipient_id in self.offline:
            return False
        self.sent.append((recipient_id, msg_type, payload))
        return True

    def to(self, recipient_id: str) -> list[tuple[MessageType, bytes]]:
        return [(t, p) for r, t, p in self.sent if r == recipient_id]

    def clear(self) -> None:
        self.sent.clear()


class FakeCapture(LocalCapture):
    """Microphone stand-in that never touches an audio device."""

    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.started = False
        self.stopped = False

    def start(self) -> None:
        if self.fail:
            raise CaptureError("Microphone unavailable: no device")
        self.started = True

    def stop(self) -> None:
        self.stopped = True


class FakeTransport(PeerTransport):
    """Records handshake traffic instead of opening a real connection."""

    def __init__(self, peer_id: str, role: Role, callbacks: LinkCallbacks) -> None:
        super().__init__(peer_id, role, callbacks)
        self.started = False
        self.closed = False
        self.received: list[Any] = []

    async def start(self) -> None:
        self.started = True
        if self.role is Role.INITIATOR:
            await self.callbacks.send_signal({"type": "offer", "sdp": "fake"})

    async def handle_signal(self, payload: Any) -> None:
        self.received.append(payload)
        if isinstance(payload, dict) and payload.get("type") == "offer":
            await self.callbacks.send_signal({"type": "answer", "sdp": "fake"})
            self.callbacks.on_stream()
        elif isinstance(payload, dict) and payload.get("type") == "answer":
            self.callbacks.on_stream()

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeTransportFactory:
    """Transport factory that keeps every transport it creates."""

    created: list[FakeTransport] = field(default_factory=list)

    def __call__(
        self, peer_id: str, role: Role, callbacks: LinkCallbacks
    ) -> FakeTransport:
        transport = FakeTransport(peer_id, role, callbacks)
        self.created.append(transport)
        return transport

    def for_peer(self, peer_id: str) -> list[FakeTransport]:
        return [t for t in self.created if t.peer_id == peer_id]


async def wait_for(
    condition: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01
) -> None:
    """Poll until condition() is true, failing the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


async def drain_tasks(rounds: int = 5) -> None:
    """Let pending tasks run a few scheduling rounds."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def mock_reader() -> MockStreamReader:
    """Create a mock stream reader."""
    return MockStreamReader()


@pytest.fixture
def mock_writer() -> MockStreamWriter:
    """Create a mock stream writer."""
    return MockStreamWriter()


@pytest.fixture
def recorder() -> DeliveryRecorder:
    """Create a delivery recorder with every participant online."""
    return DeliveryRecorder()
