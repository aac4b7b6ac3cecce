"""Pure full-mesh link state machine.

``MeshState.handle`` takes one event (membership change, relayed handshake
payload, transport callback) and returns the side effects to perform. It does
no I/O, so the coordinator can run it as a single-threaded reactor and tests
can drive it directly.

Link lifecycle per remote participant::

    Absent --user-joined--> Negotiating(initiator)
    Absent --signal-------> Negotiating(responder)
    Negotiating --stream--> Established
    Negotiating|Established --left/failed/leave/closed--> Absent

Only the side that receives ``user-joined`` initiates; the joiner only
responds. With the registry sending ``user-joined`` to pre-existing members
only, exactly one side of every pair initiates.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Union


class Role(enum.Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class LinkState(enum.Enum):
    NEGOTIATING = "negotiating"
    ESTABLISHED = "established"


@dataclass
class PeerLink:
    peer_id: str
    role: Role
    state: LinkState = LinkState.NEGOTIATING


# Events


@dataclass(frozen=True)
class MembershipSnapshot:
    participant_ids: tuple[str, ...]


@dataclass(frozen=True)
class PeerJoined:
    peer_id: str


@dataclass(frozen=True)
class PeerLeft:
    peer_id: str


@dataclass(frozen=True)
class SignalReceived:
    peer_id: str
    payload: Any


@dataclass(frozen=True)
class StreamStarted:
    peer_id: str


@dataclass(frozen=True)
class LinkFailed:
    peer_id: str


@dataclass(frozen=True)
class ChannelClosed:
    pass


@dataclass(frozen=True)
class LocalLeave:
    pass


MeshEvent = Union[
    MembershipSnapshot,
    PeerJoined,
    PeerLeft,
    SignalReceived,
    StreamStarted,
    LinkFailed,
    ChannelClosed,
    LocalLeave,
]


# Effects


@dataclass(frozen=True)
class OpenLink:
    peer_id: str
    role: Role


@dataclass(frozen=True)
class DeliverSignal:
    peer_id: str
    payload: Any


@dataclass(frozen=True)
class CloseLink:
    peer_id: str


Effect = Union[OpenLink, DeliverSignal, CloseLink]


@dataclass
class MeshState:
    """Link table and room view of one participant."""

    self_id: str
    links: dict[str, PeerLink] = field(default_factory=dict)
    # Other members per the latest snapshot, in snapshot order
    peers: list[str] = field(default_factory=list)
    closed: bool = False

    def handle(self, event: MeshEvent) -> list[Effect]:
        if self.closed:
            return []

        if isinstance(event, MembershipSnapshot):
            return self._on_snapshot(event.participant_ids)

        if isinstance(event, PeerJoined):
            if event.peer_id == self.self_id or event.peer_id in self.links:
                return []
            self.links[event.peer_id] = PeerLink(event.peer_id, Role.INITIATOR)
            if event.peer_id not in self.peers:
                self.peers.append(event.peer_id)
            return [OpenLink(event.peer_id, Role.INITIATOR)]

        if isinstance(event, SignalReceived):
            if event.peer_id == self.self_id:
                return []
            effects: list[Effect] = []
            if event.peer_id not in self.links:
                self.links[event.peer_id] = PeerLink(event.peer_id, Role.RESPONDER)
                effects.append(OpenLink(event.peer_id, Role.RESPONDER))
            effects.append(DeliverSignal(event.peer_id, event.payload))
            return effects

        if isinstance(event, StreamStarted):
            link = self.links.get(event.peer_id)
            if link is not None:
                link.state = LinkState.ESTABLISHED
            return []

        if isinstance(event, PeerLeft):
            if event.peer_id in self.peers:
                self.peers.remove(event.peer_id)
            return self._close(event.peer_id)

        if isinstance(event, LinkFailed):
            return self._close(event.peer_id)

        if isinstance(event, (ChannelClosed, LocalLeave)):
            self.closed = True
            self.peers = []
            return [CloseLink(peer_id) for peer_id in self._drain_links()]

        raise TypeError(f"Unknown mesh event: {event!r}")

    def _on_snapshot(self, participant_ids: tuple[str, ...]) -> list[Effect]:
        self.peers = [pid for pid in participant_ids if pid != self.self_id]
        present = set(self.peers)
        stale = [peer_id for peer_id in self.links if peer_id not in present]
        return [effect for peer_id in stale for effect in self._close(peer_id)]

    def _drain_links(self) -> list[str]:
        peer_ids = list(self.links)
        self.links.clear()
        return peer_ids

    def _close(self, peer_id: str) -> list[Effect]:
        if self.links.pop(peer_id, None) is None:
            return []
        return [CloseLink(peer_id)]
