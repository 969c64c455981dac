"""Data types shared by the booking core."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from asimpy import Queue


class SeatState(Enum):
    """Authoritative state of a seat on a server node."""

    AVAILABLE = "available"
    LOCKED = "locked"
    BOOKED = "booked"


class EventKind(Enum):
    """Kind of event in the Lamport log."""

    LOCAL = "local"
    SEND = "send"
    RECEIVE = "receive"


@dataclass(frozen=True)
class LamportEvent:
    """One entry in the append-only event log."""

    timestamp: int
    node_id: str
    kind: EventKind
    seat_id: str
    description: str = ""

    def __str__(self) -> str:
        return f"<{self.timestamp},{self.node_id}> {self.kind.value} {self.description} {self.seat_id}"


@dataclass(frozen=True, order=True)
class MutexRequest:
    """A queued request for exclusive access to one seat.

    Field order gives the (timestamp, node_id) total order used by the queue.
    """

    timestamp: int
    node_id: str
    seat_id: str = field(compare=False)


@dataclass(frozen=True, order=True)
class LedgerKey:
    """Identifies the ledgers of one showtime of one movie."""

    movie_id: str
    showtime: str

    @property
    def lease_key(self) -> str:
        return f"lease:{self.movie_id}:{self.showtime}"

    @property
    def booked_key(self) -> str:
        return f"booked:{self.movie_id}:{self.showtime}"

    def __str__(self) -> str:
        return f"{self.movie_id}:{self.showtime}"


@dataclass(frozen=True, order=True)
class SeatRef:
    """One seat of one showtime; the unit every node, lock and push works on."""

    key: LedgerKey
    seat_id: str

    def __str__(self) -> str:
        return f"{self.key}/{self.seat_id}"


@dataclass(frozen=True)
class SeatLease:
    """A time-limited claim on a seat by one browsing context."""

    seat_id: str
    holder: str
    expires_at: int  # epoch ms

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at <= now_ms


class ReplicaStatus(Enum):
    """Replication health of a replica node."""

    SYNCED = "synced"
    SYNCING = "syncing"
    FAILED = "failed"


class SeatOutcome(Enum):
    """Per-seat result of a booking attempt."""

    BOOKED = "booked"
    PRECONDITION_FAILURE = "precondition_failure"  # already booked
    CONTENTION_FAILURE = "contention_failure"  # lease or mutex held elsewhere


class SeatDisplayState(Enum):
    """What a browsing context shows for a seat."""

    BOOKED = "booked"
    LOCKED = "locked"
    SELECTED = "selected"
    AVAILABLE = "available"


@dataclass
class ReplicationPush:
    """Primary-to-replica state transfer."""

    seat_states: Dict[SeatRef, SeatState]
    version: int
    timestamp: int
    delay: float
    fail: bool
    response_queue: Queue


@dataclass
class ReplicationAck:
    """Replica's answer to a push."""

    replica_id: str
    success: bool
    version: int


@dataclass
class BookSeatReply:
    """Payload returned by the gateway's BookSeat operation."""

    seat_id: str
    outcome: SeatOutcome
    version: Optional[int] = None
    replication: Dict[str, bool] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome == SeatOutcome.BOOKED


@dataclass
class SeatResult:
    """How one seat of a booking request fared."""

    seat_id: str
    outcome: SeatOutcome
    version: Optional[int] = None
    replication: Dict[str, bool] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome == SeatOutcome.BOOKED


@dataclass
class BookingResult:
    """Per-seat report for a BookSeats call."""

    movie_id: str
    showtime: str
    holder: str
    seats: Dict[str, SeatResult] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.seats) and all(r.success for r in self.seats.values())

    @property
    def booked_seats(self) -> List[str]:
        return [s for s, r in self.seats.items() if r.success]

    @property
    def failed_seats(self) -> List[str]:
        return [s for s, r in self.seats.items() if not r.success]

    def __str__(self) -> str:
        return (
            f"Booking({self.movie_id}@{self.showtime}, "
            f"booked={self.booked_seats}, failed={self.failed_seats})"
        )


@dataclass(frozen=True)
class SystemStatus:
    """Snapshot returned by GetSystemStatus."""

    node_count: int
    synced_node_count: int
    event_count: int
    queued_request_count: int
    last_sync_at: float
