"""Server node holding a copy of the seat map."""

from typing import Dict, Iterable, Optional

from asimpy import Process, Queue
from loguru import logger

from seatbook.booking_types import (
    EventKind,
    LedgerKey,
    ReplicaStatus,
    ReplicationAck,
    ReplicationPush,
    SeatRef,
    SeatState,
)
from seatbook.lamport_clock import LogicalClock


class ServerNode(Process):
    """A node in the booking cluster; the primary is authoritative.

    Seat state is kept per showtime, the same way the booked and lease
    ledgers are keyed. A showtime's map is filled from the seat grid the
    first time anything touches it.
    """

    def init(
        self,
        node_id: str,
        clock: LogicalClock,
        seat_ids: Iterable[str] = (),
        initial_offset: float = 0.0,
    ):
        self.node_id = node_id
        self.clock = clock
        self.request_queue = Queue(self._env)

        # Local clock offset from true (simulation) time
        self.clock_offset = initial_offset
        self.last_sync_at = self.now

        self.seat_ids = list(seat_ids)
        self.showtimes: Dict[LedgerKey, Dict[str, SeatState]] = {}
        self.version = 0
        self.status = ReplicaStatus.SYNCED

    @property
    def local_time(self) -> float:
        """Current time according to this node's clock."""
        return self.now + self.clock_offset

    @local_time.setter
    def local_time(self, value: float):
        self.clock_offset = value - self.now

    @property
    def logical_clock(self) -> int:
        return self.clock.value(self.node_id)

    def seat_states(self, key: LedgerKey) -> Dict[str, SeatState]:
        """Seat map of one showtime."""
        states = self.showtimes.get(key)
        if states is None:
            states = self.showtimes[key] = {
                seat_id: SeatState.AVAILABLE for seat_id in self.seat_ids
            }
        return states

    def state_of(self, ref: SeatRef) -> Optional[SeatState]:
        """None for a seat that is not part of the grid."""
        return self.seat_states(ref.key).get(ref.seat_id)

    def set_state(self, ref: SeatRef, state: SeatState):
        self.seat_states(ref.key)[ref.seat_id] = state

    async def run(self):
        """Apply replication pushes from the primary."""
        while True:
            push = await self.request_queue.get()
            ack = await self._handle_push(push)
            await push.response_queue.put(ack)

    async def _handle_push(self, push: ReplicationPush) -> ReplicationAck:
        await self.timeout(push.delay)
        refs = [str(ref) for ref in sorted(push.seat_states)]

        if push.fail:
            logger.warning(
                f"[{self.now:.2f}] {self.node_id}: Replication of "
                f"{refs} failed (v{push.version})"
            )
            return ReplicationAck(self.node_id, False, self.version)

        # Never regress to an older committed version
        if push.version >= self.version:
            for ref, state in push.seat_states.items():
                self.set_state(ref, state)
            self.version = push.version

        self.last_sync_at = self.now
        self.clock.record(
            self.node_id,
            EventKind.RECEIVE,
            ",".join(refs),
            "replicated_seat_state",
            received=push.timestamp,
        )

        logger.info(f"[{self.now:.2f}] {self.node_id}: Applied {refs} at v{self.version}")
        return ReplicationAck(self.node_id, True, self.version)

    def __str__(self) -> str:
        return f"Node({self.node_id}, v{self.version}, {self.status.value})"
