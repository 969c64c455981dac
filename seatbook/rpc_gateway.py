"""Simulated remote calls into the primary."""

import random
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from asimpy import Environment
from loguru import logger

from seatbook.booking_types import (
    BookSeatReply,
    EventKind,
    LedgerKey,
    SeatOutcome,
    SeatRef,
    SeatState,
)
from seatbook.exceptions import UnknownOperationError, UnknownSeatError
from seatbook.lamport_clock import LogicalClock
from seatbook.mutex_coordinator import MutexCoordinator
from seatbook.replication import ReplicationCoordinator
from seatbook.server_node import ServerNode


class RpcOperation(Enum):
    """Operations the gateway dispatches."""

    CHECK_AVAILABILITY = "checkSeatAvailability"
    BOOK_SEAT = "bookSeat"
    UPDATE_STATE = "updateSeatState"


class RPCGateway:
    """Front door to the primary: every call pays network latency first."""

    def __init__(
        self,
        env: Environment,
        primary: ServerNode,
        clock: LogicalClock,
        mutex: MutexCoordinator,
        replication: ReplicationCoordinator,
        rng: Optional[random.Random] = None,
        latency_fn: Optional[Callable[[], float]] = None,
        latency_range: Tuple[float, float] = (0.05, 0.15),
    ):
        self.env = env
        self.primary = primary
        self.clock = clock
        self.mutex = mutex
        self.replication = replication
        self.rng = rng or random.Random()
        low, high = latency_range
        self.latency_fn = latency_fn or (lambda: self.rng.uniform(low, high))
        self.calls_served = 0

    async def call(self, operation, params: Dict[str, Any]) -> Any:
        """Dispatch an operation after the simulated round trip.

        Every operation names its seat by movie_id, showtime and seat_id.
        Contention is an ordinary result; only an unknown operation raises.
        """
        await self.env.timeout(self.latency_fn())

        try:
            operation = RpcOperation(operation)
        except ValueError:
            raise UnknownOperationError(operation) from None

        self.calls_served += 1
        ref = SeatRef(LedgerKey(params["movie_id"], params["showtime"]), params["seat_id"])
        if operation == RpcOperation.CHECK_AVAILABILITY:
            return self.check_availability(ref)
        elif operation == RpcOperation.BOOK_SEAT:
            return await self.book_seat(ref, params["node_id"], params["timestamp"])
        else:
            return self.update_state(ref, SeatState(params["state"]))

    def check_availability(self, ref: SeatRef) -> bool:
        return self.primary.state_of(ref) == SeatState.AVAILABLE

    async def book_seat(self, ref: SeatRef, node_id: str, timestamp: int) -> BookSeatReply:
        """Mutex, lock, commit, replicate, release."""
        primary = self.primary
        resource = str(ref)
        self.clock.record(
            primary.node_id, EventKind.RECEIVE, resource, "book_request", received=timestamp
        )

        # Booked seats never enter the queue
        if primary.state_of(ref) in (SeatState.BOOKED, None):
            logger.info(f"[{self.env.now:.2f}] RPC: {resource} already booked")
            return BookSeatReply(ref.seat_id, SeatOutcome.PRECONDITION_FAILURE)

        if not self.mutex.request(resource, node_id, timestamp):
            self.mutex.release(resource, node_id)
            logger.info(
                f"[{self.env.now:.2f}] RPC: {resource} contended, "
                f"{node_id} lost to {self.mutex.holder(resource)}"
            )
            return BookSeatReply(ref.seat_id, SeatOutcome.CONTENTION_FAILURE)

        try:
            state = primary.state_of(ref)
            if state == SeatState.BOOKED:
                return BookSeatReply(ref.seat_id, SeatOutcome.PRECONDITION_FAILURE)
            if state != SeatState.AVAILABLE:
                return BookSeatReply(ref.seat_id, SeatOutcome.CONTENTION_FAILURE)

            primary.set_state(ref, SeatState.LOCKED)
            version = self.replication.commit(ref, SeatState.BOOKED)
            replication = await self.replication.propagate(ref, SeatState.BOOKED, version)
            return BookSeatReply(ref.seat_id, SeatOutcome.BOOKED, version, replication)
        finally:
            self.mutex.release(resource, node_id)

    def update_state(self, ref: SeatRef, state: SeatState) -> bool:
        """Administrative overwrite of the primary; not replicated."""
        if self.primary.state_of(ref) is None:
            raise UnknownSeatError(ref.seat_id)
        self.primary.set_state(ref, state)
        self.clock.record(
            self.primary.node_id, EventKind.LOCAL, str(ref), f"state_reset_{state.value}"
        )
        return True
