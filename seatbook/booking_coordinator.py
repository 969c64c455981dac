"""Public entry points used by the booking front end."""

import random
from typing import Callable, Dict, Iterable, List, Optional

from asimpy import Environment
from loguru import logger

from seatbook.berkeley_sync import ClockSynchronizer
from seatbook.booked_ledger import BookedSeatLedger
from seatbook.booking_types import (
    BookingResult,
    EventKind,
    LedgerKey,
    SeatOutcome,
    SeatRef,
    SeatResult,
    SystemStatus,
)
from seatbook.config import Settings, settings as default_settings
from seatbook.kv_store import KeyValueStore, create_store
from seatbook.lamport_clock import LogicalClock
from seatbook.mutex_coordinator import MutexCoordinator
from seatbook.replication import ReplicationCoordinator
from seatbook.rpc_gateway import RPCGateway, RpcOperation
from seatbook.seat_lease_store import SeatLeaseStore
from seatbook.server_node import ServerNode


def generate_seat_ids(rows: int, seats_per_row: int) -> List[str]:
    """Theater grid ids: A1..A12, B1.., one letter per row."""
    return [
        f"{chr(ord('A') + row)}{seat}"
        for row in range(rows)
        for seat in range(1, seats_per_row + 1)
    ]


class BookingCoordinator:
    """Owns one simulated cluster and the ledgers it shares with browsers.

    Nothing here is global: build one per simulation.
    """

    def __init__(
        self,
        env: Environment,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        store: Optional[KeyValueStore] = None,
        wall_clock: Optional[Callable[[], int]] = None,
        seat_ids: Optional[Iterable[str]] = None,
        latency_fn: Optional[Callable[[], float]] = None,
        replication_delay_fn: Optional[Callable[[], float]] = None,
    ):
        self.env = env
        self.settings = settings or default_settings
        self.rng = rng or random.Random()
        cfg = self.settings

        if seat_ids is None:
            seat_ids = generate_seat_ids(cfg.SEAT_ROWS, cfg.SEATS_PER_ROW)
        self.seat_ids = list(seat_ids)

        self.clock = LogicalClock()
        self.primary = ServerNode(env, cfg.PRIMARY_ID, self.clock, self.seat_ids)
        self.replicas = [
            ServerNode(env, f"replica-{i + 1}", self.clock, self.seat_ids)
            for i in range(cfg.REPLICA_COUNT)
        ]
        self.nodes = [self.primary] + self.replicas

        self.synchronizer = ClockSynchronizer(
            env, cfg.SYNC_POLL_DELAY, cfg.CLOCK_DRIFT_MAX, self.rng
        )
        self.mutex = MutexCoordinator()
        self.replication = ReplicationCoordinator(
            env,
            self.primary,
            self.replicas,
            self.clock,
            rng=self.rng,
            delay_fn=replication_delay_fn,
            p_fail=cfg.REPLICATION_FAILURE_RATE,
            delay_range=(cfg.REPLICATION_DELAY_MIN, cfg.REPLICATION_DELAY_MAX),
        )
        self.gateway = RPCGateway(
            env,
            self.primary,
            self.clock,
            self.mutex,
            self.replication,
            rng=self.rng,
            latency_fn=latency_fn,
            latency_range=(cfg.RPC_LATENCY_MIN, cfg.RPC_LATENCY_MAX),
        )

        store = store or create_store(self.settings)
        self.leases = SeatLeaseStore(store, wall_clock, cfg.LEASE_TTL_MS)
        self.booked = BookedSeatLedger(store)

    async def book_seats(
        self,
        movie_id: str,
        showtime: str,
        seat_ids: Iterable[str],
        holder: str,
        node_id: Optional[str] = None,
    ) -> BookingResult:
        """Book each seat independently and report every one of them."""
        key = LedgerKey(movie_id, showtime)
        # The requesting context is its own process in the mutex unless told otherwise
        node_id = node_id or holder
        result = BookingResult(movie_id, showtime, holder)

        for seat_id in dict.fromkeys(seat_ids):
            result.seats[seat_id] = await self._book_one(key, seat_id, holder, node_id)

        if result.success:
            logger.info(f"[{self.env.now:.2f}] {holder}: {result}")
        else:
            logger.warning(f"[{self.env.now:.2f}] {holder}: partial or failed {result}")
        return result

    async def _book_one(
        self, key: LedgerKey, seat_id: str, holder: str, node_id: str
    ) -> SeatResult:
        if self.booked.is_booked(key, seat_id):
            return SeatResult(seat_id, SeatOutcome.PRECONDITION_FAILURE)

        lease_holder = self.leases.holder_of(key, seat_id)
        if lease_holder is not None and lease_holder != holder:
            logger.info(
                f"[{self.env.now:.2f}] {holder}: {seat_id} leased by {lease_holder}"
            )
            return SeatResult(seat_id, SeatOutcome.CONTENTION_FAILURE)

        await self.synchronizer.run_round(self.nodes)

        ref = SeatRef(key, seat_id)
        request = self.clock.record(node_id, EventKind.SEND, str(ref), "book_request")
        reply = await self.gateway.call(
            RpcOperation.BOOK_SEAT,
            {
                "movie_id": key.movie_id,
                "showtime": key.showtime,
                "seat_id": seat_id,
                "node_id": node_id,
                "timestamp": request.timestamp,
            },
        )

        if reply.success:
            self.leases.release(key, seat_id, holder)
            self.booked.merge(key, [seat_id])
        return SeatResult(seat_id, reply.outcome, reply.version, reply.replication)

    async def check_availability(
        self,
        movie_id: str,
        showtime: str,
        seat_ids: Iterable[str],
        holder: Optional[str] = None,
    ) -> Dict[str, bool]:
        """Ask the primary about each seat, one RPC per seat.

        A seat the primary calls free still reports False if the showtime's
        booked ledger lists it or another holder has a live lease on it.
        """
        key = LedgerKey(movie_id, showtime)
        results = {}
        for seat_id in dict.fromkeys(seat_ids):
            results[seat_id] = await self.gateway.call(
                RpcOperation.CHECK_AVAILABILITY,
                {"movie_id": movie_id, "showtime": showtime, "seat_id": seat_id},
            )

        booked = set(self.booked.booked(key))
        leases = self.leases.snapshot(key)
        for seat_id in results:
            lease = leases.get(seat_id)
            if seat_id in booked or (lease is not None and lease.holder != holder):
                results[seat_id] = False
        return results

    async def retry_replication(self, max_rounds: int = 10) -> int:
        """Drive failed replicas back to the primary's version."""
        return await self.replication.converge(max_rounds)

    def get_system_status(self) -> SystemStatus:
        window = self.settings.SYNC_FRESHNESS_WINDOW
        now = self.env.now
        return SystemStatus(
            node_count=len(self.nodes),
            synced_node_count=sum(
                1 for n in self.nodes if now - n.last_sync_at < window
            ),
            event_count=len(self.clock.events),
            queued_request_count=self.mutex.queued_count(),
            last_sync_at=max(n.last_sync_at for n in self.nodes),
        )
