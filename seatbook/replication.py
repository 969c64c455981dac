"""Primary-commit, fan-out replication with retries."""

import random
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Set, Tuple

from asimpy import Environment, Queue
from loguru import logger

from seatbook.booking_types import (
    EventKind,
    ReplicaStatus,
    ReplicationPush,
    SeatRef,
    SeatState,
)
from seatbook.lamport_clock import LogicalClock
from seatbook.server_node import ServerNode


class ReplicationCoordinator:
    """Commits on the primary and pushes state to every replica.

    Each push has its own delay and its own chance of failing. A failed
    replica keeps its stale state until retry() reaches it.
    """

    def __init__(
        self,
        env: Environment,
        primary: ServerNode,
        replicas: List[ServerNode],
        clock: LogicalClock,
        rng: Optional[random.Random] = None,
        delay_fn: Optional[Callable[[], float]] = None,
        p_fail: float = 0.05,
        delay_range: Tuple[float, float] = (0.02, 0.10),
    ):
        self.env = env
        self.primary = primary
        self.replicas = replicas
        self.clock = clock
        self.rng = rng or random.Random()
        self.p_fail = p_fail
        low, high = delay_range
        self.delay_fn = delay_fn or (lambda: self.rng.uniform(low, high))

        # Seats each replica has not yet acknowledged
        self.pending: Dict[str, Set[SeatRef]] = defaultdict(set)
        self.pushes_sent = 0

    def commit(self, ref: SeatRef, new_state: SeatState) -> int:
        """Write to the primary and bump its version."""
        self.primary.set_state(ref, new_state)
        self.primary.version += 1
        self.clock.record(
            self.primary.node_id, EventKind.LOCAL, str(ref), f"seat_{new_state.value}"
        )
        logger.info(
            f"[{self.env.now:.2f}] {self.primary.node_id}: Committed "
            f"{ref}={new_state.value} at v{self.primary.version}"
        )
        return self.primary.version

    async def propagate(
        self, ref: SeatRef, new_state: SeatState, version: int
    ) -> Dict[str, bool]:
        """Push one seat's state to all replicas."""
        targets = [(replica, {ref: new_state}) for replica in self.replicas]
        return await self._push(targets, version)

    async def retry(self) -> Dict[str, bool]:
        """Re-push the primary's current state to failed replicas only."""
        targets = []
        for replica in self.failed_replicas():
            states = {
                ref: self.primary.state_of(ref)
                for ref in sorted(self.pending[replica.node_id])
            }
            targets.append((replica, states))

        if not targets:
            return {}

        logger.info(
            f"[{self.env.now:.2f}] Replication: retrying "
            f"{[r.node_id for r, _ in targets]}"
        )
        return await self._push(targets, self.primary.version)

    async def converge(self, max_rounds: int = 10) -> int:
        """Retry until no replica is failed; return the rounds used."""
        rounds = 0
        while self.failed_replicas() and rounds < max_rounds:
            await self.retry()
            rounds += 1
        return rounds

    def failed_replicas(self) -> List[ServerNode]:
        return [r for r in self.replicas if r.status == ReplicaStatus.FAILED]

    def is_consistent(self) -> bool:
        """True when every replica matches the primary's committed state."""
        primary = self.primary
        for replica in self.replicas:
            if replica.version != primary.version:
                return False
            for key in set(primary.showtimes) | set(replica.showtimes):
                if replica.seat_states(key) != primary.seat_states(key):
                    return False
        return True

    async def _push(
        self, targets: List[Tuple[ServerNode, Dict[SeatRef, SeatState]]], version: int
    ) -> Dict[str, bool]:
        # Send everything first so replicas work concurrently
        response_queues = []
        for replica, states in targets:
            seat_key = ",".join(str(ref) for ref in sorted(states))
            event = self.clock.record(
                self.primary.node_id, EventKind.SEND, seat_key, "replicate_seat_state"
            )
            self.pending[replica.node_id].update(states)
            replica.status = ReplicaStatus.SYNCING

            response_queue = Queue(self.env)
            response_queues.append((replica, states, response_queue))
            push = ReplicationPush(
                seat_states=dict(states),
                version=version,
                timestamp=event.timestamp,
                delay=self.delay_fn(),
                fail=self.rng.random() < self.p_fail,
                response_queue=response_queue,
            )
            self.pushes_sent += 1
            await replica.request_queue.put(push)

        results = {}
        for replica, states, response_queue in response_queues:
            ack = await response_queue.get()
            results[replica.node_id] = ack.success
            if ack.success:
                self.pending[replica.node_id].difference_update(states)
                if not self.pending[replica.node_id]:
                    replica.status = ReplicaStatus.SYNCED
                else:
                    replica.status = ReplicaStatus.FAILED
            else:
                replica.status = ReplicaStatus.FAILED

        return results
