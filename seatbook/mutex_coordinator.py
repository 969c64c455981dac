"""Timestamp-ordered mutual exclusion over seats."""

import bisect
from collections import defaultdict
from typing import Dict, List, Optional

from loguru import logger

from seatbook.booking_types import MutexRequest


class MutexCoordinator:
    """One request queue per resource, ordered by (Lamport timestamp, node id).

    A resource is any string; the booking path uses one per showtime seat.

    Grants are sticky rather than strictly head-of-queue. A free resource
    goes to the head of its queue when the head asks, and the holder keeps
    it until it releases. A request with an older timestamp that arrives
    while the resource is held becomes the new head but is not granted
    until the holder releases; waiters re-poll request().
    """

    def __init__(self):
        self.queues: Dict[str, List[MutexRequest]] = defaultdict(list)
        self.granted: Dict[str, str] = {}

    def request(self, seat_id: str, node_id: str, timestamp: int) -> bool:
        """Queue a request (once per node) and report whether it is granted."""
        queue = self.queues[seat_id]
        if self._find(queue, node_id) is None:
            bisect.insort(queue, MutexRequest(timestamp, node_id, seat_id))

        holder = self.granted.get(seat_id)
        if holder is None and queue[0].node_id == node_id:
            self.granted[seat_id] = holder = node_id

        if holder != node_id:
            logger.debug(
                f"Mutex: {node_id} waits for {seat_id} "
                f"(held by {holder}, head {queue[0].node_id})"
            )
        return holder == node_id

    def release(self, seat_id: str, node_id: str) -> bool:
        """Drop a node's entry (granted or waiting); True if there was one."""
        queue = self.queues.get(seat_id)
        if not queue:
            return False

        entry = self._find(queue, node_id)
        if entry is None:
            return False

        queue.remove(entry)
        if self.granted.get(seat_id) == node_id:
            del self.granted[seat_id]
        if not queue:
            del self.queues[seat_id]
        return True

    def holder(self, seat_id: str) -> Optional[str]:
        """Node currently inside the seat's critical section."""
        return self.granted.get(seat_id)

    def pending(self, seat_id: str) -> List[MutexRequest]:
        return list(self.queues.get(seat_id, []))

    def queued_count(self) -> int:
        return sum(len(q) for q in self.queues.values())

    def _find(self, queue: List[MutexRequest], node_id: str) -> Optional[MutexRequest]:
        for entry in queue:
            if entry.node_id == node_id:
                return entry
        return None
