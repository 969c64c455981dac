"""Per-node Lamport counters and the event log they stamp."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from seatbook.booking_types import EventKind, LamportEvent


@dataclass
class LogicalClock:
    """Lamport clocks for every node in the cluster."""

    counters: Dict[str, int] = field(default_factory=dict)
    events: List[LamportEvent] = field(default_factory=list)

    def value(self, node_id: str) -> int:
        """Current counter of a node (0 if it has never ticked)."""
        return self.counters.get(node_id, 0)

    def tick(self, node_id: str) -> int:
        """Advance a node's counter for a local or send event."""
        self.counters[node_id] = self.value(node_id) + 1
        return self.counters[node_id]

    def observe(self, node_id: str, received: int) -> int:
        """Merge a received timestamp: max(current, received) + 1."""
        self.counters[node_id] = max(self.value(node_id), received) + 1
        return self.counters[node_id]

    def record(
        self,
        node_id: str,
        kind: EventKind,
        seat_id: str,
        description: str = "",
        received: Optional[int] = None,
    ) -> LamportEvent:
        """Stamp an event and append it to the log."""
        if kind == EventKind.RECEIVE:
            if received is None:
                raise ValueError("receive events need the sender's timestamp")
            timestamp = self.observe(node_id, received)
        else:
            timestamp = self.tick(node_id)

        event = LamportEvent(timestamp, node_id, kind, seat_id, description)
        self.events.append(event)
        return event

    def ordered_events(self) -> List[LamportEvent]:
        """Events in total order: timestamp, then node id."""
        return sorted(self.events, key=lambda e: (e.timestamp, e.node_id))

    def __str__(self):
        items = sorted(self.counters.items())
        return "{" + ", ".join(f"{k}:{v}" for k, v in items) + "}"
