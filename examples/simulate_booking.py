"""Several front ends racing for the same seats."""

import random

from asimpy import Environment

from seatbook.booking_coordinator import BookingCoordinator
from seatbook.booking_types import LedgerKey
from seatbook.clients import BookingClient
from seatbook.config import settings
from seatbook.logging_config import configure_logging
from seatbook.seat_selection import new_session_token


def run_booking_simulation():
    """Three viewers; two want B4, one of them also holds a lease on C7."""
    configure_logging(settings.LOG_LEVEL)
    env = Environment()
    coordinator = BookingCoordinator(env, rng=random.Random(7))

    alice, bob, carol = (new_session_token() for _ in range(3))

    # Carol is still browsing with C7 picked
    coordinator.leases.acquire(LedgerKey("m1", "19:30"), "C7", carol)

    clients = [
        BookingClient(env, coordinator, "m1", "19:30", ["B4", "B5"], alice, "replica-1"),
        BookingClient(env, coordinator, "m1", "19:30", ["B4", "C7"], bob, "replica-2"),
        BookingClient(env, coordinator, "m1", "19:30", ["A1"], carol, initial_delay=1.0),
    ]

    env.run(until=5)

    print("\n=== Booking Results ===")
    for client in clients:
        print(f"{client.holder}:")
        for seat_id, seat in client.result.seats.items():
            print(f"  {seat_id}: {seat.outcome.value} (replicas {seat.replication})")

    status = coordinator.get_system_status()
    print("\n=== System Status ===")
    print(f"Nodes: {status.synced_node_count}/{status.node_count} synced")
    print(f"Lamport events: {status.event_count}")
    print(f"Queued mutex requests: {status.queued_request_count}")
    print(f"Failed replicas: {[r.node_id for r in coordinator.replication.failed_replicas()]}")


if __name__ == "__main__":
    run_booking_simulation()
