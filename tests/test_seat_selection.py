import threading

import pytest

from seatbook import seat_selection
from seatbook.booked_ledger import BookedSeatLedger
from seatbook.booking_types import LedgerKey, SeatDisplayState, SeatLease
from seatbook.kv_store import InMemoryKeyValueStore
from seatbook.seat_lease_store import SeatLeaseStore
from seatbook.seat_selection import (
    LedgerPoller,
    SeatSelectionSession,
    new_session_token,
    resolve_display_states,
)

KEY = LedgerKey("m1", "19:30")
SEATS = ["A1", "A2", "A3", "A4"]
NOW = 1_000_000


@pytest.fixture
def ledgers(wall_clock):
    store = InMemoryKeyValueStore()
    return SeatLeaseStore(store, wall_clock, default_ttl_ms=60_000), BookedSeatLedger(store)


def session(ledgers, holder):
    leases, booked = ledgers
    return SeatSelectionSession(leases, booked, KEY, SEATS, holder=holder)


def test_display_priority():
    leases = {
        "A1": SeatLease("A1", "other", NOW + 10),
        "A2": SeatLease("A2", "other", NOW + 10),
        "A3": SeatLease("A3", "me", NOW + 10),
    }
    states = resolve_display_states(SEATS, ["A1"], leases, "me", NOW)
    assert states == {
        "A1": SeatDisplayState.BOOKED,
        "A2": SeatDisplayState.LOCKED,
        "A3": SeatDisplayState.SELECTED,
        "A4": SeatDisplayState.AVAILABLE,
    }


def test_expired_lease_displays_available():
    leases = {"A2": SeatLease("A2", "other", NOW)}
    states = resolve_display_states(SEATS, [], leases, "me", NOW)
    assert states["A2"] == SeatDisplayState.AVAILABLE


def test_session_tokens_are_unique():
    assert len({new_session_token() for _ in range(50)}) == 50


def test_other_context_sees_selection_as_locked(ledgers):
    with session(ledgers, "alice") as alice, session(ledgers, "bob") as bob:
        assert alice.select("A2")
        assert alice.states["A2"] == SeatDisplayState.SELECTED
        assert bob.states["A2"] == SeatDisplayState.LOCKED
        assert not bob.select("A2")


def test_toggle_releases_own_seat(ledgers):
    with session(ledgers, "alice") as alice, session(ledgers, "bob") as bob:
        assert alice.toggle("A1")
        assert not alice.toggle("A1")
        assert alice.selected == []
        assert bob.states["A1"] == SeatDisplayState.AVAILABLE


def test_booked_seat_cannot_be_selected(ledgers):
    _, booked = ledgers
    booked.merge(KEY, ["A3"])
    with session(ledgers, "alice") as alice:
        assert alice.states["A3"] == SeatDisplayState.BOOKED
        assert not alice.select("A3")
        assert not alice.select("Z9")


def test_booking_wins_over_selection(ledgers):
    _, booked = ledgers
    with session(ledgers, "alice") as alice:
        alice.select("A4")
        booked.merge(KEY, ["A4"])
        assert alice.states["A4"] == SeatDisplayState.BOOKED
        assert alice.selected == []


def test_leaving_releases_leases_on_error(ledgers):
    leases, _ = ledgers
    with pytest.raises(RuntimeError):
        with session(ledgers, "alice") as alice:
            alice.select("A1")
            alice.select("A2")
            raise RuntimeError("navigated away")

    assert leases.snapshot(KEY) == {}


def test_closed_session_stops_listening(ledgers):
    changes = []
    leases, booked = ledgers
    watcher = SeatSelectionSession(leases, booked, KEY, SEATS, on_change=changes.append)
    with watcher:
        pass
    changes.clear()

    with session(ledgers, "bob") as bob:
        bob.select("A1")
    assert changes == []


def test_expiry_is_seen_on_refresh(ledgers, wall_clock):
    with session(ledgers, "alice") as alice, session(ledgers, "bob") as bob:
        alice.select("A1")
        wall_clock.advance(60_000)

        assert bob.refresh()["A1"] == SeatDisplayState.AVAILABLE
        assert bob.select("A1")
        assert alice.states["A1"] == SeatDisplayState.LOCKED
        assert alice.selected == []


def test_poller_refreshes_periodically(ledgers):
    leases, booked = ledgers
    refreshed = threading.Event()
    watcher = SeatSelectionSession(
        leases, booked, KEY, SEATS, on_change=lambda states: refreshed.set()
    )
    poller = LedgerPoller(watcher, interval=0.01)
    poller.start()
    try:
        assert refreshed.wait(timeout=2.0)
    finally:
        poller.stop()
        poller.join(timeout=2.0)

    assert poller.polls >= 1
    assert not poller.is_alive()


def test_poller_interval_comes_from_settings(ledgers, monkeypatch):
    monkeypatch.setattr(seat_selection.settings, "LEDGER_POLL_INTERVAL", 2.5)
    leases, booked = ledgers
    watcher = SeatSelectionSession(leases, booked, KEY, SEATS)

    assert LedgerPoller(watcher).interval == 2.5
    assert LedgerPoller(watcher, interval=0.5).interval == 0.5
