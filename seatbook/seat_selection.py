"""Per-context seat picking on top of the shared ledgers."""

import secrets
import threading
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from seatbook.booked_ledger import BookedSeatLedger
from seatbook.booking_types import LedgerKey, SeatDisplayState, SeatLease
from seatbook.config import settings
from seatbook.seat_lease_store import SeatLeaseStore


def new_session_token() -> str:
    """Opaque identity for one browsing context."""
    return secrets.token_hex(8)


def resolve_display_states(
    seat_ids: Iterable[str],
    booked: Iterable[str],
    leases: Dict[str, SeatLease],
    holder: str,
    now_ms: int,
) -> Dict[str, SeatDisplayState]:
    """Booked beats a foreign lease, which beats our own selection."""
    booked = set(booked)
    states = {}
    for seat_id in seat_ids:
        lease = leases.get(seat_id)
        if lease is not None and lease.is_expired(now_ms):
            lease = None

        if seat_id in booked:
            states[seat_id] = SeatDisplayState.BOOKED
        elif lease is not None and lease.holder != holder:
            states[seat_id] = SeatDisplayState.LOCKED
        elif lease is not None:
            states[seat_id] = SeatDisplayState.SELECTED
        else:
            states[seat_id] = SeatDisplayState.AVAILABLE
    return states


class SeatSelectionSession:
    """One viewer picking seats for one showtime.

    Use as a context manager: leaving the block, by any path, releases
    every lease this session still holds.
    """

    def __init__(
        self,
        leases: SeatLeaseStore,
        booked: BookedSeatLedger,
        key: LedgerKey,
        seat_ids: Iterable[str],
        holder: Optional[str] = None,
        ttl_ms: Optional[int] = None,
        on_change: Optional[Callable[[Dict[str, SeatDisplayState]], None]] = None,
    ):
        self.leases = leases
        self.booked = booked
        self.key = key
        self.seat_ids = list(seat_ids)
        self.holder = holder or new_session_token()
        self.ttl_ms = ttl_ms
        self.on_change = on_change

        self.selected: List[str] = []
        self.states: Dict[str, SeatDisplayState] = {}
        self._lock = threading.RLock()
        self._unsubscribers: List[Callable[[], None]] = []

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def open(self):
        """Start listening for ledger changes and take a first look."""
        self._unsubscribers = [
            self.leases.subscribe(self.key, self._on_ledger_change),
            self.booked.subscribe(self.key, self._on_ledger_change),
        ]
        self.refresh()

    def close(self) -> List[str]:
        """Stop listening and give back every seat still held."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        freed = self.leases.release_all(self.key, self.holder)
        with self._lock:
            self.selected = []
        if freed:
            logger.info(f"Session {self.holder} released {freed} on {self.key}")
        return freed

    def select(self, seat_id: str) -> bool:
        """Lease a seat for this session; refuses booked or foreign-held seats."""
        state = self.refresh().get(seat_id)
        if state in (SeatDisplayState.BOOKED, SeatDisplayState.LOCKED, None):
            return False
        if state == SeatDisplayState.SELECTED:
            return True

        if not self.leases.acquire(self.key, seat_id, self.holder, self.ttl_ms):
            self.refresh()
            return False

        with self._lock:
            if seat_id not in self.selected:
                self.selected.append(seat_id)
        self.refresh()
        return True

    def deselect(self, seat_id: str) -> bool:
        released = self.leases.release(self.key, seat_id, self.holder)
        with self._lock:
            if seat_id in self.selected:
                self.selected.remove(seat_id)
        self.refresh()
        return released

    def toggle(self, seat_id: str) -> bool:
        """Click on a seat: deselect if ours, otherwise try to select."""
        if seat_id in self.selected:
            self.deselect(seat_id)
            return False
        return self.select(seat_id)

    def refresh(self) -> Dict[str, SeatDisplayState]:
        """Re-derive what every seat should look like right now."""
        leases = self.leases.snapshot(self.key)
        booked = self.booked.booked(self.key)
        states = resolve_display_states(
            self.seat_ids, booked, leases, self.holder, self.leases.wall_clock()
        )

        with self._lock:
            # Drop selections whose lease expired or turned into a booking
            self.selected = [
                s for s in self.selected if states.get(s) == SeatDisplayState.SELECTED
            ]
            self.states = states

        if self.on_change is not None:
            self.on_change(dict(states))
        return states

    def _on_ledger_change(self, store_key: str):
        logger.debug(f"Session {self.holder}: {store_key} changed")
        self.refresh()


class LedgerPoller(threading.Thread):
    """Re-derives a session's display at a fixed interval.

    The interval defaults to LEDGER_POLL_INTERVAL from settings.
    """

    def __init__(self, session: SeatSelectionSession, interval: Optional[float] = None):
        super().__init__(daemon=True, name=f"ledger-poller-{session.holder}")
        self.session = session
        self.interval = settings.LEDGER_POLL_INTERVAL if interval is None else interval
        self.polls = 0
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self.interval):
            self.session.refresh()
            self.polls += 1

    def stop(self):
        self._stopped.set()
