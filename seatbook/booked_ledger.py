"""Persisted set of booked seats per showtime."""

import json
from typing import Callable, Iterable, List, Optional

from seatbook.booking_types import LedgerKey
from seatbook.exceptions import LedgerCorruptedError
from seatbook.kv_store import KeyValueStore


class BookedSeatLedger:
    """Append-only, ordered, de-duplicated list of booked seat ids."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def booked(self, key: LedgerKey) -> List[str]:
        return self._decode(key.booked_key, self.store.get(key.booked_key))

    def is_booked(self, key: LedgerKey, seat_id: str) -> bool:
        return seat_id in self.booked(key)

    def merge(self, key: LedgerKey, seat_ids: Iterable[str]) -> List[str]:
        """Add seats, keeping first-booked order; returns the merged list."""
        seat_ids = list(seat_ids)
        merged: List[str] = []

        def update(raw: Optional[str]) -> Optional[str]:
            current = self._decode(key.booked_key, raw)
            merged[:] = current
            for seat_id in seat_ids:
                if seat_id not in merged:
                    merged.append(seat_id)
            return json.dumps(merged)

        self.store.update(key.booked_key, update)
        return merged

    def subscribe(self, key: LedgerKey, callback: Callable[[str], None]) -> Callable[[], None]:
        return self.store.subscribe(key.booked_key, callback)

    @staticmethod
    def _decode(store_key: str, raw: Optional[str]) -> List[str]:
        if raw is None:
            return []
        try:
            seats = json.loads(raw)
        except ValueError as exc:
            raise LedgerCorruptedError(store_key) from exc
        if not isinstance(seats, list):
            raise LedgerCorruptedError(store_key)
        return [str(s) for s in seats]
