"""TTL seat leases shared across browsing contexts."""

import json
import time
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from seatbook.booking_types import LedgerKey, SeatLease
from seatbook.exceptions import LedgerCorruptedError
from seatbook.kv_store import KeyValueStore

LeaseMap = Dict[str, SeatLease]


def epoch_ms() -> int:
    return int(time.time() * 1000)


class SeatLeaseStore:
    """Lease ledger for one store; every operation is one atomic update.

    A lease whose expiry has passed counts as absent everywhere and is
    removed by whichever operation next touches the ledger.
    """

    def __init__(
        self,
        store: KeyValueStore,
        wall_clock: Optional[Callable[[], int]] = None,
        default_ttl_ms: int = 10 * 60 * 1000,
    ):
        self.store = store
        self.wall_clock = wall_clock or epoch_ms
        self.default_ttl_ms = default_ttl_ms

    def acquire(
        self, key: LedgerKey, seat_id: str, holder: str, ttl_ms: Optional[int] = None
    ) -> bool:
        """Take the seat unless someone else holds a live lease on it.

        Re-acquiring one's own live lease succeeds without extending it.
        """
        ttl_ms = self.default_ttl_ms if ttl_ms is None else ttl_ms
        now = self.wall_clock()
        acquired = False

        def change(leases: LeaseMap) -> LeaseMap:
            nonlocal acquired
            acquired = False
            current = leases.get(seat_id)
            if current is None:
                leases[seat_id] = SeatLease(seat_id, holder, now + ttl_ms)
                acquired = True
            elif current.holder == holder:
                acquired = True
            return leases

        self._modify(key, now, change)
        if acquired:
            logger.debug(f"Lease {key}/{seat_id} held by {holder}")
        else:
            logger.info(f"Lease {key}/{seat_id} refused for {holder}: held elsewhere")
        return acquired

    def release(self, key: LedgerKey, seat_id: str, holder: str) -> bool:
        """Remove the lease only if holder owns it."""
        released = False

        def change(leases: LeaseMap) -> LeaseMap:
            nonlocal released
            released = False
            current = leases.get(seat_id)
            if current is not None and current.holder == holder:
                del leases[seat_id]
                released = True
            return leases

        self._modify(key, self.wall_clock(), change)
        return released

    def release_all(self, key: LedgerKey, holder: str) -> List[str]:
        """Drop every lease holder owns under key; returns the seats freed."""
        freed: List[str] = []

        def change(leases: LeaseMap) -> LeaseMap:
            freed.clear()
            for seat_id, lease in list(leases.items()):
                if lease.holder == holder:
                    del leases[seat_id]
                    freed.append(seat_id)
            return leases

        self._modify(key, self.wall_clock(), change)
        return sorted(freed)

    def sweep(self, key: LedgerKey) -> List[str]:
        """Remove expired leases; returns the seats that were cleared."""
        expired, _ = self._modify(key, self.wall_clock(), lambda leases: leases)
        if expired:
            logger.debug(f"Swept expired leases {expired} from {key}")
        return expired

    def snapshot(self, key: LedgerKey) -> LeaseMap:
        """Live leases only, after sweeping the expired ones."""
        _, leases = self._modify(key, self.wall_clock(), lambda leases: leases)
        return leases

    def holder_of(self, key: LedgerKey, seat_id: str) -> Optional[str]:
        lease = self.snapshot(key).get(seat_id)
        return lease.holder if lease else None

    def subscribe(self, key: LedgerKey, callback: Callable[[str], None]) -> Callable[[], None]:
        return self.store.subscribe(key.lease_key, callback)

    def _modify(
        self, key: LedgerKey, now: int, change: Callable[[LeaseMap], LeaseMap]
    ) -> Tuple[List[str], LeaseMap]:
        """Sweep then apply change, all inside one store update."""
        expired: List[str] = []
        result: LeaseMap = {}

        def update(raw: Optional[str]) -> Optional[str]:
            expired.clear()
            result.clear()
            leases = self._decode(key.lease_key, raw)
            for seat_id, lease in list(leases.items()):
                if lease.is_expired(now):
                    del leases[seat_id]
                    expired.append(seat_id)
            leases = change(leases)
            result.update(leases)
            return self._encode(leases) if leases else None

        self.store.update(key.lease_key, update)
        return sorted(expired), result

    @staticmethod
    def _decode(store_key: str, raw: Optional[str]) -> LeaseMap:
        if raw is None:
            return {}
        try:
            entries = json.loads(raw)
            return {
                seat_id: SeatLease(seat_id, entry["holder"], int(entry["expiresAt"]))
                for seat_id, entry in entries.items()
            }
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise LedgerCorruptedError(store_key) from exc

    @staticmethod
    def _encode(leases: LeaseMap) -> str:
        return json.dumps(
            {
                seat_id: {"holder": lease.holder, "expiresAt": lease.expires_at}
                for seat_id, lease in sorted(leases.items())
            }
        )
