import pytest

from seatbook.booked_ledger import BookedSeatLedger
from seatbook.booking_types import LedgerKey
from seatbook.exceptions import LedgerCorruptedError
from seatbook.kv_store import InMemoryKeyValueStore

KEY = LedgerKey("m1", "19:30")


def test_merge_appends_and_deduplicates():
    ledger = BookedSeatLedger(InMemoryKeyValueStore())
    assert ledger.merge(KEY, ["B4", "A1"]) == ["B4", "A1"]
    assert ledger.merge(KEY, ["A1", "C2", "C2"]) == ["B4", "A1", "C2"]
    assert ledger.booked(KEY) == ["B4", "A1", "C2"]
    assert ledger.is_booked(KEY, "C2")
    assert not ledger.is_booked(LedgerKey("m1", "22:00"), "C2")


def test_merge_notifies_subscribers():
    ledger = BookedSeatLedger(InMemoryKeyValueStore())
    seen = []
    ledger.subscribe(KEY, seen.append)
    ledger.merge(KEY, ["A1"])
    ledger.merge(KEY, ["A1"])
    assert seen == ["booked:m1:19:30"]


def test_non_list_payload_is_rejected():
    store = InMemoryKeyValueStore()
    store.set(KEY.booked_key, '{"A1": true}')
    with pytest.raises(LedgerCorruptedError):
        BookedSeatLedger(store).booked(KEY)
