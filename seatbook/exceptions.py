"""Exceptions raised by the booking core.

Contention and replication trouble are ordinary outcomes and are reported
through result objects; only programming mistakes surface as exceptions.
"""


class SeatbookError(Exception):
    """Base error with a readable message."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnknownOperationError(SeatbookError):
    """RPC dispatch on an operation the gateway does not serve."""

    def __init__(self, operation):
        self.operation = operation
        super().__init__(f"Unknown RPC operation: {operation}")


class UnknownSeatError(SeatbookError):
    """Seat id is not part of the theater grid."""

    def __init__(self, seat_id: str):
        self.seat_id = seat_id
        super().__init__(f"Unknown seat: {seat_id}")


class LedgerCorruptedError(SeatbookError):
    """A ledger key holds something that is not the expected JSON payload."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Ledger entry {key} is not valid JSON")
