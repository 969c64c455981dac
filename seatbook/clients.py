"""Processes that drive the booking core from inside a simulation."""

from typing import Dict, List, Optional

from asimpy import Process
from loguru import logger

from seatbook.booking_coordinator import BookingCoordinator
from seatbook.booking_types import BookingResult


class BookingClient(Process):
    """A front end that books some seats once, optionally after a delay."""

    def init(
        self,
        coordinator: BookingCoordinator,
        movie_id: str,
        showtime: str,
        seat_ids: List[str],
        holder: str,
        node_id: Optional[str] = None,
        initial_delay: float | None = None,
    ):
        self.coordinator = coordinator
        self.movie_id = movie_id
        self.showtime = showtime
        self.seat_ids = seat_ids
        self.holder = holder
        self.node_id = node_id
        self.initial_delay = initial_delay
        self.result: BookingResult | None = None

    async def run(self):
        if self.initial_delay is not None:
            await self.timeout(self.initial_delay)

        logger.info(f"[{self.now:.2f}] {self.holder}: Booking {self.seat_ids}")
        self.result = await self.coordinator.book_seats(
            self.movie_id, self.showtime, self.seat_ids, self.holder, self.node_id
        )


class AvailabilityClient(Process):
    """Asks which seats of one showtime are free."""

    def init(
        self,
        coordinator: BookingCoordinator,
        movie_id: str,
        showtime: str,
        seat_ids: List[str],
        holder: Optional[str] = None,
        initial_delay: float | None = None,
    ):
        self.coordinator = coordinator
        self.movie_id = movie_id
        self.showtime = showtime
        self.seat_ids = seat_ids
        self.holder = holder
        self.initial_delay = initial_delay
        self.result: Dict[str, bool] | None = None

    async def run(self):
        if self.initial_delay is not None:
            await self.timeout(self.initial_delay)
        self.result = await self.coordinator.check_availability(
            self.movie_id, self.showtime, self.seat_ids, self.holder
        )
