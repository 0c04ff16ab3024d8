"""
Booking store with an explicit transaction unit.

Reads outside a transaction see committed state only. Writers go through
``transaction()``, which serializes them with an ``asyncio.Lock`` and stages
every insert, update and history entry until the block exits normally. The
staged work is applied in a single synchronous step, so an exception or a
task cancellation at any await point inside the block leaves nothing behind.

In production this is the appointments table behind a serializable (or
row-locking) transaction; the in-memory store gives the engine the same
guarantees for the API server and the tests.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from itertools import count
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional

from loguru import logger

from clinic_agenda.errors import TransientInfraError
from clinic_agenda.models.booking import Booking, StatusChange
from clinic_agenda.services.intervals import overlaps


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def select_overlapping(
    bookings: Iterable[Booking],
    start: datetime,
    end: datetime,
    professional_id: Optional[int] = None,
    room_id: Optional[int] = None,
    exclude_booking_id: Optional[int] = None,
) -> List[Booking]:
    """Non-cancelled bookings of a professional or room intersecting ``[start, end)``."""
    selected = []
    for booking in bookings:
        if not booking.is_active:
            continue
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        if professional_id is not None and booking.professional_id != professional_id:
            continue
        if room_id is not None and booking.room_id != room_id:
            continue
        if overlaps(booking.start_at, booking.end_at, start, end):
            selected.append(booking)
    return sorted(selected, key=lambda b: (b.start_at, b.id))


class BookingReader(ABC):
    """Read access shared by the committed store and open transactions."""

    @abstractmethod
    async def get(self, booking_id: int) -> Optional[Booking]:
        ...

    @abstractmethod
    async def bookings_overlapping(
        self,
        start: datetime,
        end: datetime,
        professional_id: Optional[int] = None,
        room_id: Optional[int] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Booking]:
        ...

    @abstractmethod
    async def find_by_idempotency_key(self, key: str) -> Optional[Booking]:
        ...


class BookingTransaction(BookingReader):
    """Unit of work staged against an InMemoryBookingStore."""

    def __init__(self, store: "InMemoryBookingStore"):
        self._store = store
        self._staged: Dict[int, Booking] = {}
        self._history: List[StatusChange] = []
        self._rolled_back = False

    @property
    def rolled_back(self) -> bool:
        return self._rolled_back

    def _view(self) -> Dict[int, Booking]:
        view = dict(self._store.bookings)
        view.update(self._staged)
        return view

    async def get(self, booking_id: int) -> Optional[Booking]:
        return self._view().get(booking_id)

    async def bookings_overlapping(
        self,
        start: datetime,
        end: datetime,
        professional_id: Optional[int] = None,
        room_id: Optional[int] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Booking]:
        return select_overlapping(
            self._view().values(), start, end, professional_id, room_id, exclude_booking_id
        )

    async def find_by_idempotency_key(self, key: str) -> Optional[Booking]:
        for booking in self._staged.values():
            if booking.idempotency_key == key:
                return booking
        return await self._store.find_by_idempotency_key(key)

    def insert(self, booking: Booking) -> Booking:
        """Stage a new booking and assign its id."""
        created = booking.model_copy(
            update={
                "id": self._store.next_id(),
                "created_at": booking.created_at or self._store.clock(),
            }
        )
        self._staged[created.id] = created
        return created

    def update(self, booking: Booking) -> Booking:
        if booking.id is None or booking.id not in self._view():
            raise KeyError(f"booking {booking.id} does not exist")
        self._staged[booking.id] = booking
        return booking

    def record_status_change(self, change: StatusChange) -> None:
        self._history.append(change)

    def rollback(self) -> None:
        """Discard everything staged; the block may still exit normally."""
        self._staged.clear()
        self._history.clear()
        self._rolled_back = True

    def _apply(self) -> None:
        if self._rolled_back:
            return
        self._store._apply(self._staged.values(), self._history)


class InMemoryBookingStore(BookingReader):
    """In-memory appointments table with serialized transactions."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._bookings: Dict[int, Booking] = {}
        self._history: List[StatusChange] = []
        self._idempotency: Dict[str, int] = {}
        self._ids = count(1)
        self._lock = asyncio.Lock()
        self.clock = clock or _utcnow

    # Public accessors for testing
    @property
    def bookings(self) -> Dict[int, Booking]:
        return self._bookings

    def clear(self) -> None:
        self._bookings.clear()
        self._history.clear()
        self._idempotency.clear()
        self._ids = count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def reserve_ids(self, up_to: int) -> None:
        """Make the next assigned id ``up_to + 1`` (imports, fixtures)."""
        self._ids = count(max(up_to + 1, max(self._bookings, default=0) + 1))

    async def get(self, booking_id: int) -> Optional[Booking]:
        return self._bookings.get(booking_id)

    async def bookings_overlapping(
        self,
        start: datetime,
        end: datetime,
        professional_id: Optional[int] = None,
        room_id: Optional[int] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Booking]:
        return select_overlapping(
            self._bookings.values(), start, end, professional_id, room_id, exclude_booking_id
        )

    async def find_by_idempotency_key(self, key: str) -> Optional[Booking]:
        booking_id = self._idempotency.get(key)
        return self._bookings.get(booking_id) if booking_id is not None else None

    async def history(self, booking_id: int) -> List[StatusChange]:
        return [change for change in self._history if change.booking_id == booking_id]

    @asynccontextmanager
    async def transaction(self, timeout: float = 5.0) -> AsyncIterator[BookingTransaction]:
        """
        Open a serialized transaction.

        Commits when the block exits normally (unless rolled back), discards
        staged work on any exception, including cancellation.

        Raises:
            TransientInfraError: the lock could not be acquired within timeout
        """
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Could not open booking transaction within {timeout}s")
            raise TransientInfraError(
                "Booking store is busy, please retry",
                details={"timeout": timeout},
            ) from e

        tx = BookingTransaction(self)
        try:
            yield tx
            tx._apply()
        finally:
            self._lock.release()

    def _apply(self, bookings: Iterable[Booking], history: Iterable[StatusChange]) -> None:
        for booking in bookings:
            self._bookings[booking.id] = booking
            if booking.idempotency_key:
                self._idempotency.setdefault(booking.idempotency_key, booking.id)
        self._history.extend(history)
