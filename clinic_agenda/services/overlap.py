"""
Overlap Detector.

Finds existing non-cancelled bookings that share the candidate's
professional or room and intersect its interval under half-open semantics:
``existing.start < candidate.end and existing.end > candidate.start``. A
booking ending at 10:00 does not conflict with one starting at 10:00.

The detector reads through a ``BookingReader`` so the same code answers the
fast pre-check (committed state) and the authoritative re-check inside the
commit transaction.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, model_validator

from clinic_agenda.models.booking import Booking
from clinic_agenda.models.resources import TimeInterval
from clinic_agenda.models.results import ConflictDescriptor
from clinic_agenda.services.directory import ResourceDirectory
from clinic_agenda.services.intervals import merge
from clinic_agenda.services.store import BookingReader


class Candidate(BaseModel):
    """The interval and resources a request wants to occupy."""

    start: datetime
    end: datetime
    professional_id: int
    room_id: Optional[int] = None

    @model_validator(mode="after")
    def check_order(self) -> "Candidate":
        if self.end <= self.start:
            raise ValueError("candidate end must be after start")
        return self


class OverlapDetector:
    """
    Detects booking conflicts for a professional and an optional room.

    ``buffer_minutes`` widens the candidate on both sides for clinics that
    require a gap between appointments; zero gives plain half-open overlap.
    """

    def __init__(
        self,
        directory: Optional[ResourceDirectory] = None,
        buffer_minutes: int = 0,
    ):
        self._directory = directory
        self._buffer = timedelta(minutes=buffer_minutes)

    def _describe(self, booking: Booking) -> ConflictDescriptor:
        professional_name = room_name = None
        if self._directory is not None:
            professional_name = self._directory.professional_name(booking.professional_id)
            room_name = self._directory.room_name(booking.room_id)
        return ConflictDescriptor(
            booking_id=booking.id,
            start=booking.start_at,
            end=booking.end_at,
            professional_id=booking.professional_id,
            professional_name=professional_name,
            room_id=booking.room_id,
            room_name=room_name,
            status=booking.status,
        )

    async def _overlapping(
        self,
        reader: BookingReader,
        start: datetime,
        end: datetime,
        professional_id: int,
        room_id: Optional[int],
        exclude_booking_id: Optional[int],
    ) -> List[Booking]:
        start, end = start - self._buffer, end + self._buffer

        found: Dict[int, Booking] = {}
        for booking in await reader.bookings_overlapping(
            start, end, professional_id=professional_id, exclude_booking_id=exclude_booking_id
        ):
            found[booking.id] = booking

        if room_id is not None:
            for booking in await reader.bookings_overlapping(
                start, end, room_id=room_id, exclude_booking_id=exclude_booking_id
            ):
                found.setdefault(booking.id, booking)

        return sorted(found.values(), key=lambda b: (b.start_at, b.id))

    async def find_conflicts(
        self,
        reader: BookingReader,
        candidate: Candidate,
        exclude_booking_id: Optional[int] = None,
    ) -> List[ConflictDescriptor]:
        """
        Conflicting bookings for a candidate, sorted by start.

        Returns:
            Empty list when the candidate is free; otherwise one descriptor
            per conflicting booking, deduplicated when a booking matches on
            both professional and room.
        """
        bookings = await self._overlapping(
            reader,
            candidate.start,
            candidate.end,
            candidate.professional_id,
            candidate.room_id,
            exclude_booking_id,
        )
        return [self._describe(booking) for booking in bookings]

    async def busy_intervals(
        self,
        reader: BookingReader,
        start: datetime,
        end: datetime,
        professional_id: int,
        room_id: Optional[int] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> List[TimeInterval]:
        """Merged occupied intervals of the resource set within a window."""
        bookings = await self._overlapping(
            reader, start, end, professional_id, room_id, exclude_booking_id
        )
        return merge(
            TimeInterval(start=b.start_at - self._buffer, end=b.end_at + self._buffer)
            for b in bookings
        )
