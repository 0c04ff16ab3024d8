"""
Outcome models returned by the scheduling engine.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from clinic_agenda.models.booking import Booking, BookingStatus


class BookingStage(str, Enum):
    RECEIVED = "RECEIVED"
    NORMALIZED = "NORMALIZED"
    AVAILABILITY_CHECKED = "AVAILABILITY_CHECKED"
    COMPATIBILITY_CHECKED = "COMPATIBILITY_CHECKED"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"


class ConflictCode(str, Enum):
    OVERLAP = "OVERLAP"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
    NO_WORKING_DAY = "NO_WORKING_DAY"


class ConflictDescriptor(BaseModel):
    """One existing booking overlapping the requested interval."""

    booking_id: int
    start: datetime
    end: datetime
    professional_id: int
    professional_name: Optional[str] = None
    room_id: Optional[int] = None
    room_name: Optional[str] = None
    status: BookingStatus


class SlotRecommendation(BaseModel):
    """A free, grid-aligned alternative slot."""

    date: date
    start_local: datetime
    end_local: datetime
    start_at: datetime
    end_at: datetime
    distance_minutes: int = Field(description="Distance from the requested start")


class ConflictResult(BaseModel):
    """
    The requested slot cannot be booked.

    ``conflicts`` is non-empty whenever ``code`` is OVERLAP.
    """

    kind: Literal["rejected"] = "rejected"
    code: ConflictCode
    message: str
    requested_start_local: Optional[datetime] = None
    conflicts: List[ConflictDescriptor] = Field(default_factory=list)
    recommendations: List[SlotRecommendation] = Field(default_factory=list)
    stages: List[BookingStage] = Field(default_factory=list)


Rejected = ConflictResult


class Replaced(BaseModel):
    """A reschedule committed: ``previous`` is cancelled, ``booking`` is new."""

    kind: Literal["replaced"] = "replaced"
    old_id: int
    new_id: int
    booking: Booking
    previous: Booking
    stages: List[BookingStage] = Field(default_factory=list)


RescheduleOutcome = Union[Replaced, ConflictResult]


class AvailabilityCheck(BaseModel):
    """Non-authoritative pre-check answer."""

    available: bool
    start_local: datetime
    end_local: datetime
    code: Optional[ConflictCode] = None
    conflicts: List[ConflictDescriptor] = Field(default_factory=list)
    recommendations: List[SlotRecommendation] = Field(default_factory=list)
