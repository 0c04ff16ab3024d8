"""
Booking-related data models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class BookingStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    COMPLETED = "COMPLETED"


# Statuses a booking may be rescheduled from
RESCHEDULABLE_STATUSES = frozenset(
    {BookingStatus.SCHEDULED, BookingStatus.CONFIRMED, BookingStatus.NO_SHOW}
)


class BookingAction(str, Enum):
    CONFIRM = "CONFIRM"
    CANCEL = "CANCEL"
    COMPLETE = "COMPLETE"
    NO_SHOW = "NO_SHOW"


# current status -> action -> next status
STATUS_TRANSITIONS = {
    BookingStatus.SCHEDULED: {
        BookingAction.CONFIRM: BookingStatus.CONFIRMED,
        BookingAction.CANCEL: BookingStatus.CANCELLED,
        BookingAction.NO_SHOW: BookingStatus.NO_SHOW,
        BookingAction.COMPLETE: BookingStatus.COMPLETED,
    },
    BookingStatus.CONFIRMED: {
        BookingAction.CANCEL: BookingStatus.CANCELLED,
        BookingAction.NO_SHOW: BookingStatus.NO_SHOW,
        BookingAction.COMPLETE: BookingStatus.COMPLETED,
    },
    BookingStatus.CANCELLED: {},
    BookingStatus.NO_SHOW: {},
    BookingStatus.COMPLETED: {},
}


class CancelReason(str, Enum):
    PATIENT = "PATIENT"
    CLINIC = "CLINIC"
    SUPERSEDED = "superseded by reschedule"


class Booking(BaseModel):
    """
    A persisted appointment.

    ``start_at``/``end_at`` are UTC instants; ``start_local`` echoes the
    clinic-local wall-clock start the booking was requested with.
    """

    id: Optional[int] = Field(default=None, description="Assigned at commit")
    patient_id: int
    professional_id: int
    room_id: Optional[int] = None
    start_at: datetime
    end_at: datetime
    start_local: datetime
    duration_minutes: int
    status: BookingStatus = BookingStatus.SCHEDULED
    type: str
    reason: str = ""
    notes: Optional[str] = None
    rescheduled_from_id: Optional[int] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    idempotency_key: Optional[str] = None

    @model_validator(mode="after")
    def check_invariants(self) -> "Booking":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        if self.duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        return self

    @property
    def is_active(self) -> bool:
        """Non-cancelled bookings occupy their professional and room."""
        return self.status != BookingStatus.CANCELLED


class StatusChange(BaseModel):
    """Append-only status history entry."""

    booking_id: int
    previous_status: Optional[BookingStatus] = None
    new_status: BookingStatus
    note: Optional[str] = None
    changed_at: datetime
    changed_by: Optional[int] = None
