"""
Incoming request payloads for the scheduling engine.

Field types are enforced here; scheduling rules (duration bounds, required
resources, grid alignment) are enforced by the coordinator so they surface
with the engine's own error codes.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, PrivateAttr

from clinic_agenda.errors import IntentAlreadyConsumedError


class BookingRequest(BaseModel):
    """Request to create a new appointment."""

    patient_id: int
    professional_id: Optional[int] = None
    room_id: Optional[int] = None
    start_local: datetime = Field(description="Clinic-local wall-clock start")
    duration_minutes: int
    type: str
    reason: str = ""
    notes: Optional[str] = None
    idempotency_key: Optional[str] = Field(
        default=None, description="Client-supplied key making retries safe"
    )
    actor_id: Optional[int] = None


class RescheduleRequest(BaseModel):
    """
    Request to move an existing appointment.

    Omitted ``professional_id``/``room_id`` keep the current booking's
    resources; an explicit ``room_id: null`` removes the room.
    """

    start_local: datetime
    duration_minutes: int
    professional_id: Optional[int] = None
    room_id: Optional[int] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    actor_id: Optional[int] = None

    @property
    def room_given(self) -> bool:
        return "room_id" in self.model_fields_set


class RescheduleIntent(BaseModel):
    """Binds an existing booking to its replacement request; usable once."""

    existing_booking_id: int
    request: RescheduleRequest

    _consumed: bool = PrivateAttr(default=False)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> RescheduleRequest:
        if self._consumed:
            raise IntentAlreadyConsumedError(
                f"Reschedule intent for booking {self.existing_booking_id} was already used",
                details={"booking_id": self.existing_booking_id},
            )
        self._consumed = True
        return self.request


class AvailabilityQuery(BaseModel):
    """Pre-check / recommendation query for a professional (and room)."""

    professional_id: Optional[int] = None
    room_id: Optional[int] = None
    start_local: datetime
    duration_minutes: int
    exclude_booking_id: Optional[int] = None
    search_window_days: Optional[int] = Field(default=None, ge=0, le=60)
    max_results: Optional[int] = Field(default=None, ge=1, le=100)
