"""
Scheduling API Server.

A FastAPI service exposing the scheduling engine: availability pre-checks,
recommendations, booking creation, rescheduling and lifecycle transitions.
Request handlers are stateless; every request goes through the coordinator,
which reads availability afresh and commits through the booking store.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List, Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from clinic_agenda.config import APPOINTMENT_TYPES, get_settings
from clinic_agenda.errors import SchedulingError
from clinic_agenda.models import (
    AvailabilityCheck,
    AvailabilityQuery,
    Booking,
    BookingAction,
    BookingRequest,
    ConflictResult,
    RescheduleRequest,
    ResourceKind,
    ResourceRef,
    SlotRecommendation,
    StatusChange,
    TimeInterval,
)
from clinic_agenda.services.coordinator import build_coordinator
from clinic_agenda.services.directory import ResourceDirectory, seed_sample_resources
from clinic_agenda.services.store import InMemoryBookingStore
from clinic_agenda.services.working_hours import DirectoryWorkingHoursResolver

# ============================================================================
# Data Models
# ============================================================================


class OpenIntervalsResponse(BaseModel):
    """Open intervals of one resource on one clinic-local date."""

    resource_kind: ResourceKind
    resource_id: int
    date: date
    intervals: List[TimeInterval]


class RecommendationsResponse(BaseModel):
    """Ranked alternative slots."""

    recommendations: List[SlotRecommendation]
    total: int


class TransitionRequest(BaseModel):
    """Lifecycle action on an existing booking."""

    action: BookingAction
    note: Optional[str] = None
    actor_id: Optional[int] = None
    cancel_reason: Optional[str] = Field(default=None, max_length=200)


class HistoryResponse(BaseModel):
    booking_id: int
    history: List[StatusChange]


# ============================================================================
# Engine wiring (replace directory/store with catalog tables in production)
# ============================================================================


directory = ResourceDirectory()
store = InMemoryBookingStore()
coordinator = build_coordinator(directory, store)
directory_resolver = DirectoryWorkingHoursResolver(directory)


# ============================================================================
# FastAPI Application
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Scheduling API Server")
    if not directory.professionals:
        seed_sample_resources(directory)
    yield
    # Shutdown
    logger.info("Shutting down Scheduling API Server")


app = FastAPI(
    title="Clinic Agenda Scheduling API",
    description="Availability checks, recommendations and atomic booking for clinic agendas",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for the agenda front-end
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def _conflict_response(result: ConflictResult) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=result.model_dump(mode="json"),
    )


# ============================================================================
# API Endpoints
# ============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.get("/api/v1/appointment-types")
async def list_appointment_types():
    """List appointment types with their default duration and required specialties."""
    return {"appointment_types": APPOINTMENT_TYPES}


@app.get(
    "/api/v1/resources/{kind}/{resource_id}/open-intervals",
    response_model=OpenIntervalsResponse,
)
async def get_open_intervals(
    kind: ResourceKind,
    resource_id: int,
    day: date = Query(..., alias="date", description="Clinic-local date (YYYY-MM-DD)"),
):
    """
    Working hours minus blocks for one resource.

    This is the contract the HTTP working-hours resolver consumes, so a
    second deployment can use this one as its remote resolver.
    """
    intervals = await directory_resolver.get_open_intervals(
        ResourceRef(kind=kind, id=resource_id), day
    )
    return OpenIntervalsResponse(
        resource_kind=kind, resource_id=resource_id, date=day, intervals=intervals
    )


@app.post("/api/v1/availability/check", response_model=AvailabilityCheck)
async def check_availability(query: AvailabilityQuery):
    """
    Non-authoritative availability pre-check.

    Used by the agenda UI for live validation while the user edits a
    booking. A positive answer is not a reservation.
    """
    return await coordinator.check_availability(query)


@app.get("/api/v1/recommendations", response_model=RecommendationsResponse)
async def get_recommendations(
    professional_id: int = Query(..., description="Professional to search for"),
    start_local: datetime = Query(..., description="Requested clinic-local start"),
    duration_minutes: int = Query(..., description="Appointment duration"),
    room_id: Optional[int] = Query(default=None, description="Room to search for"),
    exclude_booking_id: Optional[int] = Query(
        default=None, description="Booking being rescheduled"
    ),
    search_window_days: Optional[int] = Query(default=None, ge=0, le=60),
    max_results: Optional[int] = Query(default=None, ge=1, le=100),
):
    """Free slots closest to the requested start."""
    recommendations = await coordinator.recommend(
        AvailabilityQuery(
            professional_id=professional_id,
            room_id=room_id,
            start_local=start_local,
            duration_minutes=duration_minutes,
            exclude_booking_id=exclude_booking_id,
            search_window_days=search_window_days,
            max_results=max_results,
        )
    )
    return RecommendationsResponse(recommendations=recommendations, total=len(recommendations))


@app.post("/api/v1/bookings", status_code=status.HTTP_201_CREATED, response_model=Booking)
async def create_booking(request: BookingRequest):
    """
    Create a booking.

    Returns 201 with the committed booking, or 409 with the conflicts and
    recommended alternatives when the slot cannot be taken.
    """
    result = await coordinator.create_booking(request)
    if isinstance(result, ConflictResult):
        return _conflict_response(result)
    return result


@app.get("/api/v1/bookings/{booking_id}", response_model=Booking)
async def get_booking(booking_id: int):
    """Get a booking by ID."""
    return await coordinator.get_booking(booking_id)


@app.get("/api/v1/bookings/{booking_id}/history", response_model=HistoryResponse)
async def get_booking_history(booking_id: int):
    """Status history of a booking, oldest first."""
    history = await coordinator.history(booking_id)
    return HistoryResponse(booking_id=booking_id, history=history)


@app.post("/api/v1/bookings/{booking_id}/reschedule")
async def reschedule_booking(booking_id: int, request: RescheduleRequest):
    """
    Move a booking to a new slot.

    The old booking is cancelled and the replacement inserted atomically.
    Returns 200 with both bookings, or 409 when the new slot is unavailable
    (in which case the old booking is untouched).
    """
    result = await coordinator.reschedule_booking(booking_id, request)
    if isinstance(result, ConflictResult):
        return _conflict_response(result)
    return result.model_dump(mode="json")


@app.post("/api/v1/bookings/{booking_id}/transition", response_model=Booking)
async def transition_booking(booking_id: int, request: TransitionRequest):
    """Confirm, cancel, complete or mark a booking as no-show."""
    return await coordinator.transition(
        booking_id,
        request.action,
        note=request.note,
        actor_id=request.actor_id,
        cancel_reason=request.cancel_reason,
    )


# ============================================================================
# Run Server
# ============================================================================


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """
    Run the scheduling API server.

    A single worker: the in-memory booking store is per-process, so several
    workers would each hold their own agenda.
    """
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "clinic_agenda.api.scheduling_server:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server()
