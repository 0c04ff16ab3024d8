"""
Shared fixtures for the scheduling engine tests.

All tests run against a fixed clock (New Year 2030, UTC) in the clinic zone
America/Asuncion, which is UTC-3 all through January.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from clinic_agenda.config import Settings
from clinic_agenda.models import Booking, BookingRequest
from clinic_agenda.services.coordinator import BookingCoordinator
from clinic_agenda.services.directory import ResourceDirectory, seed_sample_resources
from clinic_agenda.services.store import InMemoryBookingStore
from clinic_agenda.services.time_grid import to_utc
from clinic_agenda.services.working_hours import DirectoryWorkingHoursResolver

FIXED_NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

# Monday, one week after the fixed clock
MONDAY = date(2030, 1, 7)
SUNDAY = date(2030, 1, 6)

CLINIC_TZ = "America/Asuncion"
ZONE = ZoneInfo(CLINIC_TZ)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """Clinic-local wall-clock time on a day."""
    return datetime.combine(day, time(hour, minute))


def utc_at(day: date, hour: int, minute: int = 0) -> datetime:
    return to_utc(at(day, hour, minute), ZONE)


@pytest.fixture
def settings():
    """Settings pinned to the test clinic, independent of the environment."""
    return Settings(
        clinic_timezone=CLINIC_TZ,
        slot_grid_minutes=15,
        fallback_start="08:00",
        fallback_end="16:00",
        buffer_minutes=0,
        search_window_days=7,
        max_recommendations=10,
        resolver_timeout_seconds=1.0,
        transaction_timeout_seconds=1.0,
        working_hours_api_url="",
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def directory():
    """Demo clinic: three professionals, two active rooms and one inactive."""
    directory = ResourceDirectory()
    seed_sample_resources(directory)
    return directory


@pytest.fixture
def store(clock):
    return InMemoryBookingStore(clock)


@pytest.fixture
def resolver(directory, settings):
    return DirectoryWorkingHoursResolver(directory, settings)


@pytest.fixture
def coordinator(store, resolver, directory, settings, clock):
    return BookingCoordinator(store, resolver, directory, settings=settings, clock=clock)


@pytest.fixture
def make_request():
    """Factory for create requests: Dra. Benítez, Consultorio 1, Monday 09:00."""

    def _make(**overrides) -> BookingRequest:
        fields = {
            "patient_id": 100,
            "professional_id": 1,
            "room_id": 1,
            "start_local": at(MONDAY, 9),
            "duration_minutes": 30,
            "type": "CONSULTA",
            "reason": "Control semestral",
        }
        fields.update(overrides)
        return BookingRequest(**fields)

    return _make


@pytest.fixture
def add_booking(store):
    """Insert a booking directly into the store, bypassing the coordinator."""

    async def _add(
        start: datetime,
        duration_minutes: int = 30,
        professional_id: int = 1,
        room_id=None,
        **extra,
    ) -> Booking:
        start_at = to_utc(start, ZONE) if start.tzinfo is None else start
        async with store.transaction() as tx:
            return tx.insert(
                Booking(
                    patient_id=extra.pop("patient_id", 200),
                    professional_id=professional_id,
                    room_id=room_id,
                    start_at=start_at,
                    end_at=start_at + timedelta(minutes=duration_minutes),
                    start_local=start if start.tzinfo is None else start.replace(tzinfo=None),
                    duration_minutes=duration_minutes,
                    type=extra.pop("type", "CONSULTA"),
                    **extra,
                )
            )

    return _add
