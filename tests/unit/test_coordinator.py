"""
Unit tests for the booking transaction coordinator.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from clinic_agenda.config import Settings
from clinic_agenda.errors import (
    BookingNotFoundError,
    IncompatibleResourceError,
    IntentAlreadyConsumedError,
    InvalidTimeError,
    NotReschedulableError,
    ResourceUnavailableError,
    TransientInfraError,
    TransitionNotAllowedError,
    ValidationError,
)
from clinic_agenda.models import (
    AvailabilityQuery,
    Booking,
    BookingAction,
    BookingStage,
    BookingStatus,
    ConflictCode,
    ConflictResult,
    Professional,
    Replaced,
    RescheduleIntent,
    RescheduleRequest,
)
from clinic_agenda.services.compatibility import CompatibilityValidator
from clinic_agenda.services.coordinator import BookingCoordinator
from clinic_agenda.services.working_hours import WorkingHoursResolver
from conftest import MONDAY, SUNDAY, at, utc_at


class CompetingValidator(CompatibilityValidator):
    """Commits a competing booking between the pre-check and the commit."""

    def __init__(self, directory, store, competitor: Booking):
        super().__init__(directory)
        self._store = store
        self._competitor = competitor
        self.inserted = None

    async def validate(self, *args, **kwargs):
        if self.inserted is None:
            async with self._store.transaction() as tx:
                self.inserted = tx.insert(self._competitor)
        await super().validate(*args, **kwargs)


class WipingValidator(CompatibilityValidator):
    """Empties the store between the pre-check and the commit."""

    def __init__(self, directory, store):
        super().__init__(directory)
        self._store = store

    async def validate(self, *args, **kwargs):
        self._store.clear()
        await super().validate(*args, **kwargs)


def competitor_at(hour, minute=0, professional_id=1, room_id=1) -> Booking:
    start = utc_at(MONDAY, hour, minute)
    return Booking(
        patient_id=999,
        professional_id=professional_id,
        room_id=room_id,
        start_at=start,
        end_at=start + timedelta(minutes=30),
        start_local=at(MONDAY, hour, minute),
        duration_minutes=30,
        type="CONSULTA",
    )


def move_to(hour, minute=0, duration=30, **extra) -> RescheduleRequest:
    return RescheduleRequest(start_local=at(MONDAY, hour, minute), duration_minutes=duration, **extra)


class TestCreateBooking:
    """Test the create path through all gates."""

    @pytest.mark.asyncio
    async def test_creates_booking(self, coordinator, make_request, store):
        """A free slot commits with UTC instants and the local start echoed."""
        booking = await coordinator.create_booking(make_request())

        assert isinstance(booking, Booking)
        assert booking.id == 1
        assert booking.status == BookingStatus.SCHEDULED
        assert booking.start_local == at(MONDAY, 9)
        assert booking.start_at == utc_at(MONDAY, 9)
        assert booking.end_at == utc_at(MONDAY, 9, 30)
        assert await store.get(1) == booking

        history = await coordinator.history(booking.id)
        assert [h.new_status for h in history] == [BookingStatus.SCHEDULED]

    @pytest.mark.asyncio
    async def test_start_normalized_to_grid(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request(start_local=at(MONDAY, 9, 7)))
        assert booking.start_local == at(MONDAY, 9)

    @pytest.mark.asyncio
    async def test_overlap_scenario(self, coordinator, make_request):
        """P has 09:00-09:30; a 09:15-09:45 request gets OVERLAP with that booking."""
        first = await coordinator.create_booking(make_request())

        result = await coordinator.create_booking(
            make_request(patient_id=101, start_local=at(MONDAY, 9, 15))
        )

        assert isinstance(result, ConflictResult)
        assert result.kind == "rejected"
        assert result.code == ConflictCode.OVERLAP
        assert [c.booking_id for c in result.conflicts] == [first.id]
        assert result.conflicts[0].professional_name == "Dra. Ana Benítez"
        assert result.recommendations
        assert result.recommendations[0].start_local == at(MONDAY, 9, 30)
        assert result.stages == [
            BookingStage.RECEIVED,
            BookingStage.NORMALIZED,
            BookingStage.REJECTED,
        ]

    @pytest.mark.asyncio
    async def test_touching_boundary_scenario(self, coordinator, make_request):
        """P has 09:00-09:30; a 09:30-10:00 request succeeds."""
        await coordinator.create_booking(make_request())
        result = await coordinator.create_booking(
            make_request(patient_id=101, start_local=at(MONDAY, 9, 30))
        )
        assert isinstance(result, Booking)

    @pytest.mark.asyncio
    async def test_room_overlap(self, coordinator, make_request):
        """Another professional cannot use an occupied room."""
        await coordinator.create_booking(make_request())
        result = await coordinator.create_booking(
            make_request(patient_id=101, professional_id=2)
        )
        assert isinstance(result, ConflictResult)
        assert result.conflicts[0].room_name == "Consultorio 1"

    @pytest.mark.asyncio
    async def test_outside_working_hours(self, coordinator, make_request):
        """Lunch break (12:00-13:00) is not bookable."""
        result = await coordinator.create_booking(make_request(start_local=at(MONDAY, 11, 45)))

        assert isinstance(result, ConflictResult)
        assert result.code == ConflictCode.OUTSIDE_WORKING_HOURS
        assert result.conflicts == []
        assert result.recommendations

    @pytest.mark.asyncio
    async def test_no_working_day(self, coordinator, make_request, directory):
        """A day blocked from start to end has nothing open; Monday slots are suggested."""
        directory.add_block(utc_at(SUNDAY, 0), utc_at(MONDAY, 0), professional_id=1)

        result = await coordinator.create_booking(make_request(start_local=at(SUNDAY, 9)))

        assert isinstance(result, ConflictResult)
        assert result.code == ConflictCode.NO_WORKING_DAY
        assert result.recommendations[0].date == MONDAY

    @pytest.mark.asyncio
    async def test_no_availability_in_window(self, coordinator, make_request, directory, store):
        """Blocked for the whole search window: explicit rejection, empty suggestions."""
        directory.add_block(
            utc_at(MONDAY, 0), utc_at(MONDAY + timedelta(days=8), 0), professional_id=1
        )

        result = await coordinator.create_booking(make_request())

        assert isinstance(result, ConflictResult)
        assert result.code == ConflictCode.NO_WORKING_DAY
        assert result.recommendations == []
        assert store.bookings == {}

    @pytest.mark.asyncio
    async def test_idempotent_retry(self, coordinator, make_request, store):
        """A retried create with the same key returns the original booking."""
        first = await coordinator.create_booking(make_request(idempotency_key="req-1"))
        again = await coordinator.create_booking(make_request(idempotency_key="req-1"))

        assert again == first
        assert len(store.bookings) == 1

    @pytest.mark.asyncio
    async def test_room_without_schedule_follows_professional(self, coordinator, make_request):
        """Dra. Benítez works until 18:00; a room with no schedule does not cut her day."""
        result = await coordinator.create_booking(make_request(start_local=at(MONDAY, 16, 30)))

        assert isinstance(result, Booking)
        assert result.room_id == 1
        assert result.start_at == utc_at(MONDAY, 16, 30)

    @pytest.mark.asyncio
    async def test_unlisted_weekday_uses_fallback_hours(self, coordinator, make_request, directory):
        """A weekday missing from a configured schedule gets the clinic hours."""
        directory.add_professional(
            Professional(
                id=5,
                name="Dr. Martín Duarte",
                specialties=["Odontología General"],
                schedule={"martes": [{"inicio": "14:00", "fin": "19:00"}]},
            )
        )

        result = await coordinator.create_booking(make_request(professional_id=5))

        assert isinstance(result, Booking)
        assert result.start_at == utc_at(MONDAY, 9)

    @pytest.mark.asyncio
    async def test_configured_max_duration(
        self, store, resolver, directory, settings, clock, make_request
    ):
        """A duration bound raised in settings is honoured all the way to commit."""
        directory.add_professional(
            Professional(
                id=5,
                name="Dr. Martín Duarte",
                specialties=["Odontología General"],
                schedule={"lunes": [{"inicio": "07:00", "fin": "17:00"}]},
            )
        )
        settings = settings.model_copy(update={"max_duration_minutes": 600})
        coordinator = BookingCoordinator(store, resolver, directory, settings=settings, clock=clock)

        result = await coordinator.create_booking(
            make_request(professional_id=5, start_local=at(MONDAY, 7), duration_minutes=490)
        )

        assert isinstance(result, Booking)
        assert result.duration_minutes == 490
        assert result.end_at - result.start_at == timedelta(minutes=490)


class TestCreateValidation:
    """Test rejections raised before any booking is written."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [0, 4, 481])
    async def test_invalid_duration(self, coordinator, make_request, duration):
        with pytest.raises(ValidationError) as exc_info:
            await coordinator.create_booking(make_request(duration_minutes=duration))
        assert exc_info.value.code == "INVALID_DURATION"
        assert exc_info.value.http_status == 400

    @pytest.mark.asyncio
    async def test_missing_professional(self, coordinator, make_request):
        with pytest.raises(ValidationError) as exc_info:
            await coordinator.create_booking(make_request(professional_id=None))
        assert exc_info.value.code == "BAD_REQUEST"

    @pytest.mark.asyncio
    async def test_unknown_type(self, coordinator, make_request):
        with pytest.raises(ValidationError) as exc_info:
            await coordinator.create_booking(make_request(type="MASAJE"))
        assert exc_info.value.details["field"] == "type"

    @pytest.mark.asyncio
    async def test_past_start(self, coordinator, make_request):
        with pytest.raises(ValidationError) as exc_info:
            await coordinator.create_booking(make_request(start_local=datetime(2029, 12, 31, 9)))
        assert exc_info.value.code == "NO_PAST_APPOINTMENTS"

    @pytest.mark.asyncio
    async def test_dst_gap(self, store, directory, clock, make_request):
        """02:30 on spring-forward day is rejected, never shifted."""
        settings = Settings(clinic_timezone="America/New_York")
        coordinator = BookingCoordinator(
            store,
            WorkingHoursResolverStub(),
            directory,
            settings=settings,
            clock=clock,
        )
        with pytest.raises(InvalidTimeError) as exc_info:
            await coordinator.create_booking(make_request(start_local=datetime(2030, 3, 10, 2, 30)))
        assert exc_info.value.code == "INVALID_TIME"

    @pytest.mark.asyncio
    async def test_inactive_room(self, coordinator, make_request, store):
        with pytest.raises(ResourceUnavailableError) as exc_info:
            await coordinator.create_booking(make_request(room_id=3))
        assert exc_info.value.code == "RESOURCE_INACTIVE"
        assert store.bookings == {}

    @pytest.mark.asyncio
    async def test_unknown_professional(self, coordinator, make_request):
        with pytest.raises(ResourceUnavailableError) as exc_info:
            await coordinator.create_booking(make_request(professional_id=77))
        assert exc_info.value.code == "RESOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_incompatible_specialty(self, coordinator, make_request, store):
        """The orthodontist cannot take a general consultation."""
        with pytest.raises(IncompatibleResourceError) as exc_info:
            await coordinator.create_booking(make_request(professional_id=3))
        assert exc_info.value.code == "INCOMPATIBLE_SPECIALTY"
        assert store.bookings == {}

    @pytest.mark.asyncio
    async def test_resolver_timeout(self, store, directory, settings, clock, make_request):
        """A hanging resolver fails the request as retryable."""
        settings = settings.model_copy(update={"resolver_timeout_seconds": 0.05})
        coordinator = BookingCoordinator(
            store, HangingResolver(), directory, settings=settings, clock=clock
        )
        with pytest.raises(TransientInfraError) as exc_info:
            await coordinator.create_booking(make_request())
        assert exc_info.value.retryable is True
        assert store.bookings == {}

    @pytest.mark.asyncio
    async def test_store_busy(self, store, resolver, directory, settings, clock, make_request):
        """A commit that cannot get the store lock in time is retryable."""
        settings = settings.model_copy(update={"transaction_timeout_seconds": 0.05})
        coordinator = BookingCoordinator(store, resolver, directory, settings=settings, clock=clock)

        async with store.transaction():
            with pytest.raises(TransientInfraError):
                await coordinator.create_booking(make_request())

        assert store.bookings == {}


class WorkingHoursResolverStub(WorkingHoursResolver):
    async def get_open_intervals(self, resource, day):
        return []


class HangingResolver(WorkingHoursResolver):
    async def get_open_intervals(self, resource, day):
        await asyncio.sleep(10)
        return []


class TestConcurrency:
    """Test the commit-time re-check under concurrent requests."""

    @pytest.mark.asyncio
    async def test_lost_race_rejected(self, store, resolver, directory, settings, clock, make_request):
        """A slot taken after the pre-check is caught by the re-check."""
        validator = CompetingValidator(directory, store, competitor_at(9, 15))
        coordinator = BookingCoordinator(
            store, resolver, directory, validator=validator, settings=settings, clock=clock
        )

        result = await coordinator.create_booking(make_request())

        assert isinstance(result, ConflictResult)
        assert result.code == ConflictCode.OVERLAP
        assert [c.booking_id for c in result.conflicts] == [validator.inserted.id]
        assert BookingStage.COMMITTING in result.stages
        assert result.stages[-1] == BookingStage.REJECTED
        assert list(store.bookings) == [validator.inserted.id]

    @pytest.mark.asyncio
    async def test_concurrent_creates_one_wins(self, coordinator, make_request, store):
        """Five simultaneous requests for one slot: exactly one commits."""
        results = await asyncio.gather(
            *(coordinator.create_booking(make_request(patient_id=100 + i)) for i in range(5))
        )

        bookings = [r for r in results if isinstance(r, Booking)]
        conflicts = [r for r in results if isinstance(r, ConflictResult)]
        assert len(bookings) == 1
        assert len(conflicts) == 4
        assert all(c.code == ConflictCode.OVERLAP for c in conflicts)
        assert len(store.bookings) == 1

    @pytest.mark.asyncio
    async def test_racing_reschedules_one_wins(self, coordinator, make_request, store):
        """Two bookings moved into the same free slot: one replaced, one OVERLAP."""
        a = await coordinator.create_booking(make_request(patient_id=1, start_local=at(MONDAY, 9)))
        b = await coordinator.create_booking(make_request(patient_id=2, start_local=at(MONDAY, 10)))

        results = await asyncio.gather(
            coordinator.reschedule_booking(a.id, move_to(11)),
            coordinator.reschedule_booking(b.id, move_to(11)),
        )

        replaced = [r for r in results if isinstance(r, Replaced)]
        rejected = [r for r in results if isinstance(r, ConflictResult)]
        assert len(replaced) == 1
        assert len(rejected) == 1
        assert rejected[0].code == ConflictCode.OVERLAP

        loser_id = b.id if replaced[0].old_id == a.id else a.id
        assert (await store.get(loser_id)).status == BookingStatus.SCHEDULED
        active = [bk for bk in store.bookings.values() if bk.is_active]
        assert len(active) == 2


class TestReschedule:
    """Test atomic cancel-and-replace."""

    @pytest.mark.asyncio
    async def test_reschedule_into_own_slot(self, coordinator, make_request, store):
        """Booking #42 moved onto the slot only it occupied succeeds."""
        store.reserve_ids(41)
        booking = await coordinator.create_booking(make_request())
        assert booking.id == 42

        result = await coordinator.reschedule_booking(42, move_to(9))

        assert isinstance(result, Replaced)
        assert result.kind == "replaced"
        assert (result.old_id, result.new_id) == (42, 43)
        assert result.previous.status == BookingStatus.CANCELLED
        assert result.previous.cancel_reason == "superseded by reschedule"
        assert result.booking.rescheduled_from_id == 42
        assert result.stages[-1] == BookingStage.COMMITTED

        old = await store.get(42)
        assert old.status == BookingStatus.CANCELLED
        assert old.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_carries_patient_type_and_resources(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request(type="LIMPIEZA", duration_minutes=45))

        result = await coordinator.reschedule_booking(booking.id, move_to(10, duration=45))

        assert result.booking.patient_id == booking.patient_id
        assert result.booking.type == "LIMPIEZA"
        assert result.booking.professional_id == 1
        assert result.booking.room_id == 1
        assert result.booking.reason == booking.reason

    @pytest.mark.asyncio
    async def test_change_professional(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        result = await coordinator.reschedule_booking(booking.id, move_to(10, professional_id=2))
        assert result.booking.professional_id == 2

    @pytest.mark.asyncio
    async def test_explicit_null_room_drops_room(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        result = await coordinator.reschedule_booking(booking.id, move_to(10, room_id=None))
        assert result.booking.room_id is None

    @pytest.mark.asyncio
    async def test_conflict_leaves_booking_untouched(self, coordinator, make_request, store):
        a = await coordinator.create_booking(make_request(patient_id=1))
        b = await coordinator.create_booking(make_request(patient_id=2, start_local=at(MONDAY, 10)))

        result = await coordinator.reschedule_booking(a.id, move_to(10))

        assert isinstance(result, ConflictResult)
        assert [c.booking_id for c in result.conflicts] == [b.id]
        assert (await store.get(a.id)).status == BookingStatus.SCHEDULED
        assert len(store.bookings) == 2

    @pytest.mark.asyncio
    async def test_lost_race_rolls_back(self, store, resolver, directory, settings, clock, make_request):
        """Neither the cancel nor the insert survives a commit-time conflict."""
        plain = BookingCoordinator(store, resolver, directory, settings=settings, clock=clock)
        booking = await plain.create_booking(make_request())

        validator = CompetingValidator(directory, store, competitor_at(11))
        racing = BookingCoordinator(
            store, resolver, directory, validator=validator, settings=settings, clock=clock
        )
        result = await racing.reschedule_booking(booking.id, move_to(11))

        assert isinstance(result, ConflictResult)
        assert [c.booking_id for c in result.conflicts] == [validator.inserted.id]
        assert (await store.get(booking.id)).status == BookingStatus.SCHEDULED
        assert len(store.bookings) == 2
        assert len(await store.history(booking.id)) == 1

    @pytest.mark.asyncio
    async def test_history_records_both_sides(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        result = await coordinator.reschedule_booking(booking.id, move_to(10))

        old_history = await coordinator.history(result.old_id)
        new_history = await coordinator.history(result.new_id)
        assert [h.new_status for h in old_history] == [
            BookingStatus.SCHEDULED,
            BookingStatus.CANCELLED,
        ]
        assert [h.new_status for h in new_history] == [BookingStatus.SCHEDULED]

    @pytest.mark.asyncio
    async def test_no_show_can_be_rescheduled(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        await coordinator.transition(booking.id, BookingAction.NO_SHOW)

        result = await coordinator.reschedule_booking(booking.id, move_to(10))
        assert isinstance(result, Replaced)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", [BookingAction.CANCEL, BookingAction.COMPLETE])
    async def test_terminal_booking_not_reschedulable(self, coordinator, make_request, action):
        booking = await coordinator.create_booking(make_request())
        await coordinator.transition(booking.id, action)

        with pytest.raises(NotReschedulableError) as exc_info:
            await coordinator.reschedule_booking(booking.id, move_to(10))
        assert exc_info.value.http_status == 422

    @pytest.mark.asyncio
    async def test_replaced_booking_cannot_be_rescheduled_again(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        await coordinator.reschedule_booking(booking.id, move_to(10))

        with pytest.raises(NotReschedulableError):
            await coordinator.reschedule_booking(booking.id, move_to(11))

    @pytest.mark.asyncio
    async def test_unknown_booking(self, coordinator):
        with pytest.raises(BookingNotFoundError):
            await coordinator.reschedule_booking(404, move_to(10))

    @pytest.mark.asyncio
    async def test_booking_gone_before_commit(
        self, store, resolver, directory, settings, clock, make_request
    ):
        """A booking removed between the pre-check and the commit is reported as not found."""
        plain = BookingCoordinator(store, resolver, directory, settings=settings, clock=clock)
        booking = await plain.create_booking(make_request())

        wiping = BookingCoordinator(
            store,
            resolver,
            directory,
            validator=WipingValidator(directory, store),
            settings=settings,
            clock=clock,
        )
        with pytest.raises(BookingNotFoundError) as exc_info:
            await wiping.reschedule_booking(booking.id, move_to(10))

        assert exc_info.value.details == {"booking_id": booking.id}
        assert store.bookings == {}

    @pytest.mark.asyncio
    async def test_intent_used_once(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        intent = RescheduleIntent(existing_booking_id=booking.id, request=move_to(10))

        result = await coordinator.reschedule(intent)
        assert isinstance(result, Replaced)
        assert intent.consumed is True

        with pytest.raises(IntentAlreadyConsumedError):
            await coordinator.reschedule(intent)


class TestTransitions:
    """Test lifecycle actions."""

    @pytest.mark.asyncio
    async def test_confirm_then_complete(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())

        confirmed = await coordinator.transition(booking.id, BookingAction.CONFIRM, actor_id=7)
        completed = await coordinator.transition(booking.id, BookingAction.COMPLETE)

        assert confirmed.status == BookingStatus.CONFIRMED
        assert completed.status == BookingStatus.COMPLETED
        history = await coordinator.history(booking.id)
        assert [h.new_status for h in history] == [
            BookingStatus.SCHEDULED,
            BookingStatus.CONFIRMED,
            BookingStatus.COMPLETED,
        ]
        assert history[1].changed_by == 7
        assert history[1].previous_status == BookingStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_cancel_frees_slot(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())

        cancelled = await coordinator.transition(
            booking.id, BookingAction.CANCEL, cancel_reason="PATIENT"
        )

        assert cancelled.cancel_reason == "PATIENT"
        assert cancelled.cancelled_at is not None
        again = await coordinator.create_booking(make_request(patient_id=101))
        assert isinstance(again, Booking)

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        first = await coordinator.transition(booking.id, BookingAction.CANCEL)
        second = await coordinator.transition(booking.id, BookingAction.CANCEL)

        assert second == first
        assert len(await coordinator.history(booking.id)) == 2

    @pytest.mark.asyncio
    async def test_transition_not_allowed(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        await coordinator.transition(booking.id, BookingAction.CANCEL)

        with pytest.raises(TransitionNotAllowedError) as exc_info:
            await coordinator.transition(booking.id, BookingAction.CONFIRM)
        assert exc_info.value.details["status"] == "CANCELLED"

    @pytest.mark.asyncio
    async def test_unknown_booking(self, coordinator):
        with pytest.raises(BookingNotFoundError):
            await coordinator.transition(404, BookingAction.CONFIRM)
        with pytest.raises(BookingNotFoundError):
            await coordinator.get_booking(404)


class TestPreCheck:
    """Test the non-authoritative availability check and direct recommendations."""

    @pytest.mark.asyncio
    async def test_available(self, coordinator):
        check = await coordinator.check_availability(
            AvailabilityQuery(professional_id=1, room_id=1, start_local=at(MONDAY, 9), duration_minutes=30)
        )
        assert check.available is True
        assert check.end_local == at(MONDAY, 9, 30)
        assert check.recommendations == []

    @pytest.mark.asyncio
    async def test_unavailable_with_alternatives(self, coordinator, make_request, store):
        await coordinator.create_booking(make_request())

        check = await coordinator.check_availability(
            AvailabilityQuery(
                professional_id=1,
                room_id=1,
                start_local=at(MONDAY, 9),
                duration_minutes=30,
                max_results=2,
            )
        )

        assert check.available is False
        assert check.code == ConflictCode.OVERLAP
        assert len(check.recommendations) == 2
        assert len(store.bookings) == 1

    @pytest.mark.asyncio
    async def test_excluding_booking(self, coordinator, make_request):
        booking = await coordinator.create_booking(make_request())
        check = await coordinator.check_availability(
            AvailabilityQuery(
                professional_id=1,
                room_id=1,
                start_local=at(MONDAY, 9),
                duration_minutes=30,
                exclude_booking_id=booking.id,
            )
        )
        assert check.available is True

    @pytest.mark.asyncio
    async def test_recommend(self, coordinator):
        recommendations = await coordinator.recommend(
            AvailabilityQuery(
                professional_id=2, start_local=at(MONDAY, 8), duration_minutes=90, max_results=5
            )
        )
        # Dr. Giménez starts at 09:00
        assert recommendations[0].start_local == at(MONDAY, 9)
        assert len(recommendations) == 5
