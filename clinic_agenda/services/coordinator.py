"""
Booking Transaction Coordinator.

Drives a booking request through its gates::

    RECEIVED -> NORMALIZED -> AVAILABILITY_CHECKED -> COMPATIBILITY_CHECKED
             -> COMMITTING -> COMMITTED          (or REJECTED at any gate)

The availability gate outside the transaction is only a fast-fail: the
overlap check is run again inside the commit transaction, and that second
answer is the one that counts. A reschedule cancels the old booking and
inserts its replacement in that same transaction, so either both happen or
neither does.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple, Union

from loguru import logger

from clinic_agenda.config import Settings, get_appointment_type, get_settings
from clinic_agenda.errors import (
    BookingNotFoundError,
    NotReschedulableError,
    SchedulingError,
    TransientInfraError,
    TransitionNotAllowedError,
    ValidationError,
)
from clinic_agenda.models.booking import (
    RESCHEDULABLE_STATUSES,
    STATUS_TRANSITIONS,
    Booking,
    BookingAction,
    BookingStatus,
    CancelReason,
    StatusChange,
)
from clinic_agenda.models.requests import (
    AvailabilityQuery,
    BookingRequest,
    RescheduleIntent,
    RescheduleRequest,
)
from clinic_agenda.models.results import (
    AvailabilityCheck,
    BookingStage,
    ConflictCode,
    ConflictDescriptor,
    ConflictResult,
    Replaced,
    RescheduleOutcome,
    SlotRecommendation,
)
from clinic_agenda.services.compatibility import CompatibilityValidator
from clinic_agenda.services.directory import ResourceDirectory
from clinic_agenda.services.intervals import contains
from clinic_agenda.services.overlap import Candidate, OverlapDetector
from clinic_agenda.services.recommendations import (
    RecommendationGenerator,
    RecommendationRequest,
)
from clinic_agenda.services.store import InMemoryBookingStore
from clinic_agenda.services.time_grid import get_zone, normalize, to_local, to_utc
from clinic_agenda.services.working_hours import (
    DirectoryWorkingHoursResolver,
    HttpWorkingHoursResolver,
    WorkingHoursResolver,
    resolve_open_intervals,
)

CONFLICT_MESSAGES = {
    ConflictCode.OVERLAP: "The requested time overlaps existing appointments",
    ConflictCode.OUTSIDE_WORKING_HOURS: "The requested time is outside working hours",
    ConflictCode.NO_WORKING_DAY: "There are no working hours on the requested day",
}


class _Slot:
    """A normalized request slot."""

    def __init__(self, start_local: datetime, start_at: datetime, end_at: datetime):
        self.start_local = start_local
        self.start_at = start_at
        self.end_at = end_at


class BookingCoordinator:
    """
    Creates, reschedules and transitions bookings atomically.

    The coordinator holds no per-request state; every call reads resource
    availability and bookings afresh.
    """

    def __init__(
        self,
        store: InMemoryBookingStore,
        resolver: WorkingHoursResolver,
        directory: ResourceDirectory,
        validator: Optional[CompatibilityValidator] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self._store = store
        self._resolver = resolver
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._validator = validator or CompatibilityValidator(directory)
        self._detector = OverlapDetector(directory, buffer_minutes=self.settings.buffer_minutes)
        self._generator = RecommendationGenerator(
            resolver, self._detector, settings=self.settings, clock=self._clock
        )

    @property
    def store(self) -> InMemoryBookingStore:
        return self._store

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    @staticmethod
    def _advance(stages: List[BookingStage], stage: BookingStage, label: str) -> None:
        stages.append(stage)
        logger.debug(f"[{label}] {stage.value}")

    def _validate_duration(self, duration_minutes: int) -> None:
        low, high = self.settings.min_duration_minutes, self.settings.max_duration_minutes
        if not low <= duration_minutes <= high:
            raise ValidationError(
                f"Duration must be between {low} and {high} minutes",
                code="INVALID_DURATION",
                details={"duration_minutes": duration_minutes, "min": low, "max": high},
            )

    def _validate_create(self, request: BookingRequest) -> None:
        if request.professional_id is None:
            raise ValidationError(
                "A professional is required", details={"field": "professional_id"}
            )
        if get_appointment_type(request.type) is None:
            raise ValidationError(
                f"Unknown appointment type '{request.type}'",
                details={"field": "type", "value": request.type},
            )
        self._validate_duration(request.duration_minutes)

    def _normalize(self, start_local: datetime, duration_minutes: int) -> _Slot:
        tz = get_zone(self.settings.clinic_timezone)
        local = normalize(start_local, self.settings.slot_grid_minutes, tz)
        start_at = to_utc(local, tz)
        if start_at < self._clock():
            raise ValidationError(
                "Appointments cannot be booked in the past",
                code="NO_PAST_APPOINTMENTS",
                details={"start_local": local.isoformat()},
            )
        return _Slot(local, start_at, start_at + timedelta(minutes=duration_minutes))

    async def _check_slot(
        self,
        professional_id: int,
        room_id: Optional[int],
        slot: _Slot,
        exclude_booking_id: Optional[int] = None,
    ) -> Tuple[Optional[ConflictCode], List[ConflictDescriptor]]:
        """Working-hours gate followed by the (non-authoritative) overlap pre-check."""
        open_intervals = await resolve_open_intervals(
            self._resolver,
            professional_id,
            room_id,
            slot.start_local.date(),
            timeout=self.settings.resolver_timeout_seconds,
        )
        if not open_intervals:
            return ConflictCode.NO_WORKING_DAY, []
        if not any(contains(i, slot.start_at, slot.end_at) for i in open_intervals):
            return ConflictCode.OUTSIDE_WORKING_HOURS, []

        conflicts = await self._detector.find_conflicts(
            self._store,
            Candidate(
                start=slot.start_at,
                end=slot.end_at,
                professional_id=professional_id,
                room_id=room_id,
            ),
            exclude_booking_id=exclude_booking_id,
        )
        if conflicts:
            return ConflictCode.OVERLAP, conflicts
        return None, []

    async def _recommendations(
        self,
        professional_id: int,
        room_id: Optional[int],
        slot: _Slot,
        duration_minutes: int,
        exclude_booking_id: Optional[int] = None,
        search_window_days: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> List[SlotRecommendation]:
        return await self._generator.recommend(
            self._store,
            RecommendationRequest(
                start_local=slot.start_local,
                duration_minutes=duration_minutes,
                professional_id=professional_id,
                room_id=room_id,
                exclude_booking_id=exclude_booking_id,
            ),
            search_window_days=search_window_days,
            max_results=max_results,
        )

    async def _reject(
        self,
        code: ConflictCode,
        conflicts: List[ConflictDescriptor],
        professional_id: int,
        room_id: Optional[int],
        slot: _Slot,
        duration_minutes: int,
        stages: List[BookingStage],
        label: str,
        exclude_booking_id: Optional[int] = None,
    ) -> ConflictResult:
        self._advance(stages, BookingStage.REJECTED, label)
        try:
            recommendations = await self._recommendations(
                professional_id, room_id, slot, duration_minutes, exclude_booking_id
            )
        except TransientInfraError as e:
            logger.warning(f"[{label}] Rejected without recommendations: {e.message}")
            recommendations = []

        logger.info(
            f"[{label}] {code.value} for professional {professional_id} at "
            f"{slot.start_local.isoformat()}: {len(conflicts)} conflicts, "
            f"{len(recommendations)} alternatives"
        )
        return ConflictResult(
            code=code,
            message=CONFLICT_MESSAGES[code],
            requested_start_local=slot.start_local,
            conflicts=conflicts,
            recommendations=recommendations,
            stages=list(stages),
        )

    def _log_booking(self, booking: Booking) -> None:
        appointment_type = get_appointment_type(booking.type) or {}
        logger.info("=" * 60)
        logger.info("AGENDA BOOKING COMMITTED")
        logger.info("=" * 60)
        logger.info(f"Booking ID: {booking.id}")
        logger.info(f"Patient: {booking.patient_id}")
        logger.info(f"Date/Time: {booking.start_local.strftime('%Y-%m-%d %H:%M')}")
        logger.info(f"Professional: {booking.professional_id}")
        logger.info(f"Room: {booking.room_id if booking.room_id is not None else '-'}")
        logger.info(f"Type: {appointment_type.get('name', booking.type)}")
        logger.info(f"Duration: {booking.duration_minutes} minutes")
        logger.info("=" * 60)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_booking(self, booking_id: int) -> Booking:
        booking = await self._store.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(
                f"Booking {booking_id} does not exist", details={"booking_id": booking_id}
            )
        return booking

    async def history(self, booking_id: int) -> List[StatusChange]:
        await self.get_booking(booking_id)
        return await self._store.history(booking_id)

    async def check_availability(self, query: AvailabilityQuery) -> AvailabilityCheck:
        """
        Pre-check a slot without booking it.

        This is the endpoint behind client-side live validation. Its answer
        is advisory: only the commit-time re-check is authoritative.
        """
        if query.professional_id is None:
            raise ValidationError(
                "A professional is required", details={"field": "professional_id"}
            )
        self._validate_duration(query.duration_minutes)
        slot = self._normalize(query.start_local, query.duration_minutes)

        code, conflicts = await self._check_slot(
            query.professional_id, query.room_id, slot, query.exclude_booking_id
        )
        tz = get_zone(self.settings.clinic_timezone)
        check = AvailabilityCheck(
            available=code is None,
            start_local=slot.start_local,
            end_local=to_local(slot.end_at, tz),
            code=code,
            conflicts=conflicts,
        )
        if code is not None:
            check.recommendations = await self._recommendations(
                query.professional_id,
                query.room_id,
                slot,
                query.duration_minutes,
                exclude_booking_id=query.exclude_booking_id,
                search_window_days=query.search_window_days,
                max_results=query.max_results,
            )
        return check

    async def recommend(self, query: AvailabilityQuery) -> List[SlotRecommendation]:
        """Ranked free slots around a requested start."""
        if query.professional_id is None:
            raise ValidationError(
                "A professional is required", details={"field": "professional_id"}
            )
        self._validate_duration(query.duration_minutes)
        slot = self._normalize(query.start_local, query.duration_minutes)
        return await self._recommendations(
            query.professional_id,
            query.room_id,
            slot,
            query.duration_minutes,
            exclude_booking_id=query.exclude_booking_id,
            search_window_days=query.search_window_days,
            max_results=query.max_results,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_booking(self, request: BookingRequest) -> Union[Booking, ConflictResult]:
        """
        Create a booking.

        Returns:
            The committed Booking, or a ConflictResult when the slot is taken
            or outside working hours (with recommendations)

        Raises:
            ValidationError: malformed request or DST-invalid time
            ResourceUnavailableError: professional or room missing/inactive
            IncompatibleResourceError: specialty mismatch or blocked resource
            TransientInfraError: resolver or store timeout; safe to retry
        """
        stages: List[BookingStage] = []
        label = f"create:{request.idempotency_key or request.patient_id}"
        self._advance(stages, BookingStage.RECEIVED, label)

        try:
            self._validate_create(request)

            if request.idempotency_key:
                existing = await self._store.find_by_idempotency_key(request.idempotency_key)
                if existing is not None:
                    logger.info(f"[{label}] Replaying booking {existing.id} for idempotency key")
                    return existing

            slot = self._normalize(request.start_local, request.duration_minutes)
            self._advance(stages, BookingStage.NORMALIZED, label)

            code, conflicts = await self._check_slot(
                request.professional_id, request.room_id, slot
            )
            if code is not None:
                return await self._reject(
                    code,
                    conflicts,
                    request.professional_id,
                    request.room_id,
                    slot,
                    request.duration_minutes,
                    stages,
                    label,
                )
            self._advance(stages, BookingStage.AVAILABILITY_CHECKED, label)

            await self._validator.validate(
                request.type, request.professional_id, request.room_id, slot.start_at, slot.end_at
            )
            self._advance(stages, BookingStage.COMPATIBILITY_CHECKED, label)

            self._advance(stages, BookingStage.COMMITTING, label)
            candidate = Candidate(
                start=slot.start_at,
                end=slot.end_at,
                professional_id=request.professional_id,
                room_id=request.room_id,
            )
            booking: Optional[Booking] = None
            async with self._store.transaction(self.settings.transaction_timeout_seconds) as tx:
                if request.idempotency_key:
                    replay = await tx.find_by_idempotency_key(request.idempotency_key)
                    if replay is not None:
                        return replay

                conflicts = await self._detector.find_conflicts(tx, candidate)
                if conflicts:
                    tx.rollback()
                else:
                    now = self._clock()
                    booking = tx.insert(
                        Booking(
                            patient_id=request.patient_id,
                            professional_id=request.professional_id,
                            room_id=request.room_id,
                            start_at=slot.start_at,
                            end_at=slot.end_at,
                            start_local=slot.start_local,
                            duration_minutes=request.duration_minutes,
                            type=request.type,
                            reason=request.reason,
                            notes=request.notes,
                            idempotency_key=request.idempotency_key,
                            created_at=now,
                        )
                    )
                    tx.record_status_change(
                        StatusChange(
                            booking_id=booking.id,
                            new_status=BookingStatus.SCHEDULED,
                            note="Booking created",
                            changed_at=now,
                            changed_by=request.actor_id,
                        )
                    )

            if booking is None:
                logger.warning(
                    f"[{label}] Lost race: slot taken between pre-check and commit "
                    f"({len(conflicts)} conflicts)"
                )
                return await self._reject(
                    ConflictCode.OVERLAP,
                    conflicts,
                    request.professional_id,
                    request.room_id,
                    slot,
                    request.duration_minutes,
                    stages,
                    label,
                )

        except SchedulingError as e:
            self._advance(stages, BookingStage.REJECTED, label)
            logger.info(f"[{label}] Rejected with {e.code}: {e.message}")
            raise

        self._advance(stages, BookingStage.COMMITTED, label)
        self._log_booking(booking)
        return booking

    # ------------------------------------------------------------------
    # Reschedule
    # ------------------------------------------------------------------

    async def reschedule(self, intent: RescheduleIntent) -> RescheduleOutcome:
        """Consume a reschedule intent (replace-on-success)."""
        request = intent.consume()
        return await self.reschedule_booking(intent.existing_booking_id, request)

    @staticmethod
    def _ensure_reschedulable(booking: Booking) -> None:
        if booking.status not in RESCHEDULABLE_STATUSES:
            raise NotReschedulableError(
                f"Booking {booking.id} is {booking.status.value} and cannot be rescheduled",
                details={"booking_id": booking.id, "status": booking.status.value},
            )

    async def reschedule_booking(
        self, existing_id: int, request: RescheduleRequest
    ) -> RescheduleOutcome:
        """
        Replace a booking with one at a new time (and possibly new resources).

        Returns:
            Replaced when the old booking was cancelled and the new one
            inserted in one transaction; ConflictResult when the new slot is
            unavailable, in which case nothing was changed
        """
        stages: List[BookingStage] = []
        label = f"reschedule:{existing_id}"
        self._advance(stages, BookingStage.RECEIVED, label)

        try:
            existing = await self.get_booking(existing_id)
            self._ensure_reschedulable(existing)
            self._validate_duration(request.duration_minutes)

            professional_id = request.professional_id or existing.professional_id
            room_id = request.room_id if request.room_given else existing.room_id

            slot = self._normalize(request.start_local, request.duration_minutes)
            self._advance(stages, BookingStage.NORMALIZED, label)

            code, conflicts = await self._check_slot(
                professional_id, room_id, slot, exclude_booking_id=existing_id
            )
            if code is not None:
                return await self._reject(
                    code,
                    conflicts,
                    professional_id,
                    room_id,
                    slot,
                    request.duration_minutes,
                    stages,
                    label,
                    exclude_booking_id=existing_id,
                )
            self._advance(stages, BookingStage.AVAILABILITY_CHECKED, label)

            await self._validator.validate(
                existing.type, professional_id, room_id, slot.start_at, slot.end_at
            )
            self._advance(stages, BookingStage.COMPATIBILITY_CHECKED, label)

            self._advance(stages, BookingStage.COMMITTING, label)
            candidate = Candidate(
                start=slot.start_at,
                end=slot.end_at,
                professional_id=professional_id,
                room_id=room_id,
            )
            replaced: Optional[Replaced] = None
            async with self._store.transaction(self.settings.transaction_timeout_seconds) as tx:
                current = await tx.get(existing_id)
                if current is None:
                    raise BookingNotFoundError(
                        f"Booking {existing_id} does not exist",
                        details={"booking_id": existing_id},
                    )
                self._ensure_reschedulable(current)

                conflicts = await self._detector.find_conflicts(
                    tx, candidate, exclude_booking_id=existing_id
                )
                if conflicts:
                    tx.rollback()
                else:
                    now = self._clock()
                    previous = tx.update(
                        current.model_copy(
                            update={
                                "status": BookingStatus.CANCELLED,
                                "cancel_reason": CancelReason.SUPERSEDED.value,
                                "cancelled_at": now,
                            }
                        )
                    )
                    booking = tx.insert(
                        Booking(
                            patient_id=current.patient_id,
                            professional_id=professional_id,
                            room_id=room_id,
                            start_at=slot.start_at,
                            end_at=slot.end_at,
                            start_local=slot.start_local,
                            duration_minutes=request.duration_minutes,
                            type=current.type,
                            reason=request.reason if request.reason is not None else current.reason,
                            notes=request.notes,
                            rescheduled_from_id=current.id,
                            created_at=now,
                        )
                    )
                    tx.record_status_change(
                        StatusChange(
                            booking_id=previous.id,
                            previous_status=current.status,
                            new_status=BookingStatus.CANCELLED,
                            note=f"Rescheduled: replaced by booking {booking.id}",
                            changed_at=now,
                            changed_by=request.actor_id,
                        )
                    )
                    tx.record_status_change(
                        StatusChange(
                            booking_id=booking.id,
                            new_status=BookingStatus.SCHEDULED,
                            note=f"Rescheduled: replaces booking {previous.id}",
                            changed_at=now,
                            changed_by=request.actor_id,
                        )
                    )
                    replaced = Replaced(
                        old_id=previous.id, new_id=booking.id, booking=booking, previous=previous
                    )

            if replaced is None:
                logger.warning(
                    f"[{label}] Lost race: new slot taken between pre-check and commit "
                    f"({len(conflicts)} conflicts)"
                )
                return await self._reject(
                    ConflictCode.OVERLAP,
                    conflicts,
                    professional_id,
                    room_id,
                    slot,
                    request.duration_minutes,
                    stages,
                    label,
                    exclude_booking_id=existing_id,
                )

        except SchedulingError as e:
            self._advance(stages, BookingStage.REJECTED, label)
            logger.info(f"[{label}] Rejected with {e.code}: {e.message}")
            raise

        self._advance(stages, BookingStage.COMMITTED, label)
        replaced.stages = list(stages)
        logger.info(
            f"[{label}] Booking {replaced.old_id} replaced by {replaced.new_id} at "
            f"{replaced.booking.start_local.isoformat()}"
        )
        return replaced

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def transition(
        self,
        booking_id: int,
        action: BookingAction,
        note: Optional[str] = None,
        actor_id: Optional[int] = None,
        cancel_reason: Optional[str] = None,
    ) -> Booking:
        """Apply a lifecycle action (confirm, cancel, complete, no-show)."""
        async with self._store.transaction(self.settings.transaction_timeout_seconds) as tx:
            booking = await tx.get(booking_id)
            if booking is None:
                raise BookingNotFoundError(
                    f"Booking {booking_id} does not exist", details={"booking_id": booking_id}
                )

            if action == BookingAction.CANCEL and booking.status == BookingStatus.CANCELLED:
                return booking

            new_status = STATUS_TRANSITIONS[booking.status].get(action)
            if new_status is None:
                raise TransitionNotAllowedError(
                    f"Cannot {action.value} a booking that is {booking.status.value}",
                    details={
                        "booking_id": booking_id,
                        "status": booking.status.value,
                        "action": action.value,
                    },
                )

            now = self._clock()
            update = {"status": new_status}
            if new_status == BookingStatus.CANCELLED:
                update["cancel_reason"] = cancel_reason or CancelReason.CLINIC.value
                update["cancelled_at"] = now
            updated = tx.update(booking.model_copy(update=update))
            tx.record_status_change(
                StatusChange(
                    booking_id=booking_id,
                    previous_status=booking.status,
                    new_status=new_status,
                    note=note,
                    changed_at=now,
                    changed_by=actor_id,
                )
            )

        logger.info(
            f"Booking {booking_id}: {booking.status.value} -> {new_status.value} ({action.value})"
        )
        return updated


def build_coordinator(
    directory: ResourceDirectory,
    store: Optional[InMemoryBookingStore] = None,
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> BookingCoordinator:
    """
    Wire a coordinator from settings.

    Working hours come from the remote service when ``WORKING_HOURS_API_URL``
    is set, otherwise straight from the directory.
    """
    settings = settings or get_settings()
    if settings.working_hours_api_url:
        resolver: WorkingHoursResolver = HttpWorkingHoursResolver(settings)
    else:
        resolver = DirectoryWorkingHoursResolver(directory, settings)
    return BookingCoordinator(
        store or InMemoryBookingStore(clock),
        resolver,
        directory,
        settings=settings,
        clock=clock,
    )
