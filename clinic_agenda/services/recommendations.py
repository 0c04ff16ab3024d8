"""
Recommendation Generator.

When a requested slot cannot be booked, sweeps the requested day and the
following days for free grid-aligned starts that fit the requested
duration, and ranks them by distance from the requested start.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

from loguru import logger
from pydantic import BaseModel

from clinic_agenda.config import Settings, get_settings
from clinic_agenda.errors import InvalidTimeError
from clinic_agenda.models.resources import TimeInterval
from clinic_agenda.models.results import SlotRecommendation
from clinic_agenda.services.intervals import subtract
from clinic_agenda.services.overlap import OverlapDetector
from clinic_agenda.services.store import BookingReader
from clinic_agenda.services.time_grid import align_up, get_zone, to_local, to_utc
from clinic_agenda.services.working_hours import WorkingHoursResolver, resolve_open_intervals


class RecommendationRequest(BaseModel):
    """What the caller originally asked for."""

    start_local: datetime
    duration_minutes: int
    professional_id: int
    room_id: Optional[int] = None
    exclude_booking_id: Optional[int] = None

    @property
    def date(self) -> date:
        return self.start_local.date()


class RecommendationGenerator:
    """Searches nearby free slots for a professional and optional room."""

    def __init__(
        self,
        resolver: WorkingHoursResolver,
        detector: OverlapDetector,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._resolver = resolver
        self._detector = detector
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _day_candidates(
        self,
        free: List[TimeInterval],
        duration: timedelta,
        requested_at: datetime,
        not_before: datetime,
    ) -> List[SlotRecommendation]:
        tz = get_zone(self._settings.clinic_timezone)
        grid = timedelta(minutes=self._settings.slot_grid_minutes)
        candidates = []

        for interval in free:
            local_start = align_up(to_local(interval.start, tz), self._settings.slot_grid_minutes)
            local_limit = to_local(interval.end, tz)

            while local_start <= local_limit:
                try:
                    start_at = to_utc(local_start, tz)
                except InvalidTimeError:
                    # DST gap or overlap: never offer an ambiguous wall-clock time
                    local_start += grid
                    continue

                end_at = start_at + duration
                if end_at > interval.end:
                    break
                if start_at >= interval.start and start_at >= not_before:
                    candidates.append(
                        SlotRecommendation(
                            date=local_start.date(),
                            start_local=local_start,
                            end_local=to_local(end_at, tz),
                            start_at=start_at,
                            end_at=end_at,
                            distance_minutes=int(
                                abs((start_at - requested_at).total_seconds()) // 60
                            ),
                        )
                    )
                local_start += grid

        return candidates

    async def recommend(
        self,
        reader: BookingReader,
        requested: RecommendationRequest,
        search_window_days: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> List[SlotRecommendation]:
        """
        Ranked alternative slots.

        Args:
            reader: Booking state to sweep against
            requested: The original request (clinic-local start)
            search_window_days: Days after the requested date to search
            max_results: Maximum number of recommendations

        Returns:
            Recommendations ordered by distance from the requested start,
            then by date and time. Empty when nothing is free in the window.
        """
        window = (
            self._settings.search_window_days if search_window_days is None else search_window_days
        )
        limit = self._settings.max_recommendations if max_results is None else max_results
        tz = get_zone(self._settings.clinic_timezone)

        requested_at = to_utc(requested.start_local, tz)
        duration = timedelta(minutes=requested.duration_minutes)
        not_before = self._clock()

        candidates: List[SlotRecommendation] = []
        for offset in range(window + 1):
            day = requested.date + timedelta(days=offset)
            open_intervals = await resolve_open_intervals(
                self._resolver,
                requested.professional_id,
                requested.room_id,
                day,
                timeout=self._settings.resolver_timeout_seconds,
            )
            if not open_intervals:
                continue

            busy = await self._detector.busy_intervals(
                reader,
                open_intervals[0].start,
                open_intervals[-1].end,
                requested.professional_id,
                requested.room_id,
                exclude_booking_id=requested.exclude_booking_id,
            )
            free = subtract(open_intervals, busy)
            candidates.extend(self._day_candidates(free, duration, requested_at, not_before))

        candidates.sort(key=lambda c: (c.distance_minutes, c.date, c.start_at))
        logger.debug(
            f"Found {len(candidates)} free slots for professional {requested.professional_id} "
            f"within {window} days of {requested.date}"
        )
        return candidates[:limit]
