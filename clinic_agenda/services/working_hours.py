"""
Working-Hours & Blocks Resolver.

Given a professional or room and a clinic-local date, returns the open
intervals of that day (working windows minus agenda blocks) as UTC instants.
The engine treats the resolver as authoritative and read-only, and asks it
again on every check: schedules change independently of the engine.

Two implementations are provided: one reading the in-process resource
directory, and an HTTP client for a remote working-hours service.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import httpx
from loguru import logger

from clinic_agenda.config import SPANISH_DAY_NAME_TO_INDEX, Settings, get_settings
from clinic_agenda.errors import ResourceUnavailableError, TransientInfraError
from clinic_agenda.models.resources import ResourceKind, ResourceRef, TimeInterval
from clinic_agenda.services.directory import ResourceDirectory
from clinic_agenda.services.intervals import intersect, merge, subtract
from clinic_agenda.services.time_grid import get_zone

HHMM_PATTERN = re.compile(r"^\d{2}:\d{2}$")

# weekday (Monday=0) -> list of (from, to) local times
WeeklySchedule = Dict[int, List[Tuple[time, time]]]


def _parse_hhmm(value: str) -> Optional[time]:
    hours, minutes = (int(part) for part in value.split(":"))
    if hours == 24 and minutes == 0:
        return time.max
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return time(hours, minutes)


def _parse_segment(segment) -> Optional[Tuple[time, time]]:
    """Accept ``{"inicio": "09:00", "fin": "13:00"}`` or ``["09:00", "13:00"]``."""
    if isinstance(segment, dict):
        start, end = segment.get("inicio"), segment.get("fin")
    elif isinstance(segment, (list, tuple)) and len(segment) == 2:
        start, end = segment
    else:
        return None

    if not (isinstance(start, str) and isinstance(end, str)):
        return None
    if not (HHMM_PATTERN.match(start) and HHMM_PATTERN.match(end)):
        return None

    parsed_start, parsed_end = _parse_hhmm(start), _parse_hhmm(end)
    if parsed_start is None or parsed_end is None or parsed_start >= parsed_end:
        return None
    return parsed_start, parsed_end


def _parse_segments(value) -> List[Tuple[time, time]]:
    if not isinstance(value, list):
        return []
    segments = [_parse_segment(seg) for seg in value]
    return sorted(seg for seg in segments if seg is not None)


def _dow_key_to_weekday(key: str) -> Optional[int]:
    # "0" and "7" are Sunday; "1".."6" are Monday..Saturday in both conventions
    try:
        number = int(key)
    except ValueError:
        return None
    if number in (0, 7):
        return 6
    if 1 <= number <= 6:
        return number - 1
    return None


def parse_weekly_schedule(raw) -> Optional[WeeklySchedule]:
    """
    Parse a stored weekly schedule.

    Supports the day-name format::

        {"lunes": [{"inicio": "09:00", "fin": "13:00"}], "martes": [...]}

    and the legacy numeric format::

        {"dow": {"1": [["08:00", "12:00"], ["13:00", "16:00"]]}}

    Returns:
        Mapping of weekday (Monday=0) to sorted segments, or None when no
        usable schedule is configured.
    """
    if not isinstance(raw, dict):
        return None

    schedule: WeeklySchedule = {}
    day_name_format = False
    for name, value in raw.items():
        weekday = SPANISH_DAY_NAME_TO_INDEX.get(str(name).lower())
        if weekday is None or not isinstance(value, list):
            continue
        day_name_format = True
        segments = _parse_segments(value)
        if segments:
            schedule[weekday] = segments

    if day_name_format and schedule:
        return schedule

    legacy = raw.get("dow")
    if isinstance(legacy, dict):
        for key, value in legacy.items():
            weekday = _dow_key_to_weekday(str(key))
            segments = _parse_segments(value)
            if weekday is not None and segments:
                schedule.setdefault(weekday, []).extend(segments)

    return schedule or None


class WorkingHoursResolver(ABC):
    """Read-only source of open intervals per resource and day."""

    @abstractmethod
    async def get_open_intervals(self, resource: ResourceRef, day: date) -> List[TimeInterval]:
        """
        Open intervals for a resource on a clinic-local date.

        Raises:
            ResourceUnavailableError: resource missing (RESOURCE_NOT_FOUND)
                or inactive (RESOURCE_INACTIVE)
        """


class DirectoryWorkingHoursResolver(WorkingHoursResolver):
    """Resolver backed by the in-process resource directory."""

    def __init__(self, directory: ResourceDirectory, settings: Optional[Settings] = None):
        self._directory = directory
        self._settings = settings or get_settings()

    def _fallback_segments(self) -> List[Tuple[time, time]]:
        start = _parse_hhmm(self._settings.fallback_start)
        end = _parse_hhmm(self._settings.fallback_end)
        return [(start, end)]

    def _working_windows(self, raw_schedule, day: date, kind: ResourceKind) -> List[TimeInterval]:
        """
        Working windows for one day.

        Professionals without usable segments for the day work the clinic
        fallback hours. Rooms without a schedule are open all day, so only
        their blocks restrict them.
        """
        schedule = parse_weekly_schedule(raw_schedule)
        if schedule is None and kind == ResourceKind.ROOM:
            segments = [(time(0), time.max)]
        elif schedule is None or not schedule.get(day.weekday()):
            segments = self._fallback_segments()
        else:
            segments = schedule[day.weekday()]

        tz = get_zone(self._settings.clinic_timezone)
        windows = []
        for start, end in segments:
            start_at = datetime.combine(day, start).replace(tzinfo=tz).astimezone(timezone.utc)
            if end == time.max:
                end_local = datetime.combine(day + timedelta(days=1), time(0))
            else:
                end_local = datetime.combine(day, end)
            end_at = end_local.replace(tzinfo=tz).astimezone(timezone.utc)
            if start_at < end_at:
                windows.append(TimeInterval(start=start_at, end=end_at))
        return merge(windows)

    async def get_open_intervals(self, resource: ResourceRef, day: date) -> List[TimeInterval]:
        record = self._directory.get(resource)
        if record is None:
            raise ResourceUnavailableError(
                f"{resource.kind.value.capitalize()} {resource.id} does not exist",
                code="RESOURCE_NOT_FOUND",
                details={"resource_kind": resource.kind.value, "resource_id": resource.id},
            )
        if not record.active:
            raise ResourceUnavailableError(
                f"{resource.kind.value.capitalize()} '{record.name}' is inactive",
                code="RESOURCE_INACTIVE",
                details={
                    "resource_kind": resource.kind.value,
                    "resource_id": resource.id,
                    "resource_name": record.name,
                },
            )

        windows = self._working_windows(record.schedule, day, resource.kind)
        if not windows:
            return []

        blocks = self._directory.blocks_for(resource, windows[0].start, windows[-1].end)
        return subtract(windows, [block.interval for block in blocks])


class HttpWorkingHoursResolver(WorkingHoursResolver):
    """
    Async client for a remote working-hours service.

    Implements connection pooling for efficient concurrent requests.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.working_hours_api_url,
                timeout=httpx.Timeout(self.settings.working_hours_api_timeout),
                limits=httpx.Limits(
                    max_connections=self.settings.connection_pool_size,
                    max_keepalive_connections=self.settings.connection_pool_size // 2,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get_open_intervals(self, resource: ResourceRef, day: date) -> List[TimeInterval]:
        client = await self._get_client()
        details = {"resource_kind": resource.kind.value, "resource_id": resource.id}

        try:
            response = await client.get(
                f"/api/v1/resources/{resource.kind.value}/{resource.id}/open-intervals",
                params={"date": day.isoformat()},
            )
        except httpx.TimeoutException as e:
            logger.error(f"Working-hours request timed out for {resource}: {e}")
            raise TransientInfraError(
                f"Working-hours service timed out for {resource}", details=details
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Request error fetching working hours for {resource}: {e}")
            raise TransientInfraError(
                f"Working-hours service unreachable for {resource}",
                code="UNAVAILABLE",
                details=details,
            ) from e

        if response.status_code == 404:
            raise ResourceUnavailableError(
                f"{resource} does not exist", code="RESOURCE_NOT_FOUND", details=details
            )
        if response.status_code in (409, 423):
            raise ResourceUnavailableError(
                f"{resource} is inactive", code="RESOURCE_INACTIVE", details=details
            )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error fetching working hours for {resource}: {e}")
            raise TransientInfraError(
                f"Working-hours service failed for {resource}",
                code="UNAVAILABLE",
                details=details,
            ) from e

        data = response.json()
        intervals = [TimeInterval(**item) for item in data.get("intervals", [])]
        return merge(intervals)


async def resolve_open_intervals(
    resolver: WorkingHoursResolver,
    professional_id: int,
    room_id: Optional[int],
    day: date,
    timeout: float,
) -> List[TimeInterval]:
    """
    Open intervals shared by a professional and (optionally) a room.

    Every resolver call is bounded by ``timeout``; expiry is reported as a
    retryable failure, never as an empty (or full) day.
    """
    resources = [ResourceRef(kind=ResourceKind.PROFESSIONAL, id=professional_id)]
    if room_id is not None:
        resources.append(ResourceRef(kind=ResourceKind.ROOM, id=room_id))

    combined: Optional[List[TimeInterval]] = None
    for resource in resources:
        try:
            intervals = await asyncio.wait_for(
                resolver.get_open_intervals(resource, day), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Working-hours lookup for {resource} on {day} exceeded {timeout}s")
            raise TransientInfraError(
                f"Working-hours lookup timed out for {resource}",
                details={"resource": str(resource), "date": day.isoformat(), "timeout": timeout},
            ) from e
        combined = intervals if combined is None else intersect(combined, intervals)

    return combined or []
