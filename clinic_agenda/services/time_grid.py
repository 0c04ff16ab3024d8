"""
Time Grid Normalizer.

All requested start times are snapped to the clinic's slot grid in the
clinic's local wall-clock time. Conversions between clinic-local naive
datetimes and UTC instants live here so that DST handling is in one place:
a local time that does not exist (spring-forward gap) or exists twice
(fall-back overlap) is rejected instead of being silently shifted.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from clinic_agenda.config import get_settings
from clinic_agenda.errors import InvalidTimeError

MINUTES_PER_DAY = 24 * 60


@lru_cache(maxsize=None)
def get_zone(name: Optional[str] = None) -> ZoneInfo:
    """Get the clinic time zone (or a named one)."""
    return ZoneInfo(name or get_settings().clinic_timezone)


def _check_grid(grid_minutes: int) -> timedelta:
    if grid_minutes <= 0 or MINUTES_PER_DAY % grid_minutes != 0:
        raise ValueError(f"grid of {grid_minutes} minutes does not divide a day")
    return timedelta(minutes=grid_minutes)


def is_nonexistent(local: datetime, tz: ZoneInfo) -> bool:
    """True when the wall-clock time falls in a DST gap."""
    aware = local.replace(tzinfo=tz)
    round_trip = aware.astimezone(timezone.utc).astimezone(tz)
    return round_trip.replace(tzinfo=None) != local.replace(tzinfo=None)


def is_ambiguous(local: datetime, tz: ZoneInfo) -> bool:
    """True when the wall-clock time occurs twice (DST fall-back)."""
    early = local.replace(tzinfo=tz, fold=0)
    late = local.replace(tzinfo=tz, fold=1)
    return early.utcoffset() != late.utcoffset()


def ensure_unambiguous(local: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Return ``local`` unchanged or raise InvalidTimeError."""
    tz = tz or get_zone()
    if is_nonexistent(local, tz):
        raise InvalidTimeError(
            f"{local.isoformat()} does not exist in {tz.key} (DST gap)",
            details={"local_time": local.isoformat(), "timezone": tz.key},
        )
    if is_ambiguous(local, tz):
        raise InvalidTimeError(
            f"{local.isoformat()} is ambiguous in {tz.key} (DST overlap)",
            details={"local_time": local.isoformat(), "timezone": tz.key},
        )
    return local


def to_local(moment: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Convert an aware instant to a naive clinic-local wall-clock time."""
    tz = tz or get_zone()
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(tz).replace(tzinfo=None)


def to_utc(local: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Convert a clinic-local wall-clock time to an aware UTC instant."""
    tz = tz or get_zone()
    if local.tzinfo is not None:
        return local.astimezone(timezone.utc)
    ensure_unambiguous(local, tz)
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


def normalize(
    local: datetime,
    grid_minutes: Optional[int] = None,
    tz: Optional[ZoneInfo] = None,
) -> datetime:
    """
    Round a clinic-local time to the nearest grid boundary (round-half-up).

    Args:
        local: Wall-clock time; aware values are converted to the clinic zone
        grid_minutes: Grid size, defaults to the configured slot grid
        tz: Clinic zone, defaults to the configured one

    Returns:
        Naive clinic-local datetime on the grid

    Raises:
        InvalidTimeError: if the input or the result is non-existent or
            ambiguous in the clinic zone
    """
    tz = tz or get_zone()
    grid = _check_grid(grid_minutes or get_settings().slot_grid_minutes)

    local = to_local(local, tz)
    ensure_unambiguous(local, tz)

    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    steps = (local - midnight + grid / 2) // grid
    rounded = midnight + steps * grid

    return ensure_unambiguous(rounded, tz)


def is_aligned(local: datetime, grid_minutes: Optional[int] = None) -> bool:
    grid = _check_grid(grid_minutes or get_settings().slot_grid_minutes)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return (local - midnight) % grid == timedelta(0)


def align_up(local: datetime, grid_minutes: Optional[int] = None) -> datetime:
    """First grid boundary at or after ``local``."""
    grid = _check_grid(grid_minutes or get_settings().slot_grid_minutes)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    offset = local - midnight
    remainder = offset % grid
    if remainder == timedelta(0):
        return local
    return local + (grid - remainder)


def local_day_bounds(day: date, tz: Optional[ZoneInfo] = None) -> tuple:
    """UTC instants of the local day's start and the next day's start."""
    tz = tz or get_zone()
    start = datetime.combine(day, time(0)).replace(tzinfo=tz).astimezone(timezone.utc)
    end = (
        datetime.combine(day + timedelta(days=1), time(0))
        .replace(tzinfo=tz)
        .astimezone(timezone.utc)
    )
    return start, end
