"""
Resource and interval data models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator


class ResourceKind(str, Enum):
    PROFESSIONAL = "professional"
    ROOM = "room"


class ResourceRef(BaseModel):
    """A professional or a room, each independently checked for overlap."""

    kind: ResourceKind
    id: int

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.kind.value}#{self.id}"


class TimeInterval(BaseModel):
    """
    Half-open ``[start, end)`` interval.

    Both ends are timezone-aware and compared as absolute instants.
    """

    start: datetime
    end: datetime

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_order(self) -> "TimeInterval":
        if self.end <= self.start:
            raise ValueError("interval end must be after start")
        return self

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


class BlockKind(str, Enum):
    HOLIDAY = "HOLIDAY"
    PERSONAL = "PERSONAL"
    ROOM_OUTAGE = "ROOM_OUTAGE"
    OTHER = "OTHER"


class ScheduleBlock(BaseModel):
    """
    A blocked period in the agenda.

    Targets a professional, a room, or the whole clinic when neither is set.
    """

    id: int
    start_at: datetime
    end_at: datetime
    kind: BlockKind = BlockKind.OTHER
    reason: Optional[str] = None
    professional_id: Optional[int] = None
    room_id: Optional[int] = None
    active: bool = True

    def applies_to(self, resource: ResourceRef) -> bool:
        if not self.active:
            return False
        if self.professional_id is None and self.room_id is None:
            return True
        if resource.kind == ResourceKind.PROFESSIONAL:
            return self.professional_id == resource.id
        return self.room_id == resource.id

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(start=self.start_at, end=self.end_at)


class Professional(BaseModel):
    id: int
    name: str
    specialties: List[str] = Field(default_factory=list)
    active: bool = True
    # Raw weekly schedule as stored by the admin catalog, parsed on demand
    schedule: Optional[Any] = None


class Room(BaseModel):
    id: int
    name: str
    active: bool = True
    schedule: Optional[Any] = None
