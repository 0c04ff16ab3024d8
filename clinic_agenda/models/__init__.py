"""
Data models for the Clinic Agenda scheduling engine.
"""

from .booking import Booking, BookingAction, BookingStatus, StatusChange
from .requests import (
    AvailabilityQuery,
    BookingRequest,
    RescheduleIntent,
    RescheduleRequest,
)
from .resources import (
    BlockKind,
    Professional,
    ResourceKind,
    ResourceRef,
    Room,
    ScheduleBlock,
    TimeInterval,
)
from .results import (
    AvailabilityCheck,
    BookingStage,
    ConflictCode,
    ConflictDescriptor,
    ConflictResult,
    Rejected,
    Replaced,
    SlotRecommendation,
)

__all__ = [
    "AvailabilityCheck",
    "AvailabilityQuery",
    "BlockKind",
    "Booking",
    "BookingAction",
    "BookingRequest",
    "BookingStage",
    "BookingStatus",
    "ConflictCode",
    "ConflictDescriptor",
    "ConflictResult",
    "Professional",
    "Rejected",
    "Replaced",
    "RescheduleIntent",
    "RescheduleRequest",
    "ResourceKind",
    "ResourceRef",
    "Room",
    "ScheduleBlock",
    "SlotRecommendation",
    "StatusChange",
    "TimeInterval",
]
