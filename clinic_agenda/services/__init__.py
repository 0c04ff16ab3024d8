"""
Services layer for the Clinic Agenda scheduling engine.
"""

from .compatibility import CompatibilityValidator
from .coordinator import BookingCoordinator, build_coordinator
from .directory import ResourceDirectory
from .overlap import Candidate, OverlapDetector
from .recommendations import RecommendationGenerator, RecommendationRequest
from .store import BookingTransaction, InMemoryBookingStore
from .working_hours import (
    DirectoryWorkingHoursResolver,
    HttpWorkingHoursResolver,
    WorkingHoursResolver,
)

__all__ = [
    "BookingCoordinator",
    "BookingTransaction",
    "Candidate",
    "CompatibilityValidator",
    "DirectoryWorkingHoursResolver",
    "HttpWorkingHoursResolver",
    "InMemoryBookingStore",
    "OverlapDetector",
    "RecommendationGenerator",
    "RecommendationRequest",
    "ResourceDirectory",
    "WorkingHoursResolver",
    "build_coordinator",
]
