from .itinerary import Activity, DayPlan, Itinerary, parse_itinerary
from .job import (
    IMMUTABLE_FIELDS,
    ItineraryRequest,
    JobRecord,
    JobStatus,
    completed_patch,
    failed_patch,
)

__all__ = [
    "Activity",
    "DayPlan",
    "Itinerary",
    "parse_itinerary",
    "IMMUTABLE_FIELDS",
    "ItineraryRequest",
    "JobRecord",
    "JobStatus",
    "completed_patch",
    "failed_patch",
]
