"""Job record model - one document per itinerary generation job.

Store documents use camelCase field names (``durationDays``, ``createdAt``,
``completedAt``) because status observers read them directly; Python code
uses the snake_case attributes.

State machine: ``processing`` -> exactly one of ``completed`` | ``failed``.
"""
from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationInfo,
    field_validator,
    model_validator,
)

from itinerary_api.models.itinerary import Itinerary

DEFAULT_MAX_DURATION_DAYS = 14

# Fields written once at creation; terminal patches must never touch them.
IMMUTABLE_FIELDS = frozenset({"id", "destination", "durationDays", "createdAt"})


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


class ItineraryRequest(BaseModel):
    """Submission payload. Pass ``context={"max_duration_days": n}`` to override the cap."""

    model_config = ConfigDict(populate_by_name=True)

    destination: StrictStr
    duration_days: StrictInt = Field(..., alias="durationDays")

    @field_validator("destination")
    @classmethod
    def _destination_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("destination must be a non-empty string")
        return value

    @field_validator("duration_days")
    @classmethod
    def _duration_in_range(cls, value: int, info: ValidationInfo) -> int:
        context = info.context or {}
        upper = int(context.get("max_duration_days", DEFAULT_MAX_DURATION_DAYS))
        if not 1 <= value <= upper:
            raise ValueError(f"durationDays must be an integer between 1 and {upper}")
        return value


class JobRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    destination: str
    duration_days: int = Field(..., alias="durationDays")
    status: JobStatus = JobStatus.PROCESSING
    itinerary: Optional[Itinerary] = None
    error: Optional[str] = None
    created_at: str = Field(..., alias="createdAt")
    completed_at: Optional[str] = Field(default=None, alias="completedAt")

    @model_validator(mode="after")
    def _check_state_invariants(self) -> "JobRecord":
        if self.status is JobStatus.PROCESSING:
            if self.itinerary is not None or self.error is not None or self.completed_at is not None:
                raise ValueError("a processing job carries no itinerary, error or completedAt")
        else:
            if self.completed_at is None:
                raise ValueError(f"a {self.status.value} job requires completedAt")
            if self.status is JobStatus.COMPLETED and (self.itinerary is None or self.error is not None):
                raise ValueError("a completed job carries an itinerary and no error")
            if self.status is JobStatus.FAILED and (self.error is None or self.itinerary is not None):
                raise ValueError("a failed job carries an error and no itinerary")
        return self

    @classmethod
    def new(cls, job_id: str, request: ItineraryRequest, created_at: datetime) -> "JobRecord":
        return cls(
            id=job_id,
            destination=request.destination,
            duration_days=request.duration_days,
            created_at=to_timestamp(created_at),
        )

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "JobRecord":
        return cls.model_validate(document)

    def to_document(self) -> Dict[str, Any]:
        """Full store document, every field present (nulls included)."""
        return self.model_dump(mode="json", by_alias=True)


def completed_patch(itinerary: Itinerary, completed_at: datetime) -> Dict[str, Any]:
    return {
        "status": JobStatus.COMPLETED.value,
        "itinerary": itinerary.to_document(),
        "completedAt": to_timestamp(completed_at),
    }


def failed_patch(error: str, completed_at: datetime) -> Dict[str, Any]:
    return {
        "status": JobStatus.FAILED.value,
        "error": error,
        "completedAt": to_timestamp(completed_at),
    }
